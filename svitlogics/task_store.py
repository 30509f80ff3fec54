from __future__ import annotations

import hashlib
import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from svitlogics.errors import StoreError

try:
    import redis
except Exception:  # pragma: no cover - redis is optional for file-backed deployments
    redis = None

log = logging.getLogger(__name__)

TASK_STORE_DIR = Path(os.getenv("TASK_STORE_DIR", "cache/tasks"))
REDIS_URL = os.getenv("REDIS_URL", "").strip()
try:
    REDIS_TIMEOUT = float(os.getenv("REDIS_STORE_TIMEOUT", "2.0") or 2.0)
except Exception:
    REDIS_TIMEOUT = 2.0

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


def completed_record(data: Dict[str, Any]) -> Dict[str, Any]:
    return {"status": STATUS_COMPLETED, "data": data}


def failed_record(error: str) -> Dict[str, Any]:
    return {"status": STATUS_FAILED, "error": error}


class FileTaskStore:
    """Key -> JSON store keeping one file per key under `directory`."""

    def __init__(self, directory: Optional[Path] = None, namespace: str = "analysis_results") -> None:
        self.directory = Path(directory or TASK_STORE_DIR) / namespace
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        # Keys come from callers; hash them so they can never escape the directory.
        digest = hashlib.sha256((key or "").encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.json"

    def get(self, key: str) -> Optional[Any]:
        path = self._path(key)
        try:
            if not path.exists():
                return None
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise StoreError(f"failed to read key from {path.name}: {exc}") from exc

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        try:
            with self._lock:
                self.directory.mkdir(parents=True, exist_ok=True)
                tmp = path.with_suffix(".json.tmp")
                tmp.write_text(json.dumps(value, ensure_ascii=False, separators=(",", ":")), encoding="utf-8")
                tmp.replace(path)
        except (OSError, TypeError, ValueError) as exc:
            raise StoreError(f"failed to write key to {path.name}: {exc}") from exc


class RedisTaskStore:
    """Same contract as FileTaskStore, backed by plain redis strings."""

    def __init__(self, redis_url: Optional[str] = None, namespace: str = "analysis_results", client: Any = None) -> None:
        if client is None:
            if redis is None:
                raise RuntimeError("redis package is not installed")
            # Connection is lazy; nothing hits the network until the first command.
            client = redis.from_url(
                (redis_url or REDIS_URL),
                decode_responses=True,
                socket_timeout=REDIS_TIMEOUT,
                socket_connect_timeout=REDIS_TIMEOUT,
            )
        self._client = client
        self.namespace = namespace

    def _key(self, key: str) -> str:
        return f"svitlogics:{self.namespace}:{key}"

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self._client.get(self._key(key))
            return json.loads(raw) if raw else None
        except Exception as exc:
            raise StoreError(f"redis get failed: {exc}") from exc

    def set(self, key: str, value: Any) -> None:
        try:
            raw = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
            self._client.set(self._key(key), raw)
        except Exception as exc:
            raise StoreError(f"redis set failed: {exc}") from exc


_stores: Dict[str, Any] = {}
_stores_lock = threading.Lock()


def get_store(namespace: str = "analysis_results", directory: Optional[Path] = None) -> Any:
    """Process-wide store for `namespace`: redis when REDIS_URL is set, files otherwise."""
    with _stores_lock:
        store = _stores.get(namespace)
        if store is None:
            if REDIS_URL and redis is not None and not os.getenv("PYTEST_CURRENT_TEST"):
                log.info("task_store: using redis namespace=%s", namespace)
                store = RedisTaskStore(REDIS_URL, namespace=namespace)
            else:
                base = Path(directory) if directory is not None else TASK_STORE_DIR
                log.info("task_store: using files dir=%s namespace=%s", base, namespace)
                store = FileTaskStore(base, namespace=namespace)
            _stores[namespace] = store
        return store
