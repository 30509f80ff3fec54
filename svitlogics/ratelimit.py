from __future__ import annotations

import os
import threading
import time
from typing import Dict, Tuple

WINDOW_SECONDS: int = int(os.getenv("RATE_WINDOW_SECONDS", "3600"))
MAX_REQUESTS: int = int(os.getenv("RATE_MAX_REQUESTS", "20"))
# Expired windows are swept once the table grows past this many keys.
_SWEEP_THRESHOLD = 4096

_lock = threading.Lock()
_store: Dict[Tuple[str, str], Dict[str, int]] = {}


def _now() -> int:
    return int(time.time())


def _bk(bucket: str, key: str) -> Tuple[str, str]:
    return (bucket or "default", key or "anon")


def _sweep(now: int) -> None:
    for k in [k for k, v in _store.items() if now >= v["reset_ts"]]:
        _store.pop(k, None)


def check_and_increment(bucket: str, key: str) -> Tuple[bool, int, int]:
    """Count one request for (bucket, key) in the current fixed window.

    Returns (allowed, remaining, reset_ts).
    """
    now = _now()
    with _lock:
        if len(_store) > _SWEEP_THRESHOLD:
            _sweep(now)
        k = _bk(bucket, key)
        entry = _store.get(k)
        if entry is None or now >= entry["reset_ts"]:
            entry = {"count": 0, "reset_ts": now + WINDOW_SECONDS}
            _store[k] = entry
        if entry["count"] < MAX_REQUESTS:
            entry["count"] += 1
            return True, max(0, MAX_REQUESTS - entry["count"]), entry["reset_ts"]
        return False, 0, entry["reset_ts"]


def _reset() -> None:
    """Used by tests to clear state."""
    with _lock:
        _store.clear()
