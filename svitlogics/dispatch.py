from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional

from svitlogics.errors import AnalysisError, EnqueueError, StoreError
from svitlogics.task_store import completed_record, failed_record

log = logging.getLogger(__name__)

try:
    TASK_WORKERS = int(os.getenv("TASK_WORKERS", "2") or 2)
except Exception:
    TASK_WORKERS = 2
if TASK_WORKERS < 1:
    TASK_WORKERS = 1


def _record_failure(store: Any, task_id: str, message: str) -> None:
    try:
        store.set(task_id, failed_record(message))
    except StoreError as exc:
        log.error("task %s: could not record failure: %s", task_id, exc)


def run_analysis_task(
    task_id: str,
    text: str,
    language: str,
    system_prompt: str,
    orchestrator: Any,
    store: Any,
) -> bool:
    """Run one analysis and write its terminal record; True when it completed.

    The record is written exactly once: `completed` with the result, or
    `failed` with the error message.
    """
    log.info("task %s: starting analysis language=%s text_len=%d", task_id, language, len(text or ""))
    try:
        result = orchestrator.analyze(text, language, system_prompt)
    except AnalysisError as exc:
        log.warning("task %s: analysis failed: %s", task_id, exc)
        _record_failure(store, task_id, str(exc))
        return False
    except Exception:
        log.exception("task %s: unexpected error during analysis", task_id)
        _record_failure(store, task_id, "An internal error occurred during analysis.")
        return False

    try:
        store.set(task_id, completed_record(result))
    except StoreError as exc:
        log.error("task %s: failed to save result: %s", task_id, exc)
        _record_failure(store, task_id, "Analysis finished but the result could not be saved.")
        return False
    log.info("task %s: analysis complete model=%s", task_id, result.get("usedModelName"))
    return True


class TaskDispatcher:
    """Runs background analyses on a small thread pool.

    `submit` hands back the Future so callers can tell a job that could not be
    queued (EnqueueError) apart from a job that later failed.
    """

    def __init__(self, max_workers: Optional[int] = None) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or TASK_WORKERS,
            thread_name_prefix="analysis",
        )
        self._lock = threading.Lock()
        self._inflight: Dict[str, Future] = {}

    def submit(self, task_id: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        try:
            fut = self._executor.submit(fn, *args, **kwargs)
        except RuntimeError as exc:
            # raised once the executor has been shut down
            raise EnqueueError(f"could not queue task {task_id}: {exc}") from exc
        with self._lock:
            self._inflight[task_id] = fut
        fut.add_done_callback(lambda f, tid=task_id: self._on_done(tid, f))
        log.info("dispatch: queued task %s inflight=%d", task_id, self.inflight())
        return fut

    def _on_done(self, task_id: str, fut: Future) -> None:
        with self._lock:
            self._inflight.pop(task_id, None)
        if fut.cancelled():
            log.warning("dispatch: task %s cancelled", task_id)
            return
        exc = fut.exception()
        if exc is not None:
            log.error("dispatch: task %s raised %r", task_id, exc)

    def inflight(self) -> int:
        with self._lock:
            return len(self._inflight)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
