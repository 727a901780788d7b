"""Bounded worker pool with caller-runs backpressure."""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from typing import Any

from loguru import logger


class IngestionExecutor:
    """Run ingestion jobs on a fixed pool with a bounded backlog.

    At most ``workers + queue_capacity`` jobs are accepted at once. When the
    pool is saturated the job runs synchronously on the submitting thread
    instead of being dropped; its outcome is still delivered through the
    returned future.
    """

    def __init__(self, workers: int = 2, queue_capacity: int = 10) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ingest")
        self._slots = threading.BoundedSemaphore(workers + queue_capacity)
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        if not self._slots.acquire(blocking=False):
            logger.warning("Ingestion queue full; running job on the caller thread")
            return self._run_inline(fn, *args)
        try:
            future = self._pool.submit(fn, *args)
        except BaseException:
            self._slots.release()
            raise
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._on_done)
        return future

    def _on_done(self, future: Future) -> None:
        self._slots.release()
        with self._lock:
            self._pending.discard(future)

    @staticmethod
    def _run_inline(fn: Callable[..., Any], *args: Any) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args))
        except Exception as exc:
            future.set_exception(exc)
        return future

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until every accepted job has finished. Returns False on timeout."""
        with self._lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait_futures(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)
