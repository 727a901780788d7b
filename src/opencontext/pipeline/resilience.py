"""Retry and timeout helpers for external calls made by the pipeline."""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Any, TypeVar

from loguru import logger
from tenacity import retry, stop_after_attempt, wait_exponential

from opencontext.config import IngestionCfg

T = TypeVar("T")


class StepTimeoutError(TimeoutError):
    def __init__(self, step: str, seconds: float) -> None:
        super().__init__(f"{step} timed out after {seconds:g}s")
        self.step = step
        self.seconds = seconds


def retry_policy(cfg: IngestionCfg, operation: str) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Exponential-backoff retry decorator sized by the ingestion config."""
    return retry(
        stop=stop_after_attempt(cfg.max_retries),
        wait=wait_exponential(multiplier=1, min=cfg.retry_min_wait, max=cfg.retry_max_wait),
        before_sleep=lambda retry_state: logger.warning(
            f"{operation} failed, retrying | attempt={retry_state.attempt_number}/{cfg.max_retries} "
            f"error={retry_state.outcome.exception()!r}"
        ),
        reraise=True,
    )


class TimedCaller:
    """Run blocking calls on helper threads and stop waiting after *timeout*.

    A call that times out keeps running in the background; its result is
    ignored and the caller treats the step as failed. Such calls still hold
    a pool thread, so once half of the pool is stuck the pool is swapped for
    a fresh one and the stuck threads are left to finish on their own.
    """

    def __init__(self, timeout: float, workers: int = 4) -> None:
        self.timeout = timeout
        self._workers = workers
        self._lock = threading.RLock()
        self._stuck = 0
        self._pool = self._new_pool()

    def _new_pool(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=self._workers, thread_name_prefix="ingest-call")

    def call(self, step: str, fn: Callable[..., T], *args: Any) -> T:
        with self._lock:
            pool = self._pool
            future = pool.submit(fn, *args)
        try:
            return future.result(timeout=self.timeout)
        except FuturesTimeoutError:
            if not future.cancel():
                self._abandon(pool, future)
            raise StepTimeoutError(step, self.timeout) from None

    def _abandon(self, pool: ThreadPoolExecutor, future: Future) -> None:
        with self._lock:
            if pool is not self._pool:
                return
            self._stuck += 1
            future.add_done_callback(lambda _f: self._settle(pool))
            if self._stuck < max(1, self._workers // 2):
                return
            logger.warning(
                f"Call pool saturated by timed-out calls, starting a new pool | "
                f"stuck={self._stuck} workers={self._workers}"
            )
            self._pool = self._new_pool()
            self._stuck = 0
        pool.shutdown(wait=False)

    def _settle(self, pool: ThreadPoolExecutor) -> None:
        with self._lock:
            if pool is self._pool and self._stuck > 0:
                self._stuck -= 1

    def shutdown(self) -> None:
        with self._lock:
            pool = self._pool
        pool.shutdown(wait=False, cancel_futures=True)
