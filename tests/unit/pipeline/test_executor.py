"""Tests for the bounded ingestion executor."""

from __future__ import annotations

import threading

import pytest

from opencontext.pipeline.executor import IngestionExecutor


def test_jobs_run_on_worker_threads():
    executor = IngestionExecutor(workers=2, queue_capacity=2)
    future = executor.submit(lambda: threading.current_thread().name)
    assert future.result(5).startswith("ingest")
    executor.shutdown()


def test_saturated_pool_runs_job_on_caller():
    executor = IngestionExecutor(workers=1, queue_capacity=0)
    release = threading.Event()
    started = threading.Event()

    def block():
        started.set()
        release.wait(5)
        return "pooled"

    pooled = executor.submit(block)
    assert started.wait(5)

    caller = threading.current_thread().name
    inline = executor.submit(lambda: threading.current_thread().name)
    # not dropped: ran synchronously on the submitting thread
    assert inline.done()
    assert inline.result() == caller

    release.set()
    assert pooled.result(5) == "pooled"
    executor.shutdown()


def test_inline_failure_delivered_through_future():
    executor = IngestionExecutor(workers=1, queue_capacity=0)
    release = threading.Event()
    executor.submit(release.wait, 5)

    def boom():
        raise ValueError("inline failure")

    future = executor.submit(boom)
    with pytest.raises(ValueError, match="inline failure"):
        future.result()
    release.set()
    executor.shutdown()


def test_slots_released_after_completion():
    executor = IngestionExecutor(workers=1, queue_capacity=1)
    for _ in range(5):
        executor.submit(lambda: None).result(5)
    assert executor.wait_idle(5)
    # all slots free again: next job goes to the pool
    name = executor.submit(lambda: threading.current_thread().name).result(5)
    assert name.startswith("ingest")
    executor.shutdown()


def test_wait_idle_times_out_while_busy():
    executor = IngestionExecutor(workers=1, queue_capacity=1)
    release = threading.Event()
    executor.submit(release.wait, 5)
    assert executor.wait_idle(timeout=0.05) is False
    release.set()
    assert executor.wait_idle(timeout=5) is True
    executor.shutdown()


def test_invalid_worker_count():
    with pytest.raises(ValueError):
        IngestionExecutor(workers=0)
