"""Single-flight lock pool."""

from __future__ import annotations

import logging
import threading
import time

import pytest

from ImagerKit.SourceCache.locks import FetchLockPool, Timeout


def test_lock_files_are_keyed_by_target(tmp_path):
    pool = FetchLockPool(tmp_path / "locks")
    first = pool.lock_file_for(tmp_path / "a" / "photo.jpg")
    assert first == pool.lock_file_for(tmp_path / "a" / "photo.jpg")
    assert first != pool.lock_file_for(tmp_path / "b" / "photo.jpg")
    assert first.parent == tmp_path / "locks"
    assert first.name.startswith("fetch.") and first.name.endswith(".lock")


def test_second_holder_times_out(tmp_path):
    pool = FetchLockPool(tmp_path / "locks", timeout_s=0.0)
    target = tmp_path / "photo.jpg"
    with pool.acquire(target):
        with pytest.raises(Timeout):
            with pool.acquire(target):
                pass
    snapshot = pool.metrics_snapshot()
    assert snapshot["timeout_total"] == 1
    assert snapshot["acquire_total"] == 1


def test_distinct_targets_do_not_block(tmp_path):
    pool = FetchLockPool(tmp_path / "locks", timeout_s=0.0)
    with pool.acquire(tmp_path / "a.jpg"):
        with pool.acquire(tmp_path / "b.jpg"):
            pass


def test_waiters_run_one_at_a_time(tmp_path):
    pool = FetchLockPool(tmp_path / "locks", timeout_s=5.0, poll_interval_s=0.01)
    target = tmp_path / "photo.jpg"
    active = []
    overlaps = []
    guard = threading.Lock()

    def _worker() -> None:
        with pool.acquire(target):
            with guard:
                active.append(1)
                if len(active) > 1:
                    overlaps.append(True)
            time.sleep(0.02)
            with guard:
                active.pop()

    threads = [threading.Thread(target=_worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert overlaps == []
    snapshot = pool.metrics_snapshot(reset=True)
    assert snapshot["acquire_total"] == 4
    assert snapshot["hold_ms_p95"] > 0
    assert pool.metrics_snapshot()["acquire_total"] == 0


def test_soft_locks(tmp_path):
    pool = FetchLockPool(tmp_path / "locks", timeout_s=0.0, soft=True)
    target = tmp_path / "photo.jpg"
    with pool.acquire(target):
        with pytest.raises(Timeout):
            with pool.acquire(target):
                pass


def test_import_leaves_filelock_logger_alone():
    assert logging.getLogger("filelock").level == logging.NOTSET
