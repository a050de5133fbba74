# === NAVMAP v1 ===
# {
#   "module": "ImagerKit.SourceCache.locks",
#   "purpose": "Per-cache-key file locks that serialise fetches of the same source",
#   "sections": [
#     {"id": "fetchlockpool", "name": "FetchLockPool", "anchor": "class-fetchlockpool", "kind": "class"},
#     {"id": "lock-metrics-snapshot", "name": "FetchLockPool.metrics_snapshot", "anchor": "function-metrics-snapshot", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Single-flight locking for cache fetches.

Responsibilities
----------------
- Map each final cache path to a lock file under a configured lock
  directory (:meth:`FetchLockPool.lock_file_for`).
- Serialise fetches of the same cache key across threads and processes so
  concurrent requests for a missing or stale source download it once.
- Capture acquisition/hold timing via :meth:`FetchLockPool.metrics_snapshot`
  to troubleshoot contention.

Design Notes
------------
- Locks are implemented with :mod:`filelock`. Each acquisition opens its own
  lock handle (``thread_local=False``) so two threads in one process contend
  just like two processes do.
- Lock files are keyed by a digest of the resolved target path, so deeply
  nested cache paths do not leak into lock filenames.
- Lock files are not removed on release. Pruning ``lock_dir`` belongs to the
  cache cleanup job and is only safe while no fetch is running.
"""

from __future__ import annotations

import contextlib
import hashlib
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Union

from filelock import FileLock, SoftFileLock, Timeout

__all__ = ["FetchLockPool", "Timeout"]

LOGGER = logging.getLogger(__name__)

_DEFAULT_POLL_INTERVAL = 0.05  # seconds
_DEFAULT_LOCK_MODE = 0o640


@dataclass
class _LockMetrics:
    acquire_total: int = 0
    timeout_total: int = 0
    wait_ms_sum: float = 0.0
    wait_ms_samples: List[float] = field(default_factory=list)
    hold_ms_sum: float = 0.0
    hold_ms_samples: List[float] = field(default_factory=list)


def _p95(samples: Iterable[float]) -> float:
    ordered = sorted(float(value) for value in samples if value >= 0)
    if not ordered:
        return 0.0
    index = int(max(len(ordered) - 1, 0) * 0.95)
    return ordered[index]


class FetchLockPool:
    """Hands out per-target locks rooted at ``lock_dir``.

    Args:
        lock_dir: Directory for lock files (created on first use)
        timeout_s: Seconds to wait before raising :class:`filelock.Timeout`
        soft: Use :class:`filelock.SoftFileLock` (marker files) instead of OS locks
        poll_interval_s: Polling interval while waiting
    """

    def __init__(
        self,
        lock_dir: Path,
        *,
        timeout_s: float = 60.0,
        soft: bool = False,
        poll_interval_s: float = _DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.lock_dir = Path(lock_dir).expanduser()
        self.timeout_s = float(timeout_s)
        self._lock_cls = SoftFileLock if soft else FileLock
        self._poll_interval_s = poll_interval_s
        self._dir_ready = False
        self._guard = threading.RLock()
        self._metrics = _LockMetrics()

    def lock_file_for(self, target: Path) -> Path:
        resolved = Path(target).expanduser().resolve(strict=False)
        digest = hashlib.sha256(str(resolved).encode("utf-8")).hexdigest()[:24]
        return self.lock_dir / f"fetch.{digest}.lock"

    def _ensure_dir(self) -> None:
        with self._guard:
            if not self._dir_ready:
                self.lock_dir.mkdir(parents=True, exist_ok=True)
                self._dir_ready = True

    @contextlib.contextmanager
    def acquire(self, target: Path, *, timeout: Optional[float] = None) -> Iterator[None]:
        """Hold the lock for ``target`` for the duration of the ``with`` block.

        Raises:
            filelock.Timeout: If the lock is not acquired within the timeout.
        """

        self._ensure_dir()
        lock_file = self.lock_file_for(target)
        lock_timeout = self.timeout_s if timeout is None else float(timeout)
        lock = self._lock_cls(
            str(lock_file), timeout=lock_timeout, mode=_DEFAULT_LOCK_MODE, thread_local=False
        )
        start = time.monotonic()
        try:
            lock.acquire(timeout=lock_timeout, poll_interval=self._poll_interval_s)
        except Timeout:
            wait_ms = max((time.monotonic() - start) * 1000.0, 0.0)
            LOGGER.info(
                "lock-timeout wait_ms=%.3f lock_file=%s target=%s", wait_ms, lock_file, target
            )
            with self._guard:
                self._metrics.timeout_total += 1
                self._metrics.wait_ms_sum += wait_ms
                self._metrics.wait_ms_samples.append(wait_ms)
            raise

        acquired_at = time.monotonic()
        wait_ms = max((acquired_at - start) * 1000.0, 0.0)
        LOGGER.debug("lock-acquired wait_ms=%.3f lock_file=%s target=%s", wait_ms, lock_file, target)
        try:
            yield None
        finally:
            try:
                lock.release()
            finally:
                hold_ms = max((time.monotonic() - acquired_at) * 1000.0, 0.0)
                with self._guard:
                    self._metrics.acquire_total += 1
                    self._metrics.wait_ms_sum += wait_ms
                    self._metrics.wait_ms_samples.append(wait_ms)
                    self._metrics.hold_ms_sum += hold_ms
                    self._metrics.hold_ms_samples.append(hold_ms)
                LOGGER.debug("lock-release hold_ms=%.3f wait_ms=%.3f", hold_ms, wait_ms)

    def metrics_snapshot(self, *, reset: bool = False) -> Dict[str, Union[int, float]]:
        """Return collected lock metrics, optionally clearing them."""

        with self._guard:
            metrics = self._metrics
            summary: Dict[str, Union[int, float]] = {
                "acquire_total": metrics.acquire_total,
                "timeout_total": metrics.timeout_total,
                "wait_ms_sum": metrics.wait_ms_sum,
                "wait_ms_p95": _p95(metrics.wait_ms_samples),
            }
            if metrics.hold_ms_samples:
                summary["hold_ms_sum"] = metrics.hold_ms_sum
                summary["hold_ms_p95"] = _p95(metrics.hold_ms_samples)
            if reset:
                self._metrics = _LockMetrics()
            return summary
