"""Ledger of local files populated from remote origins or copy-out volumes.

The registry is a passive index: it records that a path holds cache-managed
content (as opposed to a permanent original) so an external cleanup
collaborator knows what it may evict. It carries no TTL or deletion policy;
freshness is derived from file modification times.

One instance is created at startup, shared by reference between the
resolver and the cleanup collaborator, and closed at shutdown.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Dict, Iterator, Tuple, Union

__all__ = ["CacheRegistry"]

LOGGER = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]


def _normalize(path: PathLike) -> str:
    return os.path.normpath(os.path.abspath(os.fspath(path)))


class CacheRegistry:
    """Thread-safe, insertion-ordered set of cache-managed file paths."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._paths: Dict[str, None] = {}
        self._closed = False

    def register(self, path: PathLike) -> bool:
        """Record ``path``; returns ``False`` when it was already registered.

        Raises:
            RuntimeError: If the registry has been closed.
        """

        key = _normalize(path)
        with self._lock:
            if self._closed:
                raise RuntimeError("CacheRegistry is closed")
            if key in self._paths:
                return False
            self._paths[key] = None
        LOGGER.debug("cache-path-registered", extra={"extra_fields": {"path": key}})
        return True

    def discard(self, path: PathLike) -> bool:
        """Forget ``path`` (called by the cleanup collaborator after eviction)."""

        key = _normalize(path)
        with self._lock:
            if key not in self._paths:
                return False
            del self._paths[key]
            return True

    def paths(self) -> Tuple[Path, ...]:
        """Snapshot of registered paths in registration order."""

        with self._lock:
            return tuple(Path(key) for key in self._paths)

    def clear(self) -> None:
        with self._lock:
            self._paths.clear()

    def close(self) -> None:
        """Clear the registry and reject further registrations."""

        with self._lock:
            self._paths.clear()
            self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, (str, os.PathLike)):
            return False
        with self._lock:
            return _normalize(path) in self._paths

    def __len__(self) -> int:
        with self._lock:
            return len(self._paths)

    def __iter__(self) -> Iterator[Path]:
        return iter(self.paths())

    def __enter__(self) -> "CacheRegistry":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
