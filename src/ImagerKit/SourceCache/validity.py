"""Cache validity checks for locally staged copies of remote sources.

A cached copy is reusable when it exists, is at least
:data:`MIN_VALID_BYTES` long, and (when a TTL is configured) was modified
no longer than ``ttl_s`` seconds ago. The size floor keeps zero-byte
placeholders and truncated downloads from a previous failed run from being
mistaken for cache hits.
"""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Optional

from .paths import SourceReference

__all__ = ["MIN_VALID_BYTES", "is_valid_file", "needs_refresh", "source_needs_refresh"]

MIN_VALID_BYTES = 1024


def is_valid_file(path: Path) -> bool:
    """Return ``True`` when ``path`` exists and meets the minimum size."""

    try:
        return os.stat(path).st_size >= MIN_VALID_BYTES
    except OSError:
        return False


def needs_refresh(path: Path, ttl_s: Optional[int], *, now: Optional[float] = None) -> bool:
    """Return ``True`` when the cached file at ``path`` must be (re)fetched.

    Args:
        path: Final cache path
        ttl_s: Freshness window in seconds, ``None`` to never expire
        now: Reference timestamp (defaults to :func:`time.time`)
    """

    try:
        stat = os.stat(path)
    except OSError:
        return True
    if stat.st_size < MIN_VALID_BYTES:
        return True
    if ttl_s is None:
        return False
    current = time.time() if now is None else now
    return current - stat.st_mtime > ttl_s


def source_needs_refresh(
    source: SourceReference, ttl_s: Optional[int], *, now: Optional[float] = None
) -> bool:
    """Validity check for a resolved source; sources read in place never refresh."""

    if not source.requires_fetch:
        return False
    return needs_refresh(source.file_path, ttl_s, now=now)
