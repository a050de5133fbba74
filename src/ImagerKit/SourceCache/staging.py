# === NAVMAP v1 ===
# {
#   "module": "ImagerKit.SourceCache.staging",
#   "purpose": "Stage-then-promote file primitives for crash-safe cache writes",
#   "sections": [
#     {"id": "discard-staging", "name": "discard_staging", "anchor": "function-discard-staging", "kind": "function"},
#     {"id": "fsync-directory", "name": "_fsync_directory", "anchor": "function-fsync-directory", "kind": "function"},
#     {"id": "promote", "name": "promote", "anchor": "function-promote", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Atomic staging primitives for the local source cache.

**Purpose**
-----------
Every byte that lands in the cache is first written to a staging path in
the same directory as the final file and then moved over the final path
with a single :func:`os.replace`. Readers therefore see either the previous
complete file or the new complete file, never a partial one.

**Responsibilities**
--------------------
- :func:`promote` flushes the staged file to disk, renames it onto the final
  path, and fsyncs the directory so the rename survives a crash.
- :func:`discard_staging` removes failed or stale staging artefacts on a
  best-effort basis. Cleanup failures are logged and never raised, so they
  cannot mask the error that triggered the cleanup.

**Safety & Reliability**
------------------------
- Staging files live beside the final file so the rename never crosses a
  filesystem boundary.
- Promotion is the only operation in this package that changes the content
  of a final cache path.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

__all__ = ["discard_staging", "promote"]

LOGGER = logging.getLogger(__name__)


def discard_staging(path: Path, *, reason: str) -> bool:
    """Remove the staging artefact at ``path`` if present.

    Returns:
        ``True`` when a file was removed.
    """

    try:
        os.unlink(path)
    except FileNotFoundError:
        return False
    except OSError as exc:
        LOGGER.warning(
            "staging-cleanup-failed",
            extra={"extra_fields": {"path": str(path), "reason": reason, "error": str(exc)}},
        )
        return False
    LOGGER.debug(
        "staging-discarded", extra={"extra_fields": {"path": str(path), "reason": reason}}
    )
    return True


def _fsync_directory(directory: Path) -> None:
    if not hasattr(os, "O_DIRECTORY"):
        return
    try:
        dir_fd = os.open(directory, os.O_DIRECTORY)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        pass
    finally:
        os.close(dir_fd)


def promote(staging: Path, final: Path) -> Path:
    """Atomically move ``staging`` over ``final``.

    Raises:
        ValueError: If the two paths are in different directories.
        OSError: If the staged file cannot be flushed or renamed; the staged
            file is left for the caller to discard.
    """

    if staging.parent != final.parent:
        raise ValueError(f"Staging path {staging} must share a directory with {final}")

    with open(staging, "rb+") as handle:
        os.fsync(handle.fileno())
    os.replace(staging, final)
    _fsync_directory(final.parent)
    LOGGER.debug("staging-promoted", extra={"extra_fields": {"path": str(final)}})
    return final
