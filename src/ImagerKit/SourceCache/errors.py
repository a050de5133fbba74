# === NAVMAP v1 ===
# {
#   "module": "ImagerKit.SourceCache.errors",
#   "purpose": "Exception taxonomy and failure logging helpers for source resolution.",
#   "sections": [
#     {"id": "sourcecacheerror", "name": "SourceCacheError", "anchor": "class-sourcecacheerror", "kind": "class"},
#     {"id": "fetcherror", "name": "FetchError", "anchor": "class-fetcherror", "kind": "class"},
#     {"id": "get-actionable-error-message", "name": "get_actionable_error_message", "anchor": "function-get-actionable-error-message", "kind": "function"},
#     {"id": "log-fetch-failure", "name": "log_fetch_failure", "anchor": "function-log-fetch-failure", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Exception hierarchy shared across classification, path resolution, and fetching.

Responsibilities
----------------
- Group every failure mode of a resolution request under
  :class:`SourceCacheError` so callers can catch one type, while subclasses
  (:class:`UnsupportedReferenceError`, :class:`ResolutionError`,
  :class:`FetchError`, :class:`ConfigurationError`, :class:`ValidationError`)
  keep the categories distinct.
- Define the collaborator-facing errors (:class:`TransferError` for storage
  backends, :class:`TransportError` for HTTP transports) that the fetcher
  wraps before they reach the caller.
- Centralise structured failure logging through :func:`log_fetch_failure`.

Design Notes
------------
- Nothing in here retries. Each resolution call is a single attempt and the
  caller owns any retry policy.
- Messages always name the origin reference so log lines are actionable on
  their own.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

__all__ = (
    "SourceCacheError",
    "UnsupportedReferenceError",
    "ResolutionError",
    "FetchError",
    "ConfigurationError",
    "ValidationError",
    "TransferError",
    "TransportError",
    "get_actionable_error_message",
    "log_fetch_failure",
)

LOGGER = logging.getLogger(__name__)


class SourceCacheError(RuntimeError):
    """Base exception for source resolution and cache fetch failures."""

    def __init__(self, message: str, *, origin: Optional[str] = None) -> None:
        super().__init__(message)
        self.origin = origin


class UnsupportedReferenceError(SourceCacheError):
    """Raised when a reference cannot be classified into a source kind."""


class ResolutionError(SourceCacheError):
    """Raised when cache paths cannot be computed or prepared for a reference."""


class ConfigurationError(SourceCacheError):
    """Raised when the environment offers no viable way to fetch remote sources."""


class ValidationError(SourceCacheError):
    """Raised when a fetch reported success but left no usable file behind."""

    def __init__(
        self, message: str, *, origin: Optional[str] = None, path: Optional[str] = None
    ) -> None:
        super().__init__(message, origin=origin)
        self.path = path


class FetchError(SourceCacheError):
    """Raised when a network download or storage transfer fails."""

    def __init__(
        self,
        message: str,
        *,
        origin: Optional[str] = None,
        url: Optional[str] = None,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message, origin=origin)
        self.url = url
        self.code = code
        self.status_code = status_code


class TransferError(Exception):
    """Raised by storage backends when an asset cannot be copied to local disk."""


class TransportError(Exception):
    """Raised by HTTP transports for connection-level failures (DNS, timeout, TLS)."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


def get_actionable_error_message(
    status_code: Optional[int],
    code: Optional[str],
) -> tuple[str, Optional[str]]:
    """Translate a status code or transport code into a message and a suggestion.

    Examples:
        >>> get_actionable_error_message(404, None)[0]
        'Remote image not found (HTTP 404)'
    """

    if status_code == 404:
        return (
            "Remote image not found (HTTP 404)",
            "The origin may have moved or deleted the image. Check the reference.",
        )
    if status_code in (401, 403):
        return (
            f"Access denied by origin (HTTP {status_code})",
            "Supply credentials via transport.headers or allow-list this host at the origin.",
        )
    if status_code is not None and status_code >= 500:
        return (
            f"Origin server error (HTTP {status_code})",
            "The origin is failing; the caller may retry later.",
        )
    if status_code is not None and status_code != 200:
        return (f"Unexpected HTTP status {status_code}", None)

    if code == "lock_timeout":
        return (
            "Timed out waiting for a concurrent fetch of the same source",
            "Increase locking.timeout_s or investigate slow origins.",
        )
    if code and "timeout" in code.lower():
        return (
            "Request timed out",
            "Increase transport.timeout_s or check the origin's latency.",
        )
    if code and "connect" in code.lower():
        return (
            "Failed to establish connection",
            "Check DNS resolution, firewall rules, or proxy configuration.",
        )
    if code == "transfer_failed":
        return (
            "Storage volume could not copy the asset locally",
            "Check the volume credentials and that the asset still exists.",
        )
    return ("Fetch failed", None)


def log_fetch_failure(
    logger: logging.Logger,
    error: SourceCacheError,
    *,
    details: Optional[dict[str, Any]] = None,
) -> None:
    """Log ``error`` with structured context and an optional remediation hint."""

    status_code = getattr(error, "status_code", None)
    code = getattr(error, "code", None)
    message, suggestion = get_actionable_error_message(status_code, code)

    entry: dict[str, Any] = {
        "origin": error.origin,
        "error_type": type(error).__name__,
        "error_message": str(error),
        "status_code": status_code,
        "code": code,
    }
    url = getattr(error, "url", None)
    if url:
        entry["url"] = url
    if details:
        entry.update(details)

    logger.error("Source fetch failed: %s", message, extra={"extra_fields": entry})
    if suggestion:
        logger.info(
            "Suggestion: %s", suggestion, extra={"extra_fields": {"origin": error.origin}}
        )
