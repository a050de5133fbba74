# === NAVMAP v1 ===
# {
#   "module": "ImagerKit.SourceCache.resolver",
#   "purpose": "Facade tying classification, path resolution, validity and fetching together",
#   "sections": [
#     {"id": "sourceresolver", "name": "SourceResolver", "anchor": "class-sourceresolver", "kind": "class"},
#     {"id": "ensure-local-copy", "name": "SourceResolver.ensure_local_copy", "anchor": "function-ensure-local-copy", "kind": "function"},
#     {"id": "get-local-copy", "name": "SourceResolver.get_local_copy", "anchor": "function-get-local-copy", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Public entry point for turning image references into local files.

Responsibilities
----------------
- :meth:`SourceResolver.resolve` classifies a reference and derives its
  :class:`~ImagerKit.SourceCache.paths.SourceReference` without any network
  I/O.
- :meth:`SourceResolver.ensure_local_copy` makes sure a resolved source has
  a usable local file, fetching it under a per-key lock when it is missing,
  too small, or older than the configured TTL.
- The resolver owns the HTTP transport (created lazily on the first remote
  fetch) and, unless one is injected, the :class:`CacheRegistry`.

Concurrency
-----------
Each call is synchronous. Two callers that need the same cache key take the
same :class:`FetchLockPool` lock; the second one re-checks validity once it
holds the lock and reuses the first caller's download.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Optional, Union

from .config.models import SourceCacheConfig
from .errors import FetchError, SourceCacheError, ValidationError, log_fetch_failure
from .fetcher import Fetcher
from .locks import FetchLockPool, Timeout
from .paths import PathResolver, SourceReference
from .references import ClassifiedReference, classify_reference
from .registry import CacheRegistry
from .storage import Reference
from .transports import Transport, select_transport
from .validity import source_needs_refresh

__all__ = ["SourceResolver"]

LOGGER = logging.getLogger(__name__)


class SourceResolver:
    """Resolve image references and materialise them in the local cache.

    Args:
        config: Active configuration; never mutated
        registry: Shared registry; a private one is created (and closed with
            the resolver) when omitted
        transport: HTTP transport to use instead of :func:`select_transport`
        locks: Lock pool to use instead of one rooted at ``config.lock_dir_path``

    Examples:
        >>> with SourceResolver(SourceCacheConfig()) as resolver:  # doctest: +SKIP
        ...     path = resolver.get_local_copy("https://example.com/a.jpg")
    """

    def __init__(
        self,
        config: SourceCacheConfig,
        *,
        registry: Optional[CacheRegistry] = None,
        transport: Optional[Transport] = None,
        locks: Optional[FetchLockPool] = None,
    ) -> None:
        self.config = config
        self._owns_registry = registry is None
        self._registry = registry if registry is not None else CacheRegistry()
        self._transport = transport
        self._owns_transport = transport is None
        self._transport_lock = threading.Lock()
        self._locks = locks or FetchLockPool(
            config.lock_dir_path,
            timeout_s=config.locking.timeout_s,
            soft=config.locking.soft,
        )
        self._paths = PathResolver(config)
        self._fetcher = Fetcher(config, registry=self._registry, transport_factory=self._get_transport)

    @property
    def registry(self) -> CacheRegistry:
        return self._registry

    @property
    def locks(self) -> FetchLockPool:
        return self._locks

    def _get_transport(self) -> Transport:
        with self._transport_lock:
            if self._transport is None:
                self._transport = select_transport(self.config.transport)
                LOGGER.debug(
                    "transport-selected",
                    extra={"extra_fields": {"transport": self._transport.name}},
                )
            return self._transport

    def classify(self, reference: Reference) -> ClassifiedReference:
        return classify_reference(reference, cache_url_prefix=self.config.cache_url_prefix)

    def resolve(self, reference: Reference) -> SourceReference:
        """Classify ``reference`` and derive its cache paths.

        Raises:
            UnsupportedReferenceError: Unknown reference shape.
            ResolutionError: Paths could not be derived or scratch directories created.
        """

        return self._paths.resolve(self.classify(reference))

    def ensure_local_copy(self, source: SourceReference) -> Path:
        """Return the local path of ``source``, fetching it first when needed.

        Local, managed-cache and local-backed volume sources are never
        fetched; their path is returned as long as the file exists.

        Raises:
            FetchError: Network or backend failure, or lock wait timeout.
            ConfigurationError: No HTTP transport is available.
            ValidationError: No file exists at the local path afterwards.
        """

        ttl_s = self.config.cache_ttl_s
        try:
            if source_needs_refresh(source, ttl_s):
                self._fetch_single_flight(source)
            path = source.local_path
            if not os.path.exists(path):
                raise ValidationError(
                    f"File could not be found or saved for {source.origin!r} at {path}",
                    origin=source.origin,
                    path=str(path),
                )
        except SourceCacheError as exc:
            log_fetch_failure(
                LOGGER,
                exc,
                details={"kind": source.kind.value, "local_path": str(source.local_path)},
            )
            raise
        return path

    def _fetch_single_flight(self, source: SourceReference) -> None:
        target = source.file_path
        try:
            with self._locks.acquire(target):
                if not source_needs_refresh(source, self.config.cache_ttl_s):
                    LOGGER.debug(
                        "fetch-coalesced",
                        extra={"extra_fields": {"origin": source.origin, "path": str(target)}},
                    )
                    return
                self._fetcher.fetch(source)
        except Timeout as exc:
            raise FetchError(
                f"Timed out after {self._locks.timeout_s}s waiting for a concurrent fetch of "
                f"{source.origin!r}",
                origin=source.origin,
                code="lock_timeout",
            ) from exc

    def get_local_copy(self, reference: Reference) -> Path:
        """Resolve ``reference`` and ensure its local copy in one call."""

        return self.ensure_local_copy(self.resolve(reference))

    def register_cached_path(self, path: Union[str, "os.PathLike[str]"]) -> bool:
        return self._registry.register(path)

    def is_safe_file_format(self, source: SourceReference) -> bool:
        """Return ``True`` when ``source`` has an extension in ``safe_file_formats``."""

        return source.extension.lower() in self.config.safe_file_formats

    def close(self) -> None:
        with self._transport_lock:
            transport, self._transport = self._transport, None
        if transport is not None and self._owns_transport:
            transport.close()
        if self._owns_registry:
            self._registry.close()

    def __enter__(self) -> "SourceResolver":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
