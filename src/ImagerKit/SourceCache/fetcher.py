# === NAVMAP v1 ===
# {
#   "module": "ImagerKit.SourceCache.fetcher",
#   "purpose": "Fetch remote and copy-out volume sources into the local cache",
#   "sections": [
#     {"id": "fetcher", "name": "Fetcher", "anchor": "class-fetcher", "kind": "class"},
#     {"id": "download", "name": "Fetcher._download", "anchor": "function-download", "kind": "function"},
#     {"id": "copy-from-volume", "name": "Fetcher._copy_from_volume", "anchor": "function-copy-from-volume", "kind": "function"},
#     {"id": "commit", "name": "Fetcher._commit", "anchor": "function-commit", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Remote retrieval for sources that are not addressable on local disk.

Responsibilities
----------------
- Download ``REMOTE_URL`` sources through the configured HTTP transport.
- Ask copy-out storage volumes to materialise assets locally.
- Stage every transfer next to the final cache path, validate it, promote
  it atomically, and record the final path in the :class:`CacheRegistry`.

Failure Semantics
-----------------
- Transport failures and non-200 statuses raise :class:`FetchError`. The
  one exception is a 404 whose body is an image, accepted when
  ``transport.accept_404_image_payloads`` is enabled.
- Volume failures (:class:`TransferError`, :class:`OSError`) are wrapped in
  :class:`FetchError`.
- A staged payload that is missing or shorter than the validity floor
  raises :class:`ValidationError`; the previous cache content is left as it
  was.
- The staging artefact is always removed when a fetch does not promote,
  including on interrupts.
"""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Callable

from .config.models import SourceCacheConfig
from .errors import FetchError, TransferError, TransportError, ValidationError
from .paths import SourceReference
from .references import SourceKind, VolumeMode
from .registry import CacheRegistry
from .sniff import is_image_file
from .staging import discard_staging, promote
from .transports import Transport, build_outbound_url
from .validity import MIN_VALID_BYTES

__all__ = ["Fetcher"]

LOGGER = logging.getLogger(__name__)


class Fetcher:
    """Populate the cache path of a :class:`SourceReference` from its origin.

    Args:
        config: Active configuration
        registry: Registry receiving every promoted path
        transport_factory: Zero-argument callable returning the HTTP transport;
            only invoked when a remote URL actually needs downloading
    """

    def __init__(
        self,
        config: SourceCacheConfig,
        *,
        registry: CacheRegistry,
        transport_factory: Callable[[], Transport],
    ) -> None:
        self._config = config
        self._registry = registry
        self._transport_factory = transport_factory

    def fetch(self, source: SourceReference) -> Path:
        """Fetch ``source`` into ``source.file_path`` and return that path.

        Raises:
            FetchError: Network or backend transfer failure.
            ConfigurationError: No HTTP transport is available.
            ValidationError: The transfer reported success but left no usable file.
        """

        if not source.requires_fetch:
            raise ValueError(f"{source.kind.value} sources are read in place and never fetched")

        staging = source.temporary_path
        if discard_staging(staging, reason="stale"):
            LOGGER.info(
                "stale-staging-removed",
                extra={"extra_fields": {"path": str(staging), "origin": source.origin}},
            )

        started = time.monotonic()
        try:
            if source.kind is SourceKind.REMOTE_URL:
                self._download(source, staging)
            else:
                self._copy_from_volume(source, staging)
            final = self._commit(source, staging)
        finally:
            discard_staging(staging, reason="fetch-incomplete")

        LOGGER.info(
            "source-fetched",
            extra={
                "extra_fields": {
                    "origin": source.origin,
                    "kind": source.kind.value,
                    "path": str(final),
                    "elapsed_ms": round((time.monotonic() - started) * 1000.0, 3),
                }
            },
        )
        return final

    def _download(self, source: SourceReference, staging: Path) -> None:
        url = build_outbound_url(source.canonical_url, raw=self._config.use_raw_external_url)
        transport = self._transport_factory()
        try:
            result = transport.download(url, staging)
        except TransportError as exc:
            raise FetchError(
                f"Transport error {exc.code!r} encountered while attempting to download "
                f"{url!r}: {exc.message}",
                origin=source.origin,
                url=url,
                code=exc.code,
            ) from exc
        except OSError as exc:
            raise FetchError(
                f"Cannot write download of {url!r} to {staging}: {exc}",
                origin=source.origin,
                url=url,
                code="io_error",
            ) from exc

        if result.status_code == 200:
            return
        if (
            result.status_code == 404
            and self._config.transport.accept_404_image_payloads
            and is_image_file(staging)
        ):
            LOGGER.warning(
                "http-404-image-accepted",
                extra={"extra_fields": {"url": url, "origin": source.origin}},
            )
            return
        raise FetchError(
            f"HTTP status {result.status_code} encountered while attempting to download {url!r}",
            origin=source.origin,
            url=url,
            status_code=result.status_code,
        )

    def _copy_from_volume(self, source: SourceReference, staging: Path) -> None:
        volume = source.volume
        asset = source.asset
        if source.volume_mode is not VolumeMode.COPY_OUT or volume is None or asset is None:
            raise ValueError(f"{source.origin!r} is not a copy-out volume asset")
        try:
            volume.save_file_locally(asset.get_origin_path(), staging)
        except (TransferError, OSError) as exc:
            raise FetchError(
                f"Storage volume {volume.handle!r} could not copy {source.origin!r} "
                f"to {staging}: {exc}",
                origin=source.origin,
                code="transfer_failed",
            ) from exc

    def _commit(self, source: SourceReference, staging: Path) -> Path:
        final = source.file_path
        try:
            size = os.stat(staging).st_size
        except OSError as exc:
            raise ValidationError(
                f"File could not be downloaded and saved to {source.directory} for {source.origin!r}",
                origin=source.origin,
                path=str(final),
            ) from exc
        if size < MIN_VALID_BYTES:
            raise ValidationError(
                f"Fetched file for {source.origin!r} is only {size} bytes "
                f"(minimum {MIN_VALID_BYTES}); keeping the previous cache entry",
                origin=source.origin,
                path=str(final),
            )

        try:
            promote(staging, final)
        except OSError as exc:
            raise FetchError(
                f"Cannot promote staged file {staging} to {final}: {exc}",
                origin=source.origin,
                code="io_error",
            ) from exc

        self._registry.register(final)
        return final
