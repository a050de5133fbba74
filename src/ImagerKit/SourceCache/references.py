# === NAVMAP v1 ===
# {
#   "module": "ImagerKit.SourceCache.references",
#   "purpose": "Classify image references into source kinds",
#   "sections": [
#     {"id": "sourcekind", "name": "SourceKind", "anchor": "class-sourcekind", "kind": "class"},
#     {"id": "volumemode", "name": "VolumeMode", "anchor": "class-volumemode", "kind": "class"},
#     {"id": "classifiedreference", "name": "ClassifiedReference", "anchor": "class-classifiedreference", "kind": "class"},
#     {"id": "classify-reference", "name": "classify_reference", "anchor": "function-classify-reference", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Reference classification for the source resolver.

A reference is either a string (cache URL, remote URL, protocol-relative
URL, or document-root relative path), an asset handle living on a storage
volume, or an image previously produced by the transform pipeline. The
classifier maps each onto exactly one :class:`SourceKind` and never touches
the filesystem or network.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import UnsupportedReferenceError
from .storage import AssetLike, LocalVolume, StorageBackend, TransformedImageLike

__all__ = [
    "ClassifiedReference",
    "SourceKind",
    "VolumeMode",
    "classify_reference",
]

LOGGER = logging.getLogger(__name__)


class SourceKind(str, Enum):
    """Where the bytes of an image originate."""

    LOCAL = "local"
    MANAGED_CACHE_FILE = "managed_cache_file"
    REMOTE_URL = "remote_url"
    VOLUME_ASSET = "volume_asset"


class VolumeMode(str, Enum):
    """How a volume asset becomes a local file."""

    LOCAL_BACKED = "local_backed"
    COPY_OUT = "copy_out"


@dataclass(frozen=True)
class ClassifiedReference:
    """Tagged result of classifying one reference.

    Attributes:
        kind: Source kind
        value: Normalised string reference (URL or path); empty for assets
        asset: Asset handle for :attr:`SourceKind.VOLUME_ASSET`
        volume: Storage volume of ``asset``
        volume_mode: Local-backed or copy-out, for volume assets only
    """

    kind: SourceKind
    value: str = ""
    asset: Optional[AssetLike] = None
    volume: Optional[StorageBackend] = None
    volume_mode: Optional[VolumeMode] = None

    @property
    def origin(self) -> str:
        if self.asset is not None:
            return self.asset.get_origin_path()
        return self.value


def _classify_string(value: str, cache_url_prefix: str) -> ClassifiedReference:
    if value.startswith(cache_url_prefix):
        return ClassifiedReference(SourceKind.MANAGED_CACHE_FILE, value=value)
    if value.startswith("//"):
        value = "https:" + value
    if value.startswith("http"):
        return ClassifiedReference(SourceKind.REMOTE_URL, value=value)
    return ClassifiedReference(SourceKind.LOCAL, value=value)


def _classify_asset(asset: AssetLike) -> ClassifiedReference:
    try:
        volume = asset.get_volume()
    except Exception as exc:
        raise UnsupportedReferenceError(
            f"Cannot determine the storage volume of asset {asset!r}: {exc}",
            origin=repr(asset),
        ) from exc
    mode = VolumeMode.LOCAL_BACKED if isinstance(volume, LocalVolume) else VolumeMode.COPY_OUT
    return ClassifiedReference(
        SourceKind.VOLUME_ASSET, asset=asset, volume=volume, volume_mode=mode
    )


def classify_reference(reference: object, *, cache_url_prefix: str) -> ClassifiedReference:
    """Classify ``reference`` into a :class:`ClassifiedReference`.

    Args:
        reference: String, asset handle, or transformed image
        cache_url_prefix: Public URL prefix of the managed cache

    Returns:
        The classified reference.

    Raises:
        UnsupportedReferenceError: If ``reference`` matches no known shape.

    Examples:
        >>> classify_reference("//cdn.example.com/a.jpg", cache_url_prefix="/imager/").value
        'https://cdn.example.com/a.jpg'
    """

    if isinstance(reference, str):
        if not reference.strip():
            raise UnsupportedReferenceError("An empty image reference was used.", origin=reference)
        return _classify_string(reference, cache_url_prefix)
    if isinstance(reference, AssetLike):
        return _classify_asset(reference)
    if isinstance(reference, TransformedImageLike) and isinstance(reference.url, str):
        return ClassifiedReference(SourceKind.MANAGED_CACHE_FILE, value=reference.url)

    LOGGER.debug("unsupported-reference type=%s", type(reference).__name__)
    raise UnsupportedReferenceError(
        f"An unknown image object was used: {type(reference).__name__}",
        origin=repr(reference),
    )
