# === NAVMAP v1 ===
# {
#   "module": "ImagerKit.SourceCache",
#   "purpose": "Package initialization for ImagerKit.SourceCache",
#   "sections": []
# }
# === /NAVMAP ===

"""Public API for resolving image references into local cache files.

Callers build a :class:`SourceCacheConfig` once (usually through
:func:`load_config`), create a :class:`SourceResolver`, and call
:meth:`SourceResolver.get_local_copy` for each image a transform needs.
"""

from __future__ import annotations

from .config import SourceCacheConfig, load_config
from .errors import (
    ConfigurationError,
    FetchError,
    ResolutionError,
    SourceCacheError,
    TransferError,
    TransportError,
    UnsupportedReferenceError,
    ValidationError,
)
from .paths import SourceReference
from .references import ClassifiedReference, SourceKind, VolumeMode, classify_reference
from .registry import CacheRegistry
from .resolver import SourceResolver
from .storage import AssetLike, LocalVolume, StorageBackend, TransformedImageLike, VolumeAsset

__version__ = "0.1.0"

__all__ = [
    "AssetLike",
    "CacheRegistry",
    "ClassifiedReference",
    "ConfigurationError",
    "FetchError",
    "LocalVolume",
    "ResolutionError",
    "SourceCacheConfig",
    "SourceCacheError",
    "SourceKind",
    "SourceReference",
    "SourceResolver",
    "StorageBackend",
    "TransferError",
    "TransformedImageLike",
    "TransportError",
    "UnsupportedReferenceError",
    "ValidationError",
    "VolumeAsset",
    "VolumeMode",
    "__version__",
    "classify_reference",
    "load_config",
]
