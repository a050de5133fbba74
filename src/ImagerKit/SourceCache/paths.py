# === NAVMAP v1 ===
# {
#   "module": "ImagerKit.SourceCache.paths",
#   "purpose": "Derive deterministic cache locations for classified image references",
#   "sections": [
#     {"id": "sourcereference", "name": "SourceReference", "anchor": "class-sourcereference", "kind": "class"},
#     {"id": "safe-segment", "name": "safe_segment", "anchor": "function-safe-segment", "kind": "function"},
#     {"id": "contained-subpath", "name": "contained_subpath", "anchor": "function-contained-subpath", "kind": "function"},
#     {"id": "transform-path-for-path", "name": "transform_path_for_path", "anchor": "function-transform-path-for-path", "kind": "function"},
#     {"id": "transform-path-for-url", "name": "transform_path_for_url", "anchor": "function-transform-path-for-url", "kind": "function"},
#     {"id": "transform-path-for-asset", "name": "transform_path_for_asset", "anchor": "function-transform-path-for-asset", "kind": "function"},
#     {"id": "pathresolver", "name": "PathResolver", "anchor": "class-pathresolver", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Cache path derivation for image sources.

Responsibilities
----------------
- Turn a :class:`~ImagerKit.SourceCache.references.ClassifiedReference` into a
  :class:`SourceReference` describing where the local copy lives
  (``cache_root`` + ``sub_path`` + ``filename``), the transform namespace
  segment used by downstream outputs, and the canonical URL.
- Keep derivation idempotent: the same origin always maps to the same path,
  and two distinct origins never share one.
- Prepare scratch directories for sources that must be fetched.

Layout
------
``LOCAL``               ``<document_root>/<dirname>/<filename>``
``MANAGED_CACHE_FILE``  ``<cache_root>/<path after cache_url_prefix>``
``VOLUME_ASSET``        local-backed: ``<volume root>/<folder>/<filename>``
                        copy-out: ``<runtime_root>/volumes/<handle>/<folder>/<filename>``
``REMOTE_URL``          ``<runtime_root>/remote/<host>/<url dirname>/<basename>.<ext>``

Design Notes
------------
- Remote URL paths are split on ``/`` first, then each segment is
  percent-decoded and folded to ASCII, so ``%2F`` never becomes a directory
  break. Any segment changed by that folding (or by character sanitisation)
  gets a short digest of its original text appended so ``café.jpg`` and
  ``cafe.jpg`` stay apart.
- Relative traversal (``..``) that would leave the cache root is rejected
  with :class:`ResolutionError` instead of being clamped.
"""

from __future__ import annotations

import hashlib
import logging
import posixpath
import re
import unicodedata
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union
from urllib.parse import unquote, urlsplit

from .config.models import SourceCacheConfig
from .errors import ResolutionError
from .references import ClassifiedReference, SourceKind, VolumeMode
from .storage import AssetLike, StorageBackend

__all__ = [
    "PathResolver",
    "SourceReference",
    "contained_subpath",
    "safe_segment",
    "to_ascii",
    "transform_path_for_asset",
    "transform_path_for_path",
    "transform_path_for_url",
]

LOGGER = logging.getLogger(__name__)

REMOTE_NAMESPACE = "remote"
VOLUME_NAMESPACE = "volumes"
STAGING_PREFIX = "~"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_DIGEST_LEN = 8


def _md5(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def to_ascii(text: str) -> str:
    """Fold ``text`` to ASCII, dropping characters with no ASCII equivalent."""

    decomposed = unicodedata.normalize("NFKD", text)
    return decomposed.encode("ascii", "ignore").decode("ascii")


def safe_segment(segment: str) -> str:
    """Return a filesystem-safe, collision-resistant version of one path segment.

    Segments that are already safe come back unchanged. Anything altered by
    ASCII folding or sanitisation is suffixed with a digest of the original.

    Examples:
        >>> safe_segment("photos")
        'photos'
        >>> safe_segment("my photo").startswith("my-photo-")
        True
    """

    folded = to_ascii(segment).replace(" ", "-")
    safe = _UNSAFE_CHARS.sub("_", folded).strip(".")
    if safe == segment:
        return safe
    digest = _md5(segment)[:_DIGEST_LEN]
    return f"{safe}-{digest}" if safe else digest


def contained_subpath(raw: str, *, origin: str) -> str:
    """Normalise ``raw`` into an absolute-style sub path that cannot escape its root.

    Returns ``"/"`` for empty input and ``"/a/b"`` style strings otherwise.

    Raises:
        ResolutionError: If ``raw`` climbs above its root via ``..``.
    """

    cleaned = raw.replace("\\", "/").lstrip("/")
    if not cleaned:
        return "/"
    rel = posixpath.normpath(cleaned)
    if rel == ".." or rel.startswith("../"):
        raise ResolutionError(
            f"Path {raw!r} escapes its root directory", origin=origin
        )
    if rel == ".":
        return "/"
    return "/" + rel


def _join_segments(path: str) -> str:
    segments = [safe_segment(seg) for seg in path.split("/") if seg]
    return "/" + "/".join(segments) if segments else "/"


def transform_path_for_path(path: str, *, hash_path: bool, origin: str) -> str:
    """Transform namespace for a document-root relative file path."""

    dirname = posixpath.dirname(contained_subpath(path, origin=origin))
    if hash_path:
        return "/" + _md5(dirname)
    return dirname


def transform_path_for_url(
    host: str, dirname: str, *, hash_remote_url: Union[bool, str]
) -> str:
    """Transform namespace for a remote URL's host and sanitised directory."""

    host_segment = safe_segment(host)
    if hash_remote_url == "host":
        return f"/{host_segment}/{_md5(dirname)}"
    if hash_remote_url:
        return "/" + _md5(host + dirname)
    safe_dir = _join_segments(dirname)
    return f"/{host_segment}" + ("" if safe_dir == "/" else safe_dir)


def transform_path_for_asset(
    volume: StorageBackend, folder: str, *, hash_path: bool
) -> str:
    """Transform namespace for an asset: volume handle plus its folder."""

    prefix = "/" + safe_segment(str(volume.handle))
    if hash_path:
        return f"{prefix}/{_md5(folder)}"
    return prefix + ("" if folder == "/" else _join_segments(folder))


@dataclass(frozen=True)
class SourceReference:
    """Resolved description of one image source.

    Attributes:
        kind: Source kind
        cache_root: Directory the local copy lives under
        sub_path: ``/``-separated segment below ``cache_root``
        transform_path: Namespace segment for transform outputs
        filename: Local filename (no separators)
        basename: Filename without extension
        extension: Extension without the dot (may be empty)
        canonical_url: URL presented to downstream consumers
        origin: Original reference text (URL, path, or asset origin path)
        volume_mode: Sub-case for volume assets
        asset: Asset handle for volume assets
        volume: Storage volume for volume assets
    """

    kind: SourceKind
    cache_root: Path
    sub_path: str
    transform_path: str
    filename: str
    basename: str
    extension: str
    canonical_url: str
    origin: str
    volume_mode: Optional[VolumeMode] = None
    asset: Optional[AssetLike] = field(default=None, compare=False, repr=False)
    volume: Optional[StorageBackend] = field(default=None, compare=False, repr=False)

    @property
    def directory(self) -> Path:
        segments = [seg for seg in self.sub_path.split("/") if seg]
        return Path(self.cache_root).joinpath(*segments)

    @property
    def file_path(self) -> Path:
        return self.directory / self.filename

    @property
    def local_path(self) -> Path:
        return self.file_path

    @property
    def temporary_path(self) -> Path:
        return self.directory / f"{STAGING_PREFIX}{self.filename}"

    @property
    def requires_fetch(self) -> bool:
        if self.kind is SourceKind.REMOTE_URL:
            return True
        return self.kind is SourceKind.VOLUME_ASSET and self.volume_mode is VolumeMode.COPY_OUT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "volume_mode": self.volume_mode.value if self.volume_mode else None,
            "cache_root": str(self.cache_root),
            "sub_path": self.sub_path,
            "transform_path": self.transform_path,
            "filename": self.filename,
            "basename": self.basename,
            "extension": self.extension,
            "canonical_url": self.canonical_url,
            "origin": self.origin,
            "local_path": str(self.local_path),
        }


def _split_name(name: str) -> tuple[str, str]:
    stem, ext = posixpath.splitext(name)
    return stem, ext.lstrip(".")


def _ensure_directory(directory: Path, *, origin: str) -> None:
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.error(
            "cache-dir-create-failed",
            extra={"extra_fields": {"directory": str(directory), "origin": origin}},
        )
        raise ResolutionError(
            f"Cannot create cache directory {directory} for {origin!r}: {exc}", origin=origin
        ) from exc


def _check_filename(filename: str, *, origin: str) -> str:
    if not filename or "/" in filename or "\\" in filename or filename in (".", ".."):
        raise ResolutionError(f"Invalid filename {filename!r} for {origin!r}", origin=origin)
    return filename


class PathResolver:
    """Compute :class:`SourceReference` values, one strategy per source kind."""

    def __init__(self, config: SourceCacheConfig) -> None:
        self._config = config
        self._strategies: Dict[SourceKind, Callable[[ClassifiedReference], SourceReference]] = {
            SourceKind.LOCAL: self._resolve_local,
            SourceKind.MANAGED_CACHE_FILE: self._resolve_managed,
            SourceKind.REMOTE_URL: self._resolve_url,
            SourceKind.VOLUME_ASSET: self._resolve_volume_asset,
        }

    def resolve(self, classified: ClassifiedReference) -> SourceReference:
        """Return the :class:`SourceReference` for ``classified``.

        Raises:
            ResolutionError: If paths cannot be derived or prepared.
        """

        strategy = self._strategies[classified.kind]
        source = strategy(classified)
        LOGGER.debug(
            "source-resolved",
            extra={"extra_fields": {"kind": source.kind.value, "local_path": str(source.local_path)}},
        )
        return source

    def _resolve_local(self, classified: ClassifiedReference) -> SourceReference:
        origin = classified.value
        path = contained_subpath(origin, origin=origin)
        dirname, name = posixpath.split(path)
        stem, ext = _split_name(_check_filename(name, origin=origin))
        return SourceReference(
            kind=SourceKind.LOCAL,
            cache_root=self._config.document_root_path,
            sub_path=dirname,
            transform_path=transform_path_for_path(
                origin, hash_path=self._config.hash_path, origin=origin
            ),
            filename=name,
            basename=stem,
            extension=ext,
            canonical_url=origin,
            origin=origin,
        )

    def _resolve_managed(self, classified: ClassifiedReference) -> SourceReference:
        origin = classified.value
        prefix = self._config.cache_url_prefix
        remainder = origin[len(prefix) :] if origin.startswith(prefix) else origin
        remainder = remainder.split("?", 1)[0].split("#", 1)[0]
        path = contained_subpath(unquote(remainder), origin=origin)
        dirname, name = posixpath.split(path)
        stem, ext = _split_name(_check_filename(name, origin=origin))
        return SourceReference(
            kind=SourceKind.MANAGED_CACHE_FILE,
            cache_root=self._config.cache_root_path,
            sub_path=dirname,
            transform_path=dirname,
            filename=name,
            basename=stem,
            extension=ext,
            canonical_url=origin,
            origin=origin,
        )

    def _resolve_url(self, classified: ClassifiedReference) -> SourceReference:
        origin = classified.value
        parts = urlsplit(origin)
        host = (parts.hostname or "").lower()
        if not host:
            raise ResolutionError(f"Remote URL {origin!r} has no host", origin=origin)
        try:
            port = parts.port
        except ValueError as exc:
            raise ResolutionError(f"Remote URL {origin!r} has an invalid port", origin=origin) from exc
        if port:
            host = f"{host}_{port}"

        # Split before decoding: an encoded "%2F" names a different resource
        # than a real separator and must stay inside its segment.
        raw_path = posixpath.normpath(parts.path or "/")
        segments = [unquote(segment) for segment in raw_path.split("/") if segment]
        name = segments.pop() if segments else ""
        dirname = "/" + "/".join(safe_segment(segment) for segment in segments)
        stem, ext = _split_name(name)

        basename = safe_segment(stem) if stem else _md5(raw_path)[:_DIGEST_LEN]
        query = unquote(parts.query) if self._config.use_remote_url_query_string else ""
        if query:
            basename = f"{basename}_{_md5(query)}"
        extension = safe_segment(ext) if ext else ""
        filename = basename + (f".{extension}" if extension else "")

        transform_path = transform_path_for_url(
            host, dirname, hash_remote_url=self._config.hash_remote_url
        )
        source = SourceReference(
            kind=SourceKind.REMOTE_URL,
            cache_root=self._config.runtime_root_path / REMOTE_NAMESPACE,
            sub_path=transform_path,
            transform_path=transform_path,
            filename=_check_filename(filename, origin=origin),
            basename=basename,
            extension=extension,
            canonical_url=origin,
            origin=origin,
        )
        _ensure_directory(source.directory, origin=origin)
        return source

    def _resolve_volume_asset(self, classified: ClassifiedReference) -> SourceReference:
        asset = classified.asset
        volume = classified.volume
        if asset is None or volume is None:
            raise ResolutionError(
                "Volume asset reference carries no asset or volume", origin=classified.origin
            )
        origin_path = asset.get_origin_path()
        folder = contained_subpath(posixpath.dirname(origin_path), origin=origin_path)
        filename = _check_filename(asset.get_filename(True), origin=origin_path)
        transform_path = transform_path_for_asset(volume, folder, hash_path=self._config.hash_path)

        if classified.volume_mode is VolumeMode.LOCAL_BACKED:
            try:
                root = volume.get_root_path()
                canonical_url = asset.get_public_url()
            except Exception as exc:
                raise ResolutionError(
                    f"Cannot resolve volume root for {origin_path!r}: {exc}", origin=origin_path
                ) from exc
            if root is None:
                raise ResolutionError(
                    f"Volume {volume.handle!r} has no root path", origin=origin_path
                )
            return SourceReference(
                kind=SourceKind.VOLUME_ASSET,
                cache_root=Path(root),
                sub_path=folder,
                transform_path=transform_path,
                filename=filename,
                basename=asset.get_filename(False),
                extension=asset.get_extension(),
                canonical_url=canonical_url,
                origin=origin_path,
                volume_mode=VolumeMode.LOCAL_BACKED,
                asset=asset,
                volume=volume,
            )

        try:
            canonical_url = volume.generate_url(asset)
        except Exception as exc:
            raise ResolutionError(
                f"Cannot generate URL for {origin_path!r}: {exc}", origin=origin_path
            ) from exc
        source = SourceReference(
            kind=SourceKind.VOLUME_ASSET,
            cache_root=self._config.runtime_root_path / VOLUME_NAMESPACE,
            sub_path=transform_path,
            transform_path=transform_path,
            filename=filename,
            basename=asset.get_filename(False),
            extension=asset.get_extension(),
            canonical_url=canonical_url,
            origin=origin_path,
            volume_mode=VolumeMode.COPY_OUT,
            asset=asset,
            volume=volume,
        )
        _ensure_directory(source.directory, origin=origin_path)
        return source
