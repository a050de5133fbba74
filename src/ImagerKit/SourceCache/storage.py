"""Storage volume abstraction consumed by the source resolver.

Provides the interface the resolver expects from pluggable storage volumes
and from the asset handles that live on them. Volumes are either the plain
local-disk backend (:class:`LocalVolume`, files are addressable in place)
or any other backend, whose assets must be copied out to local disk before
use.

NAVMAP:
  - StorageBackend: Protocol every volume implements
  - AssetLike: Protocol for asset handles passed to the resolver
  - TransformedImageLike: Protocol for already-transformed images (have a URL)
  - LocalVolume: Plain local-disk backend
  - VolumeAsset: Immutable asset handle implementation
"""

from __future__ import annotations

import posixpath
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Union, runtime_checkable
from urllib.parse import quote

from .errors import TransferError

__all__ = [
    "AssetLike",
    "LocalVolume",
    "Reference",
    "StorageBackend",
    "TransformedImageLike",
    "VolumeAsset",
]


@runtime_checkable
class StorageBackend(Protocol):
    """Abstract storage volume interface.

    Implementation Notes:
      - ``handle`` identifies the volume; copy-out assets are namespaced by it
      - ``save_file_locally`` must raise :class:`TransferError` on failure
      - ``get_root_path`` may return ``None`` for volumes without a local root
    """

    handle: str

    def get_root_path(self) -> Optional[Path]:
        """Return the filesystem root of the volume, if it has one."""
        ...

    def save_file_locally(self, origin_path: str, dest_path: Path) -> None:
        """Materialise the asset stored at ``origin_path`` at ``dest_path``.

        Raises:
            TransferError: If the backend cannot produce the file
        """
        ...

    def generate_url(self, asset: "AssetLike") -> str:
        """Return the public URL for ``asset`` on this volume."""
        ...


@runtime_checkable
class AssetLike(Protocol):
    """Asset handle accepted by the resolver."""

    def get_volume(self) -> StorageBackend: ...

    def get_origin_path(self) -> str: ...

    def get_public_url(self) -> str: ...

    def get_filename(self, with_extension: bool = True) -> str: ...

    def get_extension(self) -> str: ...


@runtime_checkable
class TransformedImageLike(Protocol):
    """An image previously produced by the transform pipeline."""

    url: str


@dataclass(frozen=True)
class LocalVolume:
    """Plain local-disk volume: assets are read in place, never copied.

    Attributes:
        handle: Volume identifier
        root: Filesystem root of the volume
        base_url: Public URL the root is served under
    """

    handle: str
    root: Path
    base_url: str = "/"

    def get_root_path(self) -> Optional[Path]:
        return Path(self.root)

    def save_file_locally(self, origin_path: str, dest_path: Path) -> None:
        source = Path(self.root) / origin_path.lstrip("/")
        try:
            shutil.copyfile(source, dest_path)
        except OSError as exc:
            raise TransferError(f"Cannot copy {source} to {dest_path}: {exc}") from exc

    def generate_url(self, asset: "AssetLike") -> str:
        return self.base_url.rstrip("/") + "/" + quote(asset.get_origin_path().lstrip("/"))


@dataclass(frozen=True)
class VolumeAsset:
    """Immutable asset handle stored on ``volume`` at ``origin_path``.

    ``origin_path`` is relative to the volume root, e.g. ``"products/shoe.jpg"``.
    """

    volume: StorageBackend
    origin_path: str
    public_url: Optional[str] = None

    def get_volume(self) -> StorageBackend:
        return self.volume

    def get_origin_path(self) -> str:
        return self.origin_path

    def get_public_url(self) -> str:
        if self.public_url is not None:
            return self.public_url
        return self.volume.generate_url(self)

    def get_filename(self, with_extension: bool = True) -> str:
        name = posixpath.basename(self.origin_path)
        if with_extension:
            return name
        stem, _ = posixpath.splitext(name)
        return stem

    def get_extension(self) -> str:
        _, ext = posixpath.splitext(self.origin_path)
        return ext.lstrip(".")


Reference = Union[str, AssetLike, TransformedImageLike]
