"""Payload sniffing helpers for downloaded image bodies."""

from __future__ import annotations

import struct
from pathlib import Path
from typing import Optional

__all__ = ["is_image_file", "sniff_image_type"]

_SNIFF_BYTES = 512

_SIGNATURES = (
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"II*\x00", "image/tiff"),
    (b"MM\x00*", "image/tiff"),
)

_ISO_BRANDS = {
    b"avif": "image/avif",
    b"avis": "image/avif",
    b"heic": "image/heic",
    b"heix": "image/heic",
    b"mif1": "image/heif",
}

# BITMAPCOREHEADER through BITMAPV5HEADER
_BMP_DIB_HEADER_SIZES = {12, 40, 52, 56, 108, 124}


def _is_bmp(head_bytes: bytes) -> bool:
    # Two-byte signatures match plain text ("BMW ..."), so the header
    # layout has to hold as well.
    if len(head_bytes) < 18 or not head_bytes.startswith(b"BM"):
        return False
    file_size, reserved, pixel_offset, dib_size = struct.unpack_from("<IIII", head_bytes, 2)
    return (
        file_size > 0
        and reserved == 0
        and dib_size in _BMP_DIB_HEADER_SIZES
        and 14 + dib_size <= pixel_offset
    )


def _is_ico(head_bytes: bytes) -> bool:
    if len(head_bytes) < 6:
        return False
    reserved, kind, count = struct.unpack_from("<HHH", head_bytes, 0)
    return reserved == 0 and kind == 1 and count > 0


def sniff_image_type(head_bytes: bytes) -> Optional[str]:
    """Return the image MIME type for ``head_bytes`` or ``None`` when not an image."""

    if not head_bytes:
        return None
    for signature, mime in _SIGNATURES:
        if head_bytes.startswith(signature):
            return mime
    if _is_bmp(head_bytes):
        return "image/bmp"
    if _is_ico(head_bytes):
        return "image/x-icon"
    if head_bytes[:4] == b"RIFF" and head_bytes[8:12] == b"WEBP":
        return "image/webp"
    if head_bytes[4:8] == b"ftyp":
        brand = _ISO_BRANDS.get(head_bytes[8:12])
        if brand:
            return brand

    stripped = head_bytes.lstrip().lower()
    if stripped.startswith(b"<svg"):
        return "image/svg+xml"
    if stripped.startswith(b"<?xml") and b"<svg" in stripped[:_SNIFF_BYTES]:
        return "image/svg+xml"
    return None


def is_image_file(path: Path) -> bool:
    """Return ``True`` when the file at ``path`` starts like an image payload."""

    try:
        with open(path, "rb") as handle:
            head = handle.read(_SNIFF_BYTES)
    except OSError:
        return False
    return sniff_image_type(head) is not None
