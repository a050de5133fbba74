"""Classification of image references into source kinds."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from ImagerKit.SourceCache.errors import UnsupportedReferenceError
from ImagerKit.SourceCache.references import SourceKind, VolumeMode, classify_reference
from ImagerKit.SourceCache.storage import LocalVolume, VolumeAsset
from tests.source_cache.fakes import FakeVolume

PREFIX = "/imager/"


@pytest.mark.parametrize(
    ("reference", "kind", "value"),
    [
        ("/imager/products/shoe_300x200.jpg", SourceKind.MANAGED_CACHE_FILE, "/imager/products/shoe_300x200.jpg"),
        ("https://cdn.example.com/a.jpg", SourceKind.REMOTE_URL, "https://cdn.example.com/a.jpg"),
        ("http://cdn.example.com/a.jpg", SourceKind.REMOTE_URL, "http://cdn.example.com/a.jpg"),
        ("//cdn.example.com/a.jpg", SourceKind.REMOTE_URL, "https://cdn.example.com/a.jpg"),
        ("/images/photo.jpg", SourceKind.LOCAL, "/images/photo.jpg"),
        ("images/photo.jpg", SourceKind.LOCAL, "images/photo.jpg"),
    ],
)
def test_string_references(reference, kind, value):
    classified = classify_reference(reference, cache_url_prefix=PREFIX)
    assert classified.kind is kind
    assert classified.value == value
    assert classified.origin == value


def test_managed_prefix_wins_over_other_rules():
    classified = classify_reference("/media/cache/a.jpg", cache_url_prefix="/media/")
    assert classified.kind is SourceKind.MANAGED_CACHE_FILE


@pytest.mark.parametrize("reference", ["", "   "])
def test_empty_reference_is_rejected(reference):
    with pytest.raises(UnsupportedReferenceError, match="empty"):
        classify_reference(reference, cache_url_prefix=PREFIX)


@pytest.mark.parametrize("reference", [42, None, b"/images/a.jpg", object()])
def test_unknown_objects_are_rejected(reference):
    with pytest.raises(UnsupportedReferenceError):
        classify_reference(reference, cache_url_prefix=PREFIX)


def test_transformed_image_is_managed_cache_file():
    transformed = SimpleNamespace(url="/imager/products/shoe_300x200.jpg")
    classified = classify_reference(transformed, cache_url_prefix=PREFIX)
    assert classified.kind is SourceKind.MANAGED_CACHE_FILE
    assert classified.value == transformed.url


def test_transformed_image_without_string_url_is_rejected():
    with pytest.raises(UnsupportedReferenceError):
        classify_reference(SimpleNamespace(url=None), cache_url_prefix=PREFIX)


def test_asset_on_local_volume_is_local_backed(tmp_path):
    volume = LocalVolume(handle="uploads", root=tmp_path)
    asset = VolumeAsset(volume=volume, origin_path="products/shoe.jpg")
    classified = classify_reference(asset, cache_url_prefix=PREFIX)
    assert classified.kind is SourceKind.VOLUME_ASSET
    assert classified.volume_mode is VolumeMode.LOCAL_BACKED
    assert classified.volume is volume
    assert classified.origin == "products/shoe.jpg"


def test_asset_on_remote_volume_is_copy_out():
    volume = FakeVolume()
    asset = VolumeAsset(volume=volume, origin_path="products/shoe.jpg")
    classified = classify_reference(asset, cache_url_prefix=PREFIX)
    assert classified.volume_mode is VolumeMode.COPY_OUT


class _BrokenAsset:
    def get_volume(self):
        raise LookupError("volume was deleted")

    def get_origin_path(self):
        return "a.jpg"

    def get_public_url(self):
        return "/a.jpg"

    def get_filename(self, with_extension=True):
        return "a.jpg" if with_extension else "a"

    def get_extension(self):
        return "jpg"


def test_asset_without_volume_is_rejected():
    with pytest.raises(UnsupportedReferenceError, match="volume was deleted"):
        classify_reference(_BrokenAsset(), cache_url_prefix=PREFIX)
