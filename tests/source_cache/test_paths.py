"""Cache path derivation for every source kind."""

from __future__ import annotations

import hashlib
import string

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from ImagerKit.SourceCache.errors import ResolutionError
from ImagerKit.SourceCache.paths import (
    PathResolver,
    contained_subpath,
    safe_segment,
    to_ascii,
)
from ImagerKit.SourceCache.references import (
    ClassifiedReference,
    SourceKind,
    VolumeMode,
    classify_reference,
)
from ImagerKit.SourceCache.storage import LocalVolume, VolumeAsset
from tests.source_cache.fakes import FakeVolume, make_config


def _md5(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def _resolve(config, reference):
    classified = classify_reference(reference, cache_url_prefix=config.cache_url_prefix)
    return PathResolver(config).resolve(classified)


# --- helpers -----------------------------------------------------------------


def test_safe_segment_keeps_safe_text():
    assert safe_segment("photo_01.v2-final") == "photo_01.v2-final"


def test_safe_segment_suffixes_changed_segments_with_digest():
    assert safe_segment("my photo") == f"my-photo-{_md5('my photo')[:8]}"
    assert safe_segment("café") != safe_segment("cafe")
    assert safe_segment("café").startswith("cafe-")


def test_safe_segment_for_non_ascii_only_text_is_digest():
    assert safe_segment("日本") == _md5("日本")[:8]


def test_to_ascii_folds_accents():
    assert to_ascii("Ünïcödé") == "Unicode"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("", "/"), ("/", "/"), ("a/b", "/a/b"), ("/a/./b/", "/a/b"), ("a/x/../b", "/a/b"), ("\\a\\b", "/a/b")],
)
def test_contained_subpath_normalises(raw, expected):
    assert contained_subpath(raw, origin=raw) == expected


@pytest.mark.parametrize("raw", ["..", "../etc", "a/../../etc"])
def test_contained_subpath_rejects_escape(raw):
    with pytest.raises(ResolutionError, match="escapes"):
        contained_subpath(raw, origin=raw)


# --- LOCAL -------------------------------------------------------------------


def test_local_path_lives_under_document_root(config):
    source = _resolve(config, "/images/photo.jpg")
    assert source.kind is SourceKind.LOCAL
    assert source.file_path == config.document_root_path / "images" / "photo.jpg"
    assert source.transform_path == "/images"
    assert source.basename == "photo"
    assert source.extension == "jpg"
    assert source.canonical_url == "/images/photo.jpg"
    assert source.requires_fetch is False


def test_local_path_with_hash_path(tmp_path):
    config = make_config(tmp_path, hash_path=True)
    source = _resolve(config, "/images/photo.jpg")
    assert source.transform_path == "/" + _md5("/images")


def test_local_traversal_is_rejected(config):
    with pytest.raises(ResolutionError):
        _resolve(config, "../../etc/passwd.jpg")


def test_local_resolution_creates_no_directories(config):
    _resolve(config, "/images/photo.jpg")
    assert not (config.document_root_path / "images").exists()


# --- MANAGED_CACHE_FILE ------------------------------------------------------


def test_managed_cache_file_maps_below_cache_root(config):
    source = _resolve(config, "/imager/products/shoe_300x200.jpg?v=3#top")
    assert source.kind is SourceKind.MANAGED_CACHE_FILE
    assert source.file_path == config.cache_root_path / "products" / "shoe_300x200.jpg"
    assert source.transform_path == "/products"
    assert source.canonical_url == "/imager/products/shoe_300x200.jpg?v=3#top"


def test_managed_cache_file_escape_is_rejected(config):
    with pytest.raises(ResolutionError):
        _resolve(config, "/imager/../../secrets.jpg")


# --- REMOTE_URL --------------------------------------------------------------


def test_remote_url_maps_into_runtime_remote_namespace(config):
    source = _resolve(config, "https://Example.COM/img/photo.jpg")
    assert source.kind is SourceKind.REMOTE_URL
    assert source.cache_root == config.runtime_root_path / "remote"
    assert source.sub_path == "/example.com/img"
    assert source.file_path == config.runtime_root_path / "remote" / "example.com" / "img" / "photo.jpg"
    assert source.temporary_path == source.directory / "~photo.jpg"
    assert source.requires_fetch is True
    assert source.directory.is_dir()


def test_remote_url_port_is_part_of_the_namespace(config):
    plain = _resolve(config, "https://example.com/img/photo.jpg")
    ported = _resolve(config, "https://example.com:8443/img/photo.jpg")
    assert ported.sub_path == "/example.com_8443/img"
    assert plain.file_path != ported.file_path


def test_remote_url_without_filename_gets_digest_basename(config):
    source = _resolve(config, "https://example.com/")
    assert source.filename == _md5("/")[:8]
    assert source.extension == ""


def test_remote_url_without_host_is_rejected(config):
    with pytest.raises(ResolutionError, match="no host"):
        _resolve(config, "https:///photo.jpg")


def test_query_string_ignored_by_default(config):
    first = _resolve(config, "https://example.com/img/a.jpg?w=100")
    second = _resolve(config, "https://example.com/img/a.jpg?w=200")
    assert first.file_path == second.file_path
    assert first.filename == "a.jpg"


def test_query_string_folded_into_filename_when_enabled(tmp_path):
    config = make_config(tmp_path, use_remote_url_query_string=True)
    first = _resolve(config, "https://example.com/img/a.jpg?w=100")
    second = _resolve(config, "https://example.com/img/a.jpg?w=200")
    bare = _resolve(config, "https://example.com/img/a.jpg")
    assert first.file_path != second.file_path
    assert first.filename == f"a_{_md5('w=100')}.jpg"
    assert bare.filename == "a.jpg"
    assert first.extension == "jpg"


def test_percent_encoded_and_raw_unicode_urls_share_a_path(config):
    encoded = _resolve(config, "https://example.com/im%C3%A1genes/caf%C3%A9.jpg")
    raw = _resolve(config, "https://example.com/imágenes/café.jpg")
    assert encoded.file_path == raw.file_path
    assert encoded.filename.isascii()
    assert encoded.filename != "cafe.jpg"


def test_hash_remote_url_variants(tmp_path):
    url = "https://example.com/img/deep/a.jpg"
    full = _resolve(make_config(tmp_path, hash_remote_url=True), url)
    host = _resolve(make_config(tmp_path, hash_remote_url="host"), url)
    assert full.transform_path == "/" + _md5("example.com/img/deep")
    assert host.transform_path == "/example.com/" + _md5("/img/deep")
    assert full.filename == host.filename == "a.jpg"


# --- VOLUME_ASSET ------------------------------------------------------------


def test_local_backed_asset_is_read_in_place(config, tmp_path):
    volume = LocalVolume(handle="uploads", root=tmp_path / "uploads", base_url="/uploads")
    asset = VolumeAsset(volume=volume, origin_path="products/shoe.jpg")
    source = _resolve(config, asset)
    assert source.volume_mode is VolumeMode.LOCAL_BACKED
    assert source.file_path == tmp_path / "uploads" / "products" / "shoe.jpg"
    assert source.canonical_url == "/uploads/products/shoe.jpg"
    assert source.transform_path == "/uploads/products"
    assert source.requires_fetch is False


def test_copy_out_asset_uses_volume_namespace(config):
    volume = FakeVolume(handle="s3")
    asset = VolumeAsset(volume=volume, origin_path="products/shoe.jpg")
    source = _resolve(config, asset)
    assert source.volume_mode is VolumeMode.COPY_OUT
    assert source.file_path == config.runtime_root_path / "volumes" / "s3" / "products" / "shoe.jpg"
    assert source.canonical_url == "https://s3.example.com/products/shoe.jpg"
    assert source.basename == "shoe"
    assert source.extension == "jpg"
    assert source.requires_fetch is True
    assert source.directory.is_dir()


def test_volume_asset_without_asset_is_rejected(config):
    with pytest.raises(ResolutionError, match="no asset"):
        PathResolver(config).resolve(ClassifiedReference(SourceKind.VOLUME_ASSET))


def test_copy_out_assets_of_different_volumes_do_not_collide(config):
    first = _resolve(config, VolumeAsset(volume=FakeVolume(handle="s3"), origin_path="a/b.jpg"))
    second = _resolve(config, VolumeAsset(volume=FakeVolume(handle="gcs"), origin_path="a/b.jpg"))
    assert first.file_path != second.file_path


def test_remote_and_volume_namespaces_are_disjoint(config):
    remote = _resolve(config, "https://s3/a/b.jpg")
    volume = _resolve(config, VolumeAsset(volume=FakeVolume(handle="s3"), origin_path="a/b.jpg"))
    assert remote.file_path != volume.file_path


# --- properties --------------------------------------------------------------

_NAME_CHARS = string.ascii_letters + string.digits + " -_éüçñ日"
_names = st.text(alphabet=_NAME_CHARS, min_size=1, max_size=20)
_dirs = st.lists(st.text(alphabet=string.ascii_lowercase + "é ", min_size=1, max_size=8), max_size=3)


@settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(name=_names, dirs=_dirs)
def test_remote_resolution_is_idempotent(tmp_path, name, dirs):
    config = make_config(tmp_path)
    url = "https://example.com/" + "/".join([*dirs, f"{name}.jpg"])
    first = _resolve(config, url)
    second = _resolve(config, url)
    assert first == second
    assert first.file_path == second.file_path


@settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(pair=st.lists(_names, min_size=2, max_size=2, unique=True))
def test_distinct_remote_names_never_collide(tmp_path, pair):
    config = make_config(tmp_path)
    first, second = (_resolve(config, f"https://example.com/img/{name}.jpg") for name in pair)
    assert first.file_path != second.file_path


def test_encoded_slash_is_not_a_directory_separator(config):
    encoded = _resolve(config, "https://example.com/a%2Fb.jpg")
    nested = _resolve(config, "https://example.com/a/b.jpg")
    assert nested.file_path == config.runtime_root_path / "remote" / "example.com" / "a" / "b.jpg"
    assert encoded.file_path != nested.file_path
    assert encoded.sub_path == "/example.com"
    assert "/" not in encoded.filename


_segments = st.lists(st.sampled_from(["a", "b", "%2F", "%2f"]), min_size=1, max_size=3).map("".join)
_url_paths = st.lists(
    st.lists(_segments, min_size=1, max_size=3).map("/".join),
    min_size=2,
    max_size=2,
    unique_by=lambda raw: raw.lower(),
)


@settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(pair=_url_paths)
def test_encoded_and_real_separators_never_collide(tmp_path, pair):
    config = make_config(tmp_path)
    first, second = (_resolve(config, f"https://example.com/img/{raw}x.jpg") for raw in pair)
    assert first.file_path != second.file_path
