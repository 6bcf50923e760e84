"""Tests for the media store and WebP conversion."""

from io import BytesIO

import pytest
from PIL import Image

from komic.storage import MediaStore, convert_to_webp, generate_media_paths, page_filename


@pytest.fixture
def store(tmp_path):
    return MediaStore(tmp_path / "media", "/media/")


def test_put_get_and_public_url(store):
    url = store.put("komic/pending/series/a.webp", b"data")

    assert url == "/media/komic/pending/series/a.webp"
    assert store.get("komic/pending/series/a.webp") == b"data"
    assert store.exists("komic/pending/series/a.webp")
    assert store.key_from_url(url) == "komic/pending/series/a.webp"
    assert store.key_from_url("https://elsewhere/x.webp") is None


def test_move_and_delete(store):
    store.put("src/001.webp", b"page")

    url = store.move("src/001.webp", "dst/001.webp")

    assert url == "/media/dst/001.webp"
    assert not store.exists("src/001.webp")
    assert store.get("dst/001.webp") == b"page"

    store.delete("dst/001.webp")
    store.delete("dst/001.webp")
    assert not store.exists("dst/001.webp")


def test_move_missing_source_raises(store):
    with pytest.raises(FileNotFoundError):
        store.move("nope.webp", "dst.webp")


@pytest.mark.parametrize("key", ["../escape.webp", "/abs.webp", "a/../../b.webp", ""])
def test_keys_cannot_escape_the_root(store, key):
    with pytest.raises(ValueError):
        store.path(key)


def test_media_paths_layout():
    series = generate_media_paths("series", "team-shadow", "solo-leveling")
    assert series.pending == "komic/pending/series/team-shadow-solo-leveling.webp"
    assert series.final == "komic/team-shadow/solo-leveling/solo-leveling.webp"

    chapter = generate_media_paths("chapter", "team-shadow", "solo-leveling", "12")
    assert chapter.pending == "komic/pending/chapters/team-shadow-solo-leveling-12"
    assert chapter.final == "komic/team-shadow/solo-leveling/chapter-12"

    with pytest.raises(ValueError):
        generate_media_paths("poster", "g", "s")


def test_page_filename_is_zero_padded():
    assert page_filename(1) == "001.webp"
    assert page_filename(120) == "120.webp"


def test_cover_is_converted_and_shrunk(image_bytes):
    data = convert_to_webp(image_bytes(size=(800, 1200)), "cover")

    with Image.open(BytesIO(data)) as im:
        assert im.format == "WEBP"
        assert im.size == (400, 600)


def test_pages_keep_their_size(image_bytes):
    data = convert_to_webp(image_bytes(size=(700, 1000), fmt="JPEG"), "page")

    with Image.open(BytesIO(data)) as im:
        assert im.format == "WEBP"
        assert im.size == (700, 1000)


def test_garbage_is_rejected():
    with pytest.raises(ValueError):
        convert_to_webp(b"definitely not an image", "page")
