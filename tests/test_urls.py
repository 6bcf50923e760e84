"""Tests for series and chapter URL helpers."""

import pytest

from komic.urls import (
    chapter_path,
    format_chapter_number,
    generate_url_code,
    normalize_chapter_number,
    parse_chapter_param,
    parse_series_param,
    series_path,
    slugify_title,
)


@pytest.mark.parametrize(
    "title, slug",
    [
        ("Solo Leveling", "solo-leveling"),
        ("Kaguya-sama: Love Is War!", "kaguya-sama-love-is-war"),
        ("One  Piece***Film", "one-piece-film"),
    ],
)
def test_slugify_title(title, slug):
    assert slugify_title(title) == slug


def test_parse_series_param_splits_code():
    assert parse_series_param("solo-leveling-123456") == ("solo-leveling", "123456")
    assert parse_series_param("solo-leveling") == ("solo-leveling", None)
    assert parse_series_param("room-101") == ("room-101", None)


def test_parse_chapter_param():
    assert parse_chapter_param("chapter-12") == 12.0
    assert parse_chapter_param("chapter-12.5") == 12.5
    assert parse_chapter_param("episode-3") is None
    assert parse_chapter_param("chapter-abc") is None


def test_chapter_number_formats():
    assert format_chapter_number(1.0) == "1"
    assert format_chapter_number("12.50") == "12.5"
    assert normalize_chapter_number("7") == "7.00"


def test_paths():
    assert series_path("solo-leveling", None) == "/series/solo-leveling-000000"
    assert chapter_path("solo-leveling", "123456", 3.0) == "/series/solo-leveling-123456/chapter-3"


def test_generate_url_code_is_six_digits():
    code = generate_url_code()
    assert len(code) == 6 and code.isdigit()
