"""URL helpers for series and chapter pages.

Series pages live at /series/<slug>-<6 digit code>; chapters at
/series/<slug>-<code>/chapter-<number>.
"""

from __future__ import annotations

import random
import re
from typing import NamedTuple, Optional

URL_CODE_RE = re.compile(r"-(\d{6})$")
CHAPTER_PARAM_RE = re.compile(r"^chapter-(.+)$", re.IGNORECASE)
DEFAULT_URL_CODE = "000000"


class SeriesParam(NamedTuple):
    base_url: str
    url_code: Optional[str]


def slugify_title(title: str) -> str:
    """Series URL slug: lowercase, keep [a-z0-9 -*], collapse spaces/asterisks/dashes."""
    slug = title.lower()
    slug = re.sub(r"[^a-z0-9\s\-*]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"\*+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip()


def generate_url_code() -> str:
    return str(random.randint(100000, 999999))


def parse_series_param(param: str) -> SeriesParam:
    match = URL_CODE_RE.search(param)
    if match:
        return SeriesParam(URL_CODE_RE.sub("", param), match.group(1))
    return SeriesParam(param, None)


def parse_chapter_param(param: str) -> Optional[float]:
    """Chapter number from 'chapter-12.5', or None if malformed."""
    match = CHAPTER_PARAM_RE.match(param)
    if not match:
        return None
    try:
        return float(match.group(1))
    except ValueError:
        return None


def format_chapter_number(number) -> str:
    """1.0 -> '1', 1.50 -> '1.5', '12.00' -> '12'."""
    value = float(number)
    if value.is_integer():
        return str(int(value))
    return f"{value:.2f}".rstrip("0").rstrip(".")


def normalize_chapter_number(number) -> str:
    """Two-decimal form stored on published chapters ('1' -> '1.00')."""
    return f"{float(number):.2f}"


def series_path(url: str, url_code: Optional[str]) -> str:
    return f"/series/{url}-{url_code or DEFAULT_URL_CODE}"


def chapter_path(url: str, url_code: Optional[str], chapter_number) -> str:
    return f"{series_path(url, url_code)}/chapter-{format_chapter_number(chapter_number)}"
