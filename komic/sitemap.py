"""Sitemap generation with gradual backdating.

Every series and chapter URL is emitted exactly once into a persisted
schedule. Historical content is spread over the days in
[backdate_from, start_date) so indexers see gradual growth; from start_date
on, one capped batch of not-yet-scheduled URLs is added per day.

State lives in a JSON file (see SitemapState) that is read at the start of a
generation and rewritten atomically at the end. There is no locking: a single
writer is assumed. Two overlapping generations can both append the same
"new" batch and the last write wins.
"""

from __future__ import annotations

import dataclasses
import html
import json
import os
import tempfile
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterable, Optional

import httpx

from .config import KomicConfig
from .logging_config import get_logger
from .urls import chapter_path, series_path

logger = get_logger(__name__)

CatalogFetcher = Callable[[], list]
Clock = Callable[[], datetime]


@dataclasses.dataclass
class SitemapEntry:
    url: str
    last_modified: datetime


@dataclasses.dataclass
class SitemapState:
    """Persisted schedule. Every bucketed URL is also in added_urls."""

    last_update: Optional[datetime] = None
    added_urls: list[str] = dataclasses.field(default_factory=list)
    start_date: Optional[date] = None
    backdated_entries: dict[str, list[str]] = dataclasses.field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "lastUpdate": self.last_update.isoformat() if self.last_update else None,
            "addedUrls": list(self.added_urls),
            "startDate": self.start_date.isoformat() if self.start_date else None,
            "backdatedEntries": {k: list(v) for k, v in sorted(self.backdated_entries.items())},
        }

    @classmethod
    def from_dict(cls, data) -> "SitemapState":
        """Build from parsed JSON. Raises ValueError on a wrongly shaped document."""
        if not isinstance(data, dict):
            raise ValueError("sitemap state must be a JSON object")

        added = data.get("addedUrls", [])
        buckets = data.get("backdatedEntries", {})
        if not isinstance(added, list) or not all(isinstance(u, str) for u in added):
            raise ValueError("addedUrls must be a list of strings")
        if not isinstance(buckets, dict):
            raise ValueError("backdatedEntries must be an object")
        for key, urls in buckets.items():
            date.fromisoformat(key)
            if not isinstance(urls, list) or not all(isinstance(u, str) for u in urls):
                raise ValueError(f"backdatedEntries[{key}] must be a list of strings")

        last_update = data.get("lastUpdate")
        start = data.get("startDate")
        state = cls(
            last_update=_parse_timestamp(last_update) if last_update else None,
            added_urls=list(dict.fromkeys(added)),
            start_date=date.fromisoformat(start[:10]) if start else None,
            backdated_entries={k: list(v) for k, v in buckets.items()},
        )
        # Repair: anything bucketed must count as added.
        known = set(state.added_urls)
        for urls in state.backdated_entries.values():
            for url in urls:
                if url not in known:
                    state.added_urls.append(url)
                    known.add(url)
        return state


def load_state(path: Path) -> SitemapState:
    """Read the state file. Missing -> empty state; unreadable/corrupt -> warning + empty state."""
    if not path.exists():
        return SitemapState()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return SitemapState.from_dict(data)
    except (OSError, ValueError, TypeError) as exc:
        logger.warning(f"Sitemap state at {path} is unreadable, starting fresh: {exc}")
        return SitemapState()


def save_state(path: Path, state: SitemapState) -> None:
    """Write the state atomically (temp file in the same directory, then rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(state.to_dict(), indent=2)
    fd, tmp_name = tempfile.mkstemp(prefix=".sitemap-", suffix=".json", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _days(start: date, end: date) -> Iterable[date]:
    """Calendar days in [start, end)."""
    current = start
    while current < end:
        yield current
        current += timedelta(days=1)


def build_candidates(catalog: list, base_url: str) -> list[SitemapEntry]:
    """One entry per series and one per chapter, tagged with the real last-modified time."""
    base = base_url.rstrip("/")
    entries: list[SitemapEntry] = []
    for series in catalog:
        url, code = series["url"], series.get("url_code")
        entries.append(
            SitemapEntry(base + series_path(url, code), _parse_timestamp(series["updated_at"]))
        )
        for chapter in series.get("chapters") or []:
            entries.append(
                SitemapEntry(
                    base + chapter_path(url, code, chapter["chapter_number"]),
                    _parse_timestamp(chapter["published_at"]),
                )
            )
    return entries


def batch_size(available: int, urls_min: int, urls_max: int) -> int:
    """Size of the next batch: capped at urls_max and at what is available, never padded."""
    if available <= 0:
        return 0
    return min(urls_max, max(urls_min, available), available)


def fetch_catalog(base_url: str, timeout: float) -> list:
    """GET {base_url}/api/chaptersxml and return the parsed series list."""
    response = httpx.get(f"{base_url.rstrip('/')}/api/chaptersxml", timeout=timeout)
    response.raise_for_status()
    data = response.json()
    if not isinstance(data, list):
        raise ValueError("catalog response is not a list")
    return data


class SitemapGenerator:
    """Produces sitemap entries and advances the persisted schedule.

    fetch and clock are injectable for tests; by default the catalog comes
    from the site's /api/chaptersxml endpoint and the clock is UTC now.
    """

    def __init__(
        self,
        config: KomicConfig,
        fetch: Optional[CatalogFetcher] = None,
        clock: Optional[Clock] = None,
        state_path: Optional[Path] = None,
    ):
        self.config = config
        self.base_url = config.base_url
        self.settings = config.sitemap
        self.state_path = state_path or config.sitemap.state_path
        self._fetch = fetch or (lambda: fetch_catalog(self.base_url, self.settings.fetch_timeout))
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _root(self, now: datetime) -> SitemapEntry:
        return SitemapEntry(self.base_url, now)

    def generate(self) -> list[SitemapEntry]:
        """Run one generation. Never raises: on failure returns only the site root."""
        now = self._clock()
        try:
            return self._generate(now)
        except Exception:
            logger.exception("Sitemap generation failed; serving root only")
            return [self._root(now)]

    def _generate(self, now: datetime) -> list[SitemapEntry]:
        catalog = self._fetch()
        state = load_state(self.state_path)
        today = now.astimezone(timezone.utc).date()
        urls_min = self.settings.urls_per_day_min
        urls_max = self.settings.urls_per_day_max

        added = set(state.added_urls)
        queue = [c for c in build_candidates(catalog, self.base_url) if c.url not in added]
        # Drop repeats within the catalog itself; first occurrence wins.
        queue = list({c.url: c for c in reversed(queue)}.values())[::-1]
        queue.sort(key=lambda c: c.last_modified, reverse=True)

        def take() -> list[str]:
            size = batch_size(len(queue), urls_min, urls_max)
            batch = [c.url for c in queue[:size]]
            del queue[:size]
            state.added_urls.extend(batch)
            return batch

        backfilled = 0
        for day in _days(self.settings.backdate_from, self.settings.start_date):
            key = day.isoformat()
            if key in state.backdated_entries:
                continue
            if not queue:
                break
            state.backdated_entries[key] = take()
            backfilled += len(state.backdated_entries[key])

        new_batch: list[str] = []
        last_day = state.last_update.astimezone(timezone.utc).date() if state.last_update else None
        if today >= self.settings.start_date and (last_day is None or today > last_day) and queue:
            new_batch = take()
            state.backdated_entries.setdefault(today.isoformat(), []).extend(new_batch)
            state.last_update = now

        state.start_date = self.settings.start_date

        fresh = set(new_batch)
        entries = [self._root(now)]
        for key in sorted(state.backdated_entries):
            stamp = _day_start(date.fromisoformat(key))
            for url in state.backdated_entries[key]:
                entries.append(SitemapEntry(url, now if url in fresh else stamp))

        save_state(self.state_path, state)
        logger.info(
            f"Sitemap: {len(entries) - 1} urls ({backfilled} backdated, "
            f"{len(new_batch)} new, {len(queue)} waiting)"
        )
        return entries


def _w3c_datetime(value: datetime) -> str:
    return (
        value.astimezone(timezone.utc)
        .isoformat(timespec="seconds")
        .replace("+00:00", "Z")
    )


def render_sitemap_xml(entries: list[SitemapEntry]) -> str:
    urls = "".join(
        f"""
  <url>
    <loc>{html.escape(entry.url, quote=True)}</loc>
    <lastmod>{_w3c_datetime(entry.last_modified)}</lastmod>
  </url>"""
        for entry in entries
    )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
        f"{urls}\n"
        "</urlset>"
    )


def render_robots_txt(base_url: str) -> str:
    base = base_url.rstrip("/")
    lines = [
        "User-agent: *",
        "Allow: /",
        "Allow: /series/",
        "Disallow: /about",
        "Disallow: /licensing",
        "Disallow: /privacy",
        "Disallow: /logout",
        "Disallow: /login",
        "Disallow: /settings",
        "",
        f"Sitemap: {base}/sitemap.xml",
    ]
    return "\n".join(lines) + "\n"
