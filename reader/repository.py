"""Data access layer for the web reader: all read queries in one place."""

from __future__ import annotations

import json

SEARCH_PAGE_SIZE = 18
FEED_LIMIT = 25

_JSON_COLUMNS = ("genres", "types", "publishers", "alternative_titles", "content")

_SERIES_CARD = """
    SELECT s.id, s.title, s.url, s.url_code, s.cover_image_url, s.status,
           s.genres, s.types, s.total_chapters, s.total_views, s.today_views,
           s.last_update,
           (SELECT AVG(r.rating) FROM ratings r WHERE r.series_id = s.id) AS average_rating
    FROM series s
"""

_SORTS = {
    "title": "title COLLATE NOCASE ASC",
    "views": "total_views DESC",
    "update": "last_update IS NULL, last_update DESC",
    "rating": "average_rating IS NULL, average_rating DESC",
}


def _row(row) -> dict:
    """Convert a sqlite3.Row to a dict with JSON columns decoded."""
    out = dict(row)
    for key in _JSON_COLUMNS:
        if key in out:
            value = out[key]
            out[key] = json.loads(value) if value else []
    return out


def _rows(cur) -> list[dict]:
    return [_row(row) for row in cur.fetchall()]


# --- Browse feeds ---


def get_latest_series(conn, limit: int = FEED_LIMIT) -> list[dict]:
    """Recently updated series, newest chapter first."""
    cur = conn.execute(
        _SERIES_CARD + " WHERE s.last_update IS NOT NULL ORDER BY s.last_update DESC LIMIT ?",
        (limit,),
    )
    return _rows(cur)


def get_trending_series(conn, limit: int = FEED_LIMIT) -> list[dict]:
    """Popular series: today's views, then all-time views."""
    cur = conn.execute(
        _SERIES_CARD + " ORDER BY s.today_views DESC, s.total_views DESC LIMIT ?",
        (limit,),
    )
    return _rows(cur)


def get_series_by_genre(conn, genre: str, limit: int = FEED_LIMIT) -> list[dict]:
    cur = conn.execute(
        _SERIES_CARD
        + " WHERE EXISTS (SELECT 1 FROM json_each(s.genres) g WHERE g.value = ? COLLATE NOCASE)"
        " ORDER BY s.last_update IS NULL, s.last_update DESC LIMIT ?",
        (genre, limit),
    )
    return _rows(cur)


def get_all_genres(conn) -> list[str]:
    cur = conn.execute(
        "SELECT DISTINCT g.value AS genre FROM series s, json_each(s.genres) g ORDER BY g.value"
    )
    return [row["genre"] for row in cur.fetchall()]


# --- Search ---


def search_series(
    conn,
    q: str | None = None,
    genres: list[str] | None = None,
    status: str | None = None,
    min_rating: float | None = None,
    sort: str = "update",
    page: int = 1,
) -> dict:
    """Filtered, sorted, paginated series search.

    Every requested genre must be present on the series. Unknown sort keys
    fall back to last update.
    """
    where = []
    params: list = []
    if q and q.strip():
        where.append("(s.title LIKE ? OR s.alternative_titles LIKE ?)")
        like = f"%{q.strip()}%"
        params += [like, like]
    for genre in genres or []:
        where.append(
            "EXISTS (SELECT 1 FROM json_each(s.genres) g WHERE g.value = ? COLLATE NOCASE)"
        )
        params.append(genre)
    if status:
        where.append("s.status = ?")
        params.append(status)

    inner = _SERIES_CARD + (" WHERE " + " AND ".join(where) if where else "")
    outer_where = ""
    if min_rating is not None:
        outer_where = " WHERE average_rating >= ?"
        params.append(min_rating)

    total = conn.execute(
        f"SELECT COUNT(*) FROM ({inner}){outer_where}", tuple(params)
    ).fetchone()[0]

    order = _SORTS.get(sort, _SORTS["update"])
    page = max(1, page)
    cur = conn.execute(
        f"SELECT * FROM ({inner}){outer_where} ORDER BY {order} LIMIT ? OFFSET ?",
        (*params, SEARCH_PAGE_SIZE, (page - 1) * SEARCH_PAGE_SIZE),
    )
    return {
        "results": _rows(cur),
        "total": total,
        "page": page,
        "pages": max(1, -(-total // SEARCH_PAGE_SIZE)),
    }


# --- Series & chapter pages ---


def get_series_page(conn, url: str, url_code: str | None = None) -> dict | None:
    """Full series row with chapters (newest first) and rating summary."""
    if url_code:
        cur = conn.execute(
            "SELECT * FROM series WHERE url = ? AND url_code = ?", (url, url_code)
        )
    else:
        cur = conn.execute("SELECT * FROM series WHERE url = ?", (url,))
    row = cur.fetchone()
    if not row:
        return None
    series = _row(row)
    rating = conn.execute(
        "SELECT AVG(rating) AS average, COUNT(*) AS count FROM ratings WHERE series_id = ?",
        (series["id"],),
    ).fetchone()
    series["average_rating"] = round(rating["average"], 2) if rating["average"] is not None else None
    series["rating_count"] = rating["count"]
    cur = conn.execute(
        "SELECT id, chapter_number, title, publisher, views, struck, published_at "
        "FROM chapters WHERE series_id = ? ORDER BY chapter_number DESC, published_at DESC",
        (series["id"],),
    )
    series["chapters"] = [dict(r) for r in cur.fetchall()]
    return series


def get_user_rating(conn, series_id: str, user_id: str) -> int | None:
    row = conn.execute(
        "SELECT rating FROM ratings WHERE series_id = ? AND user_id = ?", (series_id, user_id)
    ).fetchone()
    return row["rating"] if row else None


def get_chapter_page(
    conn, url: str, chapter_number: float, publisher: str | None = None
) -> dict | None:
    """Chapter with pages plus its series and the neighbouring chapter numbers."""
    series = conn.execute(
        "SELECT id, title, url, url_code, cover_image_url FROM series WHERE url = ?", (url,)
    ).fetchone()
    if not series:
        return None
    query = "SELECT * FROM chapters WHERE series_id = ? AND chapter_number = ?"
    params: list = [series["id"], float(chapter_number)]
    if publisher:
        query += " AND publisher = ?"
        params.append(publisher)
    row = conn.execute(query + " ORDER BY published_at DESC LIMIT 1", tuple(params)).fetchone()
    if not row:
        return None
    chapter = _row(row)
    chapter["series"] = dict(series)

    prev_row = conn.execute(
        "SELECT MAX(chapter_number) FROM chapters WHERE series_id = ? AND chapter_number < ?",
        (series["id"], chapter["chapter_number"]),
    ).fetchone()
    next_row = conn.execute(
        "SELECT MIN(chapter_number) FROM chapters WHERE series_id = ? AND chapter_number > ?",
        (series["id"], chapter["chapter_number"]),
    ).fetchone()
    chapter["prev_chapter"] = prev_row[0]
    chapter["next_chapter"] = next_row[0]
    cur = conn.execute(
        "SELECT DISTINCT publisher FROM chapters WHERE series_id = ? AND chapter_number = ? "
        "ORDER BY publisher",
        (series["id"], chapter["chapter_number"]),
    )
    chapter["publishers"] = [r["publisher"] for r in cur.fetchall()]
    return chapter


def get_url_code_for_slug(conn, url: str) -> str | None:
    """Canonical url_code for a series slug, or None if no such series."""
    row = conn.execute(
        "SELECT url_code FROM series WHERE url = ? ORDER BY created_at LIMIT 1", (url,)
    ).fetchone()
    return row["url_code"] if row else None


# --- Per-user lists ---


def get_bookmarks(conn, user_id: str) -> list[dict]:
    cur = conn.execute(
        _SERIES_CARD
        + " INNER JOIN bookmarks b ON b.series_id = s.id WHERE b.user_id = ?"
        " ORDER BY b.created_at DESC",
        (user_id,),
    )
    return _rows(cur)


def is_bookmarked(conn, user_id: str, series_id: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM bookmarks WHERE user_id = ? AND series_id = ?", (user_id, series_id)
    ).fetchone()
    return row is not None


def get_continue_reading(conn, user_id: str, limit: int = 12) -> list[dict]:
    """Series the user has history for, most recent first, with the last chapter read."""
    cur = conn.execute(
        """SELECT s.id, s.title, s.url, s.url_code, s.cover_image_url, s.total_chapters,
                  h.chapter_number AS last_chapter, h.updated_at AS last_read_at
           FROM reading_history h INNER JOIN series s ON s.id = h.series_id
           WHERE h.user_id = ?
           ORDER BY h.updated_at DESC
           LIMIT ?""",
        (user_id, limit),
    )
    return [dict(row) for row in cur.fetchall()]


# --- Recommendations ---

SIMILAR_LIMIT = 5
FOR_YOU_LIMIT = 10
TOP_GENRES = 5


def _by_genre_overlap(
    conn, genres: list[str], exclude_sql: str, exclude_params: tuple, limit: int
) -> list[dict]:
    """Series sharing at least one of *genres*, most shared genres first."""
    placeholders = ",".join("?" * len(genres))
    cur = conn.execute(
        f"""SELECT * FROM (
                SELECT c.*,
                       (SELECT COUNT(*) FROM json_each(c.genres) g
                        WHERE g.value COLLATE NOCASE IN ({placeholders})) AS matching_genres
                FROM ({_SERIES_CARD} WHERE {exclude_sql}) c
            )
            WHERE matching_genres > 0
            ORDER BY matching_genres DESC, total_views DESC, title COLLATE NOCASE
            LIMIT ?""",
        (*genres, *exclude_params, limit),
    )
    return _rows(cur)


def get_series_genres(conn, series_id: str) -> list[str] | None:
    row = conn.execute("SELECT genres FROM series WHERE id = ?", (series_id,)).fetchone()
    return _row(row)["genres"] if row else None


def get_similar_series(conn, series_id: str, genres: list[str], limit: int = SIMILAR_LIMIT) -> list[dict]:
    """Series like this one by genre overlap; random picks when it has no genres."""
    genres = [g for g in genres or [] if g]
    if not genres:
        cur = conn.execute(
            _SERIES_CARD + " WHERE s.id != ? ORDER BY RANDOM() LIMIT ?", (series_id, limit)
        )
        return [{**row, "matching_genres": 0} for row in _rows(cur)]
    return _by_genre_overlap(conn, genres, "s.id != ?", (series_id,), limit)


def get_recommended_for_user(conn, user_id: str, limit: int = FOR_YOU_LIMIT) -> list[dict]:
    """Unread series matching the genres the user reads most."""
    cur = conn.execute(
        """SELECT g.value AS genre, COUNT(*) AS reads
           FROM reading_history h
           JOIN series s ON s.id = h.series_id
           JOIN json_each(s.genres) g
           WHERE h.user_id = ?
           GROUP BY g.value
           ORDER BY reads DESC, g.value
           LIMIT ?""",
        (user_id, TOP_GENRES),
    )
    top_genres = [row["genre"] for row in cur.fetchall()]
    if not top_genres:
        return []
    return _by_genre_overlap(
        conn,
        top_genres,
        "s.id NOT IN (SELECT series_id FROM reading_history WHERE user_id = ?)",
        (user_id,),
        limit,
    )


# --- Messages ---

_MESSAGE_TABLES = {"series": ("series_messages", "series_id"), "chapter": ("chapter_messages", "chapter_id")}


def get_messages(conn, scope: str, target_id: str, user_id: str | None = None) -> list[dict]:
    """Flat message rows in posting order, with author name and the viewer's reaction."""
    table, target_col = _MESSAGE_TABLES[scope]
    cur = conn.execute(
        f"""SELECT m.id, m.parent_id, m.content, m.likes, m.dislikes, m.created_at,
                   m.user_id, u.name AS username, i.interaction_type AS user_interaction
            FROM {table} m
            LEFT JOIN users u ON u.id = m.user_id
            LEFT JOIN message_interactions i
                   ON i.message_id = m.id AND i.scope = ? AND i.user_id = ?
            WHERE m.{target_col} = ?
            ORDER BY m.created_at ASC""",
        (scope, user_id, target_id),
    )
    return [dict(row) for row in cur.fetchall()]


# --- Sitemap catalog ---


def catalog_for_sitemap(conn) -> list[dict]:
    """Series with their chapter numbers and publish dates, for the sitemap generator."""
    series_rows = conn.execute(
        "SELECT id, url, url_code, updated_at, last_update FROM series ORDER BY url"
    ).fetchall()
    catalog = []
    for s in series_rows:
        cur = conn.execute(
            "SELECT chapter_number, published_at FROM chapters WHERE series_id = ? "
            "ORDER BY chapter_number",
            (s["id"],),
        )
        catalog.append(
            {
                "url": s["url"],
                "url_code": s["url_code"],
                "updated_at": s["last_update"] or s["updated_at"],
                "chapters": [
                    {"chapter_number": c["chapter_number"], "published_at": c["published_at"]}
                    for c in cur.fetchall()
                ],
            }
        )
    return catalog
