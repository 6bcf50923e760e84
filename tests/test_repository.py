"""Tests for catalog writes and the reader's read queries."""

from datetime import datetime, timezone

import pytest

from komic.database import db_connection
from komic.errors import NotFoundError, ValidationError
from komic.groups import GroupService
from komic.models import MessageInteraction, SeriesMessage, User, as_utc, utcnow
from komic.repository import Repository
from reader import repository as reader_repo


@pytest.fixture
def repo(session):
    return Repository(session)


@pytest.fixture
def conn(test_db):
    with db_connection() as conn:
        yield conn


def test_add_chapter_updates_series_counters(make_series):
    series = make_series(chapters=(1, 2, 2.5))

    assert series.total_chapters == 3
    assert series.publishers == ["Team Shadow"]
    assert series.last_update is not None


def test_record_view_and_reset(repo, make_series):
    make_series()

    counts = repo.record_view("solo-leveling", 2)
    assert counts == {"series_total_views": 1, "series_today_views": 1, "chapter_views": 1}
    assert repo.record_view("solo-leveling", 2)["series_total_views"] == 2

    with pytest.raises(NotFoundError):
        repo.record_view("solo-leveling", 99)
    with pytest.raises(NotFoundError):
        repo.record_view("nope", 1)

    assert repo.reset_today_views() == 1
    assert repo.get_series_by_url("solo-leveling").today_views == 0


def test_bookmarks(repo, make_user, make_series):
    user = make_user()
    series = make_series()

    first = repo.add_bookmark(user.id, series.id)
    assert repo.add_bookmark(user.id, series.id).id == first.id
    assert repo.remove_bookmark(user.id, series.id)
    assert not repo.remove_bookmark(user.id, series.id)

    repo.add_bookmark(user.id, series.id)
    assert repo.clear_bookmarks(user.id) == 1

    with pytest.raises(NotFoundError):
        repo.add_bookmark(user.id, "missing")


@pytest.mark.parametrize("rating", [0, 11, 5.5, True])
def test_rating_bounds(repo, make_user, make_series, rating):
    user = make_user()
    series = make_series()
    with pytest.raises(ValidationError):
        repo.rate_series(user.id, series.id, rating)


def test_rating_is_one_per_user(repo, make_user, make_series, conn):
    alice, bob = make_user("alice"), make_user("bob")
    series = make_series()

    repo.rate_series(alice.id, series.id, 4)
    repo.rate_series(alice.id, series.id, 8)
    repo.rate_series(bob.id, series.id, 5)

    page = reader_repo.get_series_page(conn, "solo-leveling")
    assert page["rating_count"] == 2
    assert page["average_rating"] == 6.5
    assert reader_repo.get_user_rating(conn, series.id, alice.id) == 8


def test_history_upserts(repo, make_user, make_series, conn):
    user = make_user()
    series = make_series()

    repo.record_history(user.id, series.id, 1)
    repo.record_history(user.id, series.id, 3)

    rows = reader_repo.get_continue_reading(conn, user.id)
    assert len(rows) == 1
    assert rows[0]["last_chapter"] == 3.0
    assert repo.clear_history(user.id) == 1


def test_messages_and_replies(repo, make_user, make_series, conn):
    user = make_user()
    series = make_series()
    other = make_series("Other", url_code="654321")

    root = repo.post_message("series", series.id, user.id, "  First!  ")
    reply = repo.post_message("series", series.id, user.id, "Reply", parent_id=root.id)

    assert root.content == "First!"
    assert reply.parent_id == root.id

    with pytest.raises(ValidationError):
        repo.post_message("series", other.id, user.id, "Wrong thread", parent_id=root.id)
    with pytest.raises(ValidationError):
        repo.post_message("series", series.id, user.id, "   ")
    with pytest.raises(ValidationError):
        repo.post_message("series", series.id, user.id, "x" * 2001)
    with pytest.raises(ValidationError):
        repo.post_message("forum", series.id, user.id, "hi")
    with pytest.raises(NotFoundError):
        repo.post_message("chapter", "missing", user.id, "hi")

    rows = reader_repo.get_messages(conn, "series", series.id, user.id)
    assert [r["content"] for r in rows] == ["First!", "Reply"]
    assert rows[0]["username"] == "reader1"


def test_reaction_toggle_keeps_counts_consistent(repo, make_user, make_series, session):
    user = make_user()
    series = make_series()
    message = repo.post_message("series", series.id, user.id, "hello")

    liked = repo.toggle_reaction("series", message.id, user.id, "likes")
    assert (liked.likes, liked.dislikes) == (1, 0)

    switched = repo.toggle_reaction("series", message.id, user.id, "dislikes")
    assert (switched.likes, switched.dislikes) == (0, 1)

    cleared = repo.toggle_reaction("series", message.id, user.id, "dislikes")
    assert (cleared.likes, cleared.dislikes) == (0, 0)
    assert session.get(MessageInteraction, (user.id, message.id, "series")) is None

    with pytest.raises(ValidationError):
        repo.toggle_reaction("series", message.id, user.id, "loves")


def test_delete_user_data_keeps_messages(repo, make_user, make_series, session, conn):
    user = make_user()
    series = make_series()
    repo.add_bookmark(user.id, series.id)
    message = repo.post_message("series", series.id, user.id, "still here")

    user_id = user.id
    repo.delete_user_data(user)

    assert session.get(SeriesMessage, message.id) is not None
    rows = reader_repo.get_messages(conn, "series", series.id)
    assert rows[0]["username"] is None
    assert reader_repo.get_bookmarks(conn, user_id) == []


def test_delete_user_data_takes_back_reactions(repo, make_user, make_series, session):
    author = make_user("author")
    fan = make_user("fan")
    critic = make_user("critic")
    series = make_series()
    message = repo.post_message("series", series.id, author.id, "first!")
    repo.toggle_reaction("series", message.id, fan.id, "likes")
    repo.toggle_reaction("series", message.id, critic.id, "dislikes")

    fan_id = fan.id
    repo.delete_user_data(fan)

    message = session.get(SeriesMessage, message.id)
    assert (message.likes, message.dislikes) == (0, 1)
    assert session.get(MessageInteraction, (fan_id, message.id, "series")) is None
    assert session.get(MessageInteraction, (critic.id, message.id, "series")) is not None


def test_delete_user_data_with_chapter_messages_and_groups(repo, make_user, make_series, session, conn):
    user = make_user()
    series = make_series()
    chapter_id = reader_repo.get_chapter_page(conn, series.url, 1)["id"]
    repo.post_message("chapter", chapter_id, user.id, "nice chapter")
    GroupService(session).create_group(user, "Team Shadow")

    user_id = user.id
    repo.delete_user_data(user)

    assert session.get(User, user_id) is None
    rows = reader_repo.get_messages(conn, "chapter", chapter_id)
    assert [(r["content"], r["user_id"]) for r in rows] == [("nice chapter", None)]


def test_feeds_and_genres(make_series, conn):
    make_series("Solo Leveling", genres=["Action", "Fantasy"])
    make_series("Quiet Days", chapters=(), url_code="111111", genres=["Slice of Life"])

    latest = reader_repo.get_latest_series(conn)
    assert [s["title"] for s in latest] == ["Solo Leveling"]
    assert latest[0]["genres"] == ["Action", "Fantasy"]

    assert reader_repo.get_all_genres(conn) == ["Action", "Fantasy", "Slice of Life"]
    assert [s["title"] for s in reader_repo.get_series_by_genre(conn, "action")] == ["Solo Leveling"]
    assert len(reader_repo.get_trending_series(conn)) == 2


def test_search_filters_and_sorting(make_series, make_user, repo, conn):
    a = make_series("Alpha Quest", url_code="111111", genres=["Action", "Drama"], status="ongoing")
    make_series("Beta Romance", url_code="222222", genres=["Romance"], status="completed")
    make_series("Gamma Action", url_code="333333", genres=["Action"], status="ongoing",
                alternative_titles=["Delta"])
    repo.rate_series(make_user().id, a.id, 9)

    def titles(**kwargs):
        return [s["title"] for s in reader_repo.search_series(conn, **kwargs)["results"]]

    assert titles(q="alpha") == ["Alpha Quest"]
    assert titles(q="delta") == ["Gamma Action"]
    assert titles(genres=["Action"], sort="title") == ["Alpha Quest", "Gamma Action"]
    assert titles(genres=["Action", "Drama"]) == ["Alpha Quest"]
    assert titles(status="completed") == ["Beta Romance"]
    assert titles(min_rating=8) == ["Alpha Quest"]
    assert titles(sort="rating")[0] == "Alpha Quest"

    result = reader_repo.search_series(conn, page=5)
    assert result["total"] == 3
    assert result["pages"] == 1
    assert result["results"] == []


def test_similar_series_by_genre_overlap(make_series, conn):
    base = make_series("Solo Leveling", url_code="111111", genres=["Action", "Fantasy"])
    make_series("Both Genres", chapters=(), url_code="222222", genres=["action", "Fantasy", "Drama"])
    make_series("One Genre", chapters=(), url_code="333333", genres=["Action"])
    make_series("Nothing Shared", chapters=(), url_code="444444", genres=["Romance"])

    similar = reader_repo.get_similar_series(conn, base.id, ["Action", "Fantasy"])
    assert [(s["title"], s["matching_genres"]) for s in similar] == [("Both Genres", 2), ("One Genre", 1)]


def test_similar_series_without_genres_picks_others_at_random(make_series, conn):
    base = make_series("Plain", url_code="111111")
    make_series("Other", chapters=(), url_code="222222", genres=["Action"])

    similar = reader_repo.get_similar_series(conn, base.id, [])
    assert [s["title"] for s in similar] == ["Other"]
    assert reader_repo.get_series_genres(conn, base.id) == []
    assert reader_repo.get_series_genres(conn, "missing") is None


def test_recommended_for_user_skips_series_already_read(repo, make_user, make_series, conn):
    user = make_user()
    read = make_series("Solo Leveling", url_code="111111", genres=["Action"])
    make_series("Unread Action", chapters=(), url_code="222222", genres=["Action", "Drama"])
    make_series("Unread Romance", chapters=(), url_code="333333", genres=["Romance"])

    assert reader_repo.get_recommended_for_user(conn, user.id) == []

    repo.record_history(user.id, read.id, 1)
    picks = reader_repo.get_recommended_for_user(conn, user.id)
    assert [s["title"] for s in picks] == ["Unread Action"]


def test_chapter_page_neighbours(make_series, conn):
    make_series(chapters=(1, 2, 4))

    chapter = reader_repo.get_chapter_page(conn, "solo-leveling", 2)
    assert chapter["prev_chapter"] == 1.0
    assert chapter["next_chapter"] == 4.0
    assert chapter["content"] == ["/media/solo-leveling/2/001.webp"]
    assert chapter["series"]["url_code"] == "123456"
    assert chapter["publishers"] == ["Team Shadow"]

    last = reader_repo.get_chapter_page(conn, "solo-leveling", 4)
    assert last["next_chapter"] is None
    assert reader_repo.get_chapter_page(conn, "solo-leveling", 3) is None
    assert reader_repo.get_chapter_page(conn, "solo-leveling", 2, publisher="Nobody") is None


def test_series_page_and_slug_lookup(make_series, conn):
    make_series(chapters=(1, 2))

    page = reader_repo.get_series_page(conn, "solo-leveling", "123456")
    assert [c["chapter_number"] for c in page["chapters"]] == [2.0, 1.0]
    assert page["average_rating"] is None
    assert reader_repo.get_series_page(conn, "solo-leveling", "999999") is None
    assert reader_repo.get_url_code_for_slug(conn, "solo-leveling") == "123456"
    assert reader_repo.get_url_code_for_slug(conn, "missing") is None


def test_catalog_for_sitemap(make_series, conn):
    make_series(chapters=(1, 2))

    catalog = reader_repo.catalog_for_sitemap(conn)
    assert catalog[0]["url"] == "solo-leveling"
    assert [c["chapter_number"] for c in catalog[0]["chapters"]] == [1.0, 2.0]
    assert catalog[0]["updated_at"].startswith("2025-01-01")


def test_site_stats(repo, make_series):
    make_series()
    assert repo.stats()["chapters"] == 3


def test_timestamps_are_utc_aware():
    assert utcnow().tzinfo is timezone.utc
    naive = datetime(2025, 1, 1, 12, 0)
    assert as_utc(naive) == datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert as_utc(None) is None


def test_both_connection_kinds_enforce_foreign_keys(session, conn):
    assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1
    assert session.connection().exec_driver_sql("PRAGMA foreign_keys").scalar() == 1
