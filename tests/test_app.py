"""HTTP tests for pages, middleware and the JSON API."""

import dataclasses
import inspect
import xml.etree.ElementTree as ET

import pytest
from fastapi.testclient import TestClient

from komic.app import create_app
from komic.config import AuthConfig, StorageConfig
from komic.groups import GroupService


def register(client, name="reader1", password="password123"):
    response = client.post(
        "/register",
        data={
            "name": name,
            "email": f"{name}@example.com",
            "password": password,
            "confirm_password": password,
        },
        follow_redirects=False,
    )
    assert response.status_code == 302
    return response


@pytest.fixture
def series(make_series):
    return make_series(genres=["Action"])


def test_home_page_renders(client, series):
    response = client.get("/")
    assert response.status_code == 200
    assert "Solo Leveling" in response.text


def test_is_bot_cookie(client):
    human = client.get("/robots.txt", headers={"User-Agent": "Mozilla/5.0"})
    assert human.cookies.get("is-bot") == "false"

    bot = client.get("/robots.txt", headers={"User-Agent": "Googlebot/2.1"})
    assert bot.cookies.get("is-bot") == "true"


def test_series_without_code_redirects_to_canonical(client, series):
    response = client.get("/series/solo-leveling", follow_redirects=False)
    assert response.status_code == 301
    assert response.headers["location"] == "/series/solo-leveling-123456"


def test_chapter_with_wrong_code_keeps_path_and_query(client, series):
    response = client.get("/series/solo-leveling-999999/chapter-2?group=Team%20Shadow", follow_redirects=False)
    assert response.status_code == 301
    assert response.headers["location"] == "/series/solo-leveling-123456/chapter-2?group=Team%20Shadow"


def test_canonical_series_and_chapter_pages(client, series):
    assert client.get("/series/solo-leveling-123456").status_code == 200

    chapter = client.get("/series/solo-leveling-123456/chapter-2")
    assert chapter.status_code == 200
    assert "/media/solo-leveling/2/001.webp" in chapter.text


def test_recommendations_api_and_series_page(client, series, make_series):
    other = make_series("Tower of God", chapters=(1,), url_code="222222", genres=["Action", "Drama"])

    assert client.get("/api/recommended").status_code == 400
    assert client.get("/api/recommended", params={"series_id": "missing"}).status_code == 404
    similar = client.get("/api/recommended", params={"series_id": series.id}).json()["series"]
    assert [s["title"] for s in similar] == ["Tower of God"]

    page = client.get("/series/solo-leveling-123456")
    assert "You may also like" in page.text
    assert "Tower of God" in page.text

    assert client.get("/api/feed/recommended").status_code == 401
    register(client)
    assert client.get("/api/feed/recommended").json()["series"] == []
    client.post("/api/history", json={"series_id": series.id, "chapter_number": 1})
    feed = client.get("/api/feed/recommended").json()["series"]
    assert [s["id"] for s in feed] == [other.id]


def test_unknown_series_and_chapter_are_404(client, series):
    assert client.get("/series/nothing-here-123456").status_code == 404
    assert client.get("/series/solo-leveling-123456/chapter-99").status_code == 404
    assert client.get("/series/solo-leveling-123456/extra-2").status_code == 404


def test_search_page(client, series):
    response = client.get("/search", params={"q": "solo", "genres": ["Action"]})
    assert response.status_code == 200
    assert "Solo Leveling" in response.text


def test_robots_and_sitemap(client, series):
    robots = client.get("/robots.txt")
    assert robots.text.strip().endswith("Sitemap: https://komic.test/sitemap.xml")

    sitemap = client.get("/sitemap.xml")
    assert sitemap.status_code == 200
    ns = {"sm": "http://www.sitemaps.org/schemas/sitemap/0.9"}
    locs = [el.text for el in ET.fromstring(sitemap.content).findall("sm:url/sm:loc", ns)]
    assert locs[0] == "https://komic.test"
    assert len(locs) == len(set(locs))


def test_chaptersxml_catalog(client, series):
    catalog = client.get("/api/chaptersxml").json()
    assert catalog[0]["url"] == "solo-leveling"
    assert len(catalog[0]["chapters"]) == 3


def test_register_login_logout(client):
    register(client)
    assert client.get("/settings").status_code == 200

    client.post("/logout", follow_redirects=False)
    client.cookies.clear()
    assert client.get("/settings", follow_redirects=False).status_code == 302

    bad = client.post("/login", data={"login": "reader1", "password": "nope"}, follow_redirects=False)
    assert bad.status_code == 401

    good = client.post(
        "/login",
        data={"login": "reader1", "password": "password123", "next": "/bookmarks"},
        follow_redirects=False,
    )
    assert good.status_code == 302
    assert good.headers["location"] == "/bookmarks"


def test_login_next_must_be_local(client):
    register(client)
    client.cookies.clear()
    response = client.post(
        "/login",
        data={"login": "reader1", "password": "password123", "next": "//evil.example"},
        follow_redirects=False,
    )
    assert response.headers["location"] == "/"


def test_register_mismatched_passwords(client):
    response = client.post(
        "/register",
        data={"name": "x_user", "email": "x@example.com", "password": "password123", "confirm_password": "nope"},
    )
    assert response.status_code == 400


def test_api_requires_login(client, series):
    response = client.get("/api/bookmarks")
    assert response.status_code == 401
    assert response.json()["detail"] == "Unauthorized"


def test_bookmark_api(client, series):
    register(client)

    assert client.post("/api/bookmarks", json={"series_id": series.id}).json()["bookmarked"]
    assert [b["title"] for b in client.get("/api/bookmarks").json()["bookmarks"]] == ["Solo Leveling"]
    assert client.delete(f"/api/bookmarks/{series.id}").json()["removed"] is True
    assert client.get("/api/bookmarks").json()["bookmarks"] == []
    assert client.post("/api/bookmarks", json={"series_id": "missing"}).status_code == 404


def test_rating_api(client, series):
    register(client)

    response = client.post("/api/rate", json={"series_id": series.id, "rating": 7})
    assert response.json()["average_rating"] == 7
    assert response.json()["rating_count"] == 1
    assert client.post("/api/rate", json={"series_id": series.id, "rating": 11}).status_code == 400


def test_chapter_visit_records_history(client, series):
    register(client)
    client.get("/series/solo-leveling-123456/chapter-2")

    history = client.get("/api/history").json()["history"]
    assert history[0]["last_chapter"] == 2.0
    assert client.delete("/api/history").json()["removed"] == 1


def test_add_view_api(client, series):
    response = client.post("/api/addview", json={"series_url": "solo-leveling", "chapter_number": 1})
    assert response.json()["series_total_views"] == 1
    assert client.post("/api/addview", json={"series_url": "nope", "chapter_number": 1}).status_code == 404


def test_messages_api(client, series):
    register(client)

    posted = client.post(f"/api/messages/series/{series.id}", json={"content": "Great read"}).json()
    message_id = posted["message"]["id"]
    assert posted["message"]["username"] == "reader1"

    client.post(f"/api/messages/series/{series.id}", json={"content": "Agreed", "parent_id": message_id})

    listing = client.get(f"/api/messages/series/{series.id}").json()
    assert listing["count"] == 2
    assert listing["messages"][0]["replies"][0]["content"] == "Agreed"

    reaction = client.post(f"/api/messages/series/{message_id}/react", json={"action": "likes"}).json()
    assert reaction == {"ok": True, "likes": 1, "dislikes": 0}

    assert client.get(f"/api/messages/forum/{series.id}").status_code == 404


def test_message_posting_is_rate_limited(client, series):
    register(client)
    client.app.state.rate_limits.general.max_requests = 1

    first = client.post(f"/api/messages/series/{series.id}", json={"content": "one"})
    second = client.post(f"/api/messages/series/{series.id}", json={"content": "two"})

    assert first.status_code == 200
    assert second.status_code == 429
    assert second.json()["type"] == "RATE_LIMIT_EXCEEDED"
    assert "Retry-After" in second.headers


def test_delete_account_with_messages_and_group(client, series, session):
    register(client)
    client.post(f"/api/messages/series/{series.id}", json={"content": "Great read"})
    assert client.post("/api/groups", json={"name": "Team Shadow"}).status_code == 201

    wrong = client.post("/settings/delete", data={"confirm_name": "someone"})
    assert wrong.status_code == 400

    response = client.post("/settings/delete", data={"confirm_name": "reader1"}, follow_redirects=False)
    assert response.status_code == 302
    assert client.get("/api/bookmarks").status_code == 401

    listing = client.get(f"/api/messages/series/{series.id}").json()
    assert listing["messages"][0]["content"] == "Great read"
    assert listing["messages"][0]["username"] is None

    session.expire_all()
    assert GroupService(session).get_by_slug("team-shadow").created_by is None


def test_admin_routes_require_admin(client):
    register(client)
    assert client.get("/api/admin/groups").status_code == 403


def test_admin_can_approve_group(client, make_user, session):
    owner = make_user("owner")
    group = GroupService(session).create_group(owner, "Team Shadow")
    make_user("boss", role="admin")
    client.post("/login", data={"login": "boss", "password": "password123"}, follow_redirects=False)

    pending = client.get("/api/admin/groups").json()
    assert [g["slug"] for g in pending["groups"]] == ["team-shadow"]

    assert client.post(f"/api/admin/groups/{group.id}/approve").status_code == 200
    assert client.post(f"/api/admin/groups/{group.id}/approve").status_code == 400
    assert [g["slug"] for g in client.get("/api/groups").json()["groups"]] == ["team-shadow"]


def test_group_api_and_chapter_upload(client, series, session, image_bytes):
    register(client, "uploader")
    created = client.post("/api/groups", json={"name": "Team Shadow"})
    assert created.status_code == 201
    group = GroupService(session).get_by_slug("team-shadow")
    group.status = "approved"
    session.add(group)
    session.commit()

    response = client.post(
        "/api/groups/team-shadow/chapter-submissions",
        data={"series_id": series.id, "chapter_number": "4"},
        files=[
            ("chapter_pages", ("1.png", image_bytes(), "image/png")),
            ("chapter_pages", ("2.png", image_bytes(), "image/png")),
        ],
    )
    assert response.status_code == 201
    assert response.json()["submission"]["page_count"] == 2
    assert "X-RateLimit-Remaining" in response.headers

    listed = client.get("/api/groups/team-shadow/chapter-submissions").json()["submissions"]
    assert listed[0]["chapter_number"] == "4"


def test_unreadable_upload_is_a_bad_request(client, series, session):
    register(client, "uploader")
    client.post("/api/groups", json={"name": "Team Shadow"})
    group = GroupService(session).get_by_slug("team-shadow")
    group.status = "approved"
    session.add(group)
    session.commit()

    response = client.post(
        "/api/groups/team-shadow/chapter-submissions",
        data={"series_id": series.id, "chapter_number": "4"},
        files=[("chapter_pages", ("1.png", b"not an image", "image/png"))],
    )
    assert response.status_code == 400
    assert "readable image" in response.json()["detail"]


def test_upload_endpoints_are_sync(client):
    upload_paths = {"/api/groups/{slug}/series-submissions", "/api/groups/{slug}/chapter-submissions"}
    endpoints = [
        route.endpoint
        for route in client.app.routes
        if getattr(route, "path", None) in upload_paths and "POST" in getattr(route, "methods", ())
    ]
    assert len(endpoints) == 2
    assert not any(inspect.iscoroutinefunction(endpoint) for endpoint in endpoints)


def test_media_route(client, test_config):
    path = test_config.media_dir / "komic" / "cover.webp"
    path.parent.mkdir(parents=True)
    path.write_bytes(b"webp")

    assert client.get("/media/komic/cover.webp").content == b"webp"
    assert client.get("/media/komic/missing.webp").status_code == 404


def test_uploads_are_served_from_the_apps_own_media_dir(
    test_config, test_db, series, session, image_bytes, tmp_path
):
    other = dataclasses.replace(test_config, storage=StorageConfig(media_dir=tmp_path / "other-media"))
    other_client = TestClient(create_app(other))
    register(other_client, "uploader")
    other_client.post("/api/groups", json={"name": "Team Shadow"})
    group = GroupService(session).get_by_slug("team-shadow")
    group.status = "approved"
    session.add(group)
    session.commit()

    response = other_client.post(
        "/api/groups/team-shadow/chapter-submissions",
        data={"series_id": series.id, "chapter_number": "4"},
        files=[("chapter_pages", ("1.png", image_bytes(), "image/png"))],
    )
    assert response.status_code == 201

    key = "komic/pending/chapters/team-shadow-solo-leveling-4/001.webp"
    assert (tmp_path / "other-media" / key).is_file()
    assert not (test_config.media_dir / key).exists()
    assert other_client.get(f"/media/{key}").status_code == 200


def test_sessions_are_signed_with_the_apps_own_key(client, test_config, test_db):
    register(client)
    assert client.get("/api/bookmarks").status_code == 200

    other = dataclasses.replace(
        test_config,
        site=dataclasses.replace(test_config.site, name="Other Komic"),
        auth=AuthConfig(secret_key="another-secret", session_days=30),
    )
    other_client = TestClient(create_app(other))
    other_client.cookies.update(client.cookies)

    assert other_client.get("/api/bookmarks").status_code == 401
    assert "Other Komic" in other_client.get("/").text


def test_cors_only_on_api(test_config, test_db):
    test_config.site.allowed_origins = ("https://komic.test",)
    cors_client = TestClient(create_app(test_config))
    headers = {"Origin": "https://komic.test"}

    api = cors_client.get("/api/chaptersxml", headers=headers)
    assert api.headers["access-control-allow-origin"] == "https://komic.test"

    page = cors_client.get("/robots.txt", headers=headers)
    assert "access-control-allow-origin" not in page.headers
