"""Tests for series and chapter submissions."""

import pytest

from komic.config import UploadConfig
from komic.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from komic.groups import GroupService
from komic.models import GroupMember
from komic.storage import MediaStore
from komic.submissions import SubmissionService, Upload


@pytest.fixture
def store(tmp_path):
    return MediaStore(tmp_path / "media")


@pytest.fixture
def service(session, store):
    return SubmissionService(session, store, UploadConfig())


@pytest.fixture
def uploader(make_user):
    return make_user("uploader")


@pytest.fixture
def group(session, uploader):
    group = GroupService(session).create_group(uploader, "Team Shadow")
    group.status = "approved"
    session.add(group)
    session.commit()
    return group


@pytest.fixture
def png(image_bytes):
    def _make(name="page.png", **kwargs):
        return Upload(name, "image/png", image_bytes(**kwargs))

    return _make


def series_form(**overrides):
    form = {
        "title": "Night Walker",
        "description": "A long enough description.",
        "status": "ongoing",
        "type": "manhwa",
        "genres": "Action, Fantasy ,",
    }
    form.update(overrides)
    return form


def test_submit_series_with_cover(service, group, uploader, store, png):
    submission = service.submit_series(
        uploader.id, "team-shadow", cover=png("cover.png", size=(800, 1200)), **series_form()
    )

    assert submission.submission_status == "pending"
    assert submission.genres == "Action,Fantasy"
    assert submission.cover_image_key == "komic/pending/series/team-shadow-night-walker.webp"
    assert submission.cover_image_url == "/media/" + submission.cover_image_key
    assert store.exists(submission.cover_image_key)


@pytest.mark.parametrize(
    "overrides",
    [
        {"title": "  "},
        {"description": "short"},
        {"status": "paused"},
        {"type": "comic"},
        {"genres": ""},
        {"source_url": "not a url"},
        {"release_year": "20x5"},
    ],
)
def test_submit_series_validation(service, group, uploader, overrides):
    with pytest.raises(ValidationError):
        service.submit_series(uploader.id, "team-shadow", **series_form(**overrides))


def test_cover_must_be_an_allowed_image(service, group, uploader):
    bogus = Upload("cover.pdf", "application/pdf", b"%PDF")
    with pytest.raises(ValidationError):
        service.submit_series(uploader.id, "team-shadow", cover=bogus, **series_form())


def test_duplicate_titles_conflict(service, group, uploader, make_series):
    service.submit_series(uploader.id, "team-shadow", **series_form())
    with pytest.raises(ConflictError):
        service.submit_series(uploader.id, "team-shadow", **series_form())

    make_series("Published Title")
    with pytest.raises(ConflictError):
        service.submit_series(uploader.id, "team-shadow", **series_form(title="Published Title"))


def test_unapproved_group_cannot_submit(service, group, uploader, session):
    group.status = "pending"
    session.add(group)
    session.commit()

    with pytest.raises(PermissionDeniedError):
        service.submit_series(uploader.id, "team-shadow", **series_form())


def test_plain_members_cannot_submit(service, group, make_user, session):
    member = make_user("member")
    session.add(GroupMember(group_id=group.id, user_id=member.id, role="member"))
    session.commit()

    with pytest.raises(PermissionDeniedError):
        service.submit_series(member.id, "team-shadow", **series_form())


def test_submit_chapter_stores_pages_in_order(service, group, uploader, store, make_series, png):
    series = make_series(chapters=(1,))

    submission = service.submit_chapter(
        uploader.id,
        "team-shadow",
        series_id=series.id,
        chapter_number="2.50",
        pages=[png("a.png"), png("b.png"), Upload("empty.png", "image/png", b"")],
        start_image=png("start.png"),
    )

    prefix = "komic/pending/chapters/team-shadow-solo-leveling-2.5"
    assert submission.chapter_number == "2.5"
    assert submission.page_count == 2
    assert submission.pages_path == prefix
    assert submission.page_urls == [f"/media/{prefix}/001.webp", f"/media/{prefix}/002.webp"]
    assert submission.start_image_url == f"/media/{prefix}/start.webp"
    assert submission.end_image_url is None
    assert store.exists(f"{prefix}/002.webp")


def test_submit_chapter_validation(service, group, uploader, make_series, png):
    series = make_series(chapters=(1,))
    submit = lambda **kw: service.submit_chapter(uploader.id, "team-shadow", **kw)

    with pytest.raises(ValidationError):
        submit(series_id=series.id, chapter_number="abc", pages=[png()])
    with pytest.raises(ValidationError):
        submit(series_id=series.id, chapter_number="-1", pages=[png()])
    with pytest.raises(ValidationError):
        submit(series_id=series.id, chapter_number="2", pages=[])
    with pytest.raises(NotFoundError):
        submit(series_id="missing", chapter_number="2", pages=[png()])


def test_unreadable_page_writes_nothing(service, group, uploader, store, make_series, png):
    series = make_series(chapters=(1,))

    with pytest.raises(ValidationError) as excinfo:
        service.submit_chapter(
            uploader.id,
            "team-shadow",
            series_id=series.id,
            chapter_number="5",
            pages=[png("1.png"), Upload("2.png", "image/png", b"not an image")],
        )

    assert "Page 2" in excinfo.value.message
    assert not store.exists("komic/pending/chapters/team-shadow-solo-leveling-5/001.webp")
    assert service.list_chapter_submissions("team-shadow", uploader.id) == []


def test_unreadable_cover_is_rejected(service, group, uploader):
    with pytest.raises(ValidationError):
        service.submit_series(
            uploader.id, "team-shadow", cover=Upload("c.png", "image/png", b"garbage"), **series_form()
        )


def test_submit_chapter_conflicts(service, group, uploader, make_series, png):
    series = make_series(chapters=(1,), publisher="Team Shadow")

    with pytest.raises(ConflictError):
        service.submit_chapter(
            uploader.id, "team-shadow", series_id=series.id, chapter_number="1", pages=[png()]
        )

    service.submit_chapter(
        uploader.id, "team-shadow", series_id=series.id, chapter_number="2", pages=[png()]
    )
    with pytest.raises(ConflictError):
        service.submit_chapter(
            uploader.id, "team-shadow", series_id=series.id, chapter_number="2.0", pages=[png()]
        )


def test_group_listings(service, group, uploader, make_user, make_series, png):
    series = make_series(chapters=())
    service.submit_series(uploader.id, "team-shadow", **series_form())
    service.submit_chapter(
        uploader.id, "team-shadow", series_id=series.id, chapter_number="1", pages=[png()]
    )

    assert [s.title for s in service.list_series_submissions("team-shadow", uploader.id)] == ["Night Walker"]
    chapters = service.list_chapter_submissions("team-shadow", uploader.id)
    assert chapters[0]["series_title"] == "Solo Leveling"
    assert chapters[0]["group_name"] == "Team Shadow"

    outsider = make_user("outsider")
    with pytest.raises(PermissionDeniedError):
        service.list_series_submissions("team-shadow", outsider.id)

    assert [s["title"] for s in service.available_series()] == ["Solo Leveling"]
