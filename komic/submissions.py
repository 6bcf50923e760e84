"""Series and chapter submissions from scanlation groups.

Uploaded images are converted to WebP and stored under the pending media
prefix until an admin approves the submission (see moderation).
"""

from __future__ import annotations

import re
from typing import List, NamedTuple, Optional, Sequence

from sqlmodel import Session, col, select

from .config import UploadConfig
from .errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from .groups import GroupService, GroupStatus
from .logging_config import get_logger
from .models import ChapterSubmission, Chapter, ScanlationGroup, Series, SeriesSubmission
from .storage import ALLOWED_IMAGE_TYPES, MediaStore, convert_to_webp, generate_media_paths, page_filename
from .urls import format_chapter_number, slugify_title

logger = get_logger(__name__)

SERIES_STATUSES = ("ongoing", "completed", "hiatus", "cancelled")
SERIES_TYPES = ("manga", "manhwa", "manhua", "webtoon", "novel")


class Upload(NamedTuple):
    """An uploaded file, already read into memory."""

    filename: str
    content_type: str
    data: bytes


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _validate_image(upload: Upload, label: str, max_bytes: int) -> None:
    if len(upload.data) > max_bytes:
        raise ValidationError(
            f"{label} must be less than {max_bytes // (1024 * 1024)}MB", field=label
        )
    if upload.content_type not in ALLOWED_IMAGE_TYPES:
        raise ValidationError(f"{label} must be JPG, PNG, WebP, or GIF", field=label)


def _has_content(upload: Optional[Upload]) -> bool:
    return upload is not None and len(upload.data) > 0


def _convert(upload: Upload, kind: str, label: str) -> bytes:
    try:
        return convert_to_webp(upload.data, kind)
    except ValueError:
        raise ValidationError(f"{label} is not a readable image", field=label) from None


class SubmissionService:
    def __init__(self, session: Session, store: MediaStore, uploads: UploadConfig):
        self.session = session
        self.store = store
        self.limits = uploads
        self.groups = GroupService(session)

    def _submitting_group(self, group_slug: str, user_id: str) -> ScanlationGroup:
        group = self.groups.get_by_slug(group_slug)
        if group.status != GroupStatus.APPROVED.value:
            raise PermissionDeniedError("Scanlation group is not approved for submissions")
        self.groups.require_permission(group, user_id, "upload_content")
        return group

    def submit_series(
        self,
        user_id: str,
        group_slug: str,
        *,
        title: str,
        description: str,
        status: str,
        type: str,
        genres: str,
        alternative_titles: Optional[str] = None,
        author: Optional[str] = None,
        artist: Optional[str] = None,
        release_year: Optional[str] = None,
        source_url: Optional[str] = None,
        cover: Optional[Upload] = None,
    ) -> SeriesSubmission:
        title = _clean(title) or ""
        description = _clean(description) or ""
        genres = _clean(genres) or ""
        if not title:
            raise ValidationError("Title is required", field="title")
        if len(description) < 10:
            raise ValidationError("Description must be at least 10 characters", field="description")
        if status not in SERIES_STATUSES:
            raise ValidationError(f"Invalid status: {status}", field="status")
        if type not in SERIES_TYPES:
            raise ValidationError(f"Invalid type: {type}", field="type")
        if not genres:
            raise ValidationError("At least one genre is required", field="genres")
        source_url = _clean(source_url)
        if source_url and not re.match(r"^https?://\S+$", source_url):
            raise ValidationError("Invalid source URL", field="source_url")
        release_year = _clean(release_year)
        if release_year and not re.fullmatch(r"\d{4}", release_year):
            raise ValidationError("Release year must be a four digit year", field="release_year")

        group = self._submitting_group(group_slug, user_id)

        if self.session.exec(select(Series).where(Series.title == title)).first():
            raise ConflictError("A series with this title already exists")
        pending = self.session.exec(
            select(SeriesSubmission).where(
                SeriesSubmission.title == title,
                SeriesSubmission.submission_status == "pending",
            )
        ).first()
        if pending:
            raise ConflictError("A submission with this title is already pending review")

        cover_key = cover_url = None
        if _has_content(cover):
            _validate_image(cover, "Cover image", self.limits.max_cover_bytes)
            cover_key = generate_media_paths("series", group.slug, slugify_title(title)).pending
            cover_url = self.store.put(cover_key, _convert(cover, "cover", "Cover image"))

        submission = SeriesSubmission(
            title=title,
            alternative_titles=_clean(alternative_titles),
            description=description,
            status=status,
            type=type,
            genres=",".join(g.strip() for g in genres.split(",") if g.strip()),
            author=_clean(author),
            artist=_clean(artist),
            release_year=release_year,
            source_url=source_url,
            cover_image_key=cover_key,
            cover_image_url=cover_url,
            group_id=group.id,
            submitted_by_user=user_id,
        )
        self.session.add(submission)
        self.session.commit()
        self.session.refresh(submission)
        logger.info(f"Series submission '{title}' from group {group.slug}")
        return submission

    def submit_chapter(
        self,
        user_id: str,
        group_slug: str,
        *,
        series_id: str,
        chapter_number: str,
        pages: Sequence[Upload],
        chapter_title: Optional[str] = None,
        release_notes: Optional[str] = None,
        start_image: Optional[Upload] = None,
        end_image: Optional[Upload] = None,
    ) -> ChapterSubmission:
        try:
            number = float((chapter_number or "").strip())
        except ValueError:
            raise ValidationError("Chapter number is required", field="chapter_number") from None
        if number < 0:
            raise ValidationError("Chapter number must not be negative", field="chapter_number")
        chapter_key = format_chapter_number(number)

        group = self._submitting_group(group_slug, user_id)
        series = self.session.get(Series, series_id)
        if series is None:
            raise NotFoundError("Series not found", series_id=series_id)

        pages = [p for p in pages if _has_content(p)]
        if not pages:
            raise ValidationError("At least one chapter page is required", field="chapter_pages")
        for index, page in enumerate(pages, start=1):
            _validate_image(page, f"Page {index}", self.limits.max_page_bytes)
        extras = {"start": start_image, "end": end_image}
        for label, upload in extras.items():
            if _has_content(upload):
                _validate_image(upload, f"{label.capitalize()} image", self.limits.max_page_bytes)

        published = self.session.exec(
            select(Chapter).where(
                Chapter.series_id == series.id,
                Chapter.chapter_number == number,
                Chapter.publisher == group.name,
            )
        ).first()
        if published:
            raise ConflictError(f"Chapter {chapter_key} already exists for this series")
        pending = self.session.exec(
            select(ChapterSubmission).where(
                ChapterSubmission.series_id == series.id,
                ChapterSubmission.chapter_number == chapter_key,
                ChapterSubmission.status == "pending",
            )
        ).first()
        if pending:
            raise ConflictError(f"Chapter {chapter_key} is already pending review for this series")

        # Every image is converted before anything is written to the store.
        converted_pages = [
            _convert(page, "page", f"Page {index}") for index, page in enumerate(pages, start=1)
        ]
        converted_extras = {
            label: _convert(upload, "extra", f"{label.capitalize()} image")
            for label, upload in extras.items()
            if _has_content(upload)
        }

        pages_path = generate_media_paths("chapter", group.slug, series.url, chapter_key).pending
        page_urls = [
            self.store.put(f"{pages_path}/{page_filename(index)}", data)
            for index, data in enumerate(converted_pages, start=1)
        ]
        extra_urls = {
            label: self.store.put(f"{pages_path}/{label}.webp", data)
            for label, data in converted_extras.items()
        }

        submission = ChapterSubmission(
            series_id=series.id,
            group_id=group.id,
            submitted_by_user=user_id,
            chapter_number=chapter_key,
            chapter_title=_clean(chapter_title),
            release_notes=_clean(release_notes),
            page_count=len(page_urls),
            page_urls=page_urls,
            pages_path=pages_path,
            start_image_url=extra_urls.get("start"),
            end_image_url=extra_urls.get("end"),
        )
        self.session.add(submission)
        self.session.commit()
        self.session.refresh(submission)
        logger.info(
            f"Chapter submission {series.title} #{chapter_key} ({len(page_urls)} pages) "
            f"from group {group.slug}"
        )
        return submission

    # --- listings ---

    def _member_group(self, group_slug: str, user_id: str) -> ScanlationGroup:
        group = self.groups.get_by_slug(group_slug)
        if self.groups.get_membership(group.id, user_id) is None:
            raise PermissionDeniedError("Not a member of this group")
        return group

    def list_series_submissions(self, group_slug: str, user_id: str) -> List[SeriesSubmission]:
        group = self._member_group(group_slug, user_id)
        return list(
            self.session.exec(
                select(SeriesSubmission)
                .where(SeriesSubmission.group_id == group.id)
                .order_by(col(SeriesSubmission.created_at).desc())
            ).all()
        )

    def list_chapter_submissions(self, group_slug: str, user_id: str) -> List[dict]:
        group = self._member_group(group_slug, user_id)
        rows = self.session.exec(
            select(ChapterSubmission, Series)
            .join(Series, Series.id == ChapterSubmission.series_id)
            .where(ChapterSubmission.group_id == group.id)
            .order_by(col(ChapterSubmission.created_at).desc())
        ).all()
        return [
            {
                "id": sub.id,
                "series_id": sub.series_id,
                "chapter_number": sub.chapter_number,
                "series_title": series.title,
                "series_url": series.url,
                "series_url_code": series.url_code,
                "release_notes": sub.release_notes,
                "status": sub.status,
                "page_count": sub.page_count,
                "start_image_url": sub.start_image_url,
                "end_image_url": sub.end_image_url,
                "submitted_at": sub.created_at,
                "reviewed_at": sub.updated_at,
                "review_notes": sub.review_notes,
                "group_name": group.name,
                "approved_chapter_id": sub.approved_chapter_id,
            }
            for sub, series in rows
        ]

    def available_series(self) -> List[dict]:
        """Every published series, by title; groups may submit chapters to any of them."""
        rows = self.session.exec(select(Series).order_by(Series.title)).all()
        return [
            {"id": s.id, "title": s.title, "types": s.types, "status": s.status} for s in rows
        ]
