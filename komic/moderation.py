"""Admin moderation: approving and rejecting submissions and groups.

Approval publishes catalog rows and moves media from the pending prefix to
its final keys. Only pending items can be approved or rejected.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlmodel import Session, col, func, select

from .errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from .groups import GroupStatus
from .logging_config import get_logger
from .models import (
    Chapter,
    ChapterSubmission,
    GroupMember,
    ScanlationGroup,
    Series,
    SeriesSubmission,
    utcnow,
)
from .storage import MediaStore, generate_media_paths, page_filename
from .urls import generate_url_code, normalize_chapter_number, slugify_title

logger = get_logger(__name__)


def _percent(part: int, total: int) -> int:
    return round(part / total * 100) if total else 0


class ModerationService:
    def __init__(self, session: Session, store: MediaStore):
        self.session = session
        self.store = store

    def _count(self, model, *conditions) -> int:
        statement = select(func.count()).select_from(model)
        if conditions:
            statement = statement.where(*conditions)
        return self.session.exec(statement).one()

    # --- series submissions ---

    def _series_submission(self, submission_id: str) -> SeriesSubmission:
        submission = self.session.get(SeriesSubmission, submission_id)
        if submission is None:
            raise NotFoundError("Submission not found", id=submission_id)
        return submission

    def list_series_submissions(self, status: str = "pending") -> List[dict]:
        rows = self.session.exec(
            select(SeriesSubmission, ScanlationGroup)
            .join(ScanlationGroup, ScanlationGroup.id == SeriesSubmission.group_id)
            .where(SeriesSubmission.submission_status == status)
            .order_by(col(SeriesSubmission.created_at).desc())
        ).all()
        return [
            {**sub.model_dump(), "group_name": group.name, "group_slug": group.slug}
            for sub, group in rows
        ]

    def get_series_submission(self, submission_id: str) -> SeriesSubmission:
        return self._series_submission(submission_id)

    def series_stats(self, now: Optional[datetime] = None) -> dict:
        week_ago = (now or utcnow()) - timedelta(days=7)
        total = self._count(SeriesSubmission)
        approved = self._count(SeriesSubmission, SeriesSubmission.submission_status == "approved")
        return {
            "total_series": self._count(Series),
            "total_submissions": total,
            "pending_submissions": self._count(
                SeriesSubmission, SeriesSubmission.submission_status == "pending"
            ),
            "approved_submissions": approved,
            "rejected_submissions": self._count(
                SeriesSubmission, SeriesSubmission.submission_status == "rejected"
            ),
            "recent_series": self._count(Series, Series.created_at >= week_ago),
            "recent_submissions": self._count(SeriesSubmission, SeriesSubmission.created_at >= week_ago),
            "approval_rate": _percent(approved, total),
        }

    def approve_series(self, submission_id: str, admin_id: str) -> Series:
        submission = self._series_submission(submission_id)
        if submission.submission_status != "pending":
            raise InvalidStateError("Submission has already been processed")

        group = self.session.get(ScanlationGroup, submission.group_id)
        url = slugify_title(submission.title)

        cover_url = submission.cover_image_url
        if submission.cover_image_key:
            final_key = generate_media_paths("series", group.slug, url).final
            try:
                cover_url = self.store.move(submission.cover_image_key, final_key)
            except (OSError, ValueError) as exc:
                logger.error(f"Failed to move cover for '{submission.title}': {exc}")

        release_date = None
        if submission.release_year:
            release_date = datetime(int(submission.release_year), 1, 1, tzinfo=timezone.utc)

        series = Series(
            title=submission.title,
            url=url,
            url_code=generate_url_code(),
            alternative_titles=[submission.alternative_titles] if submission.alternative_titles else [],
            description=submission.description,
            status=submission.status,
            types=[submission.type] if submission.type else [],
            genres=[g.strip() for g in (submission.genres or "").split(",") if g.strip()],
            author=submission.author,
            artist=submission.artist,
            release_date=release_date,
            cover_image_url=cover_url,
            publishers=[],
            submitted_by=submission.group_id,
        )
        self.session.add(series)
        self.session.flush()

        submission.submission_status = "approved"
        submission.approved_by = admin_id
        submission.approved_series_id = series.id
        submission.cover_image_url = cover_url
        submission.updated_at = utcnow()
        self.session.add(submission)
        self.session.commit()
        self.session.refresh(series)
        logger.info(f"Approved series '{series.title}' ({series.url}-{series.url_code})")
        return series

    def reject_series(self, submission_id: str, reason: Optional[str]) -> SeriesSubmission:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Rejection reason is required", field="reason")
        submission = self._series_submission(submission_id)
        if submission.submission_status != "pending":
            raise InvalidStateError("Submission has already been processed")
        submission.submission_status = "rejected"
        submission.rejection_reason = reason
        submission.updated_at = utcnow()
        self.session.add(submission)
        self.session.commit()
        self.session.refresh(submission)
        logger.info(f"Rejected series submission '{submission.title}'")
        return submission

    # --- chapter submissions ---

    def _chapter_submission(self, submission_id: str) -> ChapterSubmission:
        submission = self.session.get(ChapterSubmission, submission_id)
        if submission is None:
            raise NotFoundError("Submission not found", id=submission_id)
        return submission

    def list_chapter_submissions(self, status: str = "pending") -> List[dict]:
        rows = self.session.exec(
            select(ChapterSubmission, Series, ScanlationGroup)
            .join(Series, Series.id == ChapterSubmission.series_id)
            .join(ScanlationGroup, ScanlationGroup.id == ChapterSubmission.group_id)
            .where(ChapterSubmission.status == status)
            .order_by(col(ChapterSubmission.created_at).desc())
        ).all()
        return [
            {
                **sub.model_dump(),
                "series_title": series.title,
                "series_url": series.url,
                "series_url_code": series.url_code,
                "group_name": group.name,
                "group_slug": group.slug,
            }
            for sub, series, group in rows
        ]

    def chapter_stats(self) -> dict:
        total = self._count(ChapterSubmission)
        approved = self._count(ChapterSubmission, ChapterSubmission.status == "approved")
        return {
            "total_chapters": self._count(Chapter),
            "total_submissions": total,
            "pending_submissions": self._count(ChapterSubmission, ChapterSubmission.status == "pending"),
            "approved_submissions": approved,
            "rejected_submissions": self._count(ChapterSubmission, ChapterSubmission.status == "rejected"),
            "approval_rate": _percent(approved, total),
        }

    def _move_chapter_media(
        self, submission: ChapterSubmission, final_prefix: str
    ) -> tuple[Optional[str], List[str], Optional[str]]:
        """Move start/pages/end to final keys; returns their new URLs."""
        source = submission.pages_path
        start_url = end_url = None
        if submission.start_image_url:
            start_url = self.store.move(f"{source}/start.webp", f"{final_prefix}/start.webp")
        pages = [
            self.store.move(f"{source}/{page_filename(i)}", f"{final_prefix}/{page_filename(i)}")
            for i in range(1, submission.page_count + 1)
        ]
        if submission.end_image_url:
            end_url = self.store.move(f"{source}/end.webp", f"{final_prefix}/end.webp")
        return start_url, pages, end_url

    def approve_chapter(
        self, submission_id: str, admin_id: str, review_notes: Optional[str] = None
    ) -> Chapter:
        submission = self._chapter_submission(submission_id)
        if submission.status != "pending":
            raise InvalidStateError("Submission is not pending")
        series = self.session.get(Series, submission.series_id)
        group = self.session.get(ScanlationGroup, submission.group_id)
        if series is None or group is None:
            raise NotFoundError("Submission references a missing series or group")

        number = float(normalize_chapter_number(submission.chapter_number))
        clash = self.session.exec(
            select(Chapter).where(
                Chapter.series_id == series.id,
                Chapter.chapter_number == number,
                Chapter.publisher == group.name,
            )
        ).first()
        if clash is not None:
            raise ConflictError(f"Chapter {submission.chapter_number} already published by {group.name}")

        final_prefix = generate_media_paths(
            "chapter", group.slug, series.url, submission.chapter_number
        ).final
        start_url, page_urls, end_url = None, [], None
        if submission.pages_path:
            try:
                start_url, page_urls, end_url = self._move_chapter_media(submission, final_prefix)
            except (OSError, ValueError) as exc:
                logger.error(
                    f"Failed to move chapter media for {series.title} #{submission.chapter_number}, "
                    f"keeping pending URLs: {exc}"
                )
                start_url = submission.start_image_url
                page_urls = list(submission.page_urls or [])
                end_url = submission.end_image_url
        else:
            start_url = submission.start_image_url
            page_urls = list(submission.page_urls or [])
            end_url = submission.end_image_url

        content = ([start_url] if start_url else []) + page_urls + ([end_url] if end_url else [])
        now = utcnow()
        chapter = Chapter(
            series_id=series.id,
            chapter_number=number,
            title=submission.chapter_title or series.title,
            content=content,
            publisher=group.name,
            published_at=now,
        )
        self.session.add(chapter)
        self.session.flush()

        series.last_update = now
        series.updated_at = now
        series.total_chapters = self._count(Chapter, Chapter.series_id == series.id)
        if group.name not in (series.publishers or []):
            series.publishers = [*(series.publishers or []), group.name]
        self.session.add(series)

        submission.status = "approved"
        submission.review_notes = review_notes
        submission.approved_chapter_id = chapter.id
        submission.updated_at = now
        self.session.add(submission)
        self.session.commit()
        self.session.refresh(chapter)
        logger.info(f"Published {series.title} chapter {submission.chapter_number} by {group.name}")
        return chapter

    def reject_chapter(self, submission_id: str, review_notes: Optional[str] = None) -> ChapterSubmission:
        submission = self._chapter_submission(submission_id)
        if submission.status != "pending":
            raise InvalidStateError("Submission is not pending")
        submission.status = "rejected"
        submission.review_notes = (review_notes or "").strip() or None
        submission.updated_at = utcnow()
        self.session.add(submission)
        self.session.commit()
        self.session.refresh(submission)
        return submission

    # --- groups ---

    def _group(self, group_id: str) -> ScanlationGroup:
        group = self.session.get(ScanlationGroup, group_id)
        if group is None:
            raise NotFoundError("Group not found", id=group_id)
        return group

    def list_groups(self, status: str = GroupStatus.PENDING.value) -> List[dict]:
        counts = dict(
            self.session.exec(
                select(GroupMember.group_id, func.count(GroupMember.id)).group_by(GroupMember.group_id)
            ).all()
        )
        groups = self.session.exec(
            select(ScanlationGroup)
            .where(ScanlationGroup.status == status)
            .order_by(col(ScanlationGroup.created_at).desc())
        ).all()
        return [{**g.model_dump(), "member_count": counts.get(g.id, 0)} for g in groups]

    def group_stats(self, now: Optional[datetime] = None) -> dict:
        month_ago = (now or utcnow()) - timedelta(days=30)
        total = self._count(ScanlationGroup)
        approved = self._count(ScanlationGroup, ScanlationGroup.status == GroupStatus.APPROVED.value)
        members = self._count(GroupMember)
        groups_with_members = self.session.exec(
            select(func.count(func.distinct(GroupMember.group_id)))
        ).one()
        return {
            "total_groups": total,
            "pending_groups": self._count(ScanlationGroup, ScanlationGroup.status == GroupStatus.PENDING.value),
            "approved_groups": approved,
            "rejected_groups": self._count(ScanlationGroup, ScanlationGroup.status == GroupStatus.REJECTED.value),
            "total_members": members,
            "recent_groups": self._count(ScanlationGroup, ScanlationGroup.created_at >= month_ago),
            "average_members_per_group": round(members / groups_with_members, 2) if groups_with_members else 0,
            "approval_rate": _percent(approved, total),
        }

    def approve_group(self, group_id: str) -> ScanlationGroup:
        group = self._group(group_id)
        if group.status != GroupStatus.PENDING.value:
            raise InvalidStateError("Group is not pending approval", current_status=group.status)
        group.status = GroupStatus.APPROVED.value
        group.updated_at = utcnow()
        self.session.add(group)
        self.session.commit()
        self.session.refresh(group)
        logger.info(f"Approved group {group.slug}")
        return group

    def reject_group(self, group_id: str, reason: Optional[str] = None) -> ScanlationGroup:
        group = self._group(group_id)
        if group.status != GroupStatus.PENDING.value:
            raise InvalidStateError("Group is not pending approval", current_status=group.status)
        group.status = GroupStatus.REJECTED.value
        group.rejection_reason = (reason or "").strip() or "No reason provided"
        group.updated_at = utcnow()
        self.session.add(group)
        self.session.commit()
        self.session.refresh(group)
        logger.info(f"Rejected group {group.slug}")
        return group
