"""Admin moderation: dashboard page and approve/reject APIs. Admin role only."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from komic.errors import KomicError
from komic.models import User
from komic.moderation import ModerationService

from . import auth as reader_auth
from . import services
from .router import render

router = APIRouter(tags=["admin"])


class RejectBody(BaseModel):
    reason: Optional[str] = None


class ReviewBody(BaseModel):
    review_notes: Optional[str] = None


@router.get("/admin")
def admin_page(
    request: Request,
    user: User = Depends(reader_auth.require_admin),
    moderation: ModerationService = Depends(services.moderation_service),
):
    """Moderation dashboard: stats and every pending queue."""
    return render(
        request,
        "admin.html",
        user,
        title="Moderation",
        series_stats=moderation.series_stats(),
        chapter_stats=moderation.chapter_stats(),
        group_stats=moderation.group_stats(),
        series_submissions=moderation.list_series_submissions("pending"),
        chapter_submissions=moderation.list_chapter_submissions("pending"),
        groups=moderation.list_groups("pending"),
    )


# --- Series submissions ---


@router.get("/api/admin/series-submissions")
def api_series_submissions(
    status: str = "pending",
    user: User = Depends(reader_auth.require_admin),
    moderation: ModerationService = Depends(services.moderation_service),
):
    return {"submissions": moderation.list_series_submissions(status)}


@router.get("/api/admin/series-submissions/stats")
def api_series_stats(
    user: User = Depends(reader_auth.require_admin),
    moderation: ModerationService = Depends(services.moderation_service),
):
    return moderation.series_stats()


@router.get("/api/admin/series-submissions/{submission_id}")
def api_series_submission(
    submission_id: str,
    user: User = Depends(reader_auth.require_admin),
    moderation: ModerationService = Depends(services.moderation_service),
):
    try:
        return moderation.get_series_submission(submission_id).model_dump()
    except KomicError as exc:
        raise services.http_error(exc) from exc


@router.post("/api/admin/series-submissions/{submission_id}/approve")
def api_series_approve(
    submission_id: str,
    user: User = Depends(reader_auth.require_admin),
    moderation: ModerationService = Depends(services.moderation_service),
):
    """Publish the submitted series."""
    try:
        series = moderation.approve_series(submission_id, user.id)
    except KomicError as exc:
        raise services.http_error(exc) from exc
    return {
        "message": "Series approved",
        "series": {"id": series.id, "title": series.title, "url": series.url, "url_code": series.url_code},
    }


@router.post("/api/admin/series-submissions/{submission_id}/reject")
def api_series_reject(
    submission_id: str,
    body: RejectBody,
    user: User = Depends(reader_auth.require_admin),
    moderation: ModerationService = Depends(services.moderation_service),
):
    try:
        moderation.reject_series(submission_id, body.reason)
    except KomicError as exc:
        raise services.http_error(exc) from exc
    return {"message": "Series submission rejected"}


# --- Chapter submissions ---


@router.get("/api/admin/chapter-submissions")
def api_chapter_submissions(
    status: str = "pending",
    user: User = Depends(reader_auth.require_admin),
    moderation: ModerationService = Depends(services.moderation_service),
):
    return {"submissions": moderation.list_chapter_submissions(status)}


@router.get("/api/admin/chapter-submissions/stats")
def api_chapter_stats(
    user: User = Depends(reader_auth.require_admin),
    moderation: ModerationService = Depends(services.moderation_service),
):
    return moderation.chapter_stats()


@router.post("/api/admin/chapter-submissions/{submission_id}/approve")
def api_chapter_approve(
    submission_id: str,
    body: ReviewBody,
    user: User = Depends(reader_auth.require_admin),
    moderation: ModerationService = Depends(services.moderation_service),
):
    """Publish the chapter and move its pages out of the pending prefix."""
    try:
        chapter = moderation.approve_chapter(
            submission_id, user.id, body.review_notes
        )
    except KomicError as exc:
        raise services.http_error(exc) from exc
    return {
        "message": "Chapter approved",
        "chapter": {
            "id": chapter.id,
            "chapter_number": chapter.chapter_number,
            "publisher": chapter.publisher,
            "pages": len(chapter.content),
        },
    }


@router.post("/api/admin/chapter-submissions/{submission_id}/reject")
def api_chapter_reject(
    submission_id: str,
    body: ReviewBody,
    user: User = Depends(reader_auth.require_admin),
    moderation: ModerationService = Depends(services.moderation_service),
):
    try:
        moderation.reject_chapter(submission_id, body.review_notes)
    except KomicError as exc:
        raise services.http_error(exc) from exc
    return {"message": "Chapter submission rejected"}


# --- Groups ---


@router.get("/api/admin/groups")
def api_groups(
    status: str = "pending",
    user: User = Depends(reader_auth.require_admin),
    moderation: ModerationService = Depends(services.moderation_service),
):
    return {"groups": moderation.list_groups(status)}


@router.get("/api/admin/groups/stats")
def api_group_stats(
    user: User = Depends(reader_auth.require_admin),
    moderation: ModerationService = Depends(services.moderation_service),
):
    return moderation.group_stats()


@router.post("/api/admin/groups/{group_id}/approve")
def api_group_approve(
    group_id: str,
    user: User = Depends(reader_auth.require_admin),
    moderation: ModerationService = Depends(services.moderation_service),
):
    try:
        group = moderation.approve_group(group_id)
    except KomicError as exc:
        raise services.http_error(exc) from exc
    return {"message": "Group approved", "group": {"id": group.id, "slug": group.slug, "status": group.status}}


@router.post("/api/admin/groups/{group_id}/reject")
def api_group_reject(
    group_id: str,
    body: RejectBody,
    user: User = Depends(reader_auth.require_admin),
    moderation: ModerationService = Depends(services.moderation_service),
):
    try:
        group = moderation.reject_group(group_id, body.reason)
    except KomicError as exc:
        raise services.http_error(exc) from exc
    return {
        "message": "Group rejected",
        "group": {"id": group.id, "slug": group.slug, "status": group.status, "reason": group.rejection_reason},
    }
