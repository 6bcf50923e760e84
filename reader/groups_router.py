"""Scanlation group pages and APIs: membership, invitations and submissions."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlmodel import Session

from komic.database import get_session
from komic.errors import KomicError
from komic.logging_config import get_logger
from komic.models import User
from komic.ratelimit import check_dual, rate_limit_headers, rate_limit_response
from komic.submissions import SubmissionService

from . import auth as reader_auth
from . import services
from .router import render

logger = get_logger(__name__)

router = APIRouter(tags=["groups"])


# --- Pages ---


@router.get("/groups")
def groups_page(
    request: Request,
    user: Optional[User] = Depends(reader_auth.get_current_user),
    session: Session = Depends(get_session),
):
    """Approved groups, plus the user's own groups and pending invitations."""
    groups = services.group_service(session)
    return render(
        request,
        "groups.html",
        user,
        title="Scanlation groups",
        groups=groups.list_public_groups(),
        my_groups=groups.list_user_groups(user.id) if user else [],
        invitations=groups.list_invitations(user) if user else [],
    )


@router.get("/groups/{slug}")
def group_page(
    request: Request,
    slug: str,
    user: Optional[User] = Depends(reader_auth.get_current_user),
    session: Session = Depends(get_session),
    submissions: SubmissionService = Depends(services.submission_service),
):
    groups = services.group_service(session)
    try:
        group = groups.group_detail(slug, user.id if user else None)
    except KomicError as exc:
        raise services.http_error(exc) from exc

    members, series_submissions, chapter_submissions, available = [], [], [], []
    if group["user_role"] is not None:
        members = groups.list_members(slug, user.id)
        series_submissions = [s.model_dump() for s in submissions.list_series_submissions(slug, user.id)]
        chapter_submissions = submissions.list_chapter_submissions(slug, user.id)
        available = submissions.available_series()
    return render(
        request,
        "group.html",
        user,
        title=group["name"],
        group=group,
        members=members,
        series_submissions=series_submissions,
        chapter_submissions=chapter_submissions,
        available_series=available,
    )


# --- API: groups ---


class GroupCreate(BaseModel):
    name: str
    description: Optional[str] = None
    website_url: Optional[str] = None
    discord_url: Optional[str] = None


class GroupUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    website_url: Optional[str] = None
    discord_url: Optional[str] = None
    logo_url: Optional[str] = None


class MemberRoleUpdate(BaseModel):
    role: str


class InvitationCreate(BaseModel):
    role: str
    email: Optional[str] = None
    user_id: Optional[str] = None


@router.get("/api/groups")
def api_groups_public(limit: int = 50, session: Session = Depends(get_session)):
    return {"groups": services.group_service(session).list_public_groups(limit=min(limit, 200))}


@router.post("/api/groups", status_code=201)
def api_groups_create(
    body: GroupCreate,
    user: User = Depends(reader_auth.require_user),
    session: Session = Depends(get_session),
):
    """Create a group; it stays pending until an admin approves it."""
    try:
        group = services.group_service(session).create_group(
            user, body.name, body.description, body.website_url, body.discord_url
        )
    except KomicError as exc:
        raise services.http_error(exc) from exc
    return {"message": "Group created and pending approval", "group": group.model_dump()}


@router.get("/api/groups/mine")
def api_groups_mine(user: User = Depends(reader_auth.require_user), session: Session = Depends(get_session)):
    return {"groups": services.group_service(session).list_user_groups(user.id)}


@router.get("/api/groups/{slug}")
def api_group_detail(
    slug: str,
    user: Optional[User] = Depends(reader_auth.get_current_user),
    session: Session = Depends(get_session),
):
    try:
        return services.group_service(session).group_detail(slug, user.id if user else None)
    except KomicError as exc:
        raise services.http_error(exc) from exc


@router.patch("/api/groups/{slug}")
def api_group_update(
    slug: str,
    body: GroupUpdate,
    user: User = Depends(reader_auth.require_user),
    session: Session = Depends(get_session),
):
    try:
        group = services.group_service(session).update_group(
            slug, user.id, **body.model_dump(exclude_unset=True)
        )
    except KomicError as exc:
        raise services.http_error(exc) from exc
    return {"group": group.model_dump()}


@router.get("/api/groups/{slug}/members")
def api_group_members(
    slug: str,
    user: User = Depends(reader_auth.require_user),
    session: Session = Depends(get_session),
):
    try:
        return {"members": services.group_service(session).list_members(slug, user.id)}
    except KomicError as exc:
        raise services.http_error(exc) from exc


@router.patch("/api/groups/{slug}/members/{member_id}")
def api_group_member_role(
    slug: str,
    member_id: str,
    body: MemberRoleUpdate,
    user: User = Depends(reader_auth.require_user),
    session: Session = Depends(get_session),
):
    try:
        membership = services.group_service(session).change_member_role(
            slug, user.id, member_id, body.role
        )
    except KomicError as exc:
        raise services.http_error(exc) from exc
    return {"user_id": membership.user_id, "role": membership.role}


@router.delete("/api/groups/{slug}/members/{member_id}")
def api_group_member_remove(
    slug: str,
    member_id: str,
    user: User = Depends(reader_auth.require_user),
    session: Session = Depends(get_session),
):
    try:
        services.group_service(session).remove_member(slug, user.id, member_id)
    except KomicError as exc:
        raise services.http_error(exc) from exc
    return {"ok": True}


# --- API: invitations ---


@router.post("/api/groups/{slug}/invitations", status_code=201)
def api_group_invite(
    slug: str,
    body: InvitationCreate,
    user: User = Depends(reader_auth.require_user),
    session: Session = Depends(get_session),
):
    try:
        invitation = services.group_service(session).invite(
            slug, user.id, body.role, email=body.email, user_id=body.user_id
        )
    except KomicError as exc:
        raise services.http_error(exc) from exc
    return {
        "message": "Invitation created",
        "invitation": {
            "id": invitation.id,
            "email": invitation.email,
            "user_id": invitation.user_id,
            "role": invitation.role,
            "token": invitation.token,
            "expires_at": invitation.expires_at,
        },
    }


@router.get("/api/invitations")
def api_invitations(user: User = Depends(reader_auth.require_user), session: Session = Depends(get_session)):
    return {"invitations": services.group_service(session).list_invitations(user)}


@router.post("/api/invitations/{token}/accept")
def api_invitation_accept(
    token: str,
    user: User = Depends(reader_auth.require_user),
    session: Session = Depends(get_session),
):
    try:
        return services.group_service(session).accept_invitation(token, user)
    except KomicError as exc:
        raise services.http_error(exc) from exc


@router.post("/api/invitations/{token}/decline")
def api_invitation_decline(
    token: str,
    user: User = Depends(reader_auth.require_user),
    session: Session = Depends(get_session),
):
    try:
        return services.group_service(session).decline_invitation(token, user)
    except KomicError as exc:
        raise services.http_error(exc) from exc


# --- API: submissions ---


@router.get("/api/submissions/series")
def api_available_series(
    user: User = Depends(reader_auth.require_user),
    submissions: SubmissionService = Depends(services.submission_service),
):
    """Series a group can submit chapters for."""
    return {"series": submissions.available_series()}


@router.get("/api/groups/{slug}/series-submissions")
def api_group_series_submissions(
    slug: str,
    user: User = Depends(reader_auth.require_user),
    submissions: SubmissionService = Depends(services.submission_service),
):
    try:
        rows = submissions.list_series_submissions(slug, user.id)
    except KomicError as exc:
        raise services.http_error(exc) from exc
    return {"submissions": [row.model_dump() for row in rows]}


@router.get("/api/groups/{slug}/chapter-submissions")
def api_group_chapter_submissions(
    slug: str,
    user: User = Depends(reader_auth.require_user),
    submissions: SubmissionService = Depends(services.submission_service),
):
    try:
        return {"submissions": submissions.list_chapter_submissions(slug, user.id)}
    except KomicError as exc:
        raise services.http_error(exc) from exc


@router.post("/api/groups/{slug}/series-submissions", status_code=201)
def api_submit_series(
    request: Request,
    slug: str,
    title: str = Form(""),
    description: str = Form(""),
    status: str = Form(""),
    type: str = Form(""),
    genres: str = Form(""),
    alternative_titles: Optional[str] = Form(None),
    author: Optional[str] = Form(None),
    artist: Optional[str] = Form(None),
    release_year: Optional[str] = Form(None),
    source_url: Optional[str] = Form(None),
    cover_image: Optional[UploadFile] = File(None),
    user: User = Depends(reader_auth.require_user),
    submissions: SubmissionService = Depends(services.submission_service),
):
    """Submit a new series for review, with an optional cover image."""
    limits = request.app.state.rate_limits
    limit = check_dual(request, limits.series_submission, limits.series_submission_by_ip, user.id)
    if limit.is_blocked:
        logger.warning(f"Series submission rate limit hit by {user.name}")
        return rate_limit_response(limit.blocking, "Too many series submissions, try again later")

    cover = services.read_upload(cover_image)
    try:
        submission = submissions.submit_series(
            user.id,
            slug,
            title=title,
            description=description,
            status=status,
            type=type,
            genres=genres,
            alternative_titles=alternative_titles,
            author=author,
            artist=artist,
            release_year=release_year,
            source_url=source_url,
            cover=cover,
        )
    except KomicError as exc:
        raise services.http_error(exc) from exc
    limit.increment()
    return JSONResponse(
        {
            "message": "Series submitted for review",
            "submission": {"id": submission.id, "title": submission.title, "status": "pending"},
        },
        status_code=201,
        headers=rate_limit_headers(limit.user_limit),
    )


@router.post("/api/groups/{slug}/chapter-submissions", status_code=201)
def api_submit_chapter(
    request: Request,
    slug: str,
    series_id: str = Form(""),
    chapter_number: str = Form(""),
    chapter_title: Optional[str] = Form(None),
    release_notes: Optional[str] = Form(None),
    chapter_pages: List[UploadFile] = File(default=[]),
    start_image: Optional[UploadFile] = File(None),
    end_image: Optional[UploadFile] = File(None),
    user: User = Depends(reader_auth.require_user),
    submissions: SubmissionService = Depends(services.submission_service),
):
    """Upload a chapter's pages for review."""
    if not series_id:
        raise HTTPException(status_code=400, detail="Series is required")
    limits = request.app.state.rate_limits
    limit = check_dual(request, limits.chapter_upload, limits.chapter_upload_by_ip, user.id)
    if limit.is_blocked:
        logger.warning(f"Chapter upload rate limit hit by {user.name}")
        return rate_limit_response(limit.blocking, "Too many chapter uploads, try again later")

    pages = services.read_uploads(chapter_pages)
    start = services.read_upload(start_image)
    end = services.read_upload(end_image)
    try:
        submission = submissions.submit_chapter(
            user.id,
            slug,
            series_id=series_id,
            chapter_number=chapter_number,
            pages=pages,
            chapter_title=chapter_title,
            release_notes=release_notes,
            start_image=start,
            end_image=end,
        )
    except KomicError as exc:
        raise services.http_error(exc) from exc
    limit.increment()
    return JSONResponse(
        {
            "message": "Chapter submitted for review",
            "submission": {
                "id": submission.id,
                "chapter_number": submission.chapter_number,
                "page_count": submission.page_count,
                "status": submission.status,
            },
        },
        status_code=201,
        headers=rate_limit_headers(limit.user_limit),
    )
