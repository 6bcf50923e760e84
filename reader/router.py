"""FastAPI router for the web reader: accounts, browse, series and chapter pages."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Query, Request
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel
from sqlmodel import Session

from komic.database import db_connection, get_session
from komic.errors import KomicError
from komic.logging_config import get_logger
from komic.models import User
from komic.ratelimit import rate_limit_response
from komic.urls import (
    chapter_path,
    format_chapter_number,
    parse_chapter_param,
    parse_series_param,
    series_path,
)

from . import auth as reader_auth
from . import repository as repo
from . import services
from .comments import build_comment_tree, count_comments

logger = get_logger(__name__)


# Paths: support PyInstaller bundle (sys._MEIPASS) and normal run
if getattr(sys, "frozen", False):
    _base = Path(sys._MEIPASS) / "reader"
else:
    _base = Path(__file__).resolve().parent
TEMPLATES_DIR = _base / "templates"
STATIC_DIR = _base / "static"

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
templates.env.globals.update(
    series_path=series_path,
    chapter_path=chapter_path,
    format_chapter=format_chapter_number,
)

router = APIRouter(tags=["reader"])

MESSAGE_SCOPES = ("series", "chapter")


def render(request: Request, name: str, user: Optional[User], status_code: int = 200, **context):
    """TemplateResponse with the values every page needs."""
    return templates.TemplateResponse(
        request,
        name,
        {"site_name": request.app.state.config.site.name, "user": user, **context},
        status_code=status_code,
    )


def _safe_next(target: str) -> str:
    target = (target or "").strip()
    if target.startswith("/") and not target.startswith("//"):
        return target
    return "/"


def _login_redirect(request: Request) -> RedirectResponse:
    return RedirectResponse(url=f"/login?next={request.url.path}", status_code=302)


# --- Login / Register / Logout ---


@router.get("/login", include_in_schema=False)
def login_get(request: Request, next: str = "", user: Optional[User] = Depends(reader_auth.get_current_user)):
    """Login page; already signed-in users go straight to their target."""
    if user is not None:
        return RedirectResponse(url=_safe_next(next), status_code=302)
    return render(request, "login.html", None, title="Log in", error=None, next=next)


@router.post("/login", include_in_schema=False)
def login_post(
    request: Request,
    login: str = Form(""),
    password: str = Form(""),
    next: str = Form(""),
    session: Session = Depends(get_session),
):
    """Validate credentials and set the session cookie on success."""
    user = reader_auth.authenticate(session, login, password)
    if user is None:
        return render(
            request,
            "login.html",
            None,
            status_code=401,
            title="Log in",
            error="Invalid username or password.",
            next=next,
        )
    response = RedirectResponse(url=_safe_next(next), status_code=302)
    reader_auth.set_session_cookie(response, user.id, request.app.state.config)
    logger.info(f"User {user.name} logged in")
    return response


@router.get("/register", include_in_schema=False)
def register_get(request: Request, user: Optional[User] = Depends(reader_auth.get_current_user)):
    if user is not None:
        return RedirectResponse(url="/", status_code=302)
    return render(request, "register.html", None, title="Create account", error=None, form={})


@router.post("/register", include_in_schema=False)
def register_post(
    request: Request,
    name: str = Form(""),
    email: str = Form(""),
    password: str = Form(""),
    confirm_password: str = Form(""),
    session: Session = Depends(get_session),
):
    form = {"name": name, "email": email}
    if password != confirm_password:
        return render(
            request, "register.html", None, status_code=400,
            title="Create account", error="Passwords do not match.", form=form,
        )
    try:
        user = reader_auth.register_user(session, name, email, password)
    except KomicError as exc:
        return render(
            request, "register.html", None, status_code=exc.status_code,
            title="Create account", error=exc.message, form=form,
        )
    response = RedirectResponse(url="/", status_code=302)
    reader_auth.set_session_cookie(response, user.id, request.app.state.config)
    logger.info(f"New account registered: {user.name}")
    return response


@router.post("/logout", include_in_schema=False)
def logout():
    """Clear session cookie and go home."""
    response = RedirectResponse(url="/", status_code=302)
    reader_auth.clear_session_cookie(response)
    return response


# --- Account settings ---


@router.get("/settings", include_in_schema=False)
def settings_get(request: Request, user: Optional[User] = Depends(reader_auth.get_current_user)):
    if user is None:
        return _login_redirect(request)
    return render(request, "settings.html", user, title="Settings", error=None, notice=None)


@router.post("/settings/password", include_in_schema=False)
def settings_password(
    request: Request,
    current_password: str = Form(""),
    new_password: str = Form(""),
    user: User = Depends(reader_auth.require_user),
    session: Session = Depends(get_session),
):
    try:
        reader_auth.change_password(session, user, current_password, new_password)
    except KomicError as exc:
        return render(
            request, "settings.html", user, status_code=exc.status_code,
            title="Settings", error=exc.message, notice=None,
        )
    return render(request, "settings.html", user, title="Settings", error=None, notice="Password updated.")


@router.post("/settings/username", include_in_schema=False)
def settings_username(
    request: Request,
    name: str = Form(""),
    user: User = Depends(reader_auth.require_user),
    session: Session = Depends(get_session),
):
    try:
        user = reader_auth.change_username(session, user, name)
    except KomicError as exc:
        return render(
            request, "settings.html", user, status_code=exc.status_code,
            title="Settings", error=exc.message, notice=None,
        )
    return render(request, "settings.html", user, title="Settings", error=None, notice="Username updated.")


@router.post("/settings/delete", include_in_schema=False)
def settings_delete(
    request: Request,
    confirm_name: str = Form(""),
    user: User = Depends(reader_auth.require_user),
    session: Session = Depends(get_session),
):
    """Delete the account after the user types their name."""
    if confirm_name != user.name:
        return render(
            request, "settings.html", user, status_code=400,
            title="Settings", error="Type your username to confirm.", notice=None,
        )
    name = user.name
    services.repository(session).delete_user_data(user)
    logger.info(f"Account deleted: {name}")
    response = RedirectResponse(url="/", status_code=302)
    reader_auth.clear_session_cookie(response)
    return response


# --- Browse ---


@router.get("/")
def home(request: Request, user: Optional[User] = Depends(reader_auth.get_current_user)):
    """Home: latest and trending, plus continue-reading and picks for signed-in users."""
    with db_connection() as conn:
        latest = repo.get_latest_series(conn)
        trending = repo.get_trending_series(conn)
        genres = repo.get_all_genres(conn)
        continue_reading = repo.get_continue_reading(conn, user.id) if user else []
        recommended = repo.get_recommended_for_user(conn, user.id) if user else []
    return render(
        request,
        "home.html",
        user,
        title=request.app.state.config.site.name,
        latest=latest,
        trending=trending,
        genres=genres,
        continue_reading=continue_reading,
        recommended=recommended,
    )


@router.get("/search")
def search(
    request: Request,
    q: str = "",
    genres: list[str] = Query(default=[]),
    status: str = "",
    min_rating: Optional[float] = None,
    sort: str = "update",
    page: int = 1,
    user: Optional[User] = Depends(reader_auth.get_current_user),
):
    """Search series by title with genre, status and rating filters."""
    with db_connection() as conn:
        results = repo.search_series(
            conn,
            q=q,
            genres=[g for g in genres if g],
            status=status or None,
            min_rating=min_rating,
            sort=sort,
            page=page,
        )
        all_genres = repo.get_all_genres(conn)
    return render(
        request,
        "search.html",
        user,
        title=f"Search: {q}" if q else "Search",
        q=q,
        selected_genres=genres,
        status=status,
        min_rating=min_rating,
        sort=sort,
        all_genres=all_genres,
        **results,
    )


@router.get("/genre/{genre}")
def genre_feed(request: Request, genre: str, user: Optional[User] = Depends(reader_auth.get_current_user)):
    with db_connection() as conn:
        series = repo.get_series_by_genre(conn, genre, limit=100)
    return render(request, "genre.html", user, title=genre, genre=genre, series=series)


@router.get("/bookmarks")
def bookmarks_page(request: Request, user: Optional[User] = Depends(reader_auth.get_current_user)):
    if user is None:
        return _login_redirect(request)
    with db_connection() as conn:
        bookmarks = repo.get_bookmarks(conn, user.id)
        continue_reading = repo.get_continue_reading(conn, user.id, limit=50)
    return render(
        request, "bookmarks.html", user,
        title="Bookmarks", bookmarks=bookmarks, continue_reading=continue_reading,
    )


# --- Series & chapter pages ---


@router.get("/series/{series_param}")
def series_page(
    request: Request,
    series_param: str,
    user: Optional[User] = Depends(reader_auth.get_current_user),
):
    """Series page with chapter list, rating summary and discussion."""
    parsed = parse_series_param(series_param)
    with db_connection() as conn:
        series = repo.get_series_page(conn, parsed.base_url, parsed.url_code)
        if not series:
            raise HTTPException(status_code=404, detail="Series not found")
        messages = repo.get_messages(conn, "series", series["id"], user.id if user else None)
        user_rating = repo.get_user_rating(conn, series["id"], user.id) if user else None
        bookmarked = repo.is_bookmarked(conn, user.id, series["id"]) if user else False
        similar = repo.get_similar_series(conn, series["id"], series["genres"])

    tree = build_comment_tree(messages)
    return render(
        request,
        "series.html",
        user,
        title=series["title"],
        series=series,
        comments=tree,
        comment_count=count_comments(tree),
        user_rating=user_rating,
        bookmarked=bookmarked,
        similar=similar,
    )


@router.get("/series/{series_param}/{chapter_param}")
def chapter_page(
    request: Request,
    series_param: str,
    chapter_param: str,
    group: Optional[str] = None,
    user: Optional[User] = Depends(reader_auth.get_current_user),
    session: Session = Depends(get_session),
):
    """Reader page for one chapter; records reading history for signed-in users."""
    number = parse_chapter_param(chapter_param)
    if number is None:
        raise HTTPException(status_code=404, detail="Chapter not found")
    parsed = parse_series_param(series_param)
    with db_connection() as conn:
        chapter = repo.get_chapter_page(conn, parsed.base_url, number, publisher=group)
        if not chapter:
            raise HTTPException(status_code=404, detail="Chapter not found")
        messages = repo.get_messages(conn, "chapter", chapter["id"], user.id if user else None)

    if user is not None:
        services.repository(session).record_history(user.id, chapter["series_id"], chapter["chapter_number"])

    tree = build_comment_tree(messages)
    return render(
        request,
        "chapter.html",
        user,
        title=f"{chapter['series']['title']} - Chapter {format_chapter_number(chapter['chapter_number'])}",
        chapter=chapter,
        series=chapter["series"],
        comments=tree,
        comment_count=count_comments(tree),
    )


# --- API: bookmarks ---


class BookmarkBody(BaseModel):
    series_id: str


@router.get("/api/bookmarks")
def api_bookmarks_list(user: User = Depends(reader_auth.require_user)):
    with db_connection() as conn:
        return {"bookmarks": repo.get_bookmarks(conn, user.id)}


@router.post("/api/bookmarks")
def api_bookmarks_add(
    body: BookmarkBody,
    user: User = Depends(reader_auth.require_user),
    session: Session = Depends(get_session),
):
    try:
        services.repository(session).add_bookmark(user.id, body.series_id)
    except KomicError as exc:
        raise services.http_error(exc) from exc
    return {"ok": True, "bookmarked": True}


@router.delete("/api/bookmarks/{series_id}")
def api_bookmarks_remove(
    series_id: str,
    user: User = Depends(reader_auth.require_user),
    session: Session = Depends(get_session),
):
    removed = services.repository(session).remove_bookmark(user.id, series_id)
    return {"ok": True, "removed": removed, "bookmarked": False}


@router.delete("/api/bookmarks")
def api_bookmarks_clear(user: User = Depends(reader_auth.require_user), session: Session = Depends(get_session)):
    """Remove all of the user's bookmarks."""
    removed = services.repository(session).clear_bookmarks(user.id)
    return {"ok": True, "removed": removed}


# --- API: ratings ---


class RatingBody(BaseModel):
    series_id: str
    rating: int


@router.post("/api/rate")
def api_rate(
    body: RatingBody,
    user: User = Depends(reader_auth.require_user),
    session: Session = Depends(get_session),
):
    try:
        services.repository(session).rate_series(user.id, body.series_id, body.rating)
    except KomicError as exc:
        raise services.http_error(exc) from exc
    with db_connection() as conn:
        series = conn.execute(
            "SELECT AVG(rating) AS average, COUNT(*) AS count FROM ratings WHERE series_id = ?",
            (body.series_id,),
        ).fetchone()
    return {
        "ok": True,
        "rating": body.rating,
        "average_rating": round(series["average"], 2),
        "rating_count": series["count"],
    }


# --- API: reading history ---


class HistoryBody(BaseModel):
    series_id: str
    chapter_number: float


@router.get("/api/history")
def api_history_list(user: User = Depends(reader_auth.require_user)):
    with db_connection() as conn:
        return {"history": repo.get_continue_reading(conn, user.id, limit=100)}


@router.post("/api/history")
def api_history_record(
    body: HistoryBody,
    user: User = Depends(reader_auth.require_user),
    session: Session = Depends(get_session),
):
    repository = services.repository(session)
    try:
        repository.get_series(body.series_id)
    except KomicError as exc:
        raise services.http_error(exc) from exc
    repository.record_history(user.id, body.series_id, body.chapter_number)
    return {"ok": True}


@router.delete("/api/history")
def api_history_clear(user: User = Depends(reader_auth.require_user), session: Session = Depends(get_session)):
    removed = services.repository(session).clear_history(user.id)
    return {"ok": True, "removed": removed}


# --- API: recommendations ---


@router.get("/api/recommended")
def api_recommended(series_id: str = ""):
    """Series similar to the given one."""
    if not series_id:
        raise HTTPException(status_code=400, detail="Missing series ID")
    with db_connection() as conn:
        genres = repo.get_series_genres(conn, series_id)
        if genres is None:
            raise HTTPException(status_code=404, detail="Series not found")
        return {"series": repo.get_similar_series(conn, series_id, genres)}


@router.get("/api/feed/recommended")
def api_feed_recommended(user: User = Depends(reader_auth.require_user)):
    with db_connection() as conn:
        return {"series": repo.get_recommended_for_user(conn, user.id)}


# --- API: views ---


class ViewBody(BaseModel):
    series_url: str
    chapter_number: float


@router.post("/api/addview")
def api_add_view(body: ViewBody, session: Session = Depends(get_session)):
    """Count one chapter view for the series and the chapter."""
    try:
        counts = services.repository(session).record_view(body.series_url, body.chapter_number)
    except KomicError as exc:
        raise services.http_error(exc) from exc
    return {"ok": True, **counts}


# --- API: messages ---


class MessageBody(BaseModel):
    content: str
    parent_id: Optional[str] = None


class ReactionBody(BaseModel):
    action: str


def _check_scope(scope: str) -> None:
    if scope not in MESSAGE_SCOPES:
        raise HTTPException(status_code=404, detail="Not found")


@router.get("/api/messages/{scope}/{target_id}")
def api_messages_list(
    scope: str,
    target_id: str,
    user: Optional[User] = Depends(reader_auth.get_current_user),
):
    """Discussion for a series or chapter as a reply tree."""
    _check_scope(scope)
    with db_connection() as conn:
        messages = repo.get_messages(conn, scope, target_id, user.id if user else None)
    tree = build_comment_tree(messages)
    return {"messages": tree, "count": count_comments(tree)}


@router.post("/api/messages/{scope}/{target_id}")
def api_messages_post(
    request: Request,
    scope: str,
    target_id: str,
    body: MessageBody,
    user: User = Depends(reader_auth.require_user),
    session: Session = Depends(get_session),
):
    _check_scope(scope)
    limit = request.app.state.rate_limits.general.check(request, user.id)
    if limit.is_limited:
        return rate_limit_response(limit, "Too many messages, please slow down")
    try:
        message = services.repository(session).post_message(
            scope, target_id, user.id, body.content, body.parent_id
        )
    except KomicError as exc:
        raise services.http_error(exc) from exc
    limit.increment()
    return {"ok": True, "message": {**message.model_dump(), "username": user.name, "replies": []}}


@router.post("/api/messages/{scope}/{message_id}/react")
def api_messages_react(
    scope: str,
    message_id: str,
    body: ReactionBody,
    user: User = Depends(reader_auth.require_user),
    session: Session = Depends(get_session),
):
    """Like/dislike toggle."""
    _check_scope(scope)
    try:
        message = services.repository(session).toggle_reaction(scope, message_id, user.id, body.action)
    except KomicError as exc:
        raise services.http_error(exc) from exc
    return {"ok": True, "likes": message.likes, "dislikes": message.dislikes}
