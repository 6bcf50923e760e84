"""FastAPI application for Komic.

Besides the reader routers this module serves:
- GET /sitemap.xml        (backdating sitemap, see komic.sitemap)
- GET /robots.txt
- GET /api/chaptersxml    (catalog JSON the sitemap generator consumes)
- GET /media/{key}        (objects from the local media store)
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from .cache import TTLCache
from .config import KomicConfig, get_config
from .database import db_connection
from .errors import KomicError
from .logging_config import get_logger
from .ratelimit import RateLimitRegistry
from .sitemap import SitemapGenerator, render_robots_txt, render_sitemap_xml
from .storage import MediaStore
from .urls import parse_series_param, series_path

from reader import admin_router, groups_router, router as reader_router
from reader import repository as reader_repo
from reader.router import STATIC_DIR, render

logger = get_logger(__name__)

BOT_PATTERNS = re.compile(
    r"bot|crawler|spider|googlebot|bingbot|yahoo|baidu|duckduckbot|"
    r"facebookexternalhit|twitterbot|slurp|yandex|lighthouse",
    re.IGNORECASE,
)
CORS_METHODS = ["GET", "DELETE", "PATCH", "POST", "PUT"]
CORS_HEADERS = [
    "X-CSRF-Token", "X-Requested-With", "Accept", "Accept-Version", "Content-Length",
    "Content-MD5", "Content-Type", "Date", "X-Api-Version",
]
SERIES_PATH_RE = re.compile(r"^/series/([^/]+)(/.*)?$")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log the first incoming request with full URL for debugging."""

    async def dispatch(self, request, call_next):
        if not getattr(request.app.state, "logged_first_request", False):
            logger = logging.getLogger("komic.request")
            user_agent = request.headers.get("user-agent", "")
            client_name = user_agent.split("/")[0] if user_agent else "unknown"
            client_ip = request.client.host if request.client else "unknown"
            message = (
                'client_connected="%s" ip="%s" url="%s %s" host="%s" ua="%s"'
                % (
                    client_name,
                    client_ip,
                    request.method,
                    str(request.url),
                    request.headers.get("host", ""),
                    user_agent,
                )
            )
            logger.info(message)
            request.app.state.logged_first_request = True
        return await call_next(request)


class SeriesCanonicalMiddleware(BaseHTTPMiddleware):
    """301 /series/<slug>[-<code>][/...] to the series' canonical code.

    Codes are looked up through app.state.url_codes. Unknown slugs pass
    through and get their 404 from the page handler.
    """

    async def dispatch(self, request, call_next):
        match = SERIES_PATH_RE.match(request.url.path)
        if not match or request.method not in ("GET", "HEAD"):
            return await call_next(request)

        parsed = parse_series_param(match.group(1))
        canonical = canonical_url_code(request.app, parsed.base_url)
        if canonical is None or canonical == parsed.url_code:
            return await call_next(request)

        target = series_path(parsed.base_url, canonical) + (match.group(2) or "")
        if request.url.query:
            target += "?" + request.url.query
        return RedirectResponse(url=target, status_code=301)


def canonical_url_code(app: FastAPI, slug: str) -> Optional[str]:
    def load() -> Optional[str]:
        with db_connection() as conn:
            return reader_repo.get_url_code_for_slug(conn, slug)

    return app.state.url_codes.get_or_load(slug, load)


class BotCookieMiddleware(BaseHTTPMiddleware):
    """Tag every page response with an is-bot cookie derived from the user-agent."""

    async def dispatch(self, request, call_next):
        response = await call_next(request)
        path = request.url.path
        if path.startswith(("/static/", "/media/")):
            return response
        is_bot = bool(BOT_PATTERNS.search(request.headers.get("user-agent", "")))
        response.set_cookie(
            "is-bot", "true" if is_bot else "false", path="/", samesite="strict", httponly=False
        )
        return response


class ApiCORSMiddleware:
    """CORS for /api/ routes only; other paths skip it entirely."""

    def __init__(self, app, allow_origins):
        self.app = app
        self.cors = CORSMiddleware(
            app,
            allow_origins=list(allow_origins),
            allow_credentials=True,
            allow_methods=CORS_METHODS,
            allow_headers=CORS_HEADERS,
        )

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http" and scope["path"].startswith("/api/"):
            await self.cors(scope, receive, send)
        else:
            await self.app(scope, receive, send)


def _local_catalog() -> list:
    with db_connection() as conn:
        return reader_repo.catalog_for_sitemap(conn)


@asynccontextmanager
async def _lifespan(app: FastAPI):
    async def _print_startup_messages():
        await asyncio.sleep(0.1)
        logger.info("Started server process [" + str(os.getpid()) + "]")
        logger.info("Application startup complete. (Press CTRL+C to quit)")
        site_url = getattr(app.state, "site_url", None)
        if site_url:
            logger.info("Komic available at: " + site_url)

    asyncio.create_task(_print_startup_messages())
    yield


def create_app(config: Optional[KomicConfig] = None) -> FastAPI:
    """Build the app. Each instance has its own rate limiters and URL-code cache."""
    config = config or get_config()

    app = FastAPI(title="Komic", lifespan=_lifespan)
    app.state.config = config
    app.state.rate_limits = RateLimitRegistry()
    app.state.url_codes = TTLCache()

    app.add_middleware(BotCookieMiddleware)
    app.add_middleware(SeriesCanonicalMiddleware)
    app.add_middleware(ApiCORSMiddleware, allow_origins=config.site.allowed_origins)
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(reader_router)
    app.include_router(groups_router)
    app.include_router(admin_router)
    app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")

    @app.exception_handler(KomicError)
    async def komic_error_handler(request: Request, exc: KomicError):
        return JSONResponse({"detail": exc.message}, status_code=exc.status_code)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if request.url.path.startswith("/api/") or exc.status_code < 400:
            return JSONResponse({"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)
        if exc.status_code == 401:
            return RedirectResponse(url=f"/login?next={request.url.path}", status_code=302)
        return render(
            request,
            "error.html",
            None,
            status_code=exc.status_code,
            title=str(exc.status_code),
            status=exc.status_code,
            message=exc.detail,
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse({"detail": "Internal server error"}, status_code=500)

    @app.get("/favicon.ico", include_in_schema=False)
    def favicon() -> Response:
        return Response(status_code=204)

    @app.get("/sitemap.xml", include_in_schema=False)
    def sitemap(request: Request) -> Response:
        """Run one sitemap generation and serve it. Failures degrade to the root URL only."""
        cfg = request.app.state.config
        entries = SitemapGenerator(cfg, fetch=_local_catalog).generate()
        return Response(content=render_sitemap_xml(entries), media_type="application/xml")

    @app.get("/robots.txt", include_in_schema=False)
    def robots(request: Request) -> Response:
        return Response(
            content=render_robots_txt(request.app.state.config.base_url), media_type="text/plain"
        )

    @app.get("/api/chaptersxml")
    def chapters_xml():
        """Catalog JSON: every series with its chapter numbers and publish dates."""
        with db_connection() as conn:
            return reader_repo.catalog_for_sitemap(conn)

    @app.get("/media/{key:path}", include_in_schema=False)
    def media(key: str, request: Request):
        store = MediaStore.from_config(request.app.state.config)
        try:
            path = store.path(key)
        except ValueError:
            raise HTTPException(status_code=404, detail="Not found")
        if not path.is_file():
            raise HTTPException(status_code=404, detail="Not found")
        return FileResponse(path, headers={"Cache-Control": "public, max-age=86400"})

    return app


class _AccessFilter(logging.Filter):
    """Hide access log lines for successful static and media requests."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
        except Exception:
            return True
        if ("/static/" in msg or "/media/" in msg) and (" 200" in msg or " 304" in msg):
            return False
        return True


def run_server(config: KomicConfig, host: Optional[str], port: Optional[int]) -> None:
    """Run the FastAPI app with Uvicorn."""
    import uvicorn

    effective_host = host or config.server_host
    effective_port = port or config.server_port

    app = create_app(config)
    app.state.site_url = f"http://localhost:{effective_port}/"
    logging.getLogger("uvicorn.access").addFilter(_AccessFilter())

    uvicorn.run(
        app,
        host=effective_host,
        port=effective_port,
        log_level="info",
        log_config=None,
    )
