"""Config management for Komic.

Reads `config.ini` from DATA_DIR (defaults to the project root beside main.py).
Sitemap dates can be overridden with SITEMAP_START_DATE / SITEMAP_BACKDATE_FROM.
"""

from __future__ import annotations

import configparser
import dataclasses
import datetime
import os
import pathlib
import secrets
import sys
from typing import Optional

from .logging_config import get_logger

logger = get_logger(__name__)


def _get_project_root() -> pathlib.Path:
    if getattr(sys, "frozen", False):
        return pathlib.Path(sys.executable).resolve().parent
    return pathlib.Path(__file__).resolve().parents[1]


PROJECT_ROOT = _get_project_root()

# DATA_DIR holds all persistent state (config.ini, komic.db, media/, sitemap state).
DATA_DIR = pathlib.Path(os.environ.get("DATA_DIR", str(PROJECT_ROOT)))
DEFAULT_CONFIG_PATH = DATA_DIR / "config.ini"

DEFAULT_SITEMAP_START_DATE = "2025-01-14"
DEFAULT_SITEMAP_BACKDATE_FROM = "2025-01-12"


@dataclasses.dataclass
class SiteConfig:
    name: str = "Komic"
    base_url: str = "http://localhost:8080"
    allowed_origins: tuple[str, ...] = ()


@dataclasses.dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080


@dataclasses.dataclass
class AuthConfig:
    secret_key: str = ""
    session_days: int = 30


@dataclasses.dataclass
class StorageConfig:
    media_dir: pathlib.Path = dataclasses.field(default_factory=lambda: DATA_DIR / "media")
    public_url: str = "/media"


@dataclasses.dataclass
class SitemapConfig:
    start_date: datetime.date = datetime.date.fromisoformat(DEFAULT_SITEMAP_START_DATE)
    backdate_from: datetime.date = datetime.date.fromisoformat(DEFAULT_SITEMAP_BACKDATE_FROM)
    urls_per_day_min: int = 50
    urls_per_day_max: int = 100
    fetch_timeout: float = 30.0
    state_path: pathlib.Path = dataclasses.field(
        default_factory=lambda: DATA_DIR / "sitemap_state.json"
    )


@dataclasses.dataclass
class UploadConfig:
    max_cover_bytes: int = 10 * 1024 * 1024
    max_page_bytes: int = 20 * 1024 * 1024


@dataclasses.dataclass
class KomicConfig:
    site: SiteConfig
    server: ServerConfig
    auth: AuthConfig
    storage: StorageConfig
    sitemap: SitemapConfig
    uploads: UploadConfig

    @property
    def base_url(self) -> str:
        return self.site.base_url.rstrip("/")

    @property
    def server_host(self) -> str:
        return self.server.host

    @property
    def server_port(self) -> int:
        return self.server.port

    @property
    def database_path(self) -> pathlib.Path:
        return DATA_DIR / "komic.db"

    @property
    def media_dir(self) -> pathlib.Path:
        return self.storage.media_dir


def _split_csv(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _parse_date(value: Optional[str], fallback: str) -> datetime.date:
    if value:
        try:
            return datetime.date.fromisoformat(value.strip()[:10])
        except ValueError:
            logger.warning(f"Invalid sitemap date {value!r}, using {fallback}")
    return datetime.date.fromisoformat(fallback)


def load_config(config_path: Optional[pathlib.Path] = None) -> KomicConfig:
    """Load configuration from config.ini.

    Defaults to `config.ini` in DATA_DIR.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    parser = configparser.ConfigParser()
    parser.read(path)

    site = SiteConfig(
        name=parser.get("site", "name", fallback="Komic"),
        base_url=parser.get("site", "base_url", fallback="http://localhost:8080"),
        allowed_origins=_split_csv(parser.get("site", "allowed_origins", fallback="")),
    )

    server = ServerConfig(
        host=parser.get("server", "host", fallback="0.0.0.0"),
        port=parser.getint("server", "port", fallback=8080),
    )

    secret_key = parser.get("auth", "secret_key", fallback="").strip()
    if not secret_key:
        # Sessions will not survive a restart without a configured key.
        logger.warning("auth.secret_key not set; generating an ephemeral key")
        secret_key = secrets.token_hex(32)
    auth = AuthConfig(
        secret_key=secret_key,
        session_days=parser.getint("auth", "session_days", fallback=30),
    )

    media_dir = parser.get("storage", "media_dir", fallback="").strip()
    storage = StorageConfig(
        media_dir=pathlib.Path(media_dir).expanduser() if media_dir else DATA_DIR / "media",
        public_url=parser.get("storage", "public_url", fallback="/media"),
    )

    state_path = parser.get("sitemap", "state_path", fallback="").strip()
    sitemap = SitemapConfig(
        start_date=_parse_date(
            os.environ.get("SITEMAP_START_DATE")
            or parser.get("sitemap", "start_date", fallback=None),
            DEFAULT_SITEMAP_START_DATE,
        ),
        backdate_from=_parse_date(
            os.environ.get("SITEMAP_BACKDATE_FROM")
            or parser.get("sitemap", "backdate_from", fallback=None),
            DEFAULT_SITEMAP_BACKDATE_FROM,
        ),
        urls_per_day_min=parser.getint("sitemap", "urls_per_day_min", fallback=50),
        urls_per_day_max=parser.getint("sitemap", "urls_per_day_max", fallback=100),
        fetch_timeout=parser.getfloat("sitemap", "fetch_timeout", fallback=30.0),
        state_path=pathlib.Path(state_path) if state_path else DATA_DIR / "sitemap_state.json",
    )

    uploads = UploadConfig(
        max_cover_bytes=parser.getint("uploads", "max_cover_mb", fallback=10) * 1024 * 1024,
        max_page_bytes=parser.getint("uploads", "max_page_mb", fallback=20) * 1024 * 1024,
    )

    return KomicConfig(
        site=site,
        server=server,
        auth=auth,
        storage=storage,
        sitemap=sitemap,
        uploads=uploads,
    )


_cached_config: Optional[KomicConfig] = None


def get_config() -> KomicConfig:
    """Return the cached config singleton. Loads from disk on first call."""
    global _cached_config
    if _cached_config is None:
        _cached_config = load_config()
    return _cached_config


def reset_config_cache() -> None:
    """Clear the cached config (useful for tests)."""
    global _cached_config
    _cached_config = None


def write_default_config(
    config_path: pathlib.Path, base_url: str, site_name: str
) -> pathlib.Path:
    """Write a fresh config.ini with a generated secret key."""
    parser = configparser.ConfigParser()
    parser["site"] = {
        "name": site_name,
        "base_url": base_url,
        "allowed_origins": base_url,
    }
    parser["server"] = {
        "host": "0.0.0.0",
        "port": "8080",
    }
    parser["auth"] = {
        "secret_key": secrets.token_hex(32),
        "session_days": "30",
    }
    parser["storage"] = {
        "media_dir": "",
        "public_url": "/media",
    }
    parser["sitemap"] = {
        "start_date": DEFAULT_SITEMAP_START_DATE,
        "backdate_from": DEFAULT_SITEMAP_BACKDATE_FROM,
        "urls_per_day_min": "50",
        "urls_per_day_max": "100",
        "fetch_timeout": "30",
    }
    parser["uploads"] = {
        "max_cover_mb": "10",
        "max_page_mb": "20",
    }

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w") as handle:
        parser.write(handle)
    return config_path
