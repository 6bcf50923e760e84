"""Shared fixtures: throwaway database, config and app per test."""

from datetime import datetime, timedelta, timezone
from io import BytesIO
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlmodel import Session

from komic import config as config_module
from komic.app import create_app
from komic.config import (
    AuthConfig,
    KomicConfig,
    ServerConfig,
    SiteConfig,
    SitemapConfig,
    StorageConfig,
    UploadConfig,
)
from komic.database import init_db, make_engine
from komic.models import Series, User
from komic.repository import Repository
from reader.auth import register_user


@pytest.fixture
def test_config(tmp_path, monkeypatch):
    """A config rooted in tmp_path, installed as the cached singleton."""
    cfg = KomicConfig(
        site=SiteConfig(name="Test Komic", base_url="https://komic.test"),
        server=ServerConfig(),
        auth=AuthConfig(secret_key="test-secret", session_days=30),
        storage=StorageConfig(media_dir=tmp_path / "media"),
        sitemap=SitemapConfig(state_path=tmp_path / "sitemap_state.json"),
        uploads=UploadConfig(),
    )
    monkeypatch.setattr(config_module, "_cached_config", cfg)
    return cfg


@pytest.fixture
def test_db(tmp_path, monkeypatch):
    """Create a test database."""
    db_file = tmp_path / "test.db"
    monkeypatch.setattr("komic.database.DB_PATH", db_file, raising=True)

    engine = make_engine(db_file)
    monkeypatch.setattr("komic.database.engine", engine, raising=True)

    init_db()
    return engine


@pytest.fixture
def session(test_db):
    with Session(test_db) as session:
        yield session


@pytest.fixture
def client(test_config, test_db):
    return TestClient(create_app(test_config))


@pytest.fixture
def media_root(test_config) -> Path:
    return test_config.media_dir


@pytest.fixture
def image_bytes():
    """Factory for small in-memory images."""

    def _make(size=(40, 60), fmt="PNG", color=(200, 30, 30)) -> bytes:
        buffer = BytesIO()
        Image.new("RGB", size, color).save(buffer, format=fmt)
        return buffer.getvalue()

    return _make


@pytest.fixture
def make_user(session):
    def _make(name: str = "reader1", role: str = "reader", password: str = "password123") -> User:
        return register_user(session, name, f"{name}@example.com", password, role=role)

    return _make


@pytest.fixture
def make_series(session):
    """Series with published chapters; one chapter per hour from 2025-01-01."""

    def _make(
        title: str = "Solo Leveling",
        chapters=(1, 2, 3),
        publisher: str = "Team Shadow",
        url_code: str = "123456",
        **fields,
    ) -> Series:
        repo = Repository(session)
        series = repo.create_series(title=title, url_code=url_code, **fields)
        start = datetime(2025, 1, 1, tzinfo=timezone.utc)
        for index, number in enumerate(chapters):
            repo.add_chapter(
                series,
                chapter_number=number,
                publisher=publisher,
                content=[f"/media/{series.url}/{number}/001.webp"],
                published_at=start + timedelta(hours=index),
            )
        repo.commit()
        session.refresh(series)
        return series

    return _make
