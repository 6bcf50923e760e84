"""SQLite access for Komic.

Writes go through SQLModel sessions on `engine`; read-heavy pages use plain
sqlite3 connections from `db_connection()`. Both open the same file and
every connection enforces foreign keys.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Iterator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine, Session

from .config import DATA_DIR

DB_PATH = DATA_DIR / "komic.db"
BUSY_TIMEOUT_MS = 5000


def configure_connection(dbapi_connection) -> None:
    """Per-connection pragmas; SQLite does not persist these in the file."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
    cursor.close()


def make_engine(path: Path) -> Engine:
    """Engine for the database file at *path*."""
    # check_same_thread=False: sessions are used from FastAPI's threadpool
    new_engine = create_engine(f"sqlite:///{path}", connect_args={"check_same_thread": False})

    @event.listens_for(new_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        configure_connection(dbapi_connection)

    return new_engine


engine = make_engine(DB_PATH)


def get_session() -> Generator[Session, None, None]:
    """Dependency for FastAPI or context manager for scripts."""
    with Session(engine) as session:
        yield session


def init_db() -> None:
    """Create tables and switch the file to WAL journaling."""
    from . import models  # noqa: F401

    with engine.connect() as conn:
        conn.exec_driver_sql("PRAGMA journal_mode=WAL;")

    SQLModel.metadata.create_all(engine)


def reset_database() -> None:
    """Delete the database file with its WAL sidecars and recreate the schema."""
    engine.dispose()
    for path in (DB_PATH, DB_PATH.with_name(DB_PATH.name + "-wal"), DB_PATH.with_name(DB_PATH.name + "-shm")):
        path.unlink(missing_ok=True)
    init_db()


def get_engine() -> Engine:
    return engine


def get_connection() -> sqlite3.Connection:
    """sqlite3 connection with dict-like rows."""
    connection = sqlite3.connect(DB_PATH)
    connection.row_factory = sqlite3.Row
    configure_connection(connection)
    return connection


@contextmanager
def db_connection() -> Iterator[sqlite3.Connection]:
    """Context manager for sqlite3 connections. Auto-closes on exit."""
    conn = get_connection()
    try:
        yield conn
    finally:
        conn.close()
