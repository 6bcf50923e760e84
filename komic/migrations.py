"""Alembic migration helpers for Komic.

This is the only module in the project that imports alembic directly.
Everything else (CLI, serve) goes through the functions below.
"""

from __future__ import annotations

import shutil
import sqlite3
from pathlib import Path

from alembic import command as alembic_command
from alembic.config import Config as AlembicConfig
from alembic.script import ScriptDirectory

from . import database
from .config import PROJECT_ROOT


# ---------------------------------------------------------------------------
# Alembic config object, reused by every public function
# ---------------------------------------------------------------------------

def _alembic_cfg() -> AlembicConfig:
    """Build an AlembicConfig that points at our alembic.ini."""
    ini_path = PROJECT_ROOT / "alembic.ini"
    cfg = AlembicConfig(str(ini_path))
    # Absolute script_location so it works regardless of the current directory.
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))
    return cfg


def _db_path() -> Path:
    return database.DB_PATH


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def _backup_db() -> None:
    """Copy komic.db to komic.db.bak (overwrite previous backup)."""
    db_path = _db_path()
    if db_path.exists():
        shutil.copy2(db_path, db_path.with_suffix(".db.bak"))


def _alembic_version_exists() -> bool:
    """Return True when the alembic_version table is present in the DB."""
    db_path = _db_path()
    if not db_path.exists():
        return False
    conn = sqlite3.connect(db_path)
    try:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='alembic_version'"
        )
        return cur.fetchone() is not None
    finally:
        conn.close()


def run_migrations(backup: bool = True) -> None:
    """Run ``alembic upgrade head``.

    If *backup* is True and komic.db already exists, a copy is made first.
    """
    if backup:
        _backup_db()
    alembic_command.upgrade(_alembic_cfg(), "head")


def stamp_if_needed() -> None:
    """Stamp a database created by ``init_db`` (create_all) to the current head.

    No-op when the DB is missing or already has an alembic_version row.
    """
    if not _db_path().exists():
        return
    if _alembic_version_exists():
        return
    alembic_command.stamp(_alembic_cfg(), "head")


def get_status() -> tuple[str | None, str]:
    """Return (current_revision, head_revision).

    current_revision is None when the DB does not exist or has never
    been stamped/migrated.
    """
    cfg = _alembic_cfg()

    # Head comes from the migration scripts; no DB needed.
    script = ScriptDirectory.from_config(cfg)
    head_rev: str = script.get_current_head() or "unknown"

    db_path = _db_path()
    if not db_path.exists() or not _alembic_version_exists():
        return None, head_rev

    conn = sqlite3.connect(db_path)
    try:
        cur = conn.execute("SELECT version_num FROM alembic_version")
        row = cur.fetchone()
        return (row[0] if row else None), head_rev
    finally:
        conn.close()
