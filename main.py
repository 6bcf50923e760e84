"""Komic CLI entry point."""

from __future__ import annotations

import logging
from typing import Optional

import typer
from sqlmodel import Session

from komic.app import run_server
from komic.config import DEFAULT_CONFIG_PATH, KomicConfig, load_config
from komic.database import get_engine, init_db, reset_database
from komic.errors import KomicError
from komic.logging_config import setup_logging
from komic.migrations import get_status, run_migrations, stamp_if_needed
from komic.repository import Repository
from komic.sitemap import SitemapGenerator
from reader.auth import register_user


__version__ = "0.1.0"

app = typer.Typer(add_completion=False, help="Komic manga reader CLI")
logger = logging.getLogger("komic")

STARTUP_BANNER = r"""
 __  __     ______     __    __     __     ______
/\ \/ /    /\  __ \   /\ "-./  \   /\ \   /\  ___\
\ \  _"-.  \ \ \/\ \  \ \ \-./\ \  \ \ \  \ \ \____
 \ \_\ \_\  \ \_____\  \ \_\ \ \_\  \ \_\  \ \_____\
  \/_/\/_/   \/_____/   \/_/  \/_/   \/_/   \/_____/
"""


def _ensure_config() -> KomicConfig:
    try:
        return load_config()
    except FileNotFoundError:
        typer.echo("[ERROR] config.ini not found. Run: komic init --base-url https://example.com")
        raise typer.Exit(code=1)


def _migrate_to_head() -> None:
    # Stamp DBs built by create_all, then upgrade to head.
    stamp_if_needed()
    current, head = get_status()
    if current != head:
        logger.info(f"Migrating database {current} -> {head} ...")
        run_migrations(backup=True)
        logger.info("Migration complete.")
    else:
        logger.info(f"Database at {head} (up to date).")


@app.command()
def init(
    base_url: str = typer.Option("http://localhost:8080", "--base-url", help="Public site URL"),
    name: str = typer.Option("Komic", "--name", help="Site name"),
) -> None:
    """Initialize config.ini with default settings."""
    from komic.config import write_default_config

    config_path = write_default_config(DEFAULT_CONFIG_PATH, base_url.rstrip("/"), name)
    typer.echo(f"[OK] Config created at {config_path}")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Server host"),
    port: Optional[int] = typer.Option(None, "--port", help="Server port"),
) -> None:
    """Start the web server."""
    setup_logging()

    typer.echo(typer.style(STARTUP_BANNER, fg=typer.colors.MAGENTA, bold=True))
    config = _ensure_config()
    init_db()
    _migrate_to_head()

    try:
        run_server(config, host=host, port=port)
    except KeyboardInterrupt:
        pass


@app.command()
def migrate(
    check: bool = typer.Option(False, "--check", help="Print status and exit (1 if not at head)"),
) -> None:
    """Run pending database migrations (or check status with --check)."""
    setup_logging()
    _ensure_config()
    init_db()

    current, head = get_status()

    if check:
        if current == head:
            typer.echo(f"[OK] Database at {head} (head).")
            raise typer.Exit(code=0)
        typer.echo(f"[WARN] Database behind: current {current}, head {head}")
        raise typer.Exit(code=1)

    if current == head:
        logger.info(f"Database already at {head} (head). Nothing to do.")
        raise typer.Exit(code=0)

    logger.info(f"Migrating database {current} -> {head} ...")
    run_migrations(backup=True)
    logger.info("Migration complete.")


@app.command()
def sitemap() -> None:
    """Fetch the catalog from the running site and advance the sitemap schedule."""
    setup_logging()
    config = _ensure_config()

    entries = SitemapGenerator(config).generate()
    typer.echo(f"[OK] Sitemap holds {len(entries)} urls (state: {config.sitemap.state_path})")


@app.command("create-admin")
def create_admin(
    name: str = typer.Option(..., "--name", help="Username"),
    email: str = typer.Option(..., "--email", help="Email address"),
    password: str = typer.Option(
        ..., "--password", prompt=True, hide_input=True, confirmation_prompt=True
    ),
) -> None:
    """Create an administrator account."""
    _ensure_config()
    init_db()

    with Session(get_engine()) as session:
        try:
            user = register_user(session, name, email, password, role="admin")
        except KomicError as exc:
            typer.echo(f"[ERROR] {exc.message}")
            raise typer.Exit(code=1)

    typer.echo(f"[OK] Admin {user.name} created")


@app.command("reset-views")
def reset_views() -> None:
    """Zero every series' daily view counter."""
    _ensure_config()

    with Session(get_engine()) as session:
        count = Repository(session).reset_today_views()

    typer.echo(f"[INFO] Reset today's views on {count} series")


@app.command()
def stats() -> None:
    """Show site statistics."""
    _ensure_config()
    init_db()

    with Session(get_engine()) as session:
        totals = Repository(session).stats()

    typer.echo("Site Statistics:")
    typer.echo(f"  Series: {totals['series']}")
    typer.echo(f"  Chapters: {totals['chapters']}")
    typer.echo(f"  Users: {totals['users']}")
    typer.echo(f"  Ratings: {totals['ratings']}")
    typer.echo(f"  Bookmarks: {totals['bookmarks']}")
    typer.echo(f"  Messages: {totals['messages']}")


@app.command()
def reset(
    confirm: bool = typer.Option(False, "--confirm", help="Confirm destructive reset"),
) -> None:
    """Delete the database and recreate an empty schema."""
    if not confirm:
        typer.echo("[ERROR] This will delete your database. Use --confirm.")
        raise typer.Exit(code=1)

    _ensure_config()
    reset_database()
    stamp_if_needed()
    typer.echo("[INFO] Database reset.")


if __name__ == "__main__":
    app()
