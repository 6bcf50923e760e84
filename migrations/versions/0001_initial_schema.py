"""Initial schema: users, catalog, discussion, groups, submissions

Revision ID: 0001
Revises: None
Create Date: 2025-01-12 00:00:00
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | None = None
depends_on: str | None = None


def _table_exists(name: str) -> bool:
    """Check whether a table already exists in the database."""
    conn = op.get_bind()
    result = conn.execute(
        sa.text("SELECT 1 FROM sqlite_master WHERE type='table' AND name=:n"),
        {"n": name},
    )
    return result.fetchone() is not None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    # Every CREATE is guarded by _table_exists so the migration also runs
    # against a DB that init_db() already built with create_all().

    if not _table_exists("users"):
        op.create_table(
            "users",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("email", sa.String(), nullable=False),
            sa.Column("password_hash", sa.String(), nullable=False),
            sa.Column("role", sa.String(), nullable=False, server_default="reader"),
            sa.Column("email_verified", sa.Boolean(), nullable=False, server_default="0"),
            *_timestamps(),
        )
        op.create_index("ix_users_name", "users", ["name"], unique=True)
        op.create_index("ix_users_email", "users", ["email"], unique=True)

    if not _table_exists("scanlation_groups"):
        op.create_table(
            "scanlation_groups",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("name", sa.String(), nullable=False, unique=True),
            sa.Column("slug", sa.String(), nullable=False),
            sa.Column("description", sa.String(), nullable=True),
            sa.Column("logo_url", sa.String(), nullable=True),
            sa.Column("website_url", sa.String(), nullable=True),
            sa.Column("discord_url", sa.String(), nullable=True),
            sa.Column("status", sa.String(), nullable=False, server_default="pending"),
            sa.Column("rejection_reason", sa.String(), nullable=True),
            sa.Column("created_by", sa.String(), sa.ForeignKey("users.id"), nullable=True),
            *_timestamps(),
        )
        op.create_index("ix_scanlation_groups_slug", "scanlation_groups", ["slug"], unique=True)

    if not _table_exists("series"):
        op.create_table(
            "series",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("title", sa.String(), nullable=False),
            sa.Column("url", sa.String(), nullable=False),
            sa.Column("url_code", sa.String(), nullable=False, server_default="000000"),
            sa.Column("alternative_titles", sa.JSON(), nullable=True),
            sa.Column("description", sa.String(), nullable=True),
            sa.Column("total_chapters", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("cover_image_url", sa.String(), nullable=True),
            sa.Column("author", sa.String(), nullable=True),
            sa.Column("artist", sa.String(), nullable=True),
            sa.Column("genres", sa.JSON(), nullable=True),
            sa.Column("types", sa.JSON(), nullable=True),
            sa.Column("release_date", sa.DateTime(), nullable=True),
            sa.Column("status", sa.String(), nullable=True),
            sa.Column("publishers", sa.JSON(), nullable=True),
            sa.Column("submitted_by", sa.String(), sa.ForeignKey("scanlation_groups.id"), nullable=True),
            sa.Column("total_views", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("today_views", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_update", sa.DateTime(), nullable=True),
            *_timestamps(),
        )
        op.create_index("ix_series_title", "series", ["title"])
        op.create_index("ix_series_url", "series", ["url"])
        op.create_index("ix_series_submitted_by", "series", ["submitted_by"])

    if not _table_exists("chapters"):
        op.create_table(
            "chapters",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("series_id", sa.String(), sa.ForeignKey("series.id"), nullable=False),
            sa.Column("chapter_number", sa.Float(), nullable=False),
            sa.Column("title", sa.String(), nullable=True),
            sa.Column("content", sa.JSON(), nullable=True),
            sa.Column("views", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("publisher", sa.String(), nullable=False),
            sa.Column("struck", sa.Boolean(), nullable=False, server_default="0"),
            sa.Column("published_at", sa.DateTime(), nullable=False),
            *_timestamps(),
            sa.UniqueConstraint("series_id", "chapter_number", "publisher", name="uq_chapter_publisher"),
        )
        op.create_index("ix_chapters_series_id", "chapters", ["series_id"])

    if not _table_exists("ratings"):
        op.create_table(
            "ratings",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("series_id", sa.String(), sa.ForeignKey("series.id"), nullable=False),
            sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("rating", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("series_id", "user_id", name="uq_rating_user"),
        )
        op.create_index("ix_ratings_series_id", "ratings", ["series_id"])

    if not _table_exists("bookmarks"):
        op.create_table(
            "bookmarks",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("series_id", sa.String(), sa.ForeignKey("series.id"), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("user_id", "series_id", name="uq_bookmark"),
        )
        op.create_index("ix_bookmarks_user_id", "bookmarks", ["user_id"])

    if not _table_exists("reading_history"):
        op.create_table(
            "reading_history",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("series_id", sa.String(), sa.ForeignKey("series.id"), nullable=False),
            sa.Column("chapter_number", sa.Float(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("user_id", "series_id", name="uq_history"),
        )
        op.create_index("ix_reading_history_user_id", "reading_history", ["user_id"])

    for table, target, target_table in (
        ("series_messages", "series_id", "series"),
        ("chapter_messages", "chapter_id", "chapters"),
    ):
        if _table_exists(table):
            continue
        op.create_table(
            table,
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column(target, sa.String(), sa.ForeignKey(f"{target_table}.id"), nullable=False),
            sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("content", sa.String(), nullable=False),
            sa.Column("parent_id", sa.String(), sa.ForeignKey(f"{table}.id"), nullable=True),
            sa.Column("likes", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("dislikes", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index(f"ix_{table}_{target}", table, [target])

    if not _table_exists("message_interactions"):
        op.create_table(
            "message_interactions",
            sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), primary_key=True),
            sa.Column("message_id", sa.String(), primary_key=True),
            sa.Column("scope", sa.String(), primary_key=True),
            sa.Column("interaction_type", sa.String(), nullable=False),
        )

    if not _table_exists("group_members"):
        op.create_table(
            "group_members",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("group_id", sa.String(), sa.ForeignKey("scanlation_groups.id"), nullable=False),
            sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("role", sa.String(), nullable=False),
            sa.Column("joined_at", sa.DateTime(), nullable=False),
            sa.Column("invited_by", sa.String(), nullable=True),
            sa.Column("status", sa.String(), nullable=False, server_default="active"),
            sa.UniqueConstraint("group_id", "user_id", name="uq_group_member"),
        )
        op.create_index("ix_group_members_group_id", "group_members", ["group_id"])
        op.create_index("ix_group_members_user_id", "group_members", ["user_id"])

    if not _table_exists("group_invitations"):
        op.create_table(
            "group_invitations",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("group_id", sa.String(), sa.ForeignKey("scanlation_groups.id"), nullable=False),
            sa.Column("invited_by", sa.String(), nullable=False),
            sa.Column("email", sa.String(), nullable=True),
            sa.Column("user_id", sa.String(), nullable=True),
            sa.Column("role", sa.String(), nullable=False),
            sa.Column("token", sa.String(), nullable=False),
            sa.Column("expires_at", sa.DateTime(), nullable=True),
            sa.Column("status", sa.String(), nullable=False, server_default="pending"),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_group_invitations_group_id", "group_invitations", ["group_id"])
        op.create_index("ix_group_invitations_email", "group_invitations", ["email"])
        op.create_index("ix_group_invitations_token", "group_invitations", ["token"], unique=True)

    if not _table_exists("series_submissions"):
        op.create_table(
            "series_submissions",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("title", sa.String(), nullable=False),
            sa.Column("alternative_titles", sa.String(), nullable=True),
            sa.Column("description", sa.String(), nullable=True),
            sa.Column("status", sa.String(), nullable=True),
            sa.Column("type", sa.String(), nullable=True),
            sa.Column("genres", sa.String(), nullable=True),
            sa.Column("author", sa.String(), nullable=True),
            sa.Column("artist", sa.String(), nullable=True),
            sa.Column("release_year", sa.String(), nullable=True),
            sa.Column("source_url", sa.String(), nullable=True),
            sa.Column("cover_image_key", sa.String(), nullable=True),
            sa.Column("cover_image_url", sa.String(), nullable=True),
            sa.Column("group_id", sa.String(), sa.ForeignKey("scanlation_groups.id"), nullable=False),
            sa.Column("submitted_by_user", sa.String(), nullable=False),
            sa.Column("submission_status", sa.String(), nullable=False, server_default="pending"),
            sa.Column("rejection_reason", sa.String(), nullable=True),
            sa.Column("approved_by", sa.String(), nullable=True),
            sa.Column("approved_series_id", sa.String(), sa.ForeignKey("series.id"), nullable=True),
            *_timestamps(),
        )
        op.create_index("ix_series_submissions_title", "series_submissions", ["title"])
        op.create_index("ix_series_submissions_group_id", "series_submissions", ["group_id"])
        op.create_index(
            "ix_series_submissions_submission_status", "series_submissions", ["submission_status"]
        )

    if not _table_exists("chapter_submissions"):
        op.create_table(
            "chapter_submissions",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("series_id", sa.String(), sa.ForeignKey("series.id"), nullable=False),
            sa.Column("group_id", sa.String(), sa.ForeignKey("scanlation_groups.id"), nullable=False),
            sa.Column("submitted_by_user", sa.String(), nullable=True),
            sa.Column("chapter_number", sa.String(), nullable=False),
            sa.Column("chapter_title", sa.String(), nullable=True),
            sa.Column("release_notes", sa.String(), nullable=True),
            sa.Column("page_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("page_urls", sa.JSON(), nullable=True),
            sa.Column("pages_path", sa.String(), nullable=True),
            sa.Column("start_image_url", sa.String(), nullable=True),
            sa.Column("end_image_url", sa.String(), nullable=True),
            sa.Column("status", sa.String(), nullable=False, server_default="pending"),
            sa.Column("review_notes", sa.String(), nullable=True),
            sa.Column("approved_chapter_id", sa.String(), sa.ForeignKey("chapters.id"), nullable=True),
            *_timestamps(),
        )
        op.create_index("ix_chapter_submissions_group_id", "chapter_submissions", ["group_id"])
        op.create_index("ix_chapter_submissions_status", "chapter_submissions", ["status"])


def downgrade() -> None:
    # Reverse FK order.
    for table in (
        "chapter_submissions",
        "series_submissions",
        "group_invitations",
        "group_members",
        "message_interactions",
        "chapter_messages",
        "series_messages",
        "reading_history",
        "bookmarks",
        "ratings",
        "chapters",
        "series",
        "scanlation_groups",
        "users",
    ):
        op.drop_table(table)
