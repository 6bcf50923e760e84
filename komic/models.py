"""SQLModel database models for Komic."""

import uuid
from datetime import datetime, timezone
from typing import Optional, List

from sqlalchemy import Column, JSON, UniqueConstraint
from sqlmodel import Field, SQLModel, Relationship


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to values read back from SQLite, which stores them without an offset."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# --- Users ---


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=new_id, primary_key=True)
    name: str = Field(unique=True, index=True)
    email: str = Field(unique=True, index=True)
    password_hash: str
    role: str = "reader"  # reader, moderator, admin
    email_verified: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# --- Catalog ---


class Series(SQLModel, table=True):
    __tablename__ = "series"

    id: str = Field(default_factory=new_id, primary_key=True)
    title: str = Field(index=True)
    url: str = Field(index=True)
    url_code: str = "000000"
    alternative_titles: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    description: Optional[str] = None
    total_chapters: int = 0
    cover_image_url: Optional[str] = None
    author: Optional[str] = None
    artist: Optional[str] = None
    genres: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    types: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    release_date: Optional[datetime] = None
    status: Optional[str] = None
    publishers: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    submitted_by: Optional[str] = Field(default=None, foreign_key="scanlation_groups.id", index=True)
    total_views: int = 0
    today_views: int = 0
    last_update: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    chapters: List["Chapter"] = Relationship(
        back_populates="series",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class Chapter(SQLModel, table=True):
    __tablename__ = "chapters"
    __table_args__ = (
        UniqueConstraint("series_id", "chapter_number", "publisher", name="uq_chapter_publisher"),
    )

    id: str = Field(default_factory=new_id, primary_key=True)
    series_id: str = Field(foreign_key="series.id", index=True)
    chapter_number: float
    title: Optional[str] = None
    content: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    views: int = 0
    publisher: str
    struck: bool = False
    published_at: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    series: Optional[Series] = Relationship(back_populates="chapters")


class Rating(SQLModel, table=True):
    __tablename__ = "ratings"
    __table_args__ = (UniqueConstraint("series_id", "user_id", name="uq_rating_user"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    series_id: str = Field(foreign_key="series.id", index=True)
    user_id: str = Field(foreign_key="users.id")
    rating: int
    created_at: datetime = Field(default_factory=utcnow)


class Bookmark(SQLModel, table=True):
    __tablename__ = "bookmarks"
    __table_args__ = (UniqueConstraint("user_id", "series_id", name="uq_bookmark"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    series_id: str = Field(foreign_key="series.id")
    created_at: datetime = Field(default_factory=utcnow)


class ReadingHistory(SQLModel, table=True):
    __tablename__ = "reading_history"
    __table_args__ = (UniqueConstraint("user_id", "series_id", name="uq_history"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    series_id: str = Field(foreign_key="series.id")
    chapter_number: float
    updated_at: datetime = Field(default_factory=utcnow)


# --- Discussion ---


class SeriesMessage(SQLModel, table=True):
    __tablename__ = "series_messages"

    id: str = Field(default_factory=new_id, primary_key=True)
    series_id: str = Field(foreign_key="series.id", index=True)
    user_id: Optional[str] = Field(default=None, foreign_key="users.id")
    content: str
    parent_id: Optional[str] = Field(default=None, foreign_key="series_messages.id")
    likes: int = 0
    dislikes: int = 0
    created_at: datetime = Field(default_factory=utcnow)


class ChapterMessage(SQLModel, table=True):
    __tablename__ = "chapter_messages"

    id: str = Field(default_factory=new_id, primary_key=True)
    chapter_id: str = Field(foreign_key="chapters.id", index=True)
    user_id: Optional[str] = Field(default=None, foreign_key="users.id")
    content: str
    parent_id: Optional[str] = Field(default=None, foreign_key="chapter_messages.id")
    likes: int = 0
    dislikes: int = 0
    created_at: datetime = Field(default_factory=utcnow)


class MessageInteraction(SQLModel, table=True):
    __tablename__ = "message_interactions"

    user_id: str = Field(foreign_key="users.id", primary_key=True)
    message_id: str = Field(primary_key=True)
    scope: str = Field(primary_key=True)  # series, chapter
    interaction_type: str  # likes, dislikes


# --- Scanlation groups ---


class ScanlationGroup(SQLModel, table=True):
    __tablename__ = "scanlation_groups"

    id: str = Field(default_factory=new_id, primary_key=True)
    name: str = Field(unique=True)
    slug: str = Field(unique=True, index=True)
    description: Optional[str] = None
    logo_url: Optional[str] = None
    website_url: Optional[str] = None
    discord_url: Optional[str] = None
    status: str = "pending"  # pending, approved, suspended, rejected
    rejection_reason: Optional[str] = None
    created_by: Optional[str] = Field(default=None, foreign_key="users.id")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    members: List["GroupMember"] = Relationship(
        back_populates="group",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class GroupMember(SQLModel, table=True):
    __tablename__ = "group_members"
    __table_args__ = (UniqueConstraint("group_id", "user_id", name="uq_group_member"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    group_id: str = Field(foreign_key="scanlation_groups.id", index=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    role: str
    joined_at: datetime = Field(default_factory=utcnow)
    invited_by: Optional[str] = None
    status: str = "active"  # active, pending, suspended

    group: Optional[ScanlationGroup] = Relationship(back_populates="members")


class GroupInvitation(SQLModel, table=True):
    __tablename__ = "group_invitations"

    id: str = Field(default_factory=new_id, primary_key=True)
    group_id: str = Field(foreign_key="scanlation_groups.id", index=True)
    invited_by: str
    email: Optional[str] = Field(default=None, index=True)
    user_id: Optional[str] = None
    role: str
    token: str = Field(unique=True, index=True)
    expires_at: Optional[datetime] = None
    status: str = "pending"  # pending, accepted, expired, declined
    created_at: datetime = Field(default_factory=utcnow)


# --- Submissions ---


class SeriesSubmission(SQLModel, table=True):
    __tablename__ = "series_submissions"

    id: str = Field(default_factory=new_id, primary_key=True)
    title: str = Field(index=True)
    alternative_titles: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None  # ongoing, completed, hiatus, cancelled
    type: Optional[str] = None  # manga, manhwa, manhua, webtoon, novel
    genres: Optional[str] = None  # comma-separated
    author: Optional[str] = None
    artist: Optional[str] = None
    release_year: Optional[str] = None
    source_url: Optional[str] = None
    cover_image_key: Optional[str] = None
    cover_image_url: Optional[str] = None
    group_id: str = Field(foreign_key="scanlation_groups.id", index=True)
    submitted_by_user: str
    submission_status: str = Field(default="pending", index=True)
    rejection_reason: Optional[str] = None
    approved_by: Optional[str] = None
    approved_series_id: Optional[str] = Field(default=None, foreign_key="series.id")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ChapterSubmission(SQLModel, table=True):
    __tablename__ = "chapter_submissions"

    id: str = Field(default_factory=new_id, primary_key=True)
    series_id: str = Field(foreign_key="series.id")
    group_id: str = Field(foreign_key="scanlation_groups.id", index=True)
    submitted_by_user: Optional[str] = None
    chapter_number: str
    chapter_title: Optional[str] = None
    release_notes: Optional[str] = None
    page_count: int = 0
    page_urls: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    pages_path: Optional[str] = None
    start_image_url: Optional[str] = None
    end_image_url: Optional[str] = None
    status: str = Field(default="pending", index=True)  # pending, approved, rejected
    review_notes: Optional[str] = None
    approved_chapter_id: Optional[str] = Field(default=None, foreign_key="chapters.id")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
