"""Data Access Layer for Komic catalog writes.

Encapsulates database writes using SQLModel/SQLAlchemy: series and chapters,
view counters, bookmarks, ratings, reading history and discussion messages.
Read-heavy page queries live in reader.repository (raw sqlite3).
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlmodel import Session, select, func

from .errors import NotFoundError, ValidationError
from .groups import GroupService
from .models import (
    Bookmark,
    Chapter,
    ChapterMessage,
    MessageInteraction,
    Rating,
    ReadingHistory,
    Series,
    SeriesMessage,
    User,
    utcnow,
)
from .urls import generate_url_code, slugify_title

REACTIONS = ("likes", "dislikes")
MESSAGE_MODELS = {"series": SeriesMessage, "chapter": ChapterMessage}
MAX_MESSAGE_LENGTH = 2000


class Repository:
    """Catalog writes. Callers control when to commit."""

    def __init__(self, session: Session):
        self.session = session

    def commit(self) -> None:
        self.session.commit()

    # --- Series / chapters ---

    def get_series(self, series_id: str) -> Series:
        series = self.session.get(Series, series_id)
        if series is None:
            raise NotFoundError("Series not found", series_id=series_id)
        return series

    def get_series_by_url(self, url: str) -> Optional[Series]:
        return self.session.exec(select(Series).where(Series.url == url)).first()

    def create_series(
        self,
        *,
        title: str,
        url: Optional[str] = None,
        url_code: Optional[str] = None,
        **fields,
    ) -> Series:
        series = Series(
            title=title,
            url=url or slugify_title(title),
            url_code=url_code or generate_url_code(),
            **fields,
        )
        self.session.add(series)
        self.session.flush()
        return series

    def add_chapter(
        self,
        series: Series,
        *,
        chapter_number: float,
        publisher: str,
        content: Optional[List[str]] = None,
        title: Optional[str] = None,
        published_at: Optional[datetime] = None,
    ) -> Chapter:
        """Insert a chapter and keep the series' counters and publisher list in sync."""
        published_at = published_at or utcnow()
        chapter = Chapter(
            series_id=series.id,
            chapter_number=float(chapter_number),
            title=title or series.title,
            content=list(content or []),
            publisher=publisher,
            published_at=published_at,
        )
        self.session.add(chapter)
        self.session.flush()

        series.total_chapters = self.session.exec(
            select(func.count()).select_from(Chapter).where(Chapter.series_id == series.id)
        ).one()
        if publisher not in (series.publishers or []):
            series.publishers = [*(series.publishers or []), publisher]
        if series.last_update is None or published_at > series.last_update:
            series.last_update = published_at
        series.updated_at = utcnow()
        self.session.add(series)
        return chapter

    def record_view(self, series_url: str, chapter_number: float) -> dict:
        """Bump series total/today views and the chapter's views."""
        series = self.get_series_by_url(series_url)
        if series is None:
            raise NotFoundError(f"Series not found: {series_url}")
        chapters = self.session.exec(
            select(Chapter).where(
                Chapter.series_id == series.id, Chapter.chapter_number == float(chapter_number)
            )
        ).all()
        if not chapters:
            raise NotFoundError(f"Chapter not found: {chapter_number}")

        series.total_views += 1
        series.today_views += 1
        for chapter in chapters:
            chapter.views += 1
            self.session.add(chapter)
        self.session.add(series)
        self.session.commit()
        return {
            "series_total_views": series.total_views,
            "series_today_views": series.today_views,
            "chapter_views": sum(c.views for c in chapters),
        }

    def reset_today_views(self) -> int:
        series_list = self.session.exec(select(Series).where(Series.today_views != 0)).all()
        for series in series_list:
            series.today_views = 0
            self.session.add(series)
        self.session.commit()
        return len(series_list)

    def _delete_all(self, statement) -> int:
        rows = self.session.exec(statement).all()
        for row in rows:
            self.session.delete(row)
        self.session.commit()
        return len(rows)

    # --- Bookmarks ---

    def add_bookmark(self, user_id: str, series_id: str) -> Bookmark:
        self.get_series(series_id)
        existing = self.session.exec(
            select(Bookmark).where(Bookmark.user_id == user_id, Bookmark.series_id == series_id)
        ).first()
        if existing:
            return existing
        bookmark = Bookmark(user_id=user_id, series_id=series_id)
        self.session.add(bookmark)
        self.session.commit()
        self.session.refresh(bookmark)
        return bookmark

    def remove_bookmark(self, user_id: str, series_id: str) -> bool:
        removed = self._delete_all(
            select(Bookmark).where(Bookmark.user_id == user_id, Bookmark.series_id == series_id)
        )
        return removed > 0

    def clear_bookmarks(self, user_id: str) -> int:
        return self._delete_all(select(Bookmark).where(Bookmark.user_id == user_id))

    # --- Ratings ---

    def rate_series(self, user_id: str, series_id: str, rating: int) -> Rating:
        if not isinstance(rating, int) or isinstance(rating, bool) or not 1 <= rating <= 10:
            raise ValidationError("Rating must be an integer from 1 to 10", field="rating")
        self.get_series(series_id)
        existing = self.session.exec(
            select(Rating).where(Rating.series_id == series_id, Rating.user_id == user_id)
        ).first()
        if existing:
            existing.rating = rating
            row = existing
        else:
            row = Rating(series_id=series_id, user_id=user_id, rating=rating)
        self.session.add(row)
        self.session.commit()
        self.session.refresh(row)
        return row

    # --- Reading history ---

    def record_history(self, user_id: str, series_id: str, chapter_number: float) -> ReadingHistory:
        entry = self.session.exec(
            select(ReadingHistory).where(
                ReadingHistory.user_id == user_id, ReadingHistory.series_id == series_id
            )
        ).first()
        if entry is None:
            entry = ReadingHistory(user_id=user_id, series_id=series_id, chapter_number=chapter_number)
        else:
            entry.chapter_number = chapter_number
            entry.updated_at = utcnow()
        self.session.add(entry)
        self.session.commit()
        self.session.refresh(entry)
        return entry

    def clear_history(self, user_id: str) -> int:
        return self._delete_all(select(ReadingHistory).where(ReadingHistory.user_id == user_id))

    # --- Messages ---

    def post_message(
        self,
        scope: str,
        target_id: str,
        user_id: str,
        content: str,
        parent_id: Optional[str] = None,
    ):
        model = MESSAGE_MODELS.get(scope)
        if model is None:
            raise ValidationError(f"Unknown message scope: {scope}")
        content = (content or "").strip()
        if not content:
            raise ValidationError("Message content is required", field="content")
        if len(content) > MAX_MESSAGE_LENGTH:
            raise ValidationError("Message is too long", field="content")

        if scope == "series":
            if self.session.get(Series, target_id) is None:
                raise NotFoundError("Series not found")
            message = SeriesMessage(series_id=target_id, user_id=user_id, content=content)
        else:
            if self.session.get(Chapter, target_id) is None:
                raise NotFoundError("Chapter not found")
            message = ChapterMessage(chapter_id=target_id, user_id=user_id, content=content)

        if parent_id:
            parent = self.session.get(model, parent_id)
            target_field = "series_id" if scope == "series" else "chapter_id"
            if parent is None or getattr(parent, target_field) != target_id:
                raise ValidationError("Reply target not found", field="parent_id")
            message.parent_id = parent_id

        self.session.add(message)
        self.session.commit()
        self.session.refresh(message)
        return message

    def toggle_reaction(self, scope: str, message_id: str, user_id: str, action: str):
        """Like/dislike toggle.

        Repeating the same action removes it; the opposite action switches it.
        The message's counters always match its interaction rows.
        """
        model = MESSAGE_MODELS.get(scope)
        if model is None:
            raise ValidationError(f"Unknown message scope: {scope}")
        if action not in REACTIONS:
            raise ValidationError("Invalid input", field="action")
        message = self.session.get(model, message_id)
        if message is None:
            raise NotFoundError("Message not found")

        interaction = self.session.get(MessageInteraction, (user_id, message_id, scope))
        if interaction is None:
            self.session.add(
                MessageInteraction(
                    user_id=user_id, message_id=message_id, scope=scope, interaction_type=action
                )
            )
            setattr(message, action, getattr(message, action) + 1)
        elif interaction.interaction_type == action:
            self.session.delete(interaction)
            setattr(message, action, max(0, getattr(message, action) - 1))
        else:
            previous = interaction.interaction_type
            interaction.interaction_type = action
            self.session.add(interaction)
            setattr(message, previous, max(0, getattr(message, previous) - 1))
            setattr(message, action, getattr(message, action) + 1)

        self.session.add(message)
        self.session.commit()
        self.session.refresh(message)
        return message

    # --- Accounts ---

    def delete_user_data(self, user: User) -> None:
        """Remove the user and everything personal attached to it.

        Messages stay with their author cleared. The user's reactions come
        off the counters of the messages they were on.
        """
        interactions = self.session.exec(
            select(MessageInteraction).where(MessageInteraction.user_id == user.id)
        ).all()
        for interaction in interactions:
            message = self.session.get(MESSAGE_MODELS[interaction.scope], interaction.message_id)
            if message is not None:
                action = interaction.interaction_type
                setattr(message, action, max(0, getattr(message, action) - 1))
                self.session.add(message)
            self.session.delete(interaction)

        for model in (Bookmark, ReadingHistory, Rating):
            for row in self.session.exec(select(model).where(model.user_id == user.id)).all():
                self.session.delete(row)

        for model in MESSAGE_MODELS.values():
            for message in self.session.exec(select(model).where(model.user_id == user.id)).all():
                message.user_id = None
                self.session.add(message)

        GroupService(self.session).release_user(user)
        self.session.flush()
        self.session.delete(user)
        self.session.commit()

    def stats(self) -> dict:
        def count(model) -> int:
            return self.session.exec(select(func.count()).select_from(model)).one()

        return {
            "series": count(Series),
            "chapters": count(Chapter),
            "users": count(User),
            "ratings": count(Rating),
            "bookmarks": count(Bookmark),
            "messages": count(SeriesMessage) + count(ChapterMessage),
        }
