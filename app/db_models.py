"""SQLAlchemy ORM models backing the catalog and sync state."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base
from .utils import utcnow


class UserRecord(Base):
    """A catalog user whose history feeds the scoring service."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), default="")


class MediaItemRecord(Base):
    """A playable catalog item (movie or series)."""

    __tablename__ = "media_items"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(500), index=True)
    media_type: Mapped[str] = mapped_column(String(32), index=True)
    provider_ids: Mapped[dict[str, str]] = mapped_column(JSON, default=dict)
    genres: Mapped[list[str]] = mapped_column(JSON, default=list)
    tags: Mapped[list[str]] = mapped_column(JSON, default=list)
    studios: Mapped[list[str]] = mapped_column(JSON, default=list)
    overview: Mapped[str | None] = mapped_column(Text, nullable=True)
    community_rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    official_rating: Mapped[str | None] = mapped_column(String(32), nullable=True)
    premiere_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    run_time_ticks: Mapped[int | None] = mapped_column(Integer, nullable=True)
    date_created: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    date_modified: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )


class UserItemDataRecord(Base):
    """Per-user play state for a media item."""

    __tablename__ = "user_item_data"
    __table_args__ = (
        UniqueConstraint("user_id", "item_id", name="uq_user_item_data"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    item_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("media_items.id", ondelete="CASCADE")
    )
    played: Mapped[bool] = mapped_column(Boolean, default=False)
    play_count: Mapped[int] = mapped_column(Integer, default=0)
    is_favorite: Mapped[bool] = mapped_column(Boolean, default=False)
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    position_ticks: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_played: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class CollectionRecord(Base):
    """A named aggregation of media items owned by a user."""

    __tablename__ = "collections"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(String(255))
    overview: Mapped[str] = mapped_column(Text, default="")
    member_ids: Mapped[list[str]] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_modified: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class SyncStateRecord(Base):
    """Single-row table holding the process-wide last sync time."""

    __tablename__ = "sync_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    last_sync_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
