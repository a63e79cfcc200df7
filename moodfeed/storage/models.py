"""SQLAlchemy ORM models for moodfeed."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from moodfeed.storage.db import Base


class ContentItem(Base):
    """Short-form video item in the curation corpus."""

    __tablename__ = "content_items"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    title: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source_channel: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    url: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    # Ingestion provenance
    origin_tag: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    # JSON-encoded float list / list of {"text", "like_count"}
    embedding_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    comments_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    consumed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_content_items_consumed", "consumed"),
        Index("ix_content_items_origin_tag", "origin_tag"),
    )


class CalendarMeeting(Base):
    """Cached calendar meeting for a user."""

    __tablename__ = "calendar_meetings"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_identity: Mapped[str] = mapped_column(String, nullable=False)
    subject: Mapped[str] = mapped_column(String, nullable=False, default="")
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    body_preview: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cached_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (Index("ix_calendar_meetings_user_start", "user_identity", "start_time"),)


class Event(Base):
    """Journal of curation runs."""

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_name: Mapped[str] = mapped_column(String, nullable=False)
    run_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    user_identity: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_events_name_created", "event_name", "created_at"),
        Index("ix_events_run_id", "run_id"),
    )
