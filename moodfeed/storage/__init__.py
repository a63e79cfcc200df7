"""Storage module for database operations."""

from moodfeed.storage.corpus import CorpusStore, SimilarItem, StoredItem
from moodfeed.storage.db import (
    Base,
    build_engine,
    close_engine,
    create_tables,
    get_engine,
    get_session_factory,
    make_session_factory,
)
from moodfeed.storage.models import CalendarMeeting, ContentItem, Event
from moodfeed.storage.repo_content import ALL, ContentItemsRepo, ContentRecord
from moodfeed.storage.repo_events import EventsRepo
from moodfeed.storage.repo_meetings import MeetingRecord, MeetingsRepo

__all__ = [
    # Database
    "Base",
    "build_engine",
    "get_engine",
    "get_session_factory",
    "make_session_factory",
    "create_tables",
    "close_engine",
    # Models
    "ContentItem",
    "CalendarMeeting",
    "Event",
    # Repositories
    "ContentItemsRepo",
    "ContentRecord",
    "EventsRepo",
    "MeetingsRepo",
    "MeetingRecord",
    # Corpus store
    "ALL",
    "CorpusStore",
    "StoredItem",
    "SimilarItem",
]
