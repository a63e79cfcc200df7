"""Content corpus store: session-per-operation facade over the repositories.

Every public coroutine opens its own session, so concurrent item tasks
never share one. Database failures surface as ``StoreUnavailable``.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from moodfeed.errors import StoreUnavailable
from moodfeed.logging import get_logger
from moodfeed.storage.json_utils import decode_comments
from moodfeed.storage.models import ContentItem
from moodfeed.storage.repo_content import ALL, ContentItemsRepo, ContentRecord
from moodfeed.storage.repo_events import EventsRepo
from moodfeed.storage.repo_meetings import MeetingRecord, MeetingsRepo

logger = get_logger(__name__)


@dataclass
class StoredItem:
    """Read-side view of a content item."""

    id: str
    title: str | None
    description: str | None
    source_channel: str | None
    url: str | None
    origin_tag: str | None
    session_id: str | None
    has_embedding: bool
    comments: list[dict[str, Any]]
    consumed: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: ContentItem) -> "StoredItem":
        return cls(
            id=row.id,
            title=row.title,
            description=row.description,
            source_channel=row.source_channel,
            url=row.url,
            origin_tag=row.origin_tag,
            session_id=row.session_id,
            has_embedding=row.embedding_json is not None,
            comments=decode_comments(row.comments_json),
            consumed=row.consumed,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "source_channel": self.source_channel,
            "url": self.url,
            "origin_tag": self.origin_tag,
            "comments": self.comments,
        }


@dataclass
class SimilarItem:
    """A retrieval match."""

    item: StoredItem
    similarity: float

    def to_dict(self) -> dict[str, Any]:
        data = self.item.to_dict()
        data["similarity"] = round(self.similarity, 6)
        return data


class CorpusStore:
    """Persistent corpus of content items."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def upsert(self, record: ContentRecord) -> None:
        """Insert or merge an item by ID; never downgrades non-null fields."""
        try:
            async with self._session_factory() as session:
                await ContentItemsRepo(session).upsert_item(record)
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Upsert of {record.id} failed: {e}") from e

    async def get(self, item_id: str) -> StoredItem | None:
        try:
            async with self._session_factory() as session:
                row = await ContentItemsRepo(session).get_item(item_id)
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Lookup of {item_id} failed: {e}") from e
        return StoredItem.from_row(row) if row is not None else None

    async def find_similar(
        self,
        query_vector: list[float],
        limit: int,
        threshold: float,
    ) -> list[SimilarItem]:
        """Unconsumed, embedded items with similarity >= threshold, best first."""
        try:
            async with self._session_factory() as session:
                pairs = await ContentItemsRepo(session).find_similar(
                    query_vector, limit, threshold
                )
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Similarity search failed: {e}") from e

        return [SimilarItem(StoredItem.from_row(row), score) for row, score in pairs]

    async def mark_consumed(self, item_ids: list[str]) -> int:
        try:
            async with self._session_factory() as session:
                return await ContentItemsRepo(session).mark_consumed(item_ids)
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Marking {len(item_ids)} items consumed failed: {e}") from e

    async def reset_consumed(self, item_ids: list[str] | Literal["all"]) -> int:
        """Flip consumed items back; returns the number actually flipped."""
        try:
            async with self._session_factory() as session:
                changed = await ContentItemsRepo(session).reset_consumed(item_ids)
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Consumption reset failed: {e}") from e

        scope = "all" if item_ids == ALL else f"{len(item_ids)} ids"
        logger.info(f"Reset consumed flag ({scope}): {changed} items changed")
        return changed

    async def count(self) -> int:
        try:
            async with self._session_factory() as session:
                return await ContentItemsRepo(session).count_items()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Count failed: {e}") from e

    async def count_with_embedding(self) -> int:
        try:
            async with self._session_factory() as session:
                return await ContentItemsRepo(session).count_with_embedding()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Count failed: {e}") from e

    async def count_consumed(self) -> int:
        try:
            async with self._session_factory() as session:
                return await ContentItemsRepo(session).count_consumed()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Count failed: {e}") from e

    async def record_event(
        self,
        event_name: str,
        run_id: str | None = None,
        user_identity: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        try:
            async with self._session_factory() as session:
                await EventsRepo(session).log_event(
                    event_name,
                    run_id=run_id,
                    user_identity=user_identity,
                    payload=payload,
                )
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Journal write failed: {e}") from e

    async def cache_meetings(self, user_identity: str, meetings: list[MeetingRecord]) -> int:
        try:
            async with self._session_factory() as session:
                return await MeetingsRepo(session).cache_meetings(user_identity, meetings)
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Caching meetings failed: {e}") from e

    async def list_meetings(
        self,
        user_identity: str,
        window_start: datetime | None = None,
        window_end: datetime | None = None,
    ) -> list[MeetingRecord]:
        try:
            async with self._session_factory() as session:
                rows = await MeetingsRepo(session).list_meetings(
                    user_identity, window_start, window_end
                )
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Listing meetings failed: {e}") from e

        return [
            MeetingRecord(
                id=row.id,
                subject=row.subject,
                start_time=row.start_time,
                end_time=row.end_time,
                body_preview=row.body_preview,
            )
            for row in rows
        ]
