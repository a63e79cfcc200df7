"""Repository for content corpus operations."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from sqlalchemy import func, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from moodfeed.config import ConfigurationError
from moodfeed.logging import get_logger
from moodfeed.storage.json_utils import decode_vector, encode_comments, encode_vector
from moodfeed.storage.models import ContentItem
from moodfeed.storage.similarity import cosine_similarity

logger = get_logger(__name__)

ALL: Literal["all"] = "all"

# Columns merged with COALESCE(new, old) on conflict
_MERGE_COLUMNS = (
    "title",
    "description",
    "source_channel",
    "url",
    "origin_tag",
    "session_id",
    "embedding_json",
    "comments_json",
)


@dataclass
class ContentRecord:
    """Incoming write for one content item. ``None`` fields never overwrite."""

    id: str
    title: str | None = None
    description: str | None = None
    source_channel: str | None = None
    url: str | None = None
    origin_tag: str | None = None
    session_id: str | None = None
    embedding: list[float] | None = None
    comments: list[dict[str, Any]] = field(default_factory=list)


class ContentItemsRepo:
    """Repository for content item operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_item(self, item_id: str) -> ContentItem | None:
        """Get item by ID.

        Args:
            item_id: External item ID

        Returns:
            ContentItem instance or None
        """
        stmt = select(ContentItem).where(ContentItem.id == item_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert_item(self, record: ContentRecord) -> None:
        """Insert or merge an item by ID (idempotent).

        Non-null incoming fields replace stored ones; null fields keep the
        stored value. ``consumed`` and ``created_at`` are never touched.

        Args:
            record: Incoming item data
        """
        now = datetime.now(timezone.utc)

        insert_stmt = sqlite_insert(ContentItem).values(
            id=record.id,
            title=record.title,
            description=record.description,
            source_channel=record.source_channel,
            url=record.url,
            origin_tag=record.origin_tag,
            session_id=record.session_id,
            embedding_json=encode_vector(record.embedding),
            comments_json=encode_comments(record.comments),
            consumed=False,
            created_at=now,
            updated_at=now,
        )

        table = ContentItem.__table__
        merge = {
            column: func.coalesce(getattr(insert_stmt.excluded, column), table.c[column])
            for column in _MERGE_COLUMNS
        }
        merge["updated_at"] = now

        upsert_stmt = insert_stmt.on_conflict_do_update(
            index_elements=["id"],
            set_=merge,
        )

        await self.session.execute(upsert_stmt)
        await self.session.commit()

    async def find_similar(
        self,
        query_vector: list[float],
        limit: int,
        threshold: float,
    ) -> list[tuple[ContentItem, float]]:
        """Rank unconsumed, embedded items by cosine similarity.

        Args:
            query_vector: Query embedding
            limit: Maximum matches to return
            threshold: Minimum similarity (inclusive)

        Returns:
            (item, similarity) pairs, best first. Equal similarities are
            ordered by most recent ``updated_at``, then by ID.

        Raises:
            ConfigurationError: If a stored vector has a different length
        """
        if limit <= 0:
            return []

        stmt = select(ContentItem).where(
            ContentItem.consumed.is_(False),
            ContentItem.embedding_json.is_not(None),
        )
        result = await self.session.execute(stmt)

        scored: list[tuple[ContentItem, float]] = []
        for item in result.scalars().all():
            vector = decode_vector(item.embedding_json)
            if vector is None:
                continue
            try:
                similarity = cosine_similarity(query_vector, vector)
            except ValueError as e:
                raise ConfigurationError(
                    f"Embedding dimension mismatch for item {item.id}: {e}"
                ) from e
            if similarity >= threshold:
                scored.append((item, similarity))

        # Stable sorts, least significant key first
        scored.sort(key=lambda pair: pair[0].id)
        scored.sort(key=lambda pair: pair[0].updated_at, reverse=True)
        scored.sort(key=lambda pair: pair[1], reverse=True)

        return scored[:limit]

    async def mark_consumed(self, item_ids: list[str]) -> int:
        """Mark items as served. Unknown IDs are ignored.

        Args:
            item_ids: Item IDs to mark

        Returns:
            Number of rows that flipped from unconsumed to consumed
        """
        if not item_ids:
            return 0

        now = datetime.now(timezone.utc)
        stmt = (
            update(ContentItem)
            .where(ContentItem.id.in_(item_ids), ContentItem.consumed.is_(False))
            .values(consumed=True, updated_at=now)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount or 0

    async def reset_consumed(self, item_ids: list[str] | Literal["all"]) -> int:
        """Make consumed items eligible for retrieval again.

        Args:
            item_ids: Explicit item IDs, or ``"all"`` for the whole corpus

        Returns:
            Number of rows that were consumed and are now unconsumed
        """
        stmt = update(ContentItem).where(ContentItem.consumed.is_(True))

        if item_ids != ALL:
            if not item_ids:
                return 0
            stmt = stmt.where(ContentItem.id.in_(item_ids))

        result = await self.session.execute(stmt.values(consumed=False))
        await self.session.commit()
        return result.rowcount or 0

    async def count_items(self) -> int:
        """Count all items in the corpus."""
        stmt = select(func.count()).select_from(ContentItem)
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def count_with_embedding(self) -> int:
        """Count items that carry an embedding."""
        stmt = (
            select(func.count())
            .select_from(ContentItem)
            .where(ContentItem.embedding_json.is_not(None))
        )
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def count_consumed(self) -> int:
        """Count items already served."""
        stmt = (
            select(func.count())
            .select_from(ContentItem)
            .where(ContentItem.consumed.is_(True))
        )
        result = await self.session.execute(stmt)
        return result.scalar() or 0
