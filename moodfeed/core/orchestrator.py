"""Curation workflows: ingestion, filtering, expansion and preview search."""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Literal, TypeVar

from moodfeed.config import Config
from moodfeed.core.context_builder import ContextBuilder
from moodfeed.core.contracts import (
    BatchSummary,
    CalendarEvent,
    CalendarSource,
    CandidateItem,
    Comment,
    ContextSnapshot,
    EmotionReader,
    EmotionReading,
    ExpansionResult,
    FilteringResult,
    IngestionResult,
    ItemOutcome,
    VideoSearch,
)
from moodfeed.core.embeddings import EmbeddingGateway
from moodfeed.errors import (
    ContextEmbeddingUnavailable,
    EmbeddingUnavailable,
    InvalidInput,
    StoreUnavailable,
    TransientCollaboratorError,
)
from moodfeed.logging import bind_run_id, get_logger
from moodfeed.storage import ALL, CorpusStore, SimilarItem
from moodfeed.storage.repo_content import ContentRecord

logger = get_logger(__name__)

T = TypeVar("T")

RECOMMENDED_FROM_PREFIX = "recommended_from_"


@dataclass(frozen=True)
class CurationSettings:
    """Per-workflow limits and thresholds."""

    candidates_per_tag: int = 10
    comments_per_item: int = 3
    candidates_per_seed: int = 10
    comments_per_seed_item: int = 5
    filter_threshold: float = 0.1
    filter_limit: int = 20
    preview_threshold: float = 0.8
    preview_limit: int = 20
    concurrency: int = 4
    timeout: float = 30.0

    @classmethod
    def from_config(cls, cfg: Config) -> "CurationSettings":
        return cls(
            candidates_per_tag=cfg.ingest_candidates_per_tag,
            comments_per_item=cfg.ingest_comments_per_item,
            candidates_per_seed=cfg.expand_candidates_per_seed,
            comments_per_seed_item=cfg.expand_comments_per_item,
            filter_threshold=cfg.filter_similarity_threshold,
            filter_limit=cfg.filter_limit,
            preview_threshold=cfg.preview_similarity_threshold,
            preview_limit=cfg.preview_limit,
            concurrency=cfg.curation_concurrency,
            timeout=cfg.collaborator_timeout_seconds,
        )


@dataclass
class _Source:
    """One candidate source of a run: a tag or a liked seed."""

    name: str
    origin_tag: str
    comments_limit: int
    fetch: Callable[[], Awaitable[list[CandidateItem]]]


def new_run_id(prefix: str) -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    return f"{prefix}-{stamp}-{uuid.uuid4().hex[:8]}"


async def bounded_gather(
    factories: Iterable[Callable[[], Awaitable[T]]],
    limit: int,
) -> list[T]:
    """Run coroutine factories with at most ``limit`` in flight.

    Results keep the input order. The first exception propagates, and the
    remaining tasks are cancelled and awaited before it does.
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def run(factory: Callable[[], Awaitable[T]]) -> T:
        async with semaphore:
            return await factory()

    tasks = [asyncio.ensure_future(run(factory)) for factory in factories]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


def _require_text(free_text: str | None) -> str:
    if not free_text or not free_text.strip():
        raise InvalidInput("free_text is required")
    return free_text.strip()


class CurationOrchestrator:
    """Runs the curation workflows against injected collaborators."""

    def __init__(
        self,
        store: CorpusStore,
        context_builder: ContextBuilder,
        embeddings: EmbeddingGateway,
        video_search: VideoSearch,
        emotion_reader: EmotionReader,
        calendar_source: CalendarSource,
        settings: CurationSettings | None = None,
    ) -> None:
        self.store = store
        self.context_builder = context_builder
        self.embeddings = embeddings
        self.video_search = video_search
        self.emotion_reader = emotion_reader
        self.calendar_source = calendar_source
        self.settings = settings or CurationSettings()

    # Context

    async def _read_emotion(self, image_bytes: bytes | None) -> EmotionReading:
        if not image_bytes:
            return EmotionReading.empty()
        try:
            return await asyncio.wait_for(
                self.emotion_reader.read_emotions(image_bytes),
                timeout=self.settings.timeout,
            )
        except (TransientCollaboratorError, asyncio.TimeoutError) as e:
            logger.warning(f"Emotion reading unavailable, continuing without it: {e!r}")
            return EmotionReading.empty()

    async def _read_calendar(self, user_identity: str | None) -> list[CalendarEvent]:
        if not user_identity:
            return []
        try:
            return await asyncio.wait_for(
                self.calendar_source.events_for(user_identity),
                timeout=self.settings.timeout,
            )
        except (TransientCollaboratorError, StoreUnavailable, asyncio.TimeoutError) as e:
            logger.warning(f"Calendar unavailable for {user_identity}, assuming no events: {e!r}")
            return []

    async def _snapshot(
        self,
        image_bytes: bytes | None,
        free_text: str,
        user_identity: str | None,
    ) -> ContextSnapshot:
        emotion, events = await asyncio.gather(
            self._read_emotion(image_bytes),
            self._read_calendar(user_identity),
        )
        return ContextSnapshot(
            emotion=emotion,
            calendar_events=events,
            free_text=free_text,
            user_identity=user_identity,
        )

    # Journal

    async def _journal(
        self,
        event_name: str,
        run_id: str,
        user_identity: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        try:
            await self.store.record_event(
                event_name, run_id=run_id, user_identity=user_identity, payload=payload
            )
        except StoreUnavailable as e:
            logger.warning(f"Could not journal {event_name}: {e}")

    # Candidate pipeline

    def _tag_sources(self, tags: list[str]) -> list[_Source]:
        limit = self.settings.candidates_per_tag
        return [
            _Source(
                name=tag,
                origin_tag=tag,
                comments_limit=self.settings.comments_per_item,
                fetch=lambda tag=tag: self.video_search.search_candidates(tag, limit),
            )
            for tag in tags
        ]

    def _seed_sources(self, seed_ids: list[str]) -> list[_Source]:
        # Breakdown key is the origin marker; a liked id may equal a tag
        limit = self.settings.candidates_per_seed
        return [
            _Source(
                name=f"{RECOMMENDED_FROM_PREFIX}{seed_id}",
                origin_tag=f"{RECOMMENDED_FROM_PREFIX}{seed_id}",
                comments_limit=self.settings.comments_per_seed_item,
                fetch=lambda seed_id=seed_id: self.video_search.similar_candidates(seed_id, limit),
            )
            for seed_id in seed_ids
        ]

    async def _fetch_source(self, source: _Source) -> list[CandidateItem] | str:
        try:
            return await asyncio.wait_for(source.fetch(), timeout=self.settings.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Candidate fetch for '{source.name}' timed out, skipping source")
            return "timeout"
        except TransientCollaboratorError as e:
            logger.error(f"Candidate fetch for '{source.name}' failed, skipping source: {e}")
            return str(e) or e.__class__.__name__

    async def _fetch_comments(self, item_id: str, limit: int) -> list[Comment]:
        if limit <= 0:
            return []
        try:
            return await asyncio.wait_for(
                self.video_search.fetch_comments(item_id, limit),
                timeout=self.settings.timeout,
            )
        except (TransientCollaboratorError, asyncio.TimeoutError) as e:
            logger.warning(f"Comments unavailable for {item_id}: {e!r}")
            return []

    async def _process_item(
        self,
        candidate: CandidateItem,
        source: _Source,
        run_id: str,
    ) -> ItemOutcome:
        comments = await self._fetch_comments(candidate.id, source.comments_limit)

        reason = None
        try:
            vector = await self.embeddings.embed_content_item(candidate, comments)
        except EmbeddingUnavailable as e:
            logger.warning(f"Storing {candidate.id} without embedding: {e}")
            vector = None
            reason = "embedding_unavailable"
        if vector is None and reason is None:
            reason = "no_text"

        await self.store.upsert(
            ContentRecord(
                id=candidate.id,
                title=candidate.title,
                description=candidate.description,
                source_channel=candidate.source_channel,
                url=candidate.url,
                origin_tag=source.origin_tag,
                session_id=run_id,
                embedding=vector,
                comments=[comment.to_dict() for comment in comments],
            )
        )
        return ItemOutcome(
            item_id=candidate.id,
            source=source.name,
            stored=True,
            embedded=vector is not None,
            comment_count=len(comments),
            reason=reason,
        )

    async def _run_sources(self, sources: list[_Source], run_id: str) -> BatchSummary:
        """Fetch every source, then enrich and store each distinct candidate."""
        summary = BatchSummary()
        if not sources:
            return summary

        fetched = await bounded_gather(
            [lambda source=source: self._fetch_source(source) for source in sources],
            self.settings.concurrency,
        )

        work: list[tuple[CandidateItem, _Source]] = []
        seen: set[str] = set()
        for source, result in zip(sources, fetched):
            if isinstance(result, str):
                summary.record_source(source.name, error=result)
                continue
            summary.record_source(source.name, fetched=len(result))
            for candidate in result:
                if not candidate.id or candidate.id in seen:
                    continue
                seen.add(candidate.id)
                work.append((candidate, source))

        outcomes = await bounded_gather(
            [
                lambda candidate=candidate, source=source: self._process_item(
                    candidate, source, run_id
                )
                for candidate, source in work
            ],
            self.settings.concurrency,
        )
        for outcome in outcomes:
            summary.record_outcome(outcome)

        logger.info(
            f"Processed {len(sources)} sources: candidates={len(work)}, "
            f"stored={summary.items_stored}, embedded={summary.items_embedded}, "
            f"failed_sources={len(summary.failed_sources)}"
        )
        return summary

    # Workflows

    async def ingest(
        self,
        image_bytes: bytes | None,
        free_text: str,
        user_identity: str | None = None,
        liked_item_ids: list[str] | None = None,
    ) -> IngestionResult:
        """Populate the corpus from the user's current context.

        Raises:
            InvalidInput: If free_text is empty
            StoreUnavailable: If items cannot be persisted
        """
        text = _require_text(free_text)
        run_id = new_run_id("context")

        with bind_run_id(run_id):
            logger.info(f"Ingestion started: user={user_identity or '-'}")
            await self._journal("ingest_started", run_id, user_identity)

            snapshot = await self._snapshot(image_bytes, text, user_identity)
            context = await self.context_builder.build_context(
                snapshot.emotion, snapshot.calendar_events, snapshot.free_text
            )

            seeds = list(dict.fromkeys(seed for seed in liked_item_ids or [] if seed))
            sources = self._tag_sources(context.tags) + self._seed_sources(seeds)
            if not sources:
                logger.warning("No tags or seeds derived, nothing to ingest")

            summary = await self._run_sources(sources, run_id)
            result = IngestionResult(
                run_id=run_id,
                summary=summary,
                tags=context.tags,
                description=context.description,
                emotion=snapshot.emotion,
                calendar_events=snapshot.calendar_events,
            )

            await self._journal(
                "ingest_completed",
                run_id,
                user_identity,
                {
                    "items_stored": summary.items_stored,
                    "items_embedded": summary.items_embedded,
                    "tags": context.tags,
                    "failed_sources": summary.failed_sources,
                },
            )
            logger.info(f"Ingestion completed: stored={summary.items_stored}")
            return result

    async def expand(self, liked_item_ids: list[str]) -> ExpansionResult:
        """Grow the corpus with items similar to liked ones.

        Raises:
            InvalidInput: If no liked ids are given
            StoreUnavailable: If items cannot be persisted
        """
        seeds = list(dict.fromkeys(seed for seed in liked_item_ids or [] if seed))
        if not seeds:
            raise InvalidInput("liked_item_ids must not be empty")

        run_id = new_run_id("liked-ingest")
        with bind_run_id(run_id):
            logger.info(f"Expansion started: seeds={len(seeds)}")
            await self._journal("expand_started", run_id, payload={"seeds": seeds})

            summary = await self._run_sources(self._seed_sources(seeds), run_id)

            await self._journal(
                "expand_completed",
                run_id,
                payload={
                    "items_stored": summary.items_stored,
                    "failed_sources": summary.failed_sources,
                },
            )
            logger.info(f"Expansion completed: stored={summary.items_stored}")
            return ExpansionResult(run_id=run_id, summary=summary, seed_ids=seeds)

    async def _embed_query(self, text: str) -> list[float]:
        if not text:
            raise ContextEmbeddingUnavailable("Context description is empty")
        try:
            return await self.embeddings.embed(text)
        except EmbeddingUnavailable as e:
            raise ContextEmbeddingUnavailable(f"Context embedding failed: {e}") from e

    async def filter(
        self,
        image_bytes: bytes | None,
        free_text: str,
        user_identity: str | None = None,
    ) -> FilteringResult:
        """Serve the best unconsumed matches for the context and mark them consumed.

        Raises:
            InvalidInput: If free_text is empty
            ContextEmbeddingUnavailable: If no query vector can be computed
            StoreUnavailable: If the similarity search fails
        """
        text = _require_text(free_text)
        run_id = new_run_id("filter")

        with bind_run_id(run_id):
            logger.info(f"Filtering started: user={user_identity or '-'}")
            snapshot = await self._snapshot(image_bytes, text, user_identity)
            context = await self.context_builder.build_context(
                snapshot.emotion, snapshot.calendar_events, snapshot.free_text
            )

            query = await self._embed_query(context.description)
            matches = await self.store.find_similar(
                query,
                limit=self.settings.filter_limit,
                threshold=self.settings.filter_threshold,
            )

            if matches:
                try:
                    marked = await self.store.mark_consumed([m.item.id for m in matches])
                    logger.info(f"Marked {marked} items consumed")
                except StoreUnavailable as e:
                    logger.error(f"Failed to mark served items consumed: {e}")

            await self._journal(
                "filter_served",
                run_id,
                user_identity,
                {"count": len(matches), "item_ids": [m.item.id for m in matches]},
            )
            logger.info(f"Filtering completed: served={len(matches)}")
            return FilteringResult(
                run_id=run_id,
                items=matches,
                tags=context.tags,
                description=context.description,
            )

    async def preview(
        self,
        text: str,
        limit: int | None = None,
        threshold: float | None = None,
    ) -> list[SimilarItem]:
        """Matches for an arbitrary context text. Nothing is marked consumed."""
        query = await self._embed_query(_require_text(text))
        return await self.store.find_similar(
            query,
            limit=limit if limit is not None else self.settings.preview_limit,
            threshold=threshold if threshold is not None else self.settings.preview_threshold,
        )

    async def stats(self) -> dict[str, int]:
        total = await self.store.count()
        with_embedding = await self.store.count_with_embedding()
        consumed = await self.store.count_consumed()
        return {
            "total": total,
            "with_embedding": with_embedding,
            "consumed": consumed,
            "ready": max(0, with_embedding - consumed),
        }

    async def reset_consumed(self, item_ids: list[str] | Literal["all"]) -> int:
        if item_ids != ALL and not isinstance(item_ids, list):
            raise InvalidInput("item_ids must be a list of ids or 'all'")
        return await self.store.reset_consumed(item_ids)
