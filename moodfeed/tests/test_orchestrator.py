"""Tests for the curation workflows.

Covers:
- Ingestion with partial tag failure and per-item embedding failure
- Best-effort emotion and calendar reads
- Filtering threshold, at-most-once serving and mark-consumed tolerance
- Context embedding failure
- Bounded parallelism, per-call timeouts and cancellation on store failure
- Expansion from liked items
- Preview search, stats and reset
"""

import asyncio
import json

import pytest

from moodfeed.core import ContextBuilder, CurationOrchestrator, CurationSettings, EmbeddingGateway
from moodfeed.core.contracts import CandidateItem, Comment, EmotionReading
from moodfeed.errors import (
    ContextEmbeddingUnavailable,
    InvalidInput,
    StoreUnavailable,
    TransientCollaboratorError,
)
from moodfeed.storage import ALL, ContentRecord, CorpusStore, EventsRepo

QUERY = [1.0, 0.0]
DESCRIPTION = "Calm, slow videos for an overwhelmed afternoon"


class FakeReasoning:
    def __init__(self, tags=None, description=DESCRIPTION):
        self.reply = json.dumps({"tags": tags or [], "contextDescription": description})
        self.calls = 0

    async def generate_text(self, system_prompt, user_prompt, max_tokens=500, temperature=0.7):
        self.calls += 1
        self.last_prompt = user_prompt
        return self.reply


class FakeEmbeddingModel:
    """Vectors by text prefix; texts starting with a failing prefix raise."""

    def __init__(self, vectors=None, failing=()):
        self.vectors = {DESCRIPTION: QUERY, **(vectors or {})}
        self.failing = tuple(failing)
        self.calls = []

    async def create_embedding(self, text):
        self.calls.append(text)
        if self.failing and text.startswith(self.failing):
            raise TransientCollaboratorError("embedding outage", collaborator="embedding")
        for prefix, vector in self.vectors.items():
            if text.startswith(prefix):
                return vector
        return [0.0, 1.0]


class FakeVideoSearch:
    def __init__(self, by_tag=None, similar=None, comments=None):
        self.by_tag = by_tag or {}
        self.similar = similar or {}
        self.comments = comments or {}
        self.searched = []

    async def search_candidates(self, tag, limit):
        self.searched.append(tag)
        result = self.by_tag.get(tag, [])
        if isinstance(result, Exception):
            raise result
        return result[:limit]

    async def similar_candidates(self, seed_id, limit):
        result = self.similar.get(seed_id, [])
        if isinstance(result, Exception):
            raise result
        return result[:limit]

    async def fetch_comments(self, item_id, limit):
        result = self.comments.get(item_id, [])
        if isinstance(result, Exception):
            raise result
        return result[:limit]


class FakeEmotionReader:
    def __init__(self, reading=None, error=None):
        self.reading = reading or EmotionReading(emotions={"sad": 70.0, "calm": 20.0})
        self.error = error
        self.calls = 0

    async def read_emotions(self, image_bytes):
        self.calls += 1
        if self.error:
            raise self.error
        return self.reading


class FakeCalendar:
    def __init__(self, events=None, error=None):
        self.events = events or []
        self.error = error

    async def events_for(self, user_identity):
        if self.error:
            raise self.error
        return self.events


def _candidates(prefix, count):
    return [
        CandidateItem(
            id=f"{prefix}{i}",
            title=f"{prefix} video {i}",
            description="short clip",
            source_channel="Channel",
            url=f"https://www.youtube.com/shorts/{prefix}{i}",
        )
        for i in range(count)
    ]


def _orchestrator(
    store,
    reasoning=None,
    model=None,
    search=None,
    emotion=None,
    calendar=None,
    **settings,
):
    return CurationOrchestrator(
        store=store,
        context_builder=ContextBuilder(reasoning or FakeReasoning(), timeout=1.0),
        embeddings=EmbeddingGateway(model or FakeEmbeddingModel(), dimensions=2, timeout=1.0),
        video_search=search or FakeVideoSearch(),
        emotion_reader=emotion or FakeEmotionReader(),
        calendar_source=calendar or FakeCalendar(),
        settings=CurationSettings(**{"timeout": 1.0, **settings}),
    )


# ---------------------------------------------------------------------------
# 1. Ingestion
# ---------------------------------------------------------------------------

@pytest.mark.anyio
async def test_ingest_skips_failed_tag(store: CorpusStore):
    """A failing tag search is logged and skipped; other tags still ingest."""
    search = FakeVideoSearch(by_tag={
        "lofi": _candidates("lofi", 3),
        "stretch": TransientCollaboratorError("quota", collaborator="video_search"),
        "nature": _candidates("nature", 2),
    })
    orchestrator = _orchestrator(
        store,
        reasoning=FakeReasoning(tags=["lofi", "stretch", "nature"]),
        search=search,
    )

    result = await orchestrator.ingest(b"jpeg", "overwhelmed", user_identity="ana")

    assert result.items_stored == 5
    breakdown = result.to_dict()["per_source_breakdown"]
    assert breakdown["lofi"] == {"fetched": 3, "stored": 3, "error": None}
    assert breakdown["nature"] == {"fetched": 2, "stored": 2, "error": None}
    assert breakdown["stretch"]["stored"] == 0
    assert breakdown["stretch"]["error"]
    assert result.summary.failed_sources == ["stretch"]
    assert await store.count() == 5


@pytest.mark.anyio
async def test_ingest_stores_items_without_embedding_when_model_fails(store: CorpusStore):
    """20 candidates, 2 embedding failures: 20 stored, 18 embedded."""
    search = FakeVideoSearch(by_tag={
        "focus": _candidates("focus", 10),
        "rain": _candidates("rain", 10),
    })
    model = FakeEmbeddingModel(failing=("focus video 3", "rain video 7"))
    orchestrator = _orchestrator(
        store,
        reasoning=FakeReasoning(tags=["focus", "rain"]),
        model=model,
        search=search,
    )

    result = await orchestrator.ingest(None, "need to concentrate")

    assert result.summary.items_stored == 20
    assert result.summary.items_embedded == 18
    assert await store.count() == 20
    assert await store.count_with_embedding() == 18

    failed = await store.get("focus3")
    assert failed is not None
    assert failed.has_embedding is False
    assert failed.origin_tag == "focus"
    assert failed.session_id == result.run_id


@pytest.mark.anyio
async def test_ingest_attaches_comments_and_tolerates_comment_failure(store: CorpusStore):
    search = FakeVideoSearch(
        by_tag={"calm": _candidates("calm", 2)},
        comments={
            "calm0": [Comment("so soothing", 12), Comment("saved my day", 3)],
            "calm1": TransientCollaboratorError("boom", collaborator="comments"),
        },
    )
    model = FakeEmbeddingModel()
    orchestrator = _orchestrator(
        store,
        reasoning=FakeReasoning(tags=["calm"]),
        model=model,
        search=search,
        comments_per_item=1,
    )

    result = await orchestrator.ingest(None, "anxious")

    assert result.items_stored == 2
    first = await store.get("calm0")
    assert first.comments == [{"text": "so soothing", "like_count": 12}]
    assert "calm video 0 short clip so soothing" in model.calls
    second = await store.get("calm1")
    assert second.comments == []
    assert second.has_embedding is True


@pytest.mark.anyio
async def test_ingest_processes_duplicate_candidates_once(store: CorpusStore):
    shared = _candidates("shared", 1)
    search = FakeVideoSearch(by_tag={"a": shared + _candidates("a", 1), "b": shared})
    model = FakeEmbeddingModel()
    orchestrator = _orchestrator(
        store, reasoning=FakeReasoning(tags=["a", "b"]), model=model, search=search
    )

    result = await orchestrator.ingest(None, "bored")

    assert result.items_stored == 2
    assert result.summary.sources["a"].stored == 2
    assert result.summary.sources["b"].fetched == 1
    assert result.summary.sources["b"].stored == 0
    assert (await store.get("shared0")).origin_tag == "a"


@pytest.mark.anyio
async def test_ingest_without_tags_succeeds_with_nothing_stored(store: CorpusStore):
    search = FakeVideoSearch()
    orchestrator = _orchestrator(store, reasoning=FakeReasoning(tags=[]), search=search)

    result = await orchestrator.ingest(None, "fine I guess")

    assert result.items_stored == 0
    assert result.to_dict()["per_source_breakdown"] == {}
    assert search.searched == []


@pytest.mark.anyio
async def test_ingest_degrades_when_emotion_and_calendar_fail(store: CorpusStore):
    reasoning = FakeReasoning(tags=["calm"])
    orchestrator = _orchestrator(
        store,
        reasoning=reasoning,
        search=FakeVideoSearch(by_tag={"calm": _candidates("calm", 1)}),
        emotion=FakeEmotionReader(error=TransientCollaboratorError("vision", collaborator="emotion")),
        calendar=FakeCalendar(error=StoreUnavailable("db down")),
    )

    result = await orchestrator.ingest(b"jpeg", "tired", user_identity="ana")

    assert result.items_stored == 1
    assert result.emotion.is_empty
    assert result.calendar_events == []
    assert "no face detected" in reasoning.last_prompt


@pytest.mark.anyio
async def test_ingest_with_liked_seeds_uses_recommendation_origin(store: CorpusStore):
    search = FakeVideoSearch(
        by_tag={"calm": _candidates("calm", 1)},
        similar={"liked1": _candidates("rec", 2)},
    )
    orchestrator = _orchestrator(
        store, reasoning=FakeReasoning(tags=["calm"]), search=search
    )

    result = await orchestrator.ingest(None, "good mood", liked_item_ids=["liked1", "liked1"])

    assert result.items_stored == 3
    assert set(result.summary.sources) == {"calm", "recommended_from_liked1"}
    assert (await store.get("rec0")).origin_tag == "recommended_from_liked1"


@pytest.mark.anyio
async def test_ingest_keeps_tag_and_seed_tallies_apart(store: CorpusStore):
    """A liked id spelled like a tag gets its own breakdown entry."""
    search = FakeVideoSearch(
        by_tag={"calm": _candidates("calm", 2)},
        similar={"calm": _candidates("rec", 1)},
    )
    orchestrator = _orchestrator(store, reasoning=FakeReasoning(tags=["calm"]), search=search)

    result = await orchestrator.ingest(None, "good mood", liked_item_ids=["calm"])

    breakdown = result.to_dict()["per_source_breakdown"]
    assert breakdown["calm"] == {"fetched": 2, "stored": 2, "error": None}
    assert breakdown["recommended_from_calm"] == {"fetched": 1, "stored": 1, "error": None}
    assert result.items_stored == 3


class InFlightSearch(FakeVideoSearch):
    """Records the peak number of concurrent search calls."""

    def __init__(self, delays=None, comment_delay=0.0, **kwargs):
        super().__init__(**kwargs)
        self.delays = delays or {}
        self.comment_delay = comment_delay
        self.in_flight = 0
        self.peak = 0

    async def search_candidates(self, tag, limit):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(tag, 0.01))
            return await super().search_candidates(tag, limit)
        finally:
            self.in_flight -= 1

    async def fetch_comments(self, item_id, limit):
        await asyncio.sleep(self.comment_delay)
        return await super().fetch_comments(item_id, limit)


class InFlightEmbeddingModel(FakeEmbeddingModel):
    def __init__(self):
        super().__init__()
        self.in_flight = 0
        self.peak = 0

    async def create_embedding(self, text):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            return await super().create_embedding(text)
        finally:
            self.in_flight -= 1


@pytest.mark.anyio
async def test_ingest_bounds_parallel_collaborator_calls(store: CorpusStore):
    tags = [f"tag{i}" for i in range(6)]
    search = InFlightSearch(by_tag={tag: _candidates(tag, 2) for tag in tags})
    model = InFlightEmbeddingModel()
    orchestrator = _orchestrator(
        store,
        reasoning=FakeReasoning(tags=tags),
        model=model,
        search=search,
        concurrency=2,
    )

    result = await orchestrator.ingest(None, "restless")

    assert result.items_stored == 12
    assert search.peak == 2
    assert 1 <= model.peak <= 2


@pytest.mark.anyio
async def test_ingest_skips_source_that_times_out(store: CorpusStore):
    search = InFlightSearch(
        delays={"slow": 5.0},
        by_tag={"slow": _candidates("slow", 1), "fast": _candidates("fast", 2)},
    )
    orchestrator = _orchestrator(
        store,
        reasoning=FakeReasoning(tags=["slow", "fast"]),
        search=search,
        timeout=0.1,
    )

    result = await orchestrator.ingest(None, "impatient")

    breakdown = result.to_dict()["per_source_breakdown"]
    assert breakdown["slow"] == {"fetched": 0, "stored": 0, "error": "timeout"}
    assert breakdown["fast"]["stored"] == 2
    assert result.summary.failed_sources == ["slow"]
    assert await store.get("slow0") is None


@pytest.mark.anyio
async def test_ingest_stores_item_without_comments_when_comments_time_out(store: CorpusStore):
    search = InFlightSearch(
        comment_delay=5.0,
        by_tag={"calm": _candidates("calm", 1)},
        comments={"calm0": [Comment("never arrives")]},
    )
    orchestrator = _orchestrator(
        store, reasoning=FakeReasoning(tags=["calm"]), search=search, timeout=0.1
    )

    result = await orchestrator.ingest(None, "tired")

    assert result.items_stored == 1
    item = await store.get("calm0")
    assert item.comments == []
    assert item.has_embedding is True


@pytest.mark.anyio
async def test_store_failure_cancels_remaining_item_work(store: CorpusStore):
    """Once an upsert fails, no sibling item is processed afterwards."""

    class FailingStore(CorpusStore):
        def __init__(self, session_factory):
            super().__init__(session_factory)
            self.upserted = []

        async def upsert(self, record):
            self.upserted.append(record.id)
            if record.id == "t0":
                raise StoreUnavailable("disk full")
            await super().upsert(record)

    failing = FailingStore(store._session_factory)
    model = FakeEmbeddingModel()
    orchestrator = _orchestrator(
        failing,
        reasoning=FakeReasoning(tags=["t"]),
        model=model,
        search=InFlightSearch(comment_delay=0.05, by_tag={"t": _candidates("t", 6)}),
        concurrency=1,
    )

    with pytest.raises(StoreUnavailable):
        await orchestrator.ingest(None, "sleepy")

    await asyncio.sleep(0.3)

    assert failing.upserted == ["t0"]
    assert model.calls == ["t video 0 short clip"]


@pytest.mark.anyio
@pytest.mark.parametrize("free_text", ["", "  "])
async def test_ingest_requires_free_text_before_any_call(store: CorpusStore, free_text):
    reasoning = FakeReasoning(tags=["calm"])
    emotion = FakeEmotionReader()
    orchestrator = _orchestrator(store, reasoning=reasoning, emotion=emotion)

    with pytest.raises(InvalidInput):
        await orchestrator.ingest(b"jpeg", free_text)

    assert reasoning.calls == 0
    assert emotion.calls == 0


@pytest.mark.anyio
async def test_ingest_journals_run(store: CorpusStore, session):
    orchestrator = _orchestrator(store, reasoning=FakeReasoning(tags=[]))

    result = await orchestrator.ingest(None, "ok")

    events = await EventsRepo(session).list_events(run_id=result.run_id)
    assert result.run_id.startswith("context-")
    assert {event.event_name for event in events} == {"ingest_started", "ingest_completed"}


# ---------------------------------------------------------------------------
# 2. Filtering
# ---------------------------------------------------------------------------

async def _seed_threshold_corpus(store: CorpusStore) -> None:
    await store.upsert(ContentRecord(id="close", title="close", embedding=[0.6, 0.8]))
    await store.upsert(ContentRecord(id="far", title="far", embedding=[0.4, 0.9165151389911680]))


@pytest.mark.anyio
async def test_filter_applies_threshold_and_marks_consumed(store: CorpusStore):
    """Similarities 0.6 and 0.4 against threshold 0.5: only the first is served, once."""
    await _seed_threshold_corpus(store)
    orchestrator = _orchestrator(store, filter_threshold=0.5)

    result = await orchestrator.filter(None, "overwhelmed")

    assert result.count == 1
    assert result.items[0].item.id == "close"
    assert result.items[0].similarity == pytest.approx(0.6)
    assert result.to_dict()["items"][0]["similarity"] == pytest.approx(0.6)
    assert (await store.get("close")).consumed is True
    assert (await store.get("far")).consumed is False

    again = await orchestrator.filter(None, "overwhelmed")
    assert again.count == 0


@pytest.mark.anyio
async def test_filter_lower_threshold_serves_more(store: CorpusStore):
    await _seed_threshold_corpus(store)
    orchestrator = _orchestrator(store, filter_threshold=0.1)

    result = await orchestrator.filter(None, "overwhelmed")

    assert [match.item.id for match in result.items] == ["close", "far"]


@pytest.mark.anyio
async def test_filter_tolerates_mark_consumed_failure(store: CorpusStore):
    await _seed_threshold_corpus(store)

    class FlakyStore(CorpusStore):
        async def mark_consumed(self, item_ids):
            raise StoreUnavailable("locked")

    flaky = FlakyStore(store._session_factory)
    orchestrator = _orchestrator(flaky, filter_threshold=0.5)

    result = await orchestrator.filter(None, "overwhelmed")

    assert [match.item.id for match in result.items] == ["close"]
    assert (await store.get("close")).consumed is False


@pytest.mark.anyio
async def test_filter_empty_description_is_context_embedding_unavailable(store: CorpusStore):
    model = FakeEmbeddingModel()
    orchestrator = _orchestrator(store, reasoning=FakeReasoning(description=""), model=model)

    with pytest.raises(ContextEmbeddingUnavailable):
        await orchestrator.filter(None, "overwhelmed")

    assert model.calls == []


@pytest.mark.anyio
async def test_filter_embedding_failure_is_context_embedding_unavailable(store: CorpusStore):
    orchestrator = _orchestrator(store, model=FakeEmbeddingModel(failing=(DESCRIPTION,)))

    with pytest.raises(ContextEmbeddingUnavailable):
        await orchestrator.filter(None, "overwhelmed")


@pytest.mark.anyio
async def test_filter_store_failure_propagates(store: CorpusStore):
    class DownStore(CorpusStore):
        async def find_similar(self, query_vector, limit, threshold):
            raise StoreUnavailable("gone")

    orchestrator = _orchestrator(DownStore(store._session_factory))

    with pytest.raises(StoreUnavailable):
        await orchestrator.filter(None, "overwhelmed")


# ---------------------------------------------------------------------------
# 3. Expansion
# ---------------------------------------------------------------------------

@pytest.mark.anyio
async def test_expand_stores_similar_items_per_seed(store: CorpusStore):
    search = FakeVideoSearch(
        similar={
            "seedA": _candidates("a", 3),
            "seedB": TransientCollaboratorError("not found", collaborator="video_search"),
        },
        comments={"a0": [Comment("love it")]},
    )
    orchestrator = _orchestrator(store, search=search, candidates_per_seed=2)

    result = await orchestrator.expand(["seedA", "seedB", "seedA"])

    assert result.seed_ids == ["seedA", "seedB"]
    assert result.items_stored == 2
    data = result.to_dict()
    assert data["based_on_liked_items"] == 2
    assert data["per_source_breakdown"]["recommended_from_seedA"]["stored"] == 2
    assert data["per_source_breakdown"]["recommended_from_seedB"]["error"]
    assert result.run_id.startswith("liked-ingest-")

    item = await store.get("a0")
    assert item.origin_tag == "recommended_from_seedA"
    assert item.comments == [{"text": "love it", "like_count": 0}]


@pytest.mark.anyio
async def test_expand_requires_seeds(store: CorpusStore):
    orchestrator = _orchestrator(store)

    with pytest.raises(InvalidInput):
        await orchestrator.expand([])


# ---------------------------------------------------------------------------
# 4. Preview, stats and reset
# ---------------------------------------------------------------------------

@pytest.mark.anyio
async def test_preview_does_not_consume(store: CorpusStore):
    await _seed_threshold_corpus(store)
    orchestrator = _orchestrator(store, preview_threshold=0.5)

    first = await orchestrator.preview(DESCRIPTION)
    second = await orchestrator.preview(DESCRIPTION, threshold=0.0, limit=1)

    assert [m.item.id for m in first] == ["close"]
    assert [m.item.id for m in second] == ["close"]
    assert await store.count_consumed() == 0


@pytest.mark.anyio
async def test_stats_and_reset(store: CorpusStore):
    await _seed_threshold_corpus(store)
    await store.upsert(ContentRecord(id="bare", title="no vector"))
    orchestrator = _orchestrator(store, filter_threshold=0.1)

    await orchestrator.filter(None, "overwhelmed")

    assert await orchestrator.stats() == {
        "total": 3,
        "with_embedding": 2,
        "consumed": 2,
        "ready": 0,
    }
    assert await orchestrator.reset_consumed(["far"]) == 1
    assert await orchestrator.reset_consumed(ALL) == 1
    assert (await orchestrator.stats())["ready"] == 2
