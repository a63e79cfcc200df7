"""Domain contracts and type definitions."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from moodfeed.storage import SimilarItem


@dataclass
class EmotionReading:
    """Facial emotion distribution (label -> confidence, 0-100)."""

    emotions: dict[str, float] = field(default_factory=dict)
    dominant_emotion: str | None = None

    def __post_init__(self) -> None:
        if self.dominant_emotion is None and self.emotions:
            self.dominant_emotion = max(self.emotions, key=lambda k: self.emotions[k])

    @classmethod
    def empty(cls) -> "EmotionReading":
        """No face detected: unknown, neutral-weighted."""
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.emotions

    def to_dict(self) -> dict[str, Any]:
        return {"emotions": dict(self.emotions), "dominant_emotion": self.dominant_emotion}


@dataclass
class CalendarEvent:
    """One calendar entry for today."""

    subject: str
    start: datetime
    end: datetime
    duration_minutes: int

    @classmethod
    def from_times(cls, subject: str, start: datetime, end: datetime) -> "CalendarEvent":
        minutes = max(0, round((end - start).total_seconds() / 60))
        return cls(subject=subject, start=start, end=end, duration_minutes=minutes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject": self.subject,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "duration_minutes": self.duration_minutes,
        }


@dataclass
class ContextSnapshot:
    """Combined situational input for one curation request."""

    emotion: EmotionReading
    calendar_events: list[CalendarEvent]
    free_text: str
    user_identity: str | None = None


@dataclass
class DerivedContext:
    """Output of the context builder."""

    tags: list[str] = field(default_factory=list)
    description: str = ""


@dataclass
class CandidateItem:
    """Video candidate normalised from the search collaborator."""

    id: str
    title: str | None = None
    description: str | None = None
    source_channel: str | None = None
    url: str | None = None
    published_at: str | None = None


@dataclass
class Comment:
    """Top-level comment folded into the embedding input."""

    text: str
    like_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "like_count": self.like_count}


class ReasoningService(Protocol):
    """Protocol for the chat-completion collaborator."""

    async def generate_text(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 500,
        temperature: float = 0.7,
    ) -> str:
        ...


class EmbeddingModel(Protocol):
    """Protocol for the embedding collaborator."""

    async def create_embedding(self, text: str) -> list[float]:
        ...


class VideoSearch(Protocol):
    """Protocol for the video search collaborator.

    Implementations raise ``TransientCollaboratorError`` on any failure.
    """

    async def search_candidates(self, tag: str, limit: int) -> list[CandidateItem]:
        """Short-form videos matching a topical tag."""
        ...

    async def similar_candidates(self, seed_id: str, limit: int) -> list[CandidateItem]:
        """Videos similar to a liked video, excluding the seed itself."""
        ...

    async def fetch_comments(self, item_id: str, limit: int) -> list[Comment]:
        """Top comments for a video; empty when comments are disabled."""
        ...


class EmotionReader(Protocol):
    """Protocol for the emotion recognition collaborator."""

    async def read_emotions(self, image_bytes: bytes) -> EmotionReading:
        ...


class CalendarSource(Protocol):
    """Protocol for the calendar collaborator."""

    async def events_for(self, user_identity: str) -> list[CalendarEvent]:
        ...


@dataclass
class ItemOutcome:
    """Result of enriching and storing one candidate."""

    item_id: str
    source: str
    stored: bool
    embedded: bool = False
    comment_count: int = 0
    reason: str | None = None


@dataclass
class SourceTally:
    """Per-tag or per-seed counts."""

    fetched: int = 0
    stored: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"fetched": self.fetched, "stored": self.stored, "error": self.error}


@dataclass
class BatchSummary:
    """Aggregation of per-source and per-item outcomes for one run."""

    sources: dict[str, SourceTally] = field(default_factory=dict)
    outcomes: list[ItemOutcome] = field(default_factory=list)

    @property
    def items_stored(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.stored)

    @property
    def items_embedded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.stored and outcome.embedded)

    @property
    def failed_sources(self) -> list[str]:
        return [name for name, tally in self.sources.items() if tally.error]

    def record_source(self, source: str, fetched: int = 0, error: str | None = None) -> None:
        self.sources[source] = SourceTally(fetched=fetched, error=error)

    def record_outcome(self, outcome: ItemOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.stored and outcome.source in self.sources:
            self.sources[outcome.source].stored += 1

    def breakdown(self) -> dict[str, dict[str, Any]]:
        return {name: tally.to_dict() for name, tally in self.sources.items()}


@dataclass
class IngestionResult:
    """Result of an ingestion run."""

    run_id: str
    summary: BatchSummary
    tags: list[str]
    description: str
    emotion: EmotionReading
    calendar_events: list[CalendarEvent]

    @property
    def items_stored(self) -> int:
        return self.summary.items_stored

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "items_stored": self.summary.items_stored,
            "items_embedded": self.summary.items_embedded,
            "per_source_breakdown": self.summary.breakdown(),
            "tags": list(self.tags),
            "description": self.description,
            "emotion": self.emotion.to_dict(),
            "calendar": {
                "event_count": len(self.calendar_events),
                "events": [event.to_dict() for event in self.calendar_events],
            },
        }


@dataclass
class ExpansionResult:
    """Result of a liked-item expansion run."""

    run_id: str
    summary: BatchSummary
    seed_ids: list[str]

    @property
    def items_stored(self) -> int:
        return self.summary.items_stored

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "items_stored": self.summary.items_stored,
            "items_embedded": self.summary.items_embedded,
            "per_source_breakdown": self.summary.breakdown(),
            "based_on_liked_items": len(self.seed_ids),
        }


@dataclass
class FilteringResult:
    """Ranked unconsumed matches for a context."""

    run_id: str
    items: list[SimilarItem]
    tags: list[str] = field(default_factory=list)
    description: str = ""

    @property
    def count(self) -> int:
        return len(self.items)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "items": [match.to_dict() for match in self.items],
            "count": self.count,
        }
