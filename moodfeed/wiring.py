"""Assembles the curation engine from configuration."""

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from moodfeed.config import Config
from moodfeed.core import ContextBuilder, CurationOrchestrator, CurationSettings, EmbeddingGateway
from moodfeed.core.contracts import CandidateItem, Comment, EmotionReading
from moodfeed.errors import TransientCollaboratorError
from moodfeed.llm import LLMClient
from moodfeed.logging import get_logger
from moodfeed.providers import (
    CachedCalendarSource,
    EmbeddingsClient,
    EmotionClient,
    YouTubeClient,
    YouTubeVideoSearch,
)
from moodfeed.storage import CorpusStore

logger = get_logger(__name__)


class UnconfiguredEmbeddings:
    """Embedding model stand-in when no OpenAI key is set; always fails."""

    async def create_embedding(self, text: str) -> list[float]:
        raise TransientCollaboratorError("OPENAI_API_KEY not set", collaborator="embedding")


class UnconfiguredVideoSearch:
    """Video search stand-in when no YouTube key is set; every call fails."""

    async def search_candidates(self, tag: str, limit: int) -> list[CandidateItem]:
        raise TransientCollaboratorError("YOUTUBE_API_KEY not set", collaborator="video_search")

    async def similar_candidates(self, seed_id: str, limit: int) -> list[CandidateItem]:
        raise TransientCollaboratorError("YOUTUBE_API_KEY not set", collaborator="video_search")

    async def fetch_comments(self, item_id: str, limit: int) -> list[Comment]:
        return []


class NoEmotionReader:
    """Emotion reader stand-in when no vision key is set."""

    async def read_emotions(self, image_bytes: bytes) -> EmotionReading:
        return EmotionReading.empty()


@dataclass
class Services:
    """Wired engine plus the HTTP clients that need closing."""

    orchestrator: CurationOrchestrator
    store: CorpusStore
    clients: list[Any] = field(default_factory=list)

    async def close(self) -> None:
        for client in self.clients:
            await client.close()


def build_services(
    cfg: Config,
    session_factory: async_sessionmaker[AsyncSession],
) -> Services:
    """Build every collaborator from config and inject them into the orchestrator."""
    store = CorpusStore(session_factory)
    clients: list[Any] = []

    reasoning_key = cfg.anthropic_api_key if cfg.llm_provider == "anthropic" else cfg.openai_api_key
    reasoning_model = cfg.anthropic_model if cfg.llm_provider == "anthropic" else cfg.openai_model
    reasoning = LLMClient(
        provider=cfg.llm_provider,
        api_key=reasoning_key,
        model=reasoning_model,
        enabled=cfg.llm_enabled,
    )

    if cfg.openai_api_key:
        embeddings_client = EmbeddingsClient(api_key=cfg.openai_api_key, model=cfg.embedding_model)
        clients.append(embeddings_client)
        embedding_model: Any = embeddings_client
        emotion_reader: Any = EmotionClient(
            api_key=cfg.openai_api_key,
            model=cfg.vision_model,
            timeout=cfg.collaborator_timeout_seconds,
        )
    else:
        logger.warning("OPENAI_API_KEY not set: embeddings and emotion reading disabled")
        embedding_model = UnconfiguredEmbeddings()
        emotion_reader = NoEmotionReader()

    if cfg.youtube_api_key:
        youtube = YouTubeClient(
            api_key=cfg.youtube_api_key,
            region=cfg.youtube_region,
            language=cfg.youtube_language,
        )
        clients.append(youtube)
        video_search: Any = YouTubeVideoSearch(youtube)
    else:
        logger.warning("YOUTUBE_API_KEY not set: candidate search disabled")
        video_search = UnconfiguredVideoSearch()

    orchestrator = CurationOrchestrator(
        store=store,
        context_builder=ContextBuilder(
            reasoning,
            max_tags=cfg.curation_max_tags,
            timeout=cfg.collaborator_timeout_seconds,
        ),
        embeddings=EmbeddingGateway(
            embedding_model,
            dimensions=cfg.embedding_dimensions,
            timeout=cfg.collaborator_timeout_seconds,
        ),
        video_search=video_search,
        emotion_reader=emotion_reader,
        calendar_source=CachedCalendarSource(store),
        settings=CurationSettings.from_config(cfg),
    )
    return Services(orchestrator=orchestrator, store=store, clients=clients)
