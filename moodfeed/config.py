"""Application configuration loaded from environment variables."""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name, str(default))
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name, str(default))
    try:
        return float(value)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class Config:
    """Application configuration."""

    # Service settings
    host: str
    port: int
    database_url: str
    log_level: str
    admin_token: str | None

    # LLM settings
    llm_enabled: bool
    llm_provider: str  # "openai" or "anthropic"
    openai_api_key: str | None
    openai_model: str
    anthropic_api_key: str | None
    anthropic_model: str
    vision_model: str

    # Embedding settings
    embedding_model: str
    embedding_dimensions: int

    # YouTube settings
    youtube_api_key: str | None
    youtube_region: str
    youtube_language: str

    # Curation settings
    curation_max_tags: int
    ingest_candidates_per_tag: int
    ingest_comments_per_item: int
    expand_candidates_per_seed: int
    expand_comments_per_item: int
    filter_similarity_threshold: float
    filter_limit: int
    preview_similarity_threshold: float
    preview_limit: int
    curation_concurrency: int
    collaborator_timeout_seconds: float

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        host = os.getenv("HOST", "0.0.0.0")
        port_str = os.getenv("PORT", "8000")
        try:
            port = int(port_str)
        except ValueError:
            raise ConfigurationError(f"PORT must be an integer, got: {port_str}")

        database_url = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./moodfeed.db")
        log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        admin_token = os.getenv("ADMIN_TOKEN") or None

        # LLM settings
        llm_enabled = _env_bool("LLM_ENABLED", True)
        openai_api_key = os.getenv("OPENAI_API_KEY") or None
        openai_model = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
        anthropic_api_key = os.getenv("ANTHROPIC_API_KEY") or None
        anthropic_model = os.getenv("ANTHROPIC_MODEL", "claude-haiku-4-5-20251001")
        llm_provider = os.getenv("LLM_PROVIDER", "anthropic" if anthropic_api_key else "openai")
        if llm_provider not in ("openai", "anthropic"):
            raise ConfigurationError("LLM_PROVIDER must be 'openai' or 'anthropic'")
        vision_model = os.getenv("VISION_MODEL", "gpt-4o-mini")

        # Embedding settings
        embedding_model = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
        embedding_dimensions = _env_int("EMBEDDING_DIMENSIONS", 1536)
        if embedding_dimensions <= 0:
            raise ConfigurationError("EMBEDDING_DIMENSIONS must be positive")

        # YouTube settings
        youtube_api_key = os.getenv("YOUTUBE_API_KEY") or None
        youtube_region = os.getenv("YOUTUBE_REGION", "US")
        youtube_language = os.getenv("YOUTUBE_LANGUAGE", "en")

        # Curation settings
        curation_max_tags = _env_int("CURATION_MAX_TAGS", 10)
        ingest_candidates_per_tag = _env_int("INGEST_CANDIDATES_PER_TAG", 10)
        ingest_comments_per_item = _env_int("INGEST_COMMENTS_PER_ITEM", 3)
        expand_candidates_per_seed = _env_int("EXPAND_CANDIDATES_PER_SEED", 10)
        expand_comments_per_item = _env_int("EXPAND_COMMENTS_PER_ITEM", 5)
        filter_similarity_threshold = _env_float("FILTER_SIMILARITY_THRESHOLD", 0.1)
        filter_limit = _env_int("FILTER_LIMIT", 20)
        preview_similarity_threshold = _env_float("PREVIEW_SIMILARITY_THRESHOLD", 0.8)
        preview_limit = _env_int("PREVIEW_LIMIT", 20)

        curation_concurrency = _env_int("CURATION_CONCURRENCY", 4)
        if curation_concurrency < 1:
            curation_concurrency = 1

        collaborator_timeout_seconds = _env_float("COLLABORATOR_TIMEOUT_SECONDS", 30.0)

        return cls(
            host=host,
            port=port,
            database_url=database_url,
            log_level=log_level,
            admin_token=admin_token,
            llm_enabled=llm_enabled,
            llm_provider=llm_provider,
            openai_api_key=openai_api_key,
            openai_model=openai_model,
            anthropic_api_key=anthropic_api_key,
            anthropic_model=anthropic_model,
            vision_model=vision_model,
            embedding_model=embedding_model,
            embedding_dimensions=embedding_dimensions,
            youtube_api_key=youtube_api_key,
            youtube_region=youtube_region,
            youtube_language=youtube_language,
            curation_max_tags=curation_max_tags,
            ingest_candidates_per_tag=ingest_candidates_per_tag,
            ingest_comments_per_item=ingest_comments_per_item,
            expand_candidates_per_seed=expand_candidates_per_seed,
            expand_comments_per_item=expand_comments_per_item,
            filter_similarity_threshold=filter_similarity_threshold,
            filter_limit=filter_limit,
            preview_similarity_threshold=preview_similarity_threshold,
            preview_limit=preview_limit,
            curation_concurrency=curation_concurrency,
            collaborator_timeout_seconds=collaborator_timeout_seconds,
        )


config = Config.from_env()
