"""Adapters for external collaborators."""

from moodfeed.providers.calendar_cache import CachedCalendarSource
from moodfeed.providers.emotion_client import EmotionClient
from moodfeed.providers.openai_embeddings import EmbeddingsClient, EmbeddingsError
from moodfeed.providers.youtube_client import YouTubeClient, YouTubeError, YouTubeVideoSearch

__all__ = [
    "CachedCalendarSource",
    "EmotionClient",
    "EmbeddingsClient",
    "EmbeddingsError",
    "YouTubeClient",
    "YouTubeError",
    "YouTubeVideoSearch",
]
