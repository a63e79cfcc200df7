"""Embedding gateway: text and content items to fixed-length vectors."""

import asyncio

import httpx

from moodfeed.config import ConfigurationError
from moodfeed.core.contracts import CandidateItem, Comment, EmbeddingModel
from moodfeed.errors import EmbeddingUnavailable, TransientCollaboratorError
from moodfeed.logging import get_logger
from moodfeed.providers.openai_embeddings import EmbeddingsError

logger = get_logger(__name__)


def content_item_text(item: CandidateItem, comments: list[Comment]) -> str:
    """Title, description and comment texts, space-joined, blanks skipped."""
    parts = [item.title or "", item.description or ""]
    parts.extend(comment.text or "" for comment in comments)
    return " ".join(part.strip() for part in parts if part and part.strip())


class EmbeddingGateway:
    """Wraps the embedding model and enforces one vector length."""

    def __init__(self, model: EmbeddingModel, dimensions: int, timeout: float = 30.0) -> None:
        self.model = model
        self.dimensions = dimensions
        self.timeout = timeout

    async def embed(self, text: str) -> list[float]:
        """Embed arbitrary text.

        Raises:
            EmbeddingUnavailable: On a transient model failure or timeout
            ConfigurationError: If the model returns a vector of the wrong length
        """
        try:
            vector = await asyncio.wait_for(self.model.create_embedding(text), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise EmbeddingUnavailable(f"Embedding timed out after {self.timeout}s") from e
        except (EmbeddingsError, TransientCollaboratorError, httpx.HTTPError) as e:
            raise EmbeddingUnavailable(f"Embedding failed: {e}") from e

        if len(vector) != self.dimensions:
            raise ConfigurationError(
                f"Embedding model returned {len(vector)} dimensions, "
                f"expected {self.dimensions} (check EMBEDDING_DIMENSIONS)"
            )
        return vector

    async def embed_content_item(
        self,
        item: CandidateItem,
        comments: list[Comment],
    ) -> list[float] | None:
        """Embed a content item with its comments.

        Returns:
            Vector, or None when there is no text to embed (the model is
            not called)
        """
        text = content_item_text(item, comments)
        if not text:
            logger.warning(f"No text to embed for item {item.id}")
            return None

        vector = await self.embed(text)
        logger.debug(
            f"Embedded item {item.id}: comments={len(comments)}, chars={len(text)}"
        )
        return vector
