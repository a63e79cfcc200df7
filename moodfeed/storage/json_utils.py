"""JSON helpers for columns that hold vectors and comment lists."""

import json
from typing import Any

from moodfeed.logging import get_logger

logger = get_logger(__name__)


def safe_json_dumps(data: Any, default: str = "{}") -> str:
    """Serialize data to JSON string, returning default on failure."""
    if data is None:
        return default

    try:
        return json.dumps(data, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError, OverflowError) as e:
        logger.warning(f"Failed to serialize JSON: {e}")
        return default


def encode_vector(vector: list[float] | None) -> str | None:
    """Encode an embedding for storage; ``None`` stays ``None``."""
    if vector is None:
        return None
    return json.dumps([float(v) for v in vector], separators=(",", ":"))


def decode_vector(text: str | None) -> list[float] | None:
    """Decode a stored embedding, returning ``None`` for missing or corrupt values."""
    if not text:
        return None

    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError, ValueError) as e:
        logger.warning(f"Failed to parse stored embedding: {e}")
        return None

    if not isinstance(data, list):
        return None
    return [float(v) for v in data]


def encode_comments(comments: list[dict[str, Any]] | None) -> str | None:
    """Encode comments for storage.

    An empty list is stored as ``None`` so that a failed comment fetch
    never erases comments captured by an earlier run.
    """
    if not comments:
        return None
    return safe_json_dumps(comments, default="[]")


def decode_comments(text: str | None) -> list[dict[str, Any]]:
    """Decode stored comments, returning an empty list on failure."""
    if not text:
        return []

    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError, ValueError) as e:
        logger.warning(f"Failed to parse stored comments: {e}")
        return []

    return data if isinstance(data, list) else []
