"""Parsing of JSON objects returned by chat models."""

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


def extract_json_object(text: str | None) -> dict[str, Any] | None:
    """Parse a JSON object from model output.

    Accepts a bare object, an object wrapped in a markdown code fence, or
    an object surrounded by stray prose.

    Returns:
        Parsed dict, or None if no object could be parsed
    """
    if not text:
        return None

    cleaned = text.strip()
    fenced = _FENCE_RE.match(cleaned)
    if fenced:
        cleaned = fenced.group(1)

    candidates = [cleaned]
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if 0 <= start < end:
        candidates.append(cleaned[start:end + 1])

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except (json.JSONDecodeError, ValueError):
            continue
        if isinstance(data, dict):
            return data

    return None
