"""Turns a context snapshot into search tags and an embedding-ready description."""

import asyncio
import json

from moodfeed.core.contracts import CalendarEvent, DerivedContext, EmotionReading, ReasoningService
from moodfeed.errors import InvalidInput, TransientCollaboratorError
from moodfeed.llm import LLMDisabledError, LLMError
from moodfeed.llm.json_output import extract_json_object
from moodfeed.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_TAGS = 10
MAX_TAG_LENGTH = 60

SYSTEM_PROMPT = (
    "You are a content curator. You read a person's current emotional state, "
    "their calendar for the day and how they describe their mood, and decide "
    "what short-form videos would serve them right now. Respond with JSON only."
)

USER_PROMPT_TEMPLATE = """Analyze the following context and extract insights for finding YouTube Shorts.

1. How the user describes their feeling:
{free_text}

2. Emotional state from their selfie:
- All emotions: {emotions}
- Primary emotion: {dominant}

3. Today's calendar ({event_count} events):
{calendar}

Based on this context, provide:
1. Up to {max_tags} short, searchable YouTube tags that capture the user's current state and needs.
2. A detailed description of what the user is feeling and what kind of content would serve them
   best. It will be embedded and compared against video titles, descriptions and comments,
   so describe the content itself (tone, topics, pacing), not just the user's inputs.

Format your response as JSON:
{{"tags": ["tag1", "tag2"], "contextDescription": "..."}}"""


def format_calendar(events: list[CalendarEvent]) -> str:
    if not events:
        return "No events scheduled"
    return "\n".join(
        f"- {event.subject}: {event.start.strftime('%H:%M')} to "
        f"{event.end.strftime('%H:%M')} ({event.duration_minutes} min)"
        for event in events
    )


def build_prompt(
    emotion: EmotionReading,
    calendar_events: list[CalendarEvent],
    free_text: str,
    max_tags: int,
) -> str:
    if emotion.is_empty:
        emotions = "unknown (no face detected); weigh all emotions neutrally"
        dominant = "unknown"
    else:
        emotions = json.dumps(emotion.emotions, sort_keys=True)
        dominant = emotion.dominant_emotion or "unknown"

    return USER_PROMPT_TEMPLATE.format(
        free_text=free_text,
        emotions=emotions,
        dominant=dominant,
        event_count=len(calendar_events),
        calendar=format_calendar(calendar_events),
        max_tags=max_tags,
    )


def normalize_tags(raw: object, max_tags: int) -> list[str]:
    """Strip, drop blanks and case-insensitive duplicates, cap the count."""
    if not isinstance(raw, list):
        return []

    tags: list[str] = []
    seen: set[str] = set()
    for value in raw:
        if not isinstance(value, str):
            continue
        tag = " ".join(value.split())[:MAX_TAG_LENGTH]
        key = tag.lower()
        if not tag or key in seen:
            continue
        seen.add(key)
        tags.append(tag)
        if len(tags) >= max_tags:
            break
    return tags


class ContextBuilder:
    """Context builder backed by a single reasoning call."""

    def __init__(
        self,
        reasoning: ReasoningService,
        max_tags: int = DEFAULT_MAX_TAGS,
        timeout: float = 30.0,
    ) -> None:
        self.reasoning = reasoning
        self.max_tags = max_tags
        self.timeout = timeout

    async def build_context(
        self,
        emotion: EmotionReading,
        calendar_events: list[CalendarEvent],
        free_text: str,
    ) -> DerivedContext:
        """Derive tags and a description.

        Degrades to an empty context when the reasoning call fails,
        times out, or returns something unparsable.

        Raises:
            InvalidInput: If free_text is empty
        """
        if not free_text or not free_text.strip():
            raise InvalidInput("free_text is required")

        prompt = build_prompt(emotion, calendar_events, free_text.strip(), self.max_tags)

        try:
            content = await asyncio.wait_for(
                self.reasoning.generate_text(SYSTEM_PROMPT, prompt, max_tokens=600),
                timeout=self.timeout,
            )
        except LLMDisabledError as e:
            logger.warning(f"Context analysis skipped: {e}")
            return DerivedContext()
        except (LLMError, TransientCollaboratorError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to generate context tags: {e!r}")
            return DerivedContext()

        data = extract_json_object(content)
        if data is None:
            logger.error("Context analysis returned unparsable output")
            return DerivedContext()

        tags = normalize_tags(data.get("tags"), self.max_tags)
        description = data.get("contextDescription") or data.get("description") or ""
        if not isinstance(description, str):
            description = ""

        logger.info(
            f"Generated context: tags={len(tags)}, description_chars={len(description)}, "
            f"events={len(calendar_events)}, face={'no' if emotion.is_empty else 'yes'}"
        )
        return DerivedContext(tags=tags, description=description.strip())
