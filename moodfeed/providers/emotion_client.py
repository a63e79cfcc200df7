"""Facial emotion reader backed by an OpenAI vision model."""

import base64

import httpx

from moodfeed.core.contracts import EmotionReading
from moodfeed.errors import TransientCollaboratorError
from moodfeed.llm.json_output import extract_json_object
from moodfeed.logging import get_logger

logger = get_logger(__name__)

OPENAI_API_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_TIMEOUT = 30.0

EMOTION_PROMPT = (
    "Analyze the emotions in this selfie. Return only a JSON object with: "
    '"emotions" (object mapping happy, sad, angry, surprised, calm, confused, '
    'fear and disgusted to a confidence from 0 to 100) and "dominantEmotion" '
    '(string). If no face is visible return {"emotions": {}, "dominantEmotion": null}.'
)


def parse_emotion_payload(data: dict) -> EmotionReading:
    """Normalise a model payload into an EmotionReading."""
    raw = data.get("emotions") or {}
    emotions: dict[str, float] = {}
    if isinstance(raw, dict):
        for label, confidence in raw.items():
            try:
                emotions[str(label).lower()] = float(confidence)
            except (TypeError, ValueError):
                continue

    dominant = data.get("dominantEmotion") or data.get("dominant_emotion")
    return EmotionReading(
        emotions=emotions,
        dominant_emotion=str(dominant).lower() if dominant else None,
    )


class EmotionClient:
    """Reads an emotion distribution from a face image."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._transport = transport

    async def read_emotions(self, image_bytes: bytes) -> EmotionReading:
        """Analyze a selfie.

        Args:
            image_bytes: Raw JPEG/PNG bytes

        Returns:
            EmotionReading; empty when no image is given or no face is found

        Raises:
            TransientCollaboratorError: On API failure or unparsable output
        """
        if not image_bytes:
            return EmotionReading.empty()

        image_b64 = base64.b64encode(image_bytes).decode("ascii")
        payload = {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": EMOTION_PROMPT},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:image/jpeg;base64,{image_b64}"},
                        },
                    ],
                }
            ],
            "max_tokens": 300,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(OPENAI_API_URL, headers=headers, json=payload)
        except httpx.HTTPError as e:
            raise TransientCollaboratorError(
                f"Emotion request failed: {e}", collaborator="emotion"
            ) from e

        if response.status_code != 200:
            raise TransientCollaboratorError(
                f"Emotion API returned HTTP {response.status_code}", collaborator="emotion"
            )

        try:
            choices = response.json().get("choices") or []
            content = choices[0].get("message", {}).get("content") if choices else None
            data = extract_json_object(content)
        except (AttributeError, TypeError, ValueError, KeyError) as e:
            raise TransientCollaboratorError(
                f"Malformed emotion response: {e!r}", collaborator="emotion"
            ) from e
        if data is None:
            raise TransientCollaboratorError(
                "Emotion response was not a JSON object", collaborator="emotion"
            )

        reading = parse_emotion_payload(data)
        logger.info(
            f"Emotion read: dominant={reading.dominant_emotion}, labels={len(reading.emotions)}"
        )
        return reading
