"""OpenAI embeddings API client with retry logic."""

import asyncio
from typing import Any

import httpx

from moodfeed.logging import get_logger

logger = get_logger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_TIMEOUT = 30.0
MAX_RETRIES = 3
BASE_BACKOFF = 1.0


class EmbeddingsError(Exception):
    """Base exception for embeddings API errors."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class EmbeddingsRateLimitError(EmbeddingsError):
    """Rate limit exceeded."""

    def __init__(self, retry_after: int | None = None):
        super().__init__("Rate limit exceeded", status_code=429)
        self.retry_after = retry_after


def _parse_retry_after(value: str | None) -> int | None:
    if value and value.isdigit():
        return int(value)
    return None


class EmbeddingsClient:
    """Async client for the ``/embeddings`` endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        base_url: str = OPENAI_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize embeddings client.

        Args:
            api_key: OpenAI API key
            model: Embedding model name
            base_url: API base URL
            timeout: Request timeout in seconds
            max_retries: Attempts for retryable failures
            transport: Optional httpx transport (tests)
        """
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST with retry on 429, 5xx and transport errors.

        Raises:
            EmbeddingsError: On API error after retries exhausted
        """
        client = await self._get_client()
        last_error: Exception | None = None

        for attempt in range(self.max_retries):
            is_last = attempt >= self.max_retries - 1
            wait_time = BASE_BACKOFF * (2 ** attempt)
            try:
                response = await client.post(path, json=payload)

                if response.status_code == 200:
                    return response.json()

                if response.status_code == 429:
                    retry_after = _parse_retry_after(response.headers.get("Retry-After"))
                    wait_time = retry_after or wait_time
                    logger.warning(
                        f"Embeddings rate limited, retry after {wait_time}s "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                    if is_last:
                        raise EmbeddingsRateLimitError(retry_after=retry_after)
                    await asyncio.sleep(wait_time)
                    continue

                if response.status_code >= 500:
                    logger.warning(
                        f"Embeddings server error {response.status_code}, "
                        f"retry in {wait_time}s (attempt {attempt + 1}/{self.max_retries})"
                    )
                    if is_last:
                        raise EmbeddingsError(
                            f"Server error: {response.status_code}",
                            status_code=response.status_code,
                        )
                    await asyncio.sleep(wait_time)
                    continue

                # Client error (4xx except 429)
                try:
                    error_msg = response.json().get("error", {}).get(
                        "message", f"HTTP {response.status_code}"
                    )
                except ValueError:
                    error_msg = f"HTTP {response.status_code}"
                raise EmbeddingsError(error_msg, status_code=response.status_code)

            except httpx.TimeoutException as e:
                logger.warning(
                    f"Embeddings timeout, retry in {wait_time}s "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                last_error = e
                if not is_last:
                    await asyncio.sleep(wait_time)

            except httpx.RequestError as e:
                logger.warning(
                    f"Embeddings request error: {e}, retry in {wait_time}s "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                last_error = e
                if not is_last:
                    await asyncio.sleep(wait_time)

        raise EmbeddingsError(f"Max retries exceeded: {last_error}")

    async def create_embedding(self, text: str) -> list[float]:
        """Embed one text.

        Args:
            text: Input text

        Returns:
            Embedding vector

        Raises:
            EmbeddingsError: On API failure or a malformed response
        """
        data = await self._post(
            "/embeddings",
            {"model": self.model, "input": text, "encoding_format": "float"},
        )

        items = data.get("data") or []
        if not items or not isinstance(items[0].get("embedding"), list):
            raise EmbeddingsError("Embedding missing from response")

        usage = data.get("usage", {})
        logger.debug(f"Embedding tokens: {usage.get('total_tokens', 'N/A')}")
        return [float(v) for v in items[0]["embedding"]]
