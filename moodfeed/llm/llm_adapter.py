"""LLM adapter for text generation over the OpenAI and Anthropic APIs."""

import asyncio

import httpx

from moodfeed.logging import get_logger

logger = get_logger(__name__)

OPENAI_API_URL = "https://api.openai.com/v1/chat/completions"
ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
DEFAULT_TIMEOUT = 60.0
MAX_RETRIES = 3
BASE_BACKOFF = 1.0


class LLMDisabledError(Exception):
    """Raised when LLM is disabled but generation is attempted."""

    pass


class LLMError(Exception):
    """Base exception for LLM API errors."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class LLMRateLimitError(LLMError):
    """Rate limit exceeded."""

    def __init__(self, retry_after: int | None = None):
        super().__init__("Rate limit exceeded", status_code=429)
        self.retry_after = retry_after


def _error_message(response: httpx.Response) -> str:
    try:
        error_data = response.json()
        return error_data.get("error", {}).get("message", f"HTTP {response.status_code}")
    except ValueError:
        return f"HTTP {response.status_code}"


def _retry_after(response: httpx.Response) -> int | None:
    value = response.headers.get("retry-after")
    try:
        return int(value) if value else None
    except ValueError:
        return None


class LLMClient:
    """Chat-completion client for the reasoning service."""

    def __init__(
        self,
        provider: str,
        api_key: str | None,
        model: str,
        enabled: bool = True,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            provider: "openai" or "anthropic"
            api_key: Provider API key
            model: Model name
            enabled: Master switch; when False every call raises LLMDisabledError
            timeout: Request timeout in seconds
            max_retries: Attempts for retryable failures
            transport: Optional httpx transport (tests)
        """
        self.provider = provider
        self.api_key = api_key
        self.model = model
        self.enabled = enabled
        self.timeout = timeout
        self.max_retries = max_retries
        self._transport = transport

    @property
    def label(self) -> str:
        name = "Anthropic" if self.provider == "anthropic" else "OpenAI"
        return f"{name}/{self.model}"

    async def _call_openai(
        self,
        client: httpx.AsyncClient,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> str:
        """Call OpenAI-compatible API."""
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }

        response = await client.post(OPENAI_API_URL, headers=headers, json=payload)

        if response.status_code == 200:
            data = response.json()
            choices = data.get("choices", [])
            if choices:
                content = choices[0].get("message", {}).get("content") or ""
                logger.debug(
                    f"OpenAI tokens: {data.get('usage', {}).get('total_tokens', 'N/A')}"
                )
                return content.strip()
            raise LLMError("Empty response from OpenAI")

        if response.status_code == 429:
            raise LLMRateLimitError(retry_after=_retry_after(response))

        if response.status_code >= 500:
            raise LLMError(
                f"Server error: {response.status_code}",
                status_code=response.status_code,
            )

        raise LLMError(_error_message(response), status_code=response.status_code)

    async def _call_anthropic(
        self,
        client: httpx.AsyncClient,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> str:
        """Call Anthropic Messages API."""
        headers = {
            "x-api-key": self.api_key or "",
            "anthropic-version": "2023-06-01",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "system": system_prompt,
            "messages": [
                {"role": "user", "content": user_prompt},
            ],
        }

        response = await client.post(ANTHROPIC_API_URL, headers=headers, json=payload)

        if response.status_code == 200:
            data = response.json()
            content_blocks = data.get("content", [])
            text_parts = [
                block.get("text", "")
                for block in content_blocks
                if block.get("type") == "text"
            ]
            usage = data.get("usage", {})
            logger.debug(
                f"Anthropic tokens: in={usage.get('input_tokens', '?')}, "
                f"out={usage.get('output_tokens', '?')}"
            )
            return "\n".join(text_parts).strip()

        if response.status_code == 429:
            raise LLMRateLimitError(retry_after=_retry_after(response))

        if response.status_code >= 500:
            raise LLMError(
                f"Anthropic server error: {response.status_code}",
                status_code=response.status_code,
            )

        raise LLMError(_error_message(response), status_code=response.status_code)

    async def generate_text(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 500,
        temperature: float = 0.7,
    ) -> str:
        """Generate text using the configured provider.

        Args:
            system_prompt: System instructions for the model
            user_prompt: User message/request
            max_tokens: Maximum tokens in response
            temperature: Sampling temperature

        Returns:
            Generated text

        Raises:
            LLMDisabledError: If LLM is disabled or no key is configured
            LLMError: On API error after retries exhausted
        """
        if not self.enabled:
            raise LLMDisabledError("LLM is disabled in configuration")

        if not self.api_key:
            raise LLMDisabledError(f"API key for {self.provider} is not configured")

        call_fn = self._call_anthropic if self.provider == "anthropic" else self._call_openai
        last_error: Exception | None = None

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(self.max_retries):
                is_last = attempt >= self.max_retries - 1
                try:
                    return await call_fn(
                        client, system_prompt, user_prompt, max_tokens, temperature
                    )

                except LLMRateLimitError as e:
                    wait_time = e.retry_after or (BASE_BACKOFF * (2 ** attempt))
                    logger.warning(
                        f"{self.label} rate limited, retry after {wait_time}s "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                    last_error = e
                    if not is_last:
                        await asyncio.sleep(wait_time)

                except LLMError as e:
                    if not (e.status_code and e.status_code >= 500):
                        raise
                    wait_time = BASE_BACKOFF * (2 ** attempt)
                    logger.warning(
                        f"{self.label} server error, retry in {wait_time}s "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                    last_error = e
                    if not is_last:
                        await asyncio.sleep(wait_time)

                except httpx.TimeoutException as e:
                    wait_time = BASE_BACKOFF * (2 ** attempt)
                    logger.warning(
                        f"{self.label} timeout, retry in {wait_time}s "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                    last_error = e
                    if not is_last:
                        await asyncio.sleep(wait_time)

                except httpx.RequestError as e:
                    wait_time = BASE_BACKOFF * (2 ** attempt)
                    logger.warning(
                        f"{self.label} request error: {e}, retry in {wait_time}s "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                    last_error = e
                    if not is_last:
                        await asyncio.sleep(wait_time)

        raise LLMError(f"Max retries exceeded ({self.label}): {last_error}")
