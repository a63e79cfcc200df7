"""YouTube Data API client with retry logic, and the video search adapter."""

import asyncio
from typing import Any, Callable, TypeVar

import httpx

from moodfeed.core.contracts import CandidateItem, Comment
from moodfeed.errors import TransientCollaboratorError
from moodfeed.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

YOUTUBE_BASE_URL = "https://www.googleapis.com/youtube/v3"
DEFAULT_TIMEOUT = 30.0
MAX_RETRIES = 3
BASE_BACKOFF = 1.0

# Title words that say nothing about a video's topic
FILLER_WORDS = {"video", "watch", "subscribe", "like", "share"}


class YouTubeError(Exception):
    """Base exception for YouTube API errors."""

    def __init__(self, message: str, status_code: int | None = None, reason: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.reason = reason


class YouTubeQuotaError(YouTubeError):
    """Daily quota or rate limit exceeded."""


def _error_reason(data: dict[str, Any]) -> str | None:
    errors = data.get("error", {}).get("errors") or []
    if errors and isinstance(errors[0], dict):
        return errors[0].get("reason")
    return None


class YouTubeClient:
    """Async YouTube Data API v3 client."""

    def __init__(
        self,
        api_key: str,
        region: str = "US",
        language: str = "en",
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize YouTube client.

        Args:
            api_key: YouTube Data API key
            region: Region code for search results
            language: Relevance language for search results
            timeout: Request timeout in seconds
            max_retries: Attempts for retryable failures
            transport: Optional httpx transport (tests)
        """
        self.api_key = api_key
        self.region = region
        self.language = language
        self.timeout = timeout
        self.max_retries = max_retries
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=YOUTUBE_BASE_URL,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        """GET with retry on 5xx and transport errors.

        Raises:
            YouTubeError: On API error after retries exhausted
        """
        client = await self._get_client()
        params = {**params, "key": self.api_key}
        last_error: Exception | None = None

        for attempt in range(self.max_retries):
            is_last = attempt >= self.max_retries - 1
            wait_time = BASE_BACKOFF * (2 ** attempt)
            try:
                response = await client.get(path, params=params)

                if response.status_code == 200:
                    try:
                        return response.json()
                    except ValueError as e:
                        raise YouTubeError(f"Invalid JSON response: {e}", status_code=200) from e

                if response.status_code >= 500:
                    logger.warning(
                        f"YouTube server error {response.status_code}, "
                        f"retry in {wait_time}s (attempt {attempt + 1}/{self.max_retries})"
                    )
                    if is_last:
                        raise YouTubeError(
                            f"Server error: {response.status_code}",
                            status_code=response.status_code,
                        )
                    await asyncio.sleep(wait_time)
                    continue

                try:
                    error_data = response.json()
                except ValueError:
                    error_data = {}
                reason = _error_reason(error_data)
                message = error_data.get("error", {}).get("message", f"HTTP {response.status_code}")

                # Quota errors will not clear within a request; do not retry
                if response.status_code == 429 or reason in ("quotaExceeded", "rateLimitExceeded"):
                    raise YouTubeQuotaError(message, status_code=response.status_code, reason=reason)

                raise YouTubeError(message, status_code=response.status_code, reason=reason)

            except httpx.TimeoutException as e:
                logger.warning(
                    f"YouTube timeout, retry in {wait_time}s "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                last_error = e
                if not is_last:
                    await asyncio.sleep(wait_time)

            except httpx.RequestError as e:
                logger.warning(
                    f"YouTube request error: {e}, retry in {wait_time}s "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                last_error = e
                if not is_last:
                    await asyncio.sleep(wait_time)

        raise YouTubeError(f"Max retries exceeded: {last_error}")

    async def search(
        self,
        query: str,
        max_results: int,
        short_only: bool = False,
    ) -> dict[str, Any]:
        """Search videos by relevance.

        Args:
            query: Search query
            max_results: Maximum results (API caps at 50)
            short_only: Restrict to videos under four minutes

        Returns:
            Search response with items array
        """
        params: dict[str, Any] = {
            "part": "snippet",
            "q": query,
            "type": "video",
            "maxResults": min(max_results, 50),
            "order": "relevance",
        }
        if short_only:
            params["videoDuration"] = "short"
            params["regionCode"] = self.region
            params["relevanceLanguage"] = self.language
        return await self._get("/search", params)

    async def get_videos(self, video_ids: list[str]) -> dict[str, Any]:
        """Get snippet and statistics for videos.

        Args:
            video_ids: Video IDs

        Returns:
            Videos response with items array
        """
        return await self._get(
            "/videos",
            {"part": "snippet,statistics", "id": ",".join(video_ids)},
        )

    async def get_comment_threads(self, video_id: str, max_results: int) -> dict[str, Any]:
        """Get top-level comment threads ordered by relevance.

        Args:
            video_id: Video ID
            max_results: Maximum threads

        Returns:
            Comment threads response with items array
        """
        return await self._get(
            "/commentThreads",
            {
                "part": "snippet",
                "videoId": video_id,
                "order": "relevance",
                "maxResults": max_results,
            },
        )


def parse_search_item(item: dict[str, Any], shorts: bool) -> CandidateItem | None:
    """Normalise one search result; ``None`` if it carries no video ID."""
    video_id = (item.get("id") or {}).get("videoId")
    if not video_id:
        return None

    snippet = item.get("snippet") or {}
    if shorts:
        url = f"https://www.youtube.com/shorts/{video_id}"
    else:
        url = f"https://www.youtube.com/watch?v={video_id}"

    return CandidateItem(
        id=video_id,
        title=snippet.get("title"),
        description=snippet.get("description"),
        source_channel=snippet.get("channelTitle"),
        url=url,
        published_at=snippet.get("publishedAt"),
    )


def parse_comment_thread(item: dict[str, Any]) -> Comment | None:
    snippet = ((item.get("snippet") or {}).get("topLevelComment") or {}).get("snippet") or {}
    text = snippet.get("textDisplay") or snippet.get("textOriginal")
    if not text:
        return None
    return Comment(text=text, like_count=int(snippet.get("likeCount") or 0))


def related_query(title: str, tags: list[str]) -> str:
    """Build a search query for videos related to a seed video.

    Uses the first three tags and the first three title words longer than
    three characters that are not filler words.
    """
    title_words = [
        word for word in title.split()
        if len(word) > 3 and word.lower() not in FILLER_WORDS
    ]
    return " ".join([*tags[:3], *title_words[:3]])


def _parse_items(
    data: dict[str, Any],
    parse: Callable[[dict[str, Any]], T | None],
    what: str,
    collaborator: str,
) -> list[T]:
    """Parse a response's items, dropping the ones that carry nothing usable.

    Raises:
        TransientCollaboratorError: If the payload does not have the expected shape
    """
    try:
        parsed = [parse(item) for item in data.get("items") or []]
    except (AttributeError, TypeError, ValueError) as e:
        raise TransientCollaboratorError(
            f"Malformed {what} response: {e!r}", collaborator=collaborator
        ) from e
    return [item for item in parsed if item is not None]


class YouTubeVideoSearch:
    """Video search collaborator backed by the YouTube Data API.

    Translates every client failure into ``TransientCollaboratorError`` so
    the curation workflows see one error type.
    """

    def __init__(self, client: YouTubeClient) -> None:
        self.client = client

    async def search_candidates(self, tag: str, limit: int) -> list[CandidateItem]:
        try:
            data = await self.client.search(tag, limit, short_only=True)
        except (YouTubeError, httpx.HTTPError) as e:
            raise TransientCollaboratorError(
                f"Search for '{tag}' failed: {e}", collaborator="video_search"
            ) from e

        candidates = _parse_items(
            data, lambda item: parse_search_item(item, shorts=True), "search", "video_search"
        )
        return candidates[:limit]

    async def similar_candidates(self, seed_id: str, limit: int) -> list[CandidateItem]:
        try:
            details = await self.client.get_videos([seed_id])
            videos = details.get("items") or []
            if not videos:
                raise TransientCollaboratorError(
                    f"Seed video {seed_id} not found", collaborator="video_search"
                )

            snippet = videos[0].get("snippet") or {}
            query = related_query(snippet.get("title") or "", snippet.get("tags") or [])
            if not query:
                return []

            # Ask for a few extra so dropping the seed still fills the limit
            data = await self.client.search(query, limit + 5)
        except (YouTubeError, httpx.HTTPError) as e:
            raise TransientCollaboratorError(
                f"Related search for {seed_id} failed: {e}", collaborator="video_search"
            ) from e
        except (AttributeError, TypeError) as e:
            raise TransientCollaboratorError(
                f"Malformed details for seed {seed_id}: {e!r}", collaborator="video_search"
            ) from e

        candidates = _parse_items(
            data,
            lambda item: parse_search_item(item, shorts=False),
            "related search",
            "video_search",
        )
        return [c for c in candidates if c.id != seed_id][:limit]

    async def fetch_comments(self, item_id: str, limit: int) -> list[Comment]:
        try:
            data = await self.client.get_comment_threads(item_id, limit)
        except YouTubeError as e:
            if e.status_code == 403 and e.reason == "commentsDisabled":
                return []
            raise TransientCollaboratorError(
                f"Comments for {item_id} failed: {e}", collaborator="comments"
            ) from e
        except httpx.HTTPError as e:
            raise TransientCollaboratorError(
                f"Comments for {item_id} failed: {e}", collaborator="comments"
            ) from e

        return _parse_items(data, parse_comment_thread, "comment threads", "comments")
