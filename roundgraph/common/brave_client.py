"""
Brave Search API Client.

Provides an async HTTP client for web search with:
- Exponential backoff retry logic
- Rate limit (HTTP 429) handling
- Configurable timeouts

Used by enrichment.discovery for website discovery. The client is
constructed by the caller and injected; there is no module-level instance.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Optional, Dict, Any, List

import httpx

from .errors import RoundgraphError
from ..config.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

BRAVE_WEB_API = "https://api.search.brave.com/res/v1/web/search"


class BraveAPIError(RoundgraphError):
    """Raised when Brave API returns an error."""
    pass


@dataclass
class BraveSearchResult:
    """One organic web result."""
    title: str
    url: str
    description: str = ""


class BraveClient:
    """
    Async HTTP client for Brave Search API.

    Features:
    - Exponential backoff retry on failures
    - HTTP 429 rate limit handling with Retry-After
    - Soft failure: timeouts, 5xx and malformed bodies yield [] / None.
      Only a rejected API key (401/403) raises BraveAPIError.
    """

    def __init__(self, config: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        config = config or default_settings
        self.api_key = config.brave_search_key
        self.timeout = config.brave_search_timeout
        self.max_retries = max(1, config.brave_search_max_retries)
        self.backoff_base = config.brave_search_backoff_base
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={
                    "X-Subscription-Token": self.api_key,
                    "Accept": "application/json",
                },
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def request(
        self,
        url: str,
        params: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        """
        Make HTTP request with exponential backoff retry logic.

        Args:
            url: API endpoint URL
            params: Query parameters

        Returns:
            JSON response data or None on failure

        Handles:
        - HTTP 429 (rate limit) with Retry-After header
        - HTTP 5xx (server errors) with exponential backoff
        - Timeouts and network errors with retry
        """
        if not self.enabled:
            logger.warning("BRAVE_SEARCH_KEY not configured - skipping web search")
            return None

        client = await self._get_client()
        last_error = None

        for attempt in range(self.max_retries):
            try:
                response = await client.get(url, params=params)

                if response.status_code == 429:
                    retry_after_header = response.headers.get("Retry-After", "5")
                    try:
                        retry_after = min(int(retry_after_header), 30)
                    except ValueError:
                        logger.warning(f"Non-numeric Retry-After header: {retry_after_header}")
                        retry_after = 5
                    logger.warning(
                        f"Brave API rate limited. Waiting {retry_after}s "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                    last_error = "rate limited"
                    await asyncio.sleep(retry_after)
                    continue

                if response.status_code >= 500:
                    backoff = (self.backoff_base ** attempt) * random.uniform(0.9, 1.1)
                    logger.warning(
                        f"Brave API server error {response.status_code}. "
                        f"Retrying in {backoff:.1f}s (attempt {attempt + 1}/{self.max_retries})"
                    )
                    last_error = f"HTTP {response.status_code}"
                    await asyncio.sleep(backoff)
                    continue

                response.raise_for_status()

                try:
                    return response.json()
                except ValueError as e:
                    logger.warning(f"Brave API JSON decode error: {e}")
                    return None

            except httpx.TimeoutException:
                backoff = (self.backoff_base ** attempt) * random.uniform(0.9, 1.1)
                logger.warning(
                    f"Brave API timeout. Retrying in {backoff:.1f}s "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                last_error = "timeout"
                await asyncio.sleep(backoff)

            except httpx.HTTPStatusError as e:
                # Rejected key is a configuration fault, not a transient miss
                if e.response.status_code in (401, 403):
                    raise BraveAPIError(
                        f"Brave API rejected subscription token (HTTP {e.response.status_code})"
                    ) from e
                # Other client errors - don't retry
                logger.error(f"Brave API client error: {e.response.status_code}")
                return None

            except httpx.RequestError as e:
                backoff = (self.backoff_base ** attempt) * random.uniform(0.9, 1.1)
                logger.warning(
                    f"Brave API network error: {e}. Retrying in {backoff:.1f}s "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                last_error = str(e)
                await asyncio.sleep(backoff)

        logger.error(f"Brave API request failed after {self.max_retries} attempts: {last_error}")
        return None

    async def search_web(self, query: str, count: int = 8) -> List[BraveSearchResult]:
        """
        Execute web search on Brave API.

        Args:
            query: Search query string
            count: Number of results (max 20)

        Returns:
            Organic results in rank order; [] on any failure
        """
        params = {
            "q": query,
            "count": count,
            "text_decorations": False,
            "safesearch": "off",
        }
        data = await self.request(BRAVE_WEB_API, params)
        if not data:
            return []

        results = []
        for item in (data.get("web") or {}).get("results") or []:
            url = item.get("url") or ""
            if not url:
                continue
            results.append(BraveSearchResult(
                title=item.get("title") or "",
                url=url,
                description=item.get("description") or "",
            ))
        return results
