"""
Shared HTTP Client Configuration.

Provides standardized HTTP client creation and User-Agent strings for
website verification and discovery fetches.

Usage:
    from roundgraph.common.http_client import create_fetch_client, USER_AGENT_BROWSER

    async with create_fetch_client(timeout=6.0) as client:
        response = await client.get(url)
"""

import httpx
from typing import Optional

from ..config.settings import settings


# Bot identifier - Use for APIs that allow bots
USER_AGENT_BOT = "Roundgraph/0.1 (Funding Research Bot)"

# Browser-like User-Agent - company websites routinely block bot agents
# Based on Chrome 120 on macOS
USER_AGENT_BROWSER = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


def create_fetch_client(
    user_agent: str = USER_AGENT_BROWSER,
    timeout: Optional[float] = None,
    max_connections: int = 10,
    max_keepalive: int = 5,
    follow_redirects: bool = True,
    extra_headers: Optional[dict] = None,
) -> httpx.AsyncClient:
    """
    Create a standardized async HTTP client for page fetches.

    Args:
        user_agent: User-Agent string (use constants above)
        timeout: Request timeout in seconds (default: settings.verify_fetch_timeout)
        max_connections: Maximum concurrent connections
        max_keepalive: Maximum keepalive connections
        follow_redirects: Whether to follow HTTP redirects
        extra_headers: Additional headers to include

    Returns:
        Configured httpx.AsyncClient
    """
    headers = {
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,*/*",
    }
    if extra_headers:
        headers.update(extra_headers)

    return httpx.AsyncClient(
        timeout=timeout or settings.verify_fetch_timeout,
        headers=headers,
        limits=httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_keepalive,
        ),
        follow_redirects=follow_redirects,
    )
