"""
HTTP client factory shared by collectors and validation probes.

Feeds and public APIs get the bot User-Agent; news search and page
scraping get a browser-like one.
"""

from typing import Dict, Optional

import httpx

from ..config.settings import settings

USER_AGENT_BOT = "StartupStories/1.0 (Success Story Research Bot)"

USER_AGENT_BROWSER = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


def create_scraper_client(
    user_agent: str = USER_AGENT_BOT,
    timeout: Optional[float] = None,
    extra_headers: Optional[Dict[str, str]] = None,
    max_connections: int = 20,
) -> httpx.AsyncClient:
    """
    Build an AsyncClient that follows redirects.

    The timeout defaults to settings.request_timeout. Keepalive is capped at
    half the connection pool.
    """
    headers = {"User-Agent": user_agent, **(extra_headers or {})}
    return httpx.AsyncClient(
        timeout=timeout or settings.request_timeout,
        headers=headers,
        limits=httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max(1, max_connections // 2),
        ),
        follow_redirects=True,
    )
