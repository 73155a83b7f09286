"""
Base Collector - Uniform interface for every external startup-signal source.

Each collector:
- fetch_recent(): Retrieve items observed within a trailing window
- is_success_candidate(): Pure heuristic over one normalized item
- extract_company_name(): Pure name extraction, None when unsure

Source payloads are normalized into CandidateItem at this boundary so the lead
processor and later stages never see source-specific shapes.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from ..common.errors import DataSourceError, ThrottledError, retry_async
from ..common.http_client import create_scraper_client, USER_AGENT_BOT
from ..common.rate_limiter import RateLimiterRegistry, Throttled
from ..config.settings import settings

logger = logging.getLogger(__name__)


class SourceType(str, Enum):
    """Where a piece of evidence came from."""
    PRODUCT_HUNT = "product_hunt"
    HACKER_NEWS = "hacker_news"
    GITHUB = "github"
    RSS = "rss"
    WEB_SCRAPING = "web_scraping"
    FUNDING = "funding"
    VALUATION = "valuation"
    FUNDING_DETECTION = "funding_detection"
    MANUAL = "manual"


@dataclass(frozen=True)
class CandidateItem:
    """One normalized observation from a source."""
    id: str  # Source-native identifier, unique within source_type
    title: str
    text: str
    url: Optional[str]
    engagement_score: int
    published_at: Optional[datetime]
    source_type: SourceType
    # Source-specific numbers the heuristics need (comments, stars, updated_at, ...)
    extra: Dict[str, Any] = field(default_factory=dict)
    # Startup fields this item can contribute (description, website_url, tags, ...)
    lead_fields: Dict[str, Any] = field(default_factory=dict)
    # Original payload, stored verbatim as evidence
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Lead:
    """A success candidate with a resolvable company name."""
    item: CandidateItem
    company_name: str


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def dedupe_items(items: List[CandidateItem]) -> List[CandidateItem]:
    """Drop repeated source-native ids, keeping first occurrence."""
    seen = set()
    unique = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        unique.append(item)
    return unique


class BaseCollector(ABC):
    """
    Abstract base class for source collectors.

    Subclasses must implement:
    - fetch_recent(): Network fetch + normalization, never raises on transient failure
    - is_success_candidate(): Pure predicate
    - extract_company_name(): Pure extraction
    """

    source_type: SourceType
    rate_limit_key: str = "data_collection"
    user_agent: str = USER_AGENT_BOT

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        rate_limiter: Optional[RateLimiterRegistry] = None,
    ):
        self._client = client
        self._owns_client = client is None
        self.rate_limiter = rate_limiter or RateLimiterRegistry()

    @property
    def name(self) -> str:
        return self.source_type.value

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = create_scraper_client(user_agent=self.user_agent)
        return self._client

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @abstractmethod
    async def fetch_recent(self, window_days: int) -> List[CandidateItem]:
        """Return deduplicated items observed within the last window_days."""

    @abstractmethod
    def is_success_candidate(self, item: CandidateItem) -> bool:
        """Pure heuristic: does this item look like a success signal?"""

    @abstractmethod
    def extract_company_name(self, item: CandidateItem) -> Optional[str]:
        """Pure extraction of the company name, None when unsure."""

    async def collect(self, window_days: Optional[int] = None) -> List[Lead]:
        """Fetch, filter to success candidates, and attach company names.

        Items whose heuristic or extraction raises are logged and skipped.
        """
        window_days = window_days or settings.collection_window_days
        items = await self.fetch_recent(window_days)

        leads: List[Lead] = []
        for item in items:
            try:
                if not self.is_success_candidate(item):
                    continue
                company = self.extract_company_name(item)
            except Exception as e:
                logger.debug(f"{self.name}: skipping item {item.id}: {e}")
                continue
            if not company:
                logger.debug(f"{self.name}: no company name in '{item.title[:60]}'")
                continue
            leads.append(Lead(item=item, company_name=company))

        logger.info(f"{self.name}: {len(leads)} leads from {len(items)} items")
        return leads

    async def require_capacity(self) -> None:
        """Wait (bounded) for this collector's rate-limit bucket; raise ThrottledError if still throttled."""
        outcome = await self.rate_limiter.wait_for_availability(self.rate_limit_key, self.name)
        if isinstance(outcome, Throttled):
            logger.warning(f"{self.name}: rate limited, retry after {outcome.retry_after:.0f}s")
            outcome.raise_for()

    async def throttle(self) -> bool:
        """Like require_capacity, but False instead of raising."""
        try:
            await self.require_capacity()
        except ThrottledError:
            return False
        return True

    async def get_json(self, url: str, **kwargs) -> Any:
        """GET a JSON document with retry on transient failures."""
        async def _do():
            response = await self.client.get(url, **kwargs)
            if response.status_code == 429:
                self.rate_limiter.penalty(self.rate_limit_key, self.name, 5)
            if response.status_code >= 400:
                raise DataSourceError(self.name, f"GET {url} failed", response.status_code)
            return response.json()

        return await retry_async(
            _do,
            attempts=settings.max_retries,
            base_delay=settings.retry_base_delay,
            name=f"{self.name} GET",
        )

    async def get_text(self, url: str, **kwargs) -> str:
        """GET a text document (feeds, HTML) with retry on transient failures."""
        async def _do():
            response = await self.client.get(url, **kwargs)
            if response.status_code >= 400:
                raise DataSourceError(self.name, f"GET {url} failed", response.status_code)
            return response.text

        return await retry_async(
            _do,
            attempts=settings.max_retries,
            base_delay=settings.retry_base_delay,
            name=f"{self.name} GET",
        )
