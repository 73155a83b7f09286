"""
Web Scraper - Ad-hoc enrichment and news search for known startups.

Google News RSS provides keyless news search:
https://news.google.com/rss/search?q="Acme"+funding&hl=en-US&gl=US&ceid=US:en

Used by:
- the web_scraping stage (funding announcements for recently created startups)
- the validator (cross-reference search and funding corroboration)

Pages are fetched with httpx and cleaned with BeautifulSoup.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlencode

from bs4 import BeautifulSoup

from ..base_collector import BaseCollector, CandidateItem, SourceType, dedupe_items
from ..heuristics import FUNDING_NEWS_KEYWORDS, has_keyword
from .rss_feeds import parse_feed
from ...common.errors import retry_async, DataSourceError, ThrottledError
from ...common.http_client import USER_AGENT_BROWSER
from ...config.settings import settings

logger = logging.getLogger(__name__)

GOOGLE_NEWS_RSS = "https://news.google.com/rss/search"
MAX_PAGE_CONTENT = 5000
MAX_NEWS_RESULTS = 10

# Main content selectors (ordered by specificity)
CONTENT_SELECTORS = [
    "article", ".content", ".post-content", ".entry-content",
    ".article-content", "main", ".main-content",
]

FUNDING_QUERIES = [
    '"{name}" raised funding',
    '"{name}" series A',
    '"{name}" series B',
    '"{name}" seed round',
    '"{name}" investment',
]


@dataclass
class ScrapedPage:
    """A fetched and cleaned page or news hit."""
    url: str
    title: str
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    scraped_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "content": self.content,
            "metadata": self.metadata,
            "scraped_at": self.scraped_at.isoformat(),
        }


@dataclass
class JobPostings:
    job_count: int
    recent_jobs: List[Dict[str, str]]


def build_news_url(query: str) -> str:
    """Build Google News RSS URL for a query."""
    params = {"q": query, "hl": "en-US", "gl": "US", "ceid": "US:en"}
    return f"{GOOGLE_NEWS_RSS}?{urlencode(params)}"


def extract_main_content(soup: BeautifulSoup) -> str:
    """Text of the first content container with real text, else the body."""
    for tag in soup(["script", "style", "nav", "header", "footer", "aside"]):
        tag.decompose()

    for selector in CONTENT_SELECTORS:
        node = soup.select_one(selector)
        if node:
            text = node.get_text(" ", strip=True)
            if len(text) > 100:
                return text[:MAX_PAGE_CONTENT]

    body = soup.body or soup
    return body.get_text(" ", strip=True)[:MAX_PAGE_CONTENT]


def _meta(soup: BeautifulSoup, **attrs) -> str:
    tag = soup.find("meta", attrs=attrs)
    return (tag.get("content") or "").strip() if tag else ""


def parse_page(url: str, html: str) -> ScrapedPage:
    soup = BeautifulSoup(html, "lxml")
    title = ""
    if soup.title and soup.title.string:
        title = soup.title.string
    elif soup.find("h1"):
        title = soup.find("h1").get_text(strip=True)

    metadata = {
        "description": _meta(soup, name="description"),
        "keywords": _meta(soup, name="keywords"),
        "author": _meta(soup, name="author"),
        "published_time": _meta(soup, property="article:published_time"),
        "og_title": _meta(soup, property="og:title"),
        "og_description": _meta(soup, property="og:description"),
    }
    return ScrapedPage(url=url, title=title.strip(), content=extract_main_content(soup), metadata=metadata)


class WebScraper(BaseCollector):
    """News search and page scraping for named startups."""

    source_type = SourceType.WEB_SCRAPING
    rate_limit_key = "web_scraping"
    user_agent = USER_AGENT_BROWSER

    def __init__(self, targets: Optional[Sequence[str]] = None, query_delay: Optional[float] = None, **kwargs):
        super().__init__(**kwargs)
        self.targets: List[str] = list(targets or [])
        self.query_delay = settings.news_query_delay if query_delay is None else query_delay

    async def search_news(self, query: str, days: int = 30) -> List[ScrapedPage]:
        """Google News hits for a query within the last `days`, at most 10.

        Raises on network failure so callers can decide whether a failed
        search counts as "no hits" or "skip".
        """
        text = await self.get_text(build_news_url(query))
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)

        pages = []
        for item in parse_feed(text, "Google News", SourceType.WEB_SCRAPING):
            if item.published_at and item.published_at < cutoff:
                continue
            title = item.title
            source = ""
            # Google News format: "Title - Source"
            if " - " in title:
                title, source = title.rsplit(" - ", 1)
            pages.append(ScrapedPage(
                url=item.url or "",
                title=title,
                content=item.text,
                metadata={
                    "source": source,
                    "published": item.published_at.isoformat() if item.published_at else None,
                    "search_query": query,
                },
            ))
        return pages[:MAX_NEWS_RESULTS]

    async def scrape_funding_announcements(self, company_name: str, days: int = 90) -> List[ScrapedPage]:
        """Funding news about a company across several phrasings, deduplicated.

        Raises ThrottledError when the news-search bucket stays exhausted, so a
        throttled lookup is never mistaken for "no coverage". Failed searches
        are logged and skipped.
        """
        results: List[ScrapedPage] = []
        for i, template in enumerate(FUNDING_QUERIES):
            query = template.format(name=company_name)
            await self.require_capacity()
            try:
                results.extend(await self.search_news(query, days))
            except Exception as e:
                logger.warning(f"Error searching for funding news '{query}': {e}")
            if i < len(FUNDING_QUERIES) - 1 and self.query_delay:
                await asyncio.sleep(self.query_delay)
        return self._deduplicate(results)

    async def scrape_job_postings(self, company_name: str) -> JobPostings:
        """Recent hiring coverage for a company as a proxy for team growth."""
        if not await self.throttle():
            return JobPostings(job_count=0, recent_jobs=[])
        try:
            hits = await self.search_news(f'"{company_name}" hiring', days=60)
        except Exception as e:
            logger.warning(f"Error searching job postings for {company_name}: {e}")
            return JobPostings(job_count=0, recent_jobs=[])

        jobs = [
            {"title": h.title, "source": h.metadata.get("source", ""), "posted": h.metadata.get("published") or ""}
            for h in hits
            if has_keyword(h.title, ["hiring", "hires", "jobs", "recruit", "headcount", "team"])
        ]
        return JobPostings(job_count=len(jobs), recent_jobs=jobs[:10])

    async def scrape_page(self, url: str) -> Optional[ScrapedPage]:
        """Fetch and clean one page; None on failure."""
        try:
            return await self.scrape_with_retry(url)
        except Exception as e:
            logger.warning(f"Error scraping {url}: {e}")
            return None

    async def scrape_with_retry(self, url: str, max_retries: Optional[int] = None) -> ScrapedPage:
        async def _do():
            response = await self.client.get(
                url,
                headers={
                    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                    "Accept-Language": "en-US,en;q=0.9",
                },
            )
            if response.status_code >= 400:
                raise DataSourceError(self.name, f"GET {url} failed", response.status_code)
            return parse_page(url, response.text)

        return await retry_async(
            _do,
            attempts=max_retries or settings.max_retries,
            base_delay=settings.retry_base_delay * random.uniform(0.9, 1.1),
            name=f"scrape {url}",
        )

    @staticmethod
    def _deduplicate(results: List[ScrapedPage]) -> List[ScrapedPage]:
        seen = set()
        unique = []
        for r in results:
            key = f"{r.title}-{r.url}"
            if key in seen:
                continue
            seen.add(key)
            unique.append(r)
        return unique

    def for_targets(self, names: Sequence[str]) -> "WebScraper":
        """A scraper over `names` sharing this one's client and rate limiter."""
        return type(self)(
            targets=names,
            query_delay=self.query_delay,
            client=self.client,
            rate_limiter=self.rate_limiter,
        )

    async def fetch_recent(self, window_days: int) -> List[CandidateItem]:
        """Funding announcements for each target startup.

        Stops at the first throttled target and returns what was gathered.
        """
        items: List[CandidateItem] = []
        for i, name in enumerate(self.targets):
            try:
                announcements = await self.scrape_funding_announcements(name)
            except ThrottledError as e:
                logger.warning(f"Web scraping throttled at {name}, retry after {e.retry_after:.0f}s")
                break
            for page in announcements:
                items.append(CandidateItem(
                    id=f"{name}|{page.url}",
                    title=page.title,
                    text=page.content,
                    url=page.url,
                    engagement_score=0,
                    published_at=None,
                    source_type=SourceType.WEB_SCRAPING,
                    extra={"company": name},
                    raw=page.to_dict(),
                ))
            if i < len(self.targets) - 1:
                await asyncio.sleep(settings.web_scraping_delay)
        return dedupe_items(items)

    def is_success_candidate(self, item: CandidateItem) -> bool:
        return has_keyword(f"{item.title} {item.text}", FUNDING_NEWS_KEYWORDS)

    def extract_company_name(self, item: CandidateItem) -> Optional[str]:
        return item.extra.get("company")
