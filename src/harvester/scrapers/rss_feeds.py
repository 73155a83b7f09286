"""
RSS Feed Collector - Startup news from tech publications.

Polls a fixed set of startup/tech feeds, keeps startup-related entries within
the window, and deduplicates by title + link. The feed parsing helper is shared
with the funding feed and the Google News search in web_scraper.py.

RSS Feeds:
- TechCrunch (all + startups), VentureBeat, The Verge, Product Hunt,
  Indie Hackers, Hacker Noon, Startup Grind
"""

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import feedparser
from bs4 import BeautifulSoup

from ..base_collector import BaseCollector, CandidateItem, SourceType, dedupe_items
from ..heuristics import extract_rss_company_name, is_rss_startup_related, is_rss_success_candidate

logger = logging.getLogger(__name__)

MAX_DESCRIPTION = 500
MAX_CONTENT = 2000


@dataclass(frozen=True)
class FeedConfig:
    url: str
    name: str
    category: str  # general / startups / products / tech


RSS_FEEDS: Dict[str, FeedConfig] = {
    "techcrunch": FeedConfig("https://techcrunch.com/feed/", "TechCrunch", "general"),
    "techcrunch_startups": FeedConfig(
        "https://techcrunch.com/category/startups/feed/", "TechCrunch Startups", "startups"
    ),
    "venturebeat": FeedConfig("https://venturebeat.com/feed/", "VentureBeat", "general"),
    "the_verge": FeedConfig("https://www.theverge.com/rss/index.xml", "The Verge", "general"),
    "producthunt": FeedConfig("https://www.producthunt.com/feed", "Product Hunt", "products"),
    "indiehackers": FeedConfig("https://www.indiehackers.com/feed.xml", "Indie Hackers", "startups"),
    "hackernoon": FeedConfig("https://hackernoon.com/feed", "Hacker Noon", "tech"),
    "startup_grind": FeedConfig("https://medium.com/feed/startup-grind", "Startup Grind", "startups"),
}


def clean_html(html: Optional[str], limit: int) -> str:
    """Strip markup and cap length."""
    if not html:
        return ""
    text = BeautifulSoup(html, "lxml").get_text(" ", strip=True)
    return text[:limit]


def entry_id(title: str, link: str) -> str:
    return hashlib.md5(f"{title}|{link}".encode()).hexdigest()


def parse_feed(text: str, source_name: str, source_type: SourceType = SourceType.RSS) -> List[CandidateItem]:
    """Parse an RSS/Atom document into candidate items.

    Entries without a link or title are skipped. A malformed feed that still
    yielded entries is used; one that yielded nothing returns [].
    """
    feed = feedparser.parse(text)
    if feed.bozo and not feed.entries:
        logger.warning(f"Malformed feed {source_name}: {feed.bozo_exception}")
        return []

    items = []
    for entry in feed.entries:
        link = entry.get("link", "")
        title = (entry.get("title") or "").strip()
        if not link or not title:
            continue

        published = None
        parsed = entry.get("published_parsed") or entry.get("updated_parsed")
        if parsed and len(parsed) >= 6:
            published = datetime(*parsed[:6], tzinfo=timezone.utc)

        content_html = ""
        if entry.get("content"):
            content_html = entry.content[0].get("value", "")
        description = clean_html(entry.get("summary", ""), MAX_DESCRIPTION)
        content = clean_html(content_html, MAX_CONTENT) or description

        categories = [t.term for t in entry.get("tags", []) if getattr(t, "term", None)]

        items.append(CandidateItem(
            id=entry_id(title, link),
            title=title,
            text=description,
            url=link,
            engagement_score=0,
            published_at=published,
            source_type=source_type,
            extra={
                "source": source_name,
                "content": content,
                "categories": categories,
                "author": entry.get("author"),
            },
            lead_fields={
                "description": description or None,
                "product_hunt_url": link if source_type == SourceType.PRODUCT_HUNT else None,
            },
            raw={
                "title": title,
                "link": link,
                "description": description,
                "content": content,
                "pub_date": published.isoformat() if published else None,
                "source": source_name,
                "categories": categories,
            },
        ))
    return items


class RSSCollector(BaseCollector):
    """Collector for startup news feeds."""

    source_type = SourceType.RSS

    def __init__(self, feeds: Optional[Dict[str, FeedConfig]] = None, **kwargs):
        super().__init__(**kwargs)
        self.feeds = feeds or RSS_FEEDS

    async def fetch_feed(self, feed: FeedConfig) -> List[CandidateItem]:
        """Fetch and parse a single feed; empty list on failure."""
        if not await self.throttle():
            return []
        try:
            text = await self.get_text(feed.url)
        except Exception as e:
            logger.warning(f"Error fetching feed {feed.name}: {e}")
            return []
        return parse_feed(text, feed.name, self.source_type)

    async def fetch_all_feeds(self) -> List[CandidateItem]:
        """Fetch every configured feed concurrently; one bad feed never blocks the rest."""
        results = await asyncio.gather(
            *(self.fetch_feed(f) for f in self.feeds.values()),
            return_exceptions=True,
        )
        items: List[CandidateItem] = []
        for feed, result in zip(self.feeds.values(), results):
            if isinstance(result, Exception):
                logger.warning(f"Feed {feed.name} failed: {result}")
                continue
            items.extend(result)
        return items

    async def fetch_recent(self, window_days: int) -> List[CandidateItem]:
        cutoff = datetime.now(timezone.utc) - timedelta(days=window_days)
        items = await self.fetch_all_feeds()
        recent = [
            i for i in items
            if i.published_at and i.published_at >= cutoff and is_rss_startup_related(i.title, i.text)
        ]
        unique = dedupe_items(recent)
        logger.info(f"RSS: {len(unique)} startup items from {len(items)} entries")
        return unique

    async def search_by_keywords(self, keywords: List[str], window_days: int = 30) -> List[CandidateItem]:
        """Entries in the window whose title/description/content mention any keyword."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=window_days)
        lowered = [k.lower() for k in keywords]
        matches = []
        for item in await self.fetch_all_feeds():
            if not item.published_at or item.published_at < cutoff:
                continue
            haystack = f"{item.title} {item.text} {item.extra.get('content', '')}".lower()
            if any(k in haystack for k in lowered):
                matches.append(item)
        return dedupe_items(matches)

    def is_success_candidate(self, item: CandidateItem) -> bool:
        return is_rss_success_candidate(item.title, item.text)

    def extract_company_name(self, item: CandidateItem) -> Optional[str]:
        return extract_rss_company_name(item.title)
