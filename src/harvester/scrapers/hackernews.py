"""
Hacker News Collector - Startup launches and success stories from HN.

Uses the official Firebase API (no key required):
- /topstories.json and /newstories.json for candidate ids
- /item/<id>.json for each story

Monitors:
- "Show HN" / "Launch HN" posts (new products)
- Funding and growth announcements with strong engagement
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from ..base_collector import BaseCollector, CandidateItem, SourceType, dedupe_items
from ..heuristics import (
    extract_hn_company_name,
    is_hn_startup_related,
    is_hn_success_candidate,
)
from ...common.errors import fetch_with_timeout
from ...config.settings import settings

logger = logging.getLogger(__name__)

HN_API = "https://hacker-news.firebaseio.com/v0"


def parse_story(data: Dict[str, Any]) -> Optional[CandidateItem]:
    """Normalize one HN item; None for deleted, dead or non-story items."""
    if not data or data.get("deleted") or data.get("dead"):
        return None
    if data.get("type", "story") != "story" or not data.get("title"):
        return None

    story_id = data["id"]
    published = None
    if data.get("time"):
        published = datetime.fromtimestamp(data["time"], tz=timezone.utc)

    hn_url = f"https://news.ycombinator.com/item?id={story_id}"
    return CandidateItem(
        id=str(story_id),
        title=data["title"],
        text=data.get("text") or "",
        url=data.get("url") or hn_url,
        engagement_score=int(data.get("score") or 0),
        published_at=published,
        source_type=SourceType.HACKER_NEWS,
        extra={
            "comments": int(data.get("descendants") or 0),
            "by": data.get("by"),
            "hn_url": hn_url,
        },
        lead_fields={
            "website_url": data.get("url"),
        },
        raw=data,
    )


class HackerNewsCollector(BaseCollector):
    """Collector for Hacker News stories."""

    source_type = SourceType.HACKER_NEWS
    rate_limit_key = "hacker_news"

    async def fetch_story_ids(self, listing: str, limit: int) -> List[int]:
        """Fetch ids from a listing endpoint (topstories / newstories)."""
        try:
            ids = await self.get_json(f"{HN_API}/{listing}.json")
        except Exception as e:
            logger.warning(f"Error fetching HN {listing}: {e}")
            return []
        return list(ids or [])[:limit]

    async def fetch_story(self, story_id: int) -> Optional[CandidateItem]:
        """Fetch a single story; None on error or if the item is unusable."""
        if not await self.throttle():
            return None
        data = await fetch_with_timeout(
            self.get_json(f"{HN_API}/item/{story_id}.json"),
            name=f"HN item {story_id}",
            timeout=settings.request_timeout,
        )
        return parse_story(data) if data else None

    async def fetch_stories(self, story_ids: List[int]) -> List[CandidateItem]:
        """Fetch stories in fixed-size batches with a delay between batches."""
        batch_size = settings.hn_batch_size
        stories: List[CandidateItem] = []
        for i in range(0, len(story_ids), batch_size):
            batch = story_ids[i:i + batch_size]
            results = await asyncio.gather(
                *(self.fetch_story(sid) for sid in batch),
                return_exceptions=True,
            )
            for sid, result in zip(batch, results):
                if isinstance(result, Exception):
                    logger.debug(f"HN item {sid} failed: {result}")
                elif result is not None:
                    stories.append(result)
            if i + batch_size < len(story_ids):
                await asyncio.sleep(settings.hn_batch_delay)
        return stories

    async def fetch_recent(self, window_days: int) -> List[CandidateItem]:
        """Startup-related stories from the new and top listings within the window."""
        limit = settings.hn_max_stories
        new_ids = await self.fetch_story_ids("newstories", limit)
        top_ids = await self.fetch_story_ids("topstories", limit)
        all_ids = list(dict.fromkeys(new_ids + top_ids))

        stories = await self.fetch_stories(all_ids)
        cutoff = datetime.now(timezone.utc) - timedelta(days=window_days)

        recent = [
            s for s in stories
            if s.published_at and s.published_at >= cutoff and is_hn_startup_related(s.title, s.text)
        ]
        logger.info(f"Hacker News: {len(recent)} startup stories of {len(stories)} fetched")
        return dedupe_items(recent)

    def is_success_candidate(self, item: CandidateItem) -> bool:
        return is_hn_success_candidate(
            item.engagement_score,
            item.extra.get("comments", 0),
            item.title,
            item.text,
        )

    def extract_company_name(self, item: CandidateItem) -> Optional[str]:
        return extract_hn_company_name(item.title)
