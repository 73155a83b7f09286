"""
Product Hunt Collector - Recent launches from the launch board.

With PRODUCT_HUNT_ACCESS_TOKEN set, pages through the GraphQL v2 API ordered by
votes. Without a token (or when the API fails) it falls back to the public RSS
feed, which carries no vote counts, so only the keyword half of the heuristic
can fire for those items.

API: https://api.producthunt.com/v2/api/graphql
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser

from ..base_collector import BaseCollector, CandidateItem, SourceType, dedupe_items
from ..heuristics import extract_ph_company_name, is_ph_success_candidate
from .rss_feeds import parse_feed
from ...common.errors import DataSourceError
from ...config.settings import settings

logger = logging.getLogger(__name__)

PRODUCT_HUNT_API_URL = "https://api.producthunt.com/v2/api/graphql"
PRODUCT_HUNT_FEED_URL = "https://www.producthunt.com/feed"
MAX_PAGES = 3

POSTS_QUERY = """
query GetPosts($after: String, $postedAfter: DateTime) {
  posts(first: 20, after: $after, order: VOTES, postedAfter: $postedAfter) {
    edges {
      node {
        id
        name
        tagline
        description
        url
        website
        votesCount
        commentsCount
        featuredAt
        createdAt
        makers { name url }
        topics { edges { node { name } } }
      }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""


def parse_post(node: Dict[str, Any]) -> Optional[CandidateItem]:
    """Normalize one GraphQL post node."""
    if not node.get("id") or not node.get("name"):
        return None

    published = None
    stamp = node.get("featuredAt") or node.get("createdAt")
    if stamp:
        try:
            published = date_parser.isoparse(stamp)
        except (ValueError, TypeError):
            published = None

    topics = [
        edge["node"]["name"]
        for edge in (node.get("topics") or {}).get("edges", [])
        if edge.get("node", {}).get("name")
    ]
    tagline = node.get("tagline") or ""
    description = node.get("description") or ""

    return CandidateItem(
        id=str(node["id"]),
        title=node["name"],
        text=f"{tagline} {description}".strip(),
        url=node.get("url") or node.get("website"),
        engagement_score=int(node.get("votesCount") or 0),
        published_at=published,
        source_type=SourceType.PRODUCT_HUNT,
        extra={
            "comments": int(node.get("commentsCount") or 0),
            "tagline": tagline,
            "description": description,
            "topics": topics,
        },
        lead_fields={
            "description": description or tagline or None,
            "website_url": node.get("website"),
            "product_hunt_url": node.get("url"),
            "tags": topics[:10] or None,
        },
        raw=node,
    )


class ProductHuntCollector(BaseCollector):
    """Collector for Product Hunt launches."""

    source_type = SourceType.PRODUCT_HUNT
    rate_limit_key = "product_hunt"

    def __init__(self, access_token: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.access_token = access_token if access_token is not None else settings.product_hunt_access_token

    async def fetch_with_auth(self, window_days: int) -> List[CandidateItem]:
        """Page through the GraphQL API. Raises DataSourceError on API errors."""
        since = (datetime.now(timezone.utc) - timedelta(days=window_days)).isoformat()
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.access_token}",
        }

        items: List[CandidateItem] = []
        cursor = None
        for _ in range(MAX_PAGES):
            if not await self.throttle():
                break
            response = await self.client.post(
                PRODUCT_HUNT_API_URL,
                json={"query": POSTS_QUERY, "variables": {"after": cursor, "postedAfter": since}},
                headers=headers,
            )
            if response.status_code >= 400:
                raise DataSourceError(self.name, "GraphQL request failed", response.status_code)
            data = response.json()
            if data.get("errors"):
                raise DataSourceError(self.name, f"GraphQL errors: {data['errors']}")

            posts = data["data"]["posts"]
            for edge in posts.get("edges", []):
                item = parse_post(edge.get("node") or {})
                if item:
                    items.append(item)

            page = posts.get("pageInfo") or {}
            if not page.get("hasNextPage"):
                break
            cursor = page.get("endCursor")
        return items

    async def fetch_public(self, window_days: int) -> List[CandidateItem]:
        """Public feed fallback."""
        try:
            text = await self.get_text(PRODUCT_HUNT_FEED_URL)
        except Exception as e:
            logger.warning(f"Error fetching Product Hunt feed: {e}")
            return []
        cutoff = datetime.now(timezone.utc) - timedelta(days=window_days)
        return [
            i for i in parse_feed(text, "Product Hunt", SourceType.PRODUCT_HUNT)
            if i.published_at is None or i.published_at >= cutoff
        ]

    async def fetch_recent(self, window_days: int) -> List[CandidateItem]:
        items: List[CandidateItem] = []
        if self.access_token:
            try:
                items = await self.fetch_with_auth(window_days)
            except Exception as e:
                logger.warning(f"Authenticated Product Hunt API failed, falling back to public feed: {e}")
                items = []
        if not items:
            items = await self.fetch_public(window_days)

        unique = dedupe_items(items)
        logger.info(f"Product Hunt: {len(unique)} launches")
        return unique

    def is_success_candidate(self, item: CandidateItem) -> bool:
        return is_ph_success_candidate(
            item.engagement_score,
            item.extra.get("comments", 0),
            item.extra.get("tagline", item.title),
            item.extra.get("description", item.text),
        )

    def extract_company_name(self, item: CandidateItem) -> Optional[str]:
        return extract_ph_company_name(item.title)
