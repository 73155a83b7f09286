"""
GitHub Collector - Young repositories gaining traction.

Searches the repository API for recently created projects matching startup
keywords, sorted by stars. A GITHUB_TOKEN raises the search rate limit but is
not required.

Source: https://api.github.com/search/repositories
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser

from ..base_collector import BaseCollector, CandidateItem, SourceType, dedupe_items
from ..heuristics import extract_github_company_name, is_github_success_candidate
from ...config.settings import settings

logger = logging.getLogger(__name__)

GITHUB_SEARCH_API = "https://api.github.com/search/repositories"

# Search keywords for startup-shaped repositories
STARTUP_KEYWORDS = ["saas", "startup", "mvp", "product", "platform"]


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return date_parser.isoparse(value)
    except (ValueError, TypeError):
        return None


def parse_repo(repo: Dict[str, Any]) -> Optional[CandidateItem]:
    """Normalize one search hit."""
    if not repo.get("id") or not repo.get("full_name"):
        return None

    owner = (repo.get("owner") or {}).get("login") or repo["full_name"].split("/")[0]
    return CandidateItem(
        id=str(repo["id"]),
        title=repo.get("name") or repo["full_name"],
        text=repo.get("description") or "",
        url=repo.get("html_url"),
        engagement_score=int(repo.get("stargazers_count") or 0),
        published_at=_parse_time(repo.get("created_at")),
        source_type=SourceType.GITHUB,
        extra={
            "full_name": repo["full_name"],
            "owner": owner,
            "forks": int(repo.get("forks_count") or 0),
            "language": repo.get("language"),
            "updated_at": _parse_time(repo.get("updated_at") or repo.get("pushed_at")),
        },
        lead_fields={
            "description": repo.get("description"),
            "website_url": repo.get("homepage") or None,
            "github_repo": repo.get("html_url"),
            "tags": list(repo.get("topics") or [])[:10] or None,
        },
        raw=repo,
    )


class GitHubCollector(BaseCollector):
    """Collector for recently created, fast-rising GitHub repositories."""

    source_type = SourceType.GITHUB
    rate_limit_key = "github"

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/vnd.github.v3+json"}
        if settings.github_token:
            headers["Authorization"] = f"token {settings.github_token}"
        return headers

    async def search_repositories(self, query: str, per_page: int) -> List[CandidateItem]:
        """Run one search query; empty list on failure."""
        if not await self.throttle():
            return []
        params = {"q": query, "sort": "stars", "order": "desc", "per_page": per_page}
        try:
            data = await self.get_json(GITHUB_SEARCH_API, params=params, headers=self._headers())
        except Exception as e:
            logger.warning(f"GitHub search failed for '{query}': {e}")
            return []

        items = []
        for repo in data.get("items", []):
            item = parse_repo(repo)
            if item:
                items.append(item)
        return items

    async def fetch_recent(self, window_days: int) -> List[CandidateItem]:
        since = (datetime.now(timezone.utc) - timedelta(days=window_days)).strftime("%Y-%m-%d")
        results: List[CandidateItem] = []

        for i, keyword in enumerate(STARTUP_KEYWORDS):
            query = f"{keyword} created:>{since} stars:>5"
            results.extend(await self.search_repositories(query, settings.github_per_page))
            if i < len(STARTUP_KEYWORDS) - 1:
                await asyncio.sleep(settings.github_query_delay)

        unique = dedupe_items(results)
        logger.info(f"GitHub: {len(unique)} unique repositories across {len(STARTUP_KEYWORDS)} queries")
        return unique

    def is_success_candidate(self, item: CandidateItem) -> bool:
        return is_github_success_candidate(
            item.engagement_score,
            item.text,
            item.extra.get("updated_at"),
        )

    def extract_company_name(self, item: CandidateItem) -> Optional[str]:
        return extract_github_company_name(item.text, item.title, item.extra.get("owner", ""))
