"""
Funding Feed - Detects funding rounds in news text.

FundingDetector is pure: given a piece of text it returns the amount, stage,
investors and a confidence score, or None. FundingCollector runs it over
funding-focused feeds and emits items whose lead fields carry the round, which
the lead processor treats as authoritative for funding_amount/funding_stage.

Feeds:
- TechCrunch Venture: https://techcrunch.com/category/venture/feed/
- TechCrunch Fundraising: https://techcrunch.com/tag/fundraising/feed/
- Google News searches for seed / Series A-C announcements
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from ..base_collector import BaseCollector, CandidateItem, SourceType, dedupe_items
from ..heuristics import COMMON_WORDS, has_keyword
from .rss_feeds import FeedConfig, parse_feed
from .web_scraper import build_news_url

logger = logging.getLogger(__name__)

FUNDING_FLOOR = 500_000

FUNDING_KEYWORDS = [
    "raised", "raises", "funding", "investment", "series", "seed", "venture",
    "million", "billion", "capital", "secured",
]

# Longer names first so "pre-seed" wins over "seed"
FUNDING_STAGES = [
    "pre-seed", "series a", "series b", "series c", "series d", "series e",
    "seed", "angel", "growth", "venture",
]

AMOUNT_PATTERN = re.compile(
    r"\$\s?(\d+(?:\.\d+)?)\s*(billion|million|bn|mn|b|m|k)\b"
    r"|(\d+(?:\.\d+)?)\s*(billion|million)\b",
    re.IGNORECASE,
)

VALUATION_PATTERN = re.compile(
    r"(?:valued\s+at|valuation\s+of)\s+\$\s?(\d+(?:\.\d+)?)\s*(billion|million|bn|mn|b|m)\b"
    r"|\$\s?(\d+(?:\.\d+)?)\s*(billion|million|bn|mn|b|m)\s+valuation",
    re.IGNORECASE,
)

_NAME = r"([A-Z][\w.&-]*(?:\s+[A-Z][\w.&-]*){0,3})"
COMPANY_PATTERNS = [
    re.compile(r'"([^"]+)"\s+(?:raised|raises|secured|secures|announced|closes)'),
    re.compile(_NAME + r",?\s+(?:a|an|the)\s+[\w\s-]{0,60}?(?:startup|company|platform),?\s+(?:has\s+)?(?:raised|raises|secured|secures)"),
    re.compile(_NAME + r"\s+(?:has\s+)?(?:raised|raises|secured|secures|closes|lands|nabs|bags)\b"),
]

INVESTOR_PATTERNS = [
    re.compile(r"led\s+by\s+([^.;]+)", re.IGNORECASE),
    re.compile(r"investors?\s+include\s+([^.;]+)", re.IGNORECASE),
    re.compile(r"backed\s+by\s+([^.;]+)", re.IGNORECASE),
    re.compile(r"participation\s+from\s+([^.;]+)", re.IGNORECASE),
]

_MULTIPLIERS = {
    "k": 1_000,
    "m": 1_000_000, "mn": 1_000_000, "million": 1_000_000,
    "b": 1_000_000_000, "bn": 1_000_000_000, "billion": 1_000_000_000,
}


@dataclass
class FundingInfo:
    company_name: str
    amount: int
    stage: str
    investors: List[str] = field(default_factory=list)
    confidence: float = 0.5
    source: Optional[str] = None
    valuation: Optional[int] = None


def parse_amount(number: str, unit: str) -> int:
    """"2.5", "million" -> 2500000"""
    return int(float(number) * _MULTIPLIERS[unit.lower()])


def format_amount(amount: int) -> str:
    """Compact dollar string used to find an amount in news text.

    Examples:
        2000000 -> "$2.0M"
        1500000000 -> "$1.5B"
        750000 -> "$750K"
    """
    if amount >= 1_000_000_000:
        return f"${amount / 1_000_000_000:.1f}B"
    if amount >= 1_000_000:
        return f"${amount / 1_000_000:.1f}M"
    if amount >= 1_000:
        return f"${amount / 1_000:.0f}K"
    return f"${amount}"


def normalize_stage(stage: Optional[str]) -> Optional[str]:
    """"Series A" -> "series_a"; None stays None."""
    if not stage:
        return None
    return re.sub(r"\s+", "_", stage.strip().lower())


def extract_amount(text: str) -> Optional[int]:
    """First dollar amount with a unit in the text."""
    match = AMOUNT_PATTERN.search(text)
    if not match:
        return None
    if match.group(1):
        return parse_amount(match.group(1), match.group(2))
    return parse_amount(match.group(3), match.group(4))


def extract_valuation(text: str) -> Optional[int]:
    match = VALUATION_PATTERN.search(text)
    if not match:
        return None
    if match.group(1):
        return parse_amount(match.group(1), match.group(2))
    return parse_amount(match.group(3), match.group(4))


def extract_stage(text: str) -> str:
    lowered = text.lower()
    for stage in FUNDING_STAGES:
        if re.search(r"\b" + re.escape(stage) + r"\b", lowered):
            return normalize_stage(stage)
    return "funding"


def extract_investors(text: str) -> List[str]:
    investors: List[str] = []
    for pattern in INVESTOR_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        for part in re.split(r",|\band\b", match.group(1)):
            name = part.strip()
            if 0 < len(name) < 100 and name not in investors:
                investors.append(name)
    return investors


def extract_funded_company(text: str) -> Optional[str]:
    for pattern in COMPANY_PATTERNS:
        match = pattern.search(text)
        if match:
            name = match.group(1).strip()
            if 2 < len(name) < 50 and name.lower() not in COMMON_WORDS:
                return name
    return None


class FundingDetector:
    """Pure funding-round detection over free text."""

    def __init__(self, floor: int = FUNDING_FLOOR):
        self.floor = floor

    def confidence(self, text: str, amount: int) -> float:
        lowered = text.lower()
        score = 0.5
        if amount >= 10_000_000:
            score += 0.2
        elif amount >= 1_000_000:
            score += 0.1
        if "series a" in lowered or "series b" in lowered:
            score += 0.1
        if "led by" in lowered or "investors include" in lowered:
            score += 0.1
        if "today" in lowered or "announced" in lowered:
            score += 0.1
        return min(score, 1.0)

    def detect(self, text: str, company_name: Optional[str] = None, source: Optional[str] = None) -> Optional[FundingInfo]:
        """Return FundingInfo when text announces a round of at least the floor."""
        if not text or not has_keyword(text, FUNDING_KEYWORDS):
            return None

        amount = extract_amount(text)
        if amount is None or amount < self.floor:
            return None

        company = company_name or extract_funded_company(text)
        if not company:
            return None

        return FundingInfo(
            company_name=company,
            amount=amount,
            stage=extract_stage(text),
            investors=extract_investors(text),
            confidence=round(self.confidence(text, amount), 2),
            source=source,
            valuation=extract_valuation(text),
        )


FUNDING_FEEDS: Dict[str, FeedConfig] = {
    "techcrunch_venture": FeedConfig("https://techcrunch.com/category/venture/feed/", "TechCrunch Venture", "funding"),
    "techcrunch_fundraising": FeedConfig("https://techcrunch.com/tag/fundraising/feed/", "TechCrunch Fundraising", "funding"),
    "news_seed": FeedConfig(build_news_url("startup raises seed round"), "Google News", "funding"),
    "news_series": FeedConfig(build_news_url('startup raises "Series A" OR "Series B" OR "Series C"'), "Google News", "funding"),
}


class FundingCollector(BaseCollector):
    """Collector for funding announcements in news feeds."""

    source_type = SourceType.FUNDING

    def __init__(self, detector: Optional[FundingDetector] = None, feeds: Optional[Dict[str, FeedConfig]] = None, **kwargs):
        super().__init__(**kwargs)
        self.detector = detector or FundingDetector()
        self.feeds = feeds or FUNDING_FEEDS

    async def _fetch_feed(self, feed: FeedConfig) -> List[CandidateItem]:
        if not await self.throttle():
            return []
        try:
            text = await self.get_text(feed.url)
        except Exception as e:
            logger.warning(f"Error fetching funding feed {feed.name}: {e}")
            return []
        return parse_feed(text, feed.name, SourceType.FUNDING)

    def to_funding_item(self, item: CandidateItem) -> Optional[CandidateItem]:
        """Attach the detected round to a feed item, or None when no round is found."""
        title = item.title.rsplit(" - ", 1)[0] if item.extra.get("source") == "Google News" else item.title
        info = self.detector.detect(f"{title}. {item.text}", source=item.url)
        if info is None:
            return None
        return CandidateItem(
            id=item.id,
            title=title,
            text=item.text,
            url=item.url,
            engagement_score=0,
            published_at=item.published_at,
            source_type=SourceType.FUNDING,
            extra={**item.extra, "company": info.company_name, "confidence": info.confidence},
            lead_fields={
                "description": item.text or None,
                "funding_amount": info.amount,
                "funding_stage": info.stage,
                "investors": info.investors or None,
                "current_valuation": info.valuation,
            },
            raw={**item.raw, "funding": {
                "amount": info.amount,
                "stage": info.stage,
                "investors": info.investors,
                "confidence": info.confidence,
                "valuation": info.valuation,
            }},
        )

    async def fetch_recent(self, window_days: int) -> List[CandidateItem]:
        results = await asyncio.gather(*(self._fetch_feed(f) for f in self.feeds.values()), return_exceptions=True)
        cutoff = datetime.now(timezone.utc) - timedelta(days=window_days)

        items: List[CandidateItem] = []
        for result in results:
            if isinstance(result, Exception):
                logger.warning(f"Funding feed failed: {result}")
                continue
            for entry in result:
                if entry.published_at and entry.published_at < cutoff:
                    continue
                funded = self.to_funding_item(entry)
                if funded:
                    items.append(funded)

        unique = dedupe_items(items)
        logger.info(f"Funding feed: {len(unique)} rounds detected")
        return unique

    def is_success_candidate(self, item: CandidateItem) -> bool:
        amount = item.lead_fields.get("funding_amount") or 0
        return amount >= self.detector.floor

    def extract_company_name(self, item: CandidateItem) -> Optional[str]:
        return item.extra.get("company")
