from .base_collector import BaseCollector, CandidateItem, Lead, SourceType, dedupe_items
from .scrapers import (
    ProductHuntCollector,
    HackerNewsCollector,
    GitHubCollector,
    RSSCollector,
    WebScraper,
    FundingCollector,
    FundingDetector,
    ValuationCollector,
)

__all__ = [
    "BaseCollector",
    "CandidateItem",
    "Lead",
    "SourceType",
    "dedupe_items",
    "ProductHuntCollector",
    "HackerNewsCollector",
    "GitHubCollector",
    "RSSCollector",
    "WebScraper",
    "FundingCollector",
    "FundingDetector",
    "ValuationCollector",
]
