"""Source-specific collector implementations."""

from .product_hunt import ProductHuntCollector
from .hackernews import HackerNewsCollector
from .github import GitHubCollector
from .rss_feeds import RSSCollector, FeedConfig, RSS_FEEDS
from .web_scraper import WebScraper, ScrapedPage, JobPostings
from .funding import FundingCollector, FundingDetector, FundingInfo
from .valuation import ValuationCollector

__all__ = [
    "ProductHuntCollector",
    "HackerNewsCollector",
    "GitHubCollector",
    "RSSCollector",
    "FeedConfig",
    "RSS_FEEDS",
    "WebScraper",
    "ScrapedPage",
    "JobPostings",
    "FundingCollector",
    "FundingDetector",
    "FundingInfo",
    "ValuationCollector",
]
