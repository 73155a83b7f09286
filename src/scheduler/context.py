"""
Pipeline context shared by every stage.

Built once at process start (or per test) and passed explicitly to stage
functions, so nothing in the pipeline reaches for module-level singletons.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from ..analyst.generator import ContentGenerator
from ..archivist.database import async_session_factory
from ..common.circuit_breaker import SourceCircuitBreaker
from ..common.rate_limiter import RateLimiterRegistry
from ..config.settings import Settings, settings as default_settings
from ..harvester.base_collector import BaseCollector
from ..harvester.scrapers import (
    FundingCollector,
    FundingDetector,
    GitHubCollector,
    HackerNewsCollector,
    ProductHuntCollector,
    RSSCollector,
    ValuationCollector,
    WebScraper,
)
from ..validation.validator import DataValidator, DefaultProbes, ValidatorConfig

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    """Everything a stage needs: collectors, limiter, store, generator, validator."""
    collectors: Dict[str, BaseCollector]
    rate_limiter: RateLimiterRegistry
    session_factory: async_sessionmaker
    generator: ContentGenerator
    validator_factory: Callable[[], DataValidator]
    settings: Settings = field(default_factory=lambda: default_settings)
    circuit_breaker: SourceCircuitBreaker = field(default_factory=SourceCircuitBreaker)
    funding_detector: FundingDetector = field(default_factory=FundingDetector)

    def collector(self, source: str) -> Optional[BaseCollector]:
        return self.collectors.get(source)

    async def close(self) -> None:
        """Release HTTP clients held by collectors and validator probes."""
        for name, collector in self.collectors.items():
            try:
                await collector.close()
            except Exception as e:
                logger.warning(f"Error closing collector {name}: {e}")
        probes = getattr(self.validator_factory(), "probes", None)
        if probes is not None and hasattr(probes, "close"):
            try:
                await probes.close()
            except Exception as e:
                logger.warning(f"Error closing validator probes: {e}")


def build_context(
    app_settings: Settings = default_settings,
    session_factory: async_sessionmaker = async_session_factory,
) -> PipelineContext:
    """Wire the production pipeline from settings."""
    limiter = RateLimiterRegistry()
    detector = FundingDetector(floor=app_settings.funding_story_floor)
    funding = FundingCollector(detector=detector, rate_limiter=limiter)
    web_scraper = WebScraper(rate_limiter=limiter)

    collectors: Dict[str, BaseCollector] = {
        "product_hunt": ProductHuntCollector(rate_limiter=limiter),
        "hacker_news": HackerNewsCollector(rate_limiter=limiter),
        "github": GitHubCollector(rate_limiter=limiter),
        "rss": RSSCollector(rate_limiter=limiter),
        "funding": funding,
        "valuation": ValuationCollector(funding=funding, rate_limiter=limiter),
        "web_scraping": web_scraper,
    }

    validator = DataValidator(
        DefaultProbes(scraper=web_scraper, rate_limiter=limiter, session_factory=session_factory),
        ValidatorConfig.from_settings(app_settings),
    )

    return PipelineContext(
        collectors=collectors,
        rate_limiter=limiter,
        session_factory=session_factory,
        generator=ContentGenerator.from_settings(limiter),
        validator_factory=lambda: validator,
        settings=app_settings,
        circuit_breaker=SourceCircuitBreaker(threshold=app_settings.circuit_breaker_threshold),
        funding_detector=detector,
    )
