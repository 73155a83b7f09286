"""
Data Validator - cross-references a startup's claims before publication.

Scoring is a single linear pass: confidence starts at 1.0 and each failed
check subtracts a configured weight, never going below 0. The result carries
every triggered issue and every cross-reference hit for audit.

Checks (default weights):
- Basic info: short name (-0.3), short description (-0.2), no online
  presence (-0.4), unreachable website (-0.2)
- Cross reference: no news hits for the company (-0.3)
- Funding: amount implausible for the stage (-0.2), large amount not
  confirmed by funding news (-0.3)
- Metrics: employee count or funding outside sanity bounds (-0.1 each),
  founding date in the future or too far back (-0.2)
- Duplicates: another startup with a similar name or the same website (-0.5)

Each result also carries a data-quality report (completeness, accuracy,
freshness and consistency of the evidence) for the story log.

A throttled news search is inconclusive and costs nothing; only a completed
search that finds nothing triggers the corroboration or funding deduction.

Verdict: < 0.3 rejected; < 0.7 or more than 2 issues needs_review; else approved.

Network access goes through ValidationProbes so tests (and alternate
deployments) can supply canned responses.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

import httpx

from ..archivist.database import get_session
from ..archivist import storage
from ..common.errors import ThrottledError, with_timeout
from ..common.http_client import USER_AGENT_BROWSER, create_scraper_client
from ..common.rate_limiter import RateLimiterRegistry, Throttled
from ..config.settings import Settings, settings
from ..harvester.scrapers.funding import format_amount
from ..harvester.scrapers.web_scraper import WebScraper

logger = logging.getLogger(__name__)

APPROVED = "approved"
NEEDS_REVIEW = "needs_review"
REJECTED = "rejected"

CROSS_REFERENCE_TEMPLATES = [
    '"{name}" startup',
    '"{name}" funding',
    '"{name}" raised',
    '"{name}" founded',
]

VALIDATION_FAILED_ISSUE = "Validation process failed"


def normalize_stage_key(stage: Optional[str]) -> str:
    """"Series A" / "series-a" / "series_a" -> "series_a"."""
    return re.sub(r"[\s\-]+", "_", (stage or "").strip().lower())


@dataclass
class ValidatorConfig:
    """Deduction weights, bands and thresholds for DataValidator."""
    penalty_short_name: float = 0.3
    penalty_short_description: float = 0.2
    penalty_no_presence: float = 0.4
    penalty_unreachable_website: float = 0.2
    penalty_no_corroboration: float = 0.3
    penalty_implausible_funding: float = 0.2
    penalty_unconfirmed_funding: float = 0.3
    penalty_suspicious_metric: float = 0.1
    penalty_bad_founded_date: float = 0.2
    penalty_duplicate: float = 0.5

    reject_below: float = 0.3
    review_below: float = 0.7
    max_issues: int = 2

    min_name_length: int = 2
    min_description_length: int = 10

    stage_bands: Dict[str, Tuple[int, int]] = field(default_factory=lambda: {
        "pre_seed": (10_000, 500_000),
        "seed": (100_000, 3_000_000),
        "series_a": (1_000_000, 15_000_000),
        "series_b": (5_000_000, 50_000_000),
        "series_c": (20_000_000, 200_000_000),
    })
    low_slack: float = 0.1
    high_slack: float = 5.0
    unconfirmed_funding_floor: int = 1_000_000

    metric_bounds: Dict[str, Tuple[float, float]] = field(default_factory=lambda: {
        "employee_count": (1, 100_000),
        "funding_amount": (1_000, 10_000_000_000),
    })
    max_company_age_years: int = 50

    cross_reference_queries: int = 2
    cross_reference_days: int = 90
    query_delay: float = 2.0
    probe_timeout: float = 30.0

    @classmethod
    def from_settings(cls, s: Settings = settings) -> "ValidatorConfig":
        return cls(
            penalty_short_name=s.penalty_short_name,
            penalty_short_description=s.penalty_short_description,
            penalty_no_presence=s.penalty_no_presence,
            penalty_unreachable_website=s.penalty_unreachable_website,
            penalty_no_corroboration=s.penalty_no_corroboration,
            penalty_implausible_funding=s.penalty_implausible_funding,
            penalty_unconfirmed_funding=s.penalty_unconfirmed_funding,
            penalty_suspicious_metric=s.penalty_suspicious_metric,
            penalty_bad_founded_date=s.penalty_bad_founded_date,
            penalty_duplicate=s.penalty_duplicate,
            reject_below=s.verdict_reject_below,
            review_below=s.verdict_review_below,
            max_issues=s.verdict_max_issues,
            stage_bands={normalize_stage_key(k): tuple(v) for k, v in s.stage_funding_bands.items()},
            low_slack=s.plausibility_low_slack,
            high_slack=s.plausibility_high_slack,
            unconfirmed_funding_floor=s.unconfirmed_funding_floor,
            metric_bounds={
                "employee_count": (s.min_employee_count, s.max_employee_count),
                "funding_amount": (s.min_funding_amount, s.max_funding_amount),
            },
            max_company_age_years=s.max_company_age_years,
            cross_reference_queries=s.cross_reference_queries,
            cross_reference_days=s.cross_reference_days,
            query_delay=s.news_query_delay,
            probe_timeout=float(s.request_timeout),
        )


@dataclass
class ValidationResult:
    """Outcome of one validation pass. Never persisted."""
    is_valid: bool = True
    confidence: float = 1.0
    issues: List[str] = field(default_factory=list)
    cross_references: List[Dict[str, Any]] = field(default_factory=list)
    final_verdict: str = APPROVED
    # None when there is no website or the check was inconclusive
    website_reachable: Optional[bool] = None
    data_quality: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "confidence": self.confidence,
            "issues": list(self.issues),
            "cross_references": list(self.cross_references),
            "final_verdict": self.final_verdict,
            "data_quality": self.data_quality,
        }


class ValidationProbes(Protocol):
    """Live checks the validator depends on."""

    async def check_website(self, url: str) -> bool:
        ...

    async def search_news(self, query: str, days: int) -> List[Any]:
        ...

    async def fetch_funding_announcements(self, company_name: str) -> List[Any]:
        ...

    async def find_similar_startups(
        self, name: str, website_url: Optional[str], exclude_id: Optional[int]
    ) -> List[Any]:
        ...


class DefaultProbes:
    """
    Probes backed by httpx, the web scraper and the store.

    Website checks and news searches draw from the shared rate limiter; a
    throttled probe raises ThrottledError, which the validator treats as
    inconclusive (no deduction).
    """

    def __init__(
        self,
        scraper: Optional[WebScraper] = None,
        rate_limiter: Optional[RateLimiterRegistry] = None,
        session_factory=None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.rate_limiter = rate_limiter or RateLimiterRegistry()
        self.scraper = scraper or WebScraper(rate_limiter=self.rate_limiter)
        self.session_factory = session_factory
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = create_scraper_client(
                user_agent=USER_AGENT_BROWSER,
                timeout=settings.website_check_timeout,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        await self.scraper.close()

    async def check_website(self, url: str) -> bool:
        outcome = await self.rate_limiter.wait_for_availability("api", "website_check")
        if isinstance(outcome, Throttled):
            outcome.raise_for()
        try:
            response = await self.client.head(url)
            if response.status_code == 405:
                response = await self.client.get(url)
            return response.status_code < 400
        except httpx.HTTPError as e:
            logger.debug(f"Website check failed for {url}: {type(e).__name__}")
            return False

    async def search_news(self, query: str, days: int) -> List[Any]:
        await self.scraper.require_capacity()
        return await self.scraper.search_news(query, days)

    async def fetch_funding_announcements(self, company_name: str) -> List[Any]:
        return await self.scraper.scrape_funding_announcements(company_name)

    async def find_similar_startups(
        self, name: str, website_url: Optional[str], exclude_id: Optional[int]
    ) -> List[Any]:
        kwargs = {"factory": self.session_factory} if self.session_factory else {}
        async with get_session(**kwargs) as session:
            return await storage.find_similar_startups(
                session, name, website_url=website_url, exclude_id=exclude_id
            )


def _hit_summary(hit: Any) -> Dict[str, Any]:
    if hasattr(hit, "to_dict"):
        data = hit.to_dict()
    elif isinstance(hit, dict):
        data = hit
    else:
        data = {"title": str(hit)}
    return {"title": data.get("title"), "url": data.get("url")}


def _hit_text(hit: Any) -> str:
    if isinstance(hit, dict):
        return f"{hit.get('title', '')} {hit.get('content', '')}"
    return f"{getattr(hit, 'title', '')} {getattr(hit, 'content', '')}"


class DataValidator:
    """
    Scores a startup snapshot against live evidence.

    Usage:
        validator = DataValidator(DefaultProbes(rate_limiter=limiter))
        result = await validator.validate_startup_story(startup, sources)
        if result.final_verdict != "rejected":
            ...
    """

    def __init__(
        self,
        probes: ValidationProbes,
        config: Optional[ValidatorConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        today: Optional[Callable[[], date]] = None,
    ):
        self.probes = probes
        self.config = config or ValidatorConfig.from_settings()
        self._sleep = sleep
        self._today = today or (lambda: datetime.now(timezone.utc).date())

    def _deduct(self, result: ValidationResult, weight: float, issue: str) -> None:
        result.issues.append(issue)
        result.confidence = max(0.0, round(result.confidence - weight, 6))

    async def validate_startup_story(self, startup: Any, sources: Optional[Sequence[Any]] = None) -> ValidationResult:
        """Run every check and compute the verdict. Never raises."""
        result = ValidationResult()
        try:
            await self._validate_basic_info(startup, result)
            await self._cross_reference(startup, result)
            await self._validate_funding_claims(startup, result)
            self._validate_metrics(startup, result)
            await self._check_duplicates(startup, result)
            self._final_verdict(result)
            result.data_quality = data_quality_report(startup, sources or [], result.website_reachable)
        except Exception as e:
            logger.error(f"Validation error for {getattr(startup, 'name', '?')}: {type(e).__name__}: {e}")
            result.issues.append(VALIDATION_FAILED_ISSUE)
            result.confidence = 0.0
            result.is_valid = True
            result.final_verdict = NEEDS_REVIEW

        logger.info(
            f"Validated {getattr(startup, 'name', '?')}: confidence={result.confidence:.2f} "
            f"verdict={result.final_verdict} issues={len(result.issues)}"
        )
        return result

    async def _validate_basic_info(self, startup: Any, result: ValidationResult) -> None:
        cfg = self.config
        name = getattr(startup, "name", None) or ""
        description = getattr(startup, "description", None) or ""
        website = getattr(startup, "website_url", None)

        if len(name.strip()) < cfg.min_name_length:
            self._deduct(result, cfg.penalty_short_name, "Company name is missing or too short")

        if len(description.strip()) < cfg.min_description_length:
            self._deduct(result, cfg.penalty_short_description, "Company description is missing or too short")

        if not website and not getattr(startup, "product_hunt_url", None) and not getattr(startup, "github_repo", None):
            self._deduct(result, cfg.penalty_no_presence, "No verifiable online presence found")

        if website:
            try:
                reachable = await with_timeout(
                    self.probes.check_website(website), cfg.probe_timeout, f"website check {website}"
                )
            except Exception as e:
                # Inconclusive (throttled or probe error): no deduction
                logger.warning(f"Website check skipped for {website}: {e}")
                return
            result.website_reachable = bool(reachable)
            if not reachable:
                self._deduct(result, cfg.penalty_unreachable_website, "Company website is not accessible")

    async def _cross_reference(self, startup: Any, result: ValidationResult) -> None:
        cfg = self.config
        name = getattr(startup, "name", None) or ""
        queries = [t.format(name=name) for t in CROSS_REFERENCE_TEMPLATES][:cfg.cross_reference_queries]

        throttled = False
        for i, query in enumerate(queries):
            try:
                hits = await with_timeout(
                    self.probes.search_news(query, cfg.cross_reference_days),
                    cfg.probe_timeout,
                    f"news search {query}",
                )
            except ThrottledError as e:
                logger.warning(f"News search throttled for {query}, retry after {e.retry_after:.0f}s")
                throttled = True
                break
            except Exception as e:
                logger.warning(f"Error searching for {query}: {e}")
                hits = None
            if hits:
                result.cross_references.append({
                    "source": "Google News",
                    "url": f"search: {query}",
                    "confirming_data": [_hit_summary(h) for h in hits[:3]],
                })
            if i < len(queries) - 1 and cfg.query_delay:
                await self._sleep(cfg.query_delay)

        if not result.cross_references:
            if throttled:
                logger.info(f"Cross reference for {name} inconclusive: news search throttled")
                return
            self._deduct(result, cfg.penalty_no_corroboration, "No external news sources found confirming the story")

    def is_funding_amount_suspicious(self, amount: float, stage: Optional[str]) -> bool:
        """Outside [min * low_slack, max * high_slack] for a known stage."""
        band = self.config.stage_bands.get(normalize_stage_key(stage)) if stage else None
        if not band:
            return False
        low, high = band
        return amount < low * self.config.low_slack or amount > high * self.config.high_slack

    async def _validate_funding_claims(self, startup: Any, result: ValidationResult) -> None:
        cfg = self.config
        amount = getattr(startup, "funding_amount", None) or 0
        if amount <= 0:
            return
        stage = getattr(startup, "funding_stage", None)

        if self.is_funding_amount_suspicious(amount, stage):
            self._deduct(
                result,
                cfg.penalty_implausible_funding,
                f"Funding amount {amount} seems unusual for stage {stage}",
            )

        if amount <= cfg.unconfirmed_funding_floor:
            return

        name = getattr(startup, "name", None) or ""
        try:
            news = await with_timeout(
                self.probes.fetch_funding_announcements(name),
                cfg.probe_timeout * 2,
                f"funding announcements {name}",
            )
        except ThrottledError as e:
            logger.info(f"Funding confirmation for {name} inconclusive: throttled, retry after {e.retry_after:.0f}s")
            return
        except Exception as e:
            logger.warning(f"Error validating funding claims for {name}: {e}")
            return
        if news is None:
            return

        needles = [format_amount(int(amount)).lower()]
        if stage:
            needles.append(stage.lower())
            needles.append(stage.replace("_", " ").lower())
        confirmed = any(
            any(n in _hit_text(item).lower() for n in needles)
            for item in news
        )
        if not confirmed:
            self._deduct(result, cfg.penalty_unconfirmed_funding, "Large funding claim not confirmed by news sources")

    def _validate_metrics(self, startup: Any, result: ValidationResult) -> None:
        cfg = self.config
        for metric, (low, high) in cfg.metric_bounds.items():
            value = getattr(startup, metric, None)
            if value is None:
                continue
            if value < low or value > high:
                self._deduct(result, cfg.penalty_suspicious_metric, f"{metric} value {value} appears suspicious")

        founded = getattr(startup, "founded_date", None)
        if founded:
            if isinstance(founded, datetime):
                founded = founded.date()
            age_years = (self._today() - founded).days / 365
            if age_years < 0 or age_years > cfg.max_company_age_years:
                self._deduct(result, cfg.penalty_bad_founded_date, "Founded date appears to be incorrect")

    async def _check_duplicates(self, startup: Any, result: ValidationResult) -> None:
        name = getattr(startup, "name", None) or ""
        if not name:
            return
        try:
            similar = await with_timeout(
                self.probes.find_similar_startups(name, getattr(startup, "website_url", None), getattr(startup, "id", None)),
                self.config.probe_timeout,
                f"duplicate check {name}",
            )
        except Exception as e:
            logger.warning(f"Error checking for duplicates of {name}: {e}")
            return
        if similar:
            self._deduct(result, self.config.penalty_duplicate, "Similar startup already exists in database")

    def _final_verdict(self, result: ValidationResult) -> None:
        cfg = self.config
        if result.confidence < cfg.reject_below:
            result.final_verdict = REJECTED
            result.is_valid = False
        elif result.confidence < cfg.review_below or len(result.issues) > cfg.max_issues:
            result.final_verdict = NEEDS_REVIEW
        else:
            result.final_verdict = APPROVED


# =============================================================================
# Pure helpers
# =============================================================================

REQUIRED_FIELDS = ("name", "description", "website_url", "industry")
OPTIONAL_FIELDS = ("founded_date", "funding_amount", "funding_stage", "location")


def calculate_completeness(startup: Any) -> float:
    required = sum(1 for f in REQUIRED_FIELDS if getattr(startup, f, None)) / len(REQUIRED_FIELDS)
    optional = sum(1 for f in OPTIONAL_FIELDS if getattr(startup, f, None)) / len(OPTIONAL_FIELDS)
    return required * 0.7 + optional * 0.3


def _extracted_at(source: Any) -> Optional[datetime]:
    value = source.get("extracted_at") if isinstance(source, dict) else getattr(source, "extracted_at", None)
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return None
    if isinstance(value, datetime) and value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def calculate_freshness(sources: Sequence[Any], now: Optional[datetime] = None) -> float:
    """Step score from the mean evidence age in days."""
    if not sources:
        return 0.0
    now = now or datetime.now(timezone.utc).replace(tzinfo=None)
    ages = []
    for source in sources:
        extracted = _extracted_at(source) or now
        ages.append((now - extracted).total_seconds() / 86400)
    avg_age = sum(ages) / len(ages)
    if avg_age <= 1:
        return 1.0
    if avg_age <= 7:
        return 0.8
    if avg_age <= 30:
        return 0.6
    if avg_age <= 90:
        return 0.4
    return 0.2


def _source_fields(source: Any) -> Tuple[str, Dict[str, Any]]:
    if isinstance(source, dict):
        return source.get("source_type", "unknown"), source.get("data") or source.get("raw_data") or {}
    return getattr(source, "source_type", "unknown"), getattr(source, "raw_data", None) or {}


def validate_data_consistency(sources: Sequence[Any]) -> Dict[str, Any]:
    """
    Fields reported with different values by different sources.

    reliability = consistent fields / fields seen (1.0 when nothing is seen).
    """
    field_map: Dict[str, List[Tuple[Any, str]]] = {}
    for source in sources:
        source_type, data = _source_fields(source)
        if not isinstance(data, dict):
            continue
        for key, value in data.items():
            if value is None or value == "":
                continue
            field_map.setdefault(key, []).append((value, source_type))

    inconsistencies = []
    for key, entries in field_map.items():
        if len(entries) < 2:
            continue
        unique = {json.dumps(v, sort_keys=True, default=str) for v, _ in entries}
        if len(unique) > 1:
            inconsistencies.append({
                "field": key,
                "values": [v for v, _ in entries],
                "sources": [s for _, s in entries],
            })

    total = len(field_map)
    reliability = (total - len(inconsistencies)) / total if total else 1.0
    return {"inconsistencies": inconsistencies, "reliability": reliability}


def estimate_accuracy(sources: Sequence[Any], website_reachable: Optional[bool]) -> float:
    score = 1.0
    if website_reachable is False:
        score -= 0.2
    if not sources:
        score -= 0.3
    elif len(sources) == 1:
        score -= 0.1
    return max(0.0, score)


def data_quality_report(
    startup: Any, sources: Sequence[Any], website_reachable: Optional[bool] = None
) -> Dict[str, Any]:
    """Mean of completeness, accuracy, freshness and reliability, with the breakdown."""
    completeness = calculate_completeness(startup)
    accuracy = estimate_accuracy(sources, website_reachable)
    freshness = calculate_freshness(sources)
    reliability = validate_data_consistency(sources)["reliability"]
    score = (completeness + accuracy + freshness + reliability) / 4
    return {
        "score": round(score, 4),
        "breakdown": {
            "completeness": round(completeness, 4),
            "accuracy": round(accuracy, 4),
            "freshness": freshness,
            "reliability": round(reliability, 4),
        },
    }
