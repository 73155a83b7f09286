"""
Pipeline stages and the JobRun wrapper around them.

Every stage is an async function of the PipelineContext returning a
StageOutcome. run_stage() records a JobRun row at start, enforces the stage
timeout, and records completion or failure. Per-item errors inside a stage are
counted in the outcome metadata and never abort the run.

Stages:
- *_collection: fetch leads from one source and resolve them to startups
- web_scraping: news and hiring signals for recently discovered startups
- story_generation: analyze, validate and publish success stories
- funding_story_generation: publish funding stories for funded startups
- funding_detection: find funding rounds in stored evidence
- weekly_maintenance: retention sweeps (see maintenance.py)
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError

from ..analyst.generator import GenerationFailure, narrative_or_fallback
from ..archivist import storage
from ..archivist.database import get_session
from ..archivist.models import JobRun, JobStatus, Startup, utc_now_naive
from ..common.errors import StageTimeoutError
from ..common.rate_limiter import AdaptiveDelay, Throttled
from ..harvester.base_collector import BaseCollector, Lead, SourceType
from ..harvester.scrapers import WebScraper
from ..validation.validator import APPROVED, REJECTED
from .context import PipelineContext
from .maintenance import run_maintenance

logger = logging.getLogger(__name__)

# Evidence types scanned for funding rounds; funding sources already carry them
DETECTION_SOURCE_TYPES = (
    SourceType.PRODUCT_HUNT.value,
    SourceType.HACKER_NEWS.value,
    SourceType.GITHUB.value,
    SourceType.RSS.value,
    SourceType.WEB_SCRAPING.value,
)

FUNDING_CITATION_TYPES = (
    SourceType.FUNDING.value,
    SourceType.FUNDING_DETECTION.value,
    SourceType.VALUATION.value,
)

TEXT_KEYS = ("title", "text", "description", "tagline", "summary", "content")


@dataclass
class StageOutcome:
    """What a stage function reports back to run_stage()."""
    records_processed: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StageRunResult:
    """Summary of one wrapped stage run, mirrored in the JobRun row."""
    job_id: str
    stage: str
    status: str
    trigger: str = "scheduled"
    records_processed: int = 0
    duration_seconds: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == JobStatus.COMPLETED.value

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


StageFn = Callable[[PipelineContext], Awaitable[StageOutcome]]


def make_job_id(stage: str) -> str:
    return f"{stage}_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S_%f')}"


# =============================================================================
# JobRun bookkeeping
# =============================================================================

async def _start_job_run(ctx: PipelineContext, job_id: str, stage: str, trigger: str) -> int:
    async with get_session(ctx.session_factory) as session:
        run = JobRun(
            job_id=job_id,
            job_name=stage,
            status=JobStatus.RUNNING.value,
            trigger=trigger,
            started_at=utc_now_naive(),
        )
        session.add(run)
        await session.flush()
        return run.id


async def _finish_job_run(ctx: PipelineContext, run_id: int, **values: Any) -> None:
    async with get_session(ctx.session_factory) as session:
        run = await session.get(JobRun, run_id)
        if run is None:
            return
        for key, value in values.items():
            setattr(run, key, value)


def _metrics_line(result: StageRunResult) -> str:
    parts = [
        f"stage={result.stage}",
        f"job_id={result.job_id}",
        f"status={result.status}",
        f"records={result.records_processed}",
        f"duration={result.duration_seconds:.1f}s",
    ]
    for key, value in result.metadata.items():
        if isinstance(value, (int, float, str, bool)):
            parts.append(f"{key}={value}")
    return "METRICS " + " ".join(parts)


async def run_stage(
    ctx: PipelineContext,
    name: str,
    fn: StageFn,
    trigger: str = "scheduled",
) -> StageRunResult:
    """
    Run one stage with JobRun bookkeeping and a hard timeout.

    Never raises: a stage that crashes or times out is recorded as failed and
    reported in the returned result, leaving other stages unaffected.
    """
    job_id = make_job_id(name)
    timeout = ctx.settings.stage_timeout_seconds
    logger.info(f"[{job_id}] Starting {name} (trigger={trigger})")
    started = time.monotonic()

    run_id: Optional[int] = None
    try:
        run_id = await _start_job_run(ctx, job_id, name, trigger)
    except Exception as e:
        logger.warning(f"[{job_id}] Failed to create JobRun record: {e}")

    result = StageRunResult(job_id=job_id, stage=name, status=JobStatus.RUNNING.value, trigger=trigger)
    try:
        outcome = await asyncio.wait_for(fn(ctx), timeout=timeout)
        result.status = JobStatus.COMPLETED.value
        result.records_processed = outcome.records_processed
        result.metadata = outcome.metadata
    except asyncio.TimeoutError:
        result.status = JobStatus.FAILED.value
        result.error = str(StageTimeoutError(f"{name} timed out after {timeout} seconds"))
        logger.error(f"[{job_id}] STAGE_TIMEOUT: {result.error}")
    except Exception as e:
        result.status = JobStatus.FAILED.value
        result.error = f"{type(e).__name__}: {e}"[:500]
        logger.error(f"[{job_id}] {name} failed: {result.error}", exc_info=True)

    result.duration_seconds = round(time.monotonic() - started, 3)

    if run_id is not None:
        try:
            await _finish_job_run(
                ctx,
                run_id,
                status=result.status,
                completed_at=utc_now_naive(),
                duration_seconds=result.duration_seconds,
                records_processed=result.records_processed,
                job_metadata=result.metadata or None,
                error_message=result.error,
            )
        except Exception as e:
            logger.error(f"[{job_id}] Failed to update JobRun record: {e}")

    if result.success:
        logger.info(f"[{job_id}] {name} completed: {result.records_processed} records in {result.duration_seconds:.1f}s")
        logger.info(_metrics_line(result))
    return result


# =============================================================================
# Collection stages
# =============================================================================

async def process_leads(ctx: PipelineContext, leads: List[Lead]) -> Dict[str, int]:
    """Resolve leads one session at a time, pausing between batches."""
    counts = {"created": 0, "merged": 0, "skipped": 0, "failed": 0}
    batch_size = max(1, ctx.settings.lead_batch_size)

    for start in range(0, len(leads), batch_size):
        if start:
            await asyncio.sleep(ctx.settings.lead_batch_delay)
        for lead in leads[start:start + batch_size]:
            item = lead.item
            try:
                async with get_session(ctx.session_factory) as session:
                    outcome = await storage.process_startup_lead(
                        session,
                        lead.company_name,
                        item.source_type.value,
                        item.raw,
                        source_url=item.url,
                        fields=item.lead_fields,
                    )
                counts[outcome.status] += 1
            except Exception as e:
                counts["failed"] += 1
                logger.warning(f"Failed to process lead {lead.company_name!r} from {item.source_type.value}: {e}")
    return counts


async def collect_source(
    ctx: PipelineContext, source: str, collector: Optional[BaseCollector] = None
) -> StageOutcome:
    """Fetch one source's leads and resolve them, honoring the circuit breaker.

    `collector` overrides the configured one for this run.
    """
    breaker = ctx.circuit_breaker
    if breaker.is_disabled(source):
        logger.warning(f"Skipping {source}: circuit open")
        return StageOutcome(0, {"skipped": "circuit_open"})

    collector = collector or ctx.collector(source)
    if collector is None:
        raise KeyError(f"No collector configured for {source}")

    resource = source if source in ctx.rate_limiter.stats() else "data_collection"
    throttle = ctx.rate_limiter.acquire(resource, "stage")
    if isinstance(throttle, Throttled):
        logger.warning(f"Skipping {source}: throttled for {throttle.retry_after:.0f}s")
        return StageOutcome(0, {"skipped": "throttled"})

    try:
        leads = await collector.collect(ctx.settings.collection_window_days)
    except Exception:
        breaker.record_error(source)
        raise
    breaker.record_success(source)

    counts = await process_leads(ctx, leads)
    return StageOutcome(
        records_processed=counts["created"] + counts["merged"],
        metadata={"leads": len(leads), **counts},
    )


def collection_stage(source: str) -> StageFn:
    async def _stage(ctx: PipelineContext) -> StageOutcome:
        return await collect_source(ctx, source)

    _stage.__name__ = f"{source}_collection"
    return _stage


async def web_scraping_stage(ctx: PipelineContext) -> StageOutcome:
    """
    Enrich recently discovered startups with funding news and hiring signals.

    Funding announcements become ordinary leads; hiring coverage is attached
    as a separate evidence record when any is found.
    """
    scraper = ctx.collector(SourceType.WEB_SCRAPING.value)
    if not isinstance(scraper, WebScraper):
        raise KeyError("No web scraper configured")

    async with get_session(ctx.session_factory) as session:
        recent = await storage.find_recent_startups(
            session, days=ctx.settings.collection_window_days, limit=ctx.settings.web_scraping_batch
        )
    names = [s.name for s in recent]
    if not names:
        logger.info("Web scraping: no recent startups to enrich")
        return StageOutcome(0, {"targets": 0})

    run = scraper.for_targets(names)
    outcome = await collect_source(ctx, SourceType.WEB_SCRAPING.value, collector=run)

    hiring = 0
    for name in names:
        postings = await run.scrape_job_postings(name)
        if postings.job_count <= 0:
            continue
        try:
            async with get_session(ctx.session_factory) as session:
                await storage.process_startup_lead(
                    session,
                    name,
                    SourceType.WEB_SCRAPING.value,
                    {"job_postings": asdict(postings)},
                )
            hiring += 1
        except Exception as e:
            logger.warning(f"Failed to store hiring signal for {name}: {e}")

    outcome.records_processed += hiring
    outcome.metadata.update({"targets": len(names), "hiring_signals": hiring})
    return outcome


# =============================================================================
# Generation stages
# =============================================================================

def source_citations(sources: List[Any]) -> List[Dict[str, Any]]:
    return [{"type": s.source_type, "url": s.source_url} for s in sources]


async def _generate_story(ctx: PipelineContext, startup: Startup, counts: Dict[str, int]) -> None:
    async with get_session(ctx.session_factory) as session:
        sources = await storage.get_sources_for_startup(session, startup.id)

    result = await ctx.generator.analyze_startup(startup, sources)
    if isinstance(result, GenerationFailure):
        counts["generation_failed"] += 1
        logger.warning(f"Story generation failed for {startup.name}: {result.reason} {result.error or ''}")
    narrative = narrative_or_fallback(result)

    if not narrative.is_success_story or narrative.confidence <= ctx.settings.story_min_confidence:
        counts["not_success"] += 1
        return

    validation = await ctx.validator_factory().validate_startup_story(startup, sources)
    if validation.final_verdict == REJECTED:
        counts["rejected"] += 1
        logger.info(f"Story for {startup.name} rejected (confidence={validation.confidence:.2f}): {validation.issues}")
        return

    featured = (
        validation.final_verdict == APPROVED
        and narrative.confidence > ctx.settings.featured_confidence
    )
    narrative = await ctx.generator.complete_narrative(narrative)
    try:
        async with get_session(ctx.session_factory) as session:
            if await storage.startup_has_story(session, startup.id):
                counts["already_exists"] += 1
                return
            await storage.save_story(
                session,
                startup.id,
                title=narrative.title,
                content=narrative.content,
                summary=narrative.summary,
                story_type=narrative.story_type.value,
                confidence_score=narrative.confidence,
                tags=narrative.tags,
                sources=source_citations(sources),
                verdict=validation.final_verdict,
                featured=featured,
            )
    except IntegrityError:
        # Another run published a story for this startup first
        counts["already_exists"] += 1
        return
    counts["created"] += 1
    quality = (validation.data_quality or {}).get("score")
    logger.info(
        f"Created {validation.final_verdict} story for {startup.name} "
        f"(featured={featured}, data_quality={quality})"
    )


async def story_generation_stage(ctx: PipelineContext) -> StageOutcome:
    """Analyze startups with enough fresh evidence and publish validated stories."""
    s = ctx.settings
    async with get_session(ctx.session_factory) as session:
        candidates = await storage.find_story_candidates(
            session,
            lookback_days=s.story_lookback_days,
            min_sources=s.story_min_sources,
            limit=s.story_batch_size,
        )
    logger.info(f"Story generation: {len(candidates)} candidates")

    counts = {"created": 0, "not_success": 0, "rejected": 0, "already_exists": 0,
              "generation_failed": 0, "failed": 0, "throttled": 0}
    delay = AdaptiveDelay(initial=s.story_delay, min_delay=min(0.5, s.story_delay))
    for i, startup in enumerate(candidates):
        if i:
            await delay.wait()
        if isinstance(ctx.rate_limiter.acquire("ai_processing", "story_generation"), Throttled):
            counts["throttled"] = len(candidates) - i
            logger.warning(f"Story generation throttled, {counts['throttled']} candidates deferred")
            break
        try:
            await _generate_story(ctx, startup, counts)
            delay.record_success()
        except Exception as e:
            counts["failed"] += 1
            delay.record_error()
            logger.warning(f"Story generation error for {startup.name}: {type(e).__name__}: {e}")

    return StageOutcome(counts["created"], {"candidates": len(candidates), **counts})


def funding_context(startup: Startup) -> Dict[str, Any]:
    return {
        "description": startup.description,
        "industry": startup.industry,
        "location": startup.location,
        "employee_count": startup.employee_count,
        "founded_date": startup.founded_date.isoformat() if startup.founded_date else None,
        "investors": startup.investors,
        "valuation": startup.current_valuation,
    }


def funding_citations(startup: Startup, sources: List[Any]) -> List[Dict[str, Any]]:
    """Funding evidence URLs, else the company website, tagged as funding detection."""
    citations = [
        {"type": s.source_type, "url": s.source_url}
        for s in sources
        if s.source_type in FUNDING_CITATION_TYPES and s.source_url
    ]
    if citations:
        return citations
    return [{"type": SourceType.FUNDING_DETECTION.value, "url": startup.website_url or ""}]


async def funding_story_generation_stage(ctx: PipelineContext) -> StageOutcome:
    """Publish funding stories for startups with a known round at or above the floor."""
    s = ctx.settings
    async with get_session(ctx.session_factory) as session:
        candidates = await storage.find_funding_story_candidates(
            session,
            floor=s.funding_story_floor,
            lookback_days=s.funding_story_lookback_days,
            limit=s.funding_story_batch_size,
        )
    logger.info(f"Funding stories: {len(candidates)} candidates")

    counts = {"created": 0, "not_success": 0, "already_exists": 0, "failed": 0}
    for startup in candidates:
        try:
            async with get_session(ctx.session_factory) as session:
                sources = await storage.get_sources_for_startup(session, startup.id)

            result = await ctx.generator.generate_funding_story(
                startup.name, startup.funding_amount, startup.funding_stage, funding_context(startup)
            )
            narrative = narrative_or_fallback(result)
            if not narrative.is_success_story:
                counts["not_success"] += 1
                continue

            try:
                async with get_session(ctx.session_factory) as session:
                    if await storage.startup_has_story(session, startup.id):
                        counts["already_exists"] += 1
                        continue
                    await storage.save_story(
                        session,
                        startup.id,
                        title=narrative.title,
                        content=narrative.content,
                        summary=narrative.summary,
                        story_type=narrative.story_type.value,
                        confidence_score=narrative.confidence,
                        tags=narrative.tags,
                        sources=funding_citations(startup, sources),
                        verdict=APPROVED,
                        featured=(startup.funding_amount or 0) >= s.featured_funding_amount,
                    )
            except IntegrityError:
                counts["already_exists"] += 1
                continue
            counts["created"] += 1
        except Exception as e:
            counts["failed"] += 1
            logger.warning(f"Funding story error for {startup.name}: {type(e).__name__}: {e}")

    return StageOutcome(counts["created"], {"candidates": len(candidates), **counts})


# =============================================================================
# Funding detection
# =============================================================================

def record_text(raw: Any) -> str:
    """Concatenate the human-readable fields of a stored payload."""
    if not isinstance(raw, dict):
        return str(raw) if isinstance(raw, str) else ""
    parts = [str(raw[k]) for k in TEXT_KEYS if isinstance(raw.get(k), str)]
    return ". ".join(p for p in parts if p.strip())


async def funding_detection_stage(ctx: PipelineContext) -> StageOutcome:
    """
    Scan stored evidence of recent startups for funding announcements.

    Only startups without a known round are examined, so repeated runs do
    not rewrite funding already on record.
    """
    s = ctx.settings
    detector = ctx.funding_detector
    async with get_session(ctx.session_factory) as session:
        recent = await storage.find_recent_startups(
            session, days=s.collection_window_days, limit=s.funding_detection_batch
        )
    unfunded = [st for st in recent if not st.funding_amount]

    counts = {"scanned": len(unfunded), "detected": 0, "failed": 0}
    for startup in unfunded:
        try:
            async with get_session(ctx.session_factory) as session:
                sources = await storage.get_sources_for_startup(session, startup.id)

            best = None
            for source in sources:
                if source.source_type not in DETECTION_SOURCE_TYPES:
                    continue
                info = detector.detect(record_text(source.raw_data), company_name=startup.name, source=source.source_url)
                if info and info.confidence >= s.funding_detection_min_confidence:
                    if best is None or info.confidence > best.confidence:
                        best = info
            if best is None:
                continue

            async with get_session(ctx.session_factory) as session:
                await storage.process_startup_lead(
                    session,
                    startup.name,
                    SourceType.FUNDING_DETECTION.value,
                    {
                        "amount": best.amount,
                        "stage": best.stage,
                        "investors": best.investors,
                        "confidence": best.confidence,
                        "source": best.source,
                    },
                    source_url=best.source,
                    fields={
                        "funding_amount": best.amount,
                        "funding_stage": best.stage,
                        "investors": best.investors or None,
                    },
                )
            counts["detected"] += 1
            logger.info(f"Detected {best.stage} round of {best.amount} for {startup.name}")
        except Exception as e:
            counts["failed"] += 1
            logger.warning(f"Funding detection error for {startup.name}: {type(e).__name__}: {e}")

    return StageOutcome(counts["detected"], counts)


async def weekly_maintenance_stage(ctx: PipelineContext) -> StageOutcome:
    report = await run_maintenance(ctx)
    return StageOutcome(0, {"type": "maintenance", **report})


# =============================================================================
# Registry and manual trigger
# =============================================================================

# Manual collection source name -> stage name
COLLECTION_SOURCES: Dict[str, str] = {
    "product_hunt": "product_hunt_collection",
    "hacker_news": "hacker_news_collection",
    "github": "github_collection",
    "rss": "rss_collection",
    "funding": "funding_collection",
    "valuation": "valuation_collection",
    "web_scraping": "web_scraping",
}

STAGES: Dict[str, StageFn] = {
    "product_hunt_collection": collection_stage("product_hunt"),
    "hacker_news_collection": collection_stage("hacker_news"),
    "github_collection": collection_stage("github"),
    "rss_collection": collection_stage("rss"),
    "funding_collection": collection_stage("funding"),
    "valuation_collection": collection_stage("valuation"),
    "web_scraping": web_scraping_stage,
    "story_generation": story_generation_stage,
    "funding_story_generation": funding_story_generation_stage,
    "funding_detection": funding_detection_stage,
    "weekly_maintenance": weekly_maintenance_stage,
}


async def run_named_stage(ctx: PipelineContext, name: str, trigger: str = "scheduled") -> StageRunResult:
    """Run a registered stage by name. Raises KeyError for unknown names."""
    if name not in STAGES:
        raise KeyError(f"Unknown stage: {name}")
    return await run_stage(ctx, name, STAGES[name], trigger=trigger)


async def run_manual_collection(ctx: PipelineContext, sources: Optional[List[str]] = None) -> Dict[str, Any]:
    """
    Run the selected collection sources now (all of them when none are given).

    Always returns a per-source summary; one source failing or being unknown
    does not prevent the others from running.
    """
    selected = list(dict.fromkeys(sources)) if sources else list(COLLECTION_SOURCES)
    logger.info(f"Manual collection requested for: {', '.join(selected)}")

    results: Dict[str, Dict[str, Any]] = {}
    for source in selected:
        stage = COLLECTION_SOURCES.get(source)
        if stage is None:
            results[source] = {"success": False, "records_processed": 0, "error": f"Unknown source: {source}"}
            continue
        run = await run_named_stage(ctx, stage, trigger="manual")
        results[source] = {
            "success": run.success,
            "records_processed": run.records_processed,
            "error": run.error,
            "job_id": run.job_id,
        }

    return {"success": all(r["success"] for r in results.values()), "results": results}
