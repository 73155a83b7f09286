"""
Tests for pipeline stages, JobRun bookkeeping and manual collection.

Stages run against the in-memory store with fake collectors, a fake
generator and a fake validator, so no network or LLM is involved.
"""

import asyncio
from typing import List, Optional

import pytest
import pytest_asyncio
from sqlalchemy import select


# =============================================================================
# Fakes
# =============================================================================
def _item(title: str, source_type=None, raw=None, url=None):
    from src.harvester.base_collector import CandidateItem, SourceType

    return CandidateItem(
        id=title,
        title=title,
        text="",
        url=url,
        engagement_score=100,
        published_at=None,
        source_type=source_type or SourceType.HACKER_NEWS,
        raw=raw or {"title": title},
    )


def _collector_class():
    from src.harvester.base_collector import BaseCollector, SourceType

    class FakeCollector(BaseCollector):
        """Returns fixed items; every titled item is a candidate named by its title."""

        source_type = SourceType.HACKER_NEWS

        def __init__(self, titles: Optional[List[str]] = None, error: Optional[Exception] = None):
            super().__init__()
            self.titles = titles or []
            self.error = error
            self.calls = 0

        async def fetch_recent(self, window_days):
            self.calls += 1
            if self.error:
                raise self.error
            return [_item(t) for t in self.titles]

        def is_success_candidate(self, item):
            return True

        def extract_company_name(self, item):
            return item.title

    return FakeCollector


class FakeGenerator:
    def __init__(self, narrative=None, funding_narrative=None):
        self.narrative = narrative
        self.funding_narrative = funding_narrative
        self.analyzed = []

    async def analyze_startup(self, startup, sources):
        self.analyzed.append((startup.name, len(sources)))
        return self.narrative

    async def generate_funding_story(self, name, amount, stage, context=None):
        return self.funding_narrative

    async def complete_narrative(self, narrative):
        return narrative


class FakeValidator:
    def __init__(self, verdict="approved", confidence=0.9):
        self.verdict = verdict
        self.confidence = confidence

    async def validate_startup_story(self, startup, sources=None):
        from src.validation.validator import ValidationResult

        return ValidationResult(
            is_valid=self.verdict != "rejected",
            confidence=self.confidence,
            final_verdict=self.verdict,
        )


def _narrative(success=True, confidence=0.9, story_type=None):
    from src.analyst.generator import Narrative
    from src.analyst.schemas import StoryType

    return Narrative(
        is_success_story=success,
        confidence=confidence,
        title="Acme raises $2M",
        summary="Acme raised a seed round.",
        content="Acme raised a seed round led by Example Ventures.",
        tags=["seed"],
        story_type=story_type or StoryType.SUCCESS,
    )


@pytest_asyncio.fixture
async def make_ctx(session_factory):
    """Factory for pipeline contexts wired to the test store."""
    from src.common.circuit_breaker import SourceCircuitBreaker
    from src.common.rate_limiter import RateLimiterRegistry
    from src.config.settings import Settings
    from src.harvester.scrapers.funding import FundingDetector
    from src.scheduler.context import PipelineContext

    def _make(collectors=None, generator=None, validator=None, **overrides):
        values = {
            "story_delay": 0,
            "lead_batch_delay": 0,
            "stage_timeout_seconds": 5,
        }
        values.update(overrides)
        app_settings = Settings(**values)
        validator = validator or FakeValidator()
        return PipelineContext(
            collectors=collectors or {},
            rate_limiter=RateLimiterRegistry(),
            session_factory=session_factory,
            generator=generator or FakeGenerator(_narrative()),
            validator_factory=lambda: validator,
            settings=app_settings,
            circuit_breaker=SourceCircuitBreaker(threshold=3),
            funding_detector=FundingDetector(),
        )

    return _make


async def _job_runs(session_factory, name=None):
    from src.archivist.storage import get_job_runs

    async with session_factory() as session:
        return await get_job_runs(session, job_name=name)


async def _lead(session_factory, name, source_type, raw=None, source_url=None, fields=None):
    from src.archivist.database import get_session
    from src.archivist.storage import process_startup_lead

    async with get_session(session_factory) as session:
        return await process_startup_lead(session, name, source_type, raw or {}, source_url=source_url, fields=fields)


# =============================================================================
# run_stage
# =============================================================================
class TestRunStage:
    """Every run leaves a JobRun row with its final status."""

    @pytest.mark.asyncio
    async def test_completed_run_is_recorded(self, make_ctx, session_factory):
        from src.scheduler.stages import StageOutcome, run_stage

        async def stage(ctx):
            return StageOutcome(3, {"created": 3})

        result = await run_stage(make_ctx(), "demo", stage, trigger="manual")

        assert result.success
        assert result.job_id.startswith("demo_")
        runs = await _job_runs(session_factory, "demo")
        assert len(runs) == 1
        assert runs[0].status == "completed"
        assert runs[0].trigger == "manual"
        assert runs[0].records_processed == 3
        assert runs[0].job_metadata == {"created": 3}
        assert runs[0].completed_at is not None

    @pytest.mark.asyncio
    async def test_failed_run_is_recorded(self, make_ctx, session_factory):
        from src.scheduler.stages import run_stage

        async def stage(ctx):
            raise ValueError("boom")

        result = await run_stage(make_ctx(), "demo", stage)

        assert not result.success
        assert result.error == "ValueError: boom"
        runs = await _job_runs(session_factory, "demo")
        assert runs[0].status == "failed"
        assert runs[0].error_message == "ValueError: boom"

    @pytest.mark.asyncio
    async def test_timeout_marks_run_failed(self, make_ctx, session_factory):
        from src.scheduler.stages import StageOutcome, run_stage

        async def stage(ctx):
            await asyncio.sleep(10)
            return StageOutcome()

        ctx = make_ctx()
        ctx.settings = ctx.settings.model_copy(update={"stage_timeout_seconds": 0.05})
        result = await run_stage(ctx, "slow", stage)

        assert result.status == "failed"
        assert "timed out" in result.error
        runs = await _job_runs(session_factory, "slow")
        assert runs[0].status == "failed"

    @pytest.mark.asyncio
    async def test_unknown_stage_name(self, make_ctx):
        from src.scheduler.stages import run_named_stage

        with pytest.raises(KeyError):
            await run_named_stage(make_ctx(), "does_not_exist")

    def test_metrics_line(self):
        from src.scheduler.stages import StageRunResult, _metrics_line

        line = _metrics_line(StageRunResult(
            job_id="x_1", stage="x", status="completed", records_processed=2,
            duration_seconds=1.25, metadata={"created": 2, "nested": {"a": 1}},
        ))
        assert line.startswith("METRICS stage=x job_id=x_1 status=completed records=2 duration=1.2s")
        assert "created=2" in line
        assert "nested" not in line


# =============================================================================
# Collection
# =============================================================================
class TestCollection:
    @pytest.mark.asyncio
    async def test_collection_resolves_leads(self, make_ctx, session_factory):
        from src.archivist.models import Startup
        from src.scheduler.stages import run_named_stage

        FakeCollector = _collector_class()
        ctx = make_ctx({"hacker_news": FakeCollector(["Acme", "ACME", "the"])})

        result = await run_named_stage(ctx, "hacker_news_collection")

        assert result.success
        assert result.records_processed == 2
        assert result.metadata == {"leads": 3, "created": 1, "merged": 1, "skipped": 1, "failed": 0}
        async with session_factory() as session:
            names = (await session.execute(select(Startup.name))).scalars().all()
        assert names == ["Acme"]

    @pytest.mark.asyncio
    async def test_small_batches_still_process_everything(self, make_ctx):
        from src.scheduler.stages import collect_source

        FakeCollector = _collector_class()
        ctx = make_ctx({"hacker_news": FakeCollector(["Acme", "Vectorly", "Roadrunner"])}, lead_batch_size=1)

        outcome = await collect_source(ctx, "hacker_news")
        assert outcome.metadata["created"] == 3

    @pytest.mark.asyncio
    async def test_circuit_opens_after_repeated_failures(self, make_ctx):
        from src.scheduler.stages import run_named_stage

        FakeCollector = _collector_class()
        collector = FakeCollector(error=RuntimeError("source down"))
        ctx = make_ctx({"hacker_news": collector})

        for _ in range(3):
            result = await run_named_stage(ctx, "hacker_news_collection")
            assert result.status == "failed"

        skipped = await run_named_stage(ctx, "hacker_news_collection")
        assert skipped.success
        assert skipped.metadata == {"skipped": "circuit_open"}
        assert collector.calls == 3

    @pytest.mark.asyncio
    async def test_missing_collector_fails_stage(self, make_ctx):
        from src.scheduler.stages import run_named_stage

        result = await run_named_stage(make_ctx(), "rss_collection")
        assert result.status == "failed"
        assert result.error.startswith("KeyError")

    @pytest.mark.asyncio
    async def test_throttled_collection_is_skipped(self, make_ctx):
        from src.common.rate_limiter import BucketConfig
        from src.scheduler.stages import collect_source

        FakeCollector = _collector_class()
        collector = FakeCollector(["Acme"])
        ctx = make_ctx({"hacker_news": collector})
        ctx.rate_limiter.configure("hacker_news", BucketConfig(points=1, duration=3600))
        ctx.rate_limiter.acquire("hacker_news", "stage")

        outcome = await collect_source(ctx, "hacker_news")
        assert outcome.metadata == {"skipped": "throttled"}
        assert collector.calls == 0


class TestManualCollection:
    """Per-source summary; one failure never hides the others."""

    @pytest.mark.asyncio
    async def test_mixed_results(self, make_ctx):
        from src.scheduler.stages import run_manual_collection

        FakeCollector = _collector_class()
        ctx = make_ctx({
            "hacker_news": FakeCollector(["Acme"]),
            "github": FakeCollector(error=RuntimeError("rate limited")),
        })

        summary = await run_manual_collection(ctx, ["hacker_news", "github", "nope"])

        assert summary["success"] is False
        results = summary["results"]
        assert results["hacker_news"]["success"] is True
        assert results["hacker_news"]["records_processed"] == 1
        assert results["github"]["success"] is False
        assert "RuntimeError" in results["github"]["error"]
        assert results["nope"] == {"success": False, "records_processed": 0, "error": "Unknown source: nope"}

    @pytest.mark.asyncio
    async def test_all_succeeded(self, make_ctx, session_factory):
        from src.scheduler.stages import run_manual_collection

        FakeCollector = _collector_class()
        ctx = make_ctx({"hacker_news": FakeCollector(["Acme"])})

        summary = await run_manual_collection(ctx, ["hacker_news", "hacker_news"])

        assert summary["success"] is True
        assert list(summary["results"]) == ["hacker_news"]
        runs = await _job_runs(session_factory, "hacker_news_collection")
        assert [r.trigger for r in runs] == ["manual"]


# =============================================================================
# Web scraping
# =============================================================================
class TestWebScraping:
    @pytest.mark.asyncio
    async def test_enriches_recent_startups(self, make_ctx, session_factory):
        from src.archivist.storage import get_sources_for_startup
        from src.harvester.scrapers.web_scraper import JobPostings, ScrapedPage, WebScraper
        from src.scheduler.stages import run_named_stage

        class StubScraper(WebScraper):
            async def scrape_funding_announcements(self, company_name, days=90):
                return [ScrapedPage(
                    url=f"https://news.example/{company_name}",
                    title=f"{company_name} raises $5M seed funding",
                    content="",
                )]

            async def scrape_job_postings(self, company_name):
                return JobPostings(job_count=2, recent_jobs=[{"title": "Engineer", "url": ""}])

        acme = await _lead(session_factory, "Acme", "hacker_news")
        scraper = StubScraper(query_delay=0)
        ctx = make_ctx({"web_scraping": scraper})

        result = await run_named_stage(ctx, "web_scraping")

        assert result.success
        assert scraper.targets == []
        assert result.metadata["targets"] == 1
        assert result.metadata["hiring_signals"] == 1
        async with session_factory() as session:
            sources = await get_sources_for_startup(session, acme.startup_id, source_type="web_scraping")
        assert len(sources) == 2
        assert sources[1].raw_data["job_postings"]["job_count"] == 2

    @pytest.mark.asyncio
    async def test_nothing_to_enrich(self, make_ctx):
        from src.harvester.scrapers.web_scraper import WebScraper
        from src.scheduler.stages import run_named_stage

        result = await run_named_stage(make_ctx({"web_scraping": WebScraper(query_delay=0)}), "web_scraping")
        assert result.success
        assert result.metadata == {"targets": 0}


# =============================================================================
# Story generation
# =============================================================================
class TestStoryGeneration:
    async def _seed(self, session_factory):
        outcome = await _lead(session_factory, "Acme", "hacker_news", source_url="https://news.ycombinator.com/item?id=1")
        await _lead(session_factory, "Acme", "product_hunt", source_url="https://www.producthunt.com/posts/acme")
        return outcome.startup_id

    async def _stories(self, session_factory):
        from src.archivist.storage import get_stories

        async with session_factory() as session:
            return await get_stories(session)

    @pytest.mark.asyncio
    async def test_publishes_featured_story(self, make_ctx, session_factory):
        from src.scheduler.stages import run_named_stage

        startup_id = await self._seed(session_factory)
        generator = FakeGenerator(_narrative(confidence=0.9))
        ctx = make_ctx(generator=generator)

        result = await run_named_stage(ctx, "story_generation")

        assert result.records_processed == 1
        assert generator.analyzed == [("Acme", 2)]
        stories = await self._stories(session_factory)
        assert len(stories) == 1
        story = stories[0]
        assert story.startup_id == startup_id
        assert story.verdict == "approved"
        assert story.featured is True
        assert story.sources == [
            {"type": "hacker_news", "url": "https://news.ycombinator.com/item?id=1"},
            {"type": "product_hunt", "url": "https://www.producthunt.com/posts/acme"},
        ]

    @pytest.mark.asyncio
    async def test_story_published_concurrently_is_not_duplicated(self, make_ctx, session_factory, monkeypatch):
        from unittest.mock import AsyncMock

        from src.archivist import storage
        from src.archivist.database import get_session
        from src.scheduler.stages import run_named_stage

        startup_id = await self._seed(session_factory)
        ctx = make_ctx()

        class RacingGenerator(FakeGenerator):
            async def complete_narrative(self, narrative):
                async with get_session(session_factory) as session:
                    await storage.save_story(session, startup_id, "first", "c", "s", "success", 0.9,
                                             sources=[{"type": "hacker_news", "url": None}])
                return narrative

        ctx.generator = RacingGenerator(_narrative(confidence=0.9))
        monkeypatch.setattr(storage, "startup_has_story", AsyncMock(return_value=False))

        result = await run_named_stage(ctx, "story_generation")

        assert result.success
        assert result.metadata["created"] == 0
        assert result.metadata["already_exists"] == 1
        assert [s.title for s in await self._stories(session_factory)] == ["first"]
    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, make_ctx, session_factory):
        from src.scheduler.stages import run_named_stage

        await self._seed(session_factory)
        ctx = make_ctx()
        await run_named_stage(ctx, "story_generation")
        second = await run_named_stage(ctx, "story_generation")

        assert second.records_processed == 0
        assert second.metadata["candidates"] == 0
        assert len(await self._stories(session_factory)) == 1

    @pytest.mark.asyncio
    async def test_rejected_story_is_not_saved(self, make_ctx, session_factory):
        from src.scheduler.stages import run_named_stage

        await self._seed(session_factory)
        ctx = make_ctx(validator=FakeValidator(verdict="rejected", confidence=0.1))

        result = await run_named_stage(ctx, "story_generation")

        assert result.metadata["rejected"] == 1
        assert await self._stories(session_factory) == []

    @pytest.mark.asyncio
    async def test_needs_review_story_is_not_featured(self, make_ctx, session_factory):
        from src.scheduler.stages import run_named_stage

        await self._seed(session_factory)
        ctx = make_ctx(validator=FakeValidator(verdict="needs_review", confidence=0.5))
        await run_named_stage(ctx, "story_generation")

        story = (await self._stories(session_factory))[0]
        assert story.verdict == "needs_review"
        assert story.featured is False

    @pytest.mark.asyncio
    async def test_generation_failure_uses_fallback(self, make_ctx, session_factory):
        from src.analyst.generator import GenerationFailure
        from src.scheduler.stages import run_named_stage

        await self._seed(session_factory)
        ctx = make_ctx(generator=FakeGenerator(GenerationFailure("Acme", "timeout")))

        result = await run_named_stage(ctx, "story_generation")

        assert result.success
        assert result.metadata["generation_failed"] == 1
        assert result.metadata["not_success"] == 1
        assert await self._stories(session_factory) == []

    @pytest.mark.asyncio
    async def test_low_confidence_is_skipped(self, make_ctx, session_factory):
        from src.scheduler.stages import run_named_stage

        await self._seed(session_factory)
        ctx = make_ctx(generator=FakeGenerator(_narrative(confidence=0.6)))

        result = await run_named_stage(ctx, "story_generation")
        assert result.metadata["not_success"] == 1


class TestFundingStories:
    @pytest.mark.asyncio
    async def test_publishes_funding_story(self, make_ctx, session_factory):
        from src.analyst.schemas import StoryType
        from src.archivist.storage import get_stories
        from src.scheduler.stages import run_named_stage

        await _lead(
            session_factory, "Acme", "funding",
            source_url="https://techcrunch.com/acme-series-a",
            fields={"funding_amount": 20_000_000, "funding_stage": "series_a"},
        )
        ctx = make_ctx(generator=FakeGenerator(funding_narrative=_narrative(story_type=StoryType.FUNDING)))

        result = await run_named_stage(ctx, "funding_story_generation")

        assert result.records_processed == 1
        async with session_factory() as session:
            story = (await get_stories(session))[0]
        assert story.story_type == "funding"
        assert story.verdict == "approved"
        assert story.featured is True
        assert story.sources == [{"type": "funding", "url": "https://techcrunch.com/acme-series-a"}]

    def test_citations_fall_back_to_website(self):
        from types import SimpleNamespace

        from src.scheduler.stages import funding_citations

        startup = SimpleNamespace(website_url="https://acme.example")
        sources = [SimpleNamespace(source_type="hacker_news", source_url="https://news.ycombinator.com")]
        assert funding_citations(startup, sources) == [
            {"type": "funding_detection", "url": "https://acme.example"}
        ]

    @pytest.mark.asyncio
    async def test_non_story_is_skipped(self, make_ctx, session_factory):
        from src.scheduler.stages import run_named_stage

        await _lead(session_factory, "Acme", "funding", fields={"funding_amount": 1_000_000})
        ctx = make_ctx(generator=FakeGenerator(funding_narrative=_narrative(success=False)))

        result = await run_named_stage(ctx, "funding_story_generation")
        assert result.metadata["not_success"] == 1


class TestFundingDetection:
    @pytest.mark.asyncio
    async def test_detects_round_in_evidence(self, make_ctx, session_factory):
        from src.archivist.storage import get_sources_for_startup, get_startup
        from src.scheduler.stages import run_named_stage

        acme = await _lead(
            session_factory, "Acme", "hacker_news",
            raw={"title": "Acme raises $20 million Series A led by Sequoia. Announced today."},
            source_url="https://news.ycombinator.com/item?id=9",
        )

        result = await run_named_stage(make_ctx(), "funding_detection")

        assert result.records_processed == 1
        async with session_factory() as session:
            startup = await get_startup(session, acme.startup_id)
            detections = await get_sources_for_startup(session, acme.startup_id, source_type="funding_detection")
        assert startup.funding_amount == 20_000_000
        assert startup.funding_stage == "series_a"
        assert startup.investors == ["Sequoia"]
        assert len(detections) == 1

        # Already funded startups are not scanned again
        again = await run_named_stage(make_ctx(), "funding_detection")
        assert again.metadata["scanned"] == 0

    def test_record_text(self):
        from src.scheduler.stages import record_text

        assert record_text({"title": "A", "text": "", "score": 3, "description": "B"}) == "A. B"
        assert record_text("plain") == "plain"
        assert record_text(None) == ""


class TestMaintenanceStage:
    @pytest.mark.asyncio
    async def test_reports_counts(self, make_ctx):
        from src.scheduler.stages import run_named_stage

        result = await run_named_stage(make_ctx(), "weekly_maintenance")

        assert result.success
        assert result.metadata == {
            "type": "maintenance",
            "sources_purged": 0,
            "job_runs_purged": 0,
            "stories_removed": 0,
        }
