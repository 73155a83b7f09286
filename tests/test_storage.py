"""
Tests for the lead processor, story storage and retention sweeps.

Runs against in-memory SQLite so the ON CONFLICT upsert path is exercised.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select


# =============================================================================
# Name normalization
# =============================================================================
class TestCompanyNames:
    """Normalization and validity rules for lead names."""

    def test_normalize(self):
        from src.archivist.storage import normalize_company_name

        assert normalize_company_name("Acme") == "acme"
        assert normalize_company_name("ACME, Inc.") == "acme"
        assert normalize_company_name("The Acme Corporation") == "acme"
        assert normalize_company_name("Acme Holdings, Inc., LLC") == "acmeholdings"
        assert normalize_company_name("Acme Labs") == "acmelabs"

    def test_validity(self):
        from src.archivist.storage import is_valid_company_name

        assert is_valid_company_name("Acme")
        assert not is_valid_company_name("")
        assert not is_valid_company_name(None)
        assert not is_valid_company_name("A")
        assert not is_valid_company_name("startup")
        assert not is_valid_company_name("-Acme")
        assert not is_valid_company_name("john_doe")
        assert not is_valid_company_name("x" * 101)


# =============================================================================
# Lead processing
# =============================================================================
class TestProcessStartupLead:
    """Upsert by normalized name plus one evidence row per call."""

    @pytest.mark.asyncio
    async def test_creates_then_merges(self, session):
        from src.archivist.storage import process_startup_lead

        first = await process_startup_lead(session, "Acme", "hacker_news", {"id": 1})
        second = await process_startup_lead(session, "ACME", "product_hunt", {"id": 2})

        assert first.status == "created"
        assert second.status == "merged"
        assert first.startup_id == second.startup_id
        assert first.normalized_name == second.normalized_name == "acme"

    @pytest.mark.asyncio
    async def test_one_startup_many_sources(self, session):
        from src.archivist.models import DataSourceRecord, Startup
        from src.archivist.storage import count_startups, process_startup_lead

        await process_startup_lead(session, "Acme", "hacker_news", {"id": 1})
        await process_startup_lead(session, "ACME, Inc.", "hacker_news", {"id": 1})

        assert await count_startups(session) == 1
        rows = (await session.execute(select(DataSourceRecord))).scalars().all()
        assert len(rows) == 2
        startup = (await session.execute(select(Startup))).scalar_one()
        assert startup.name == "Acme"

    @pytest.mark.asyncio
    async def test_raw_payload_round_trips(self, session, hn_story_payload):
        from src.archivist.storage import get_sources_for_startup, process_startup_lead

        outcome = await process_startup_lead(
            session,
            "Acme",
            "hacker_news",
            hn_story_payload,
            source_url="https://news.ycombinator.com/item?id=4242",
        )
        await process_startup_lead(session, "Acme", "github", {"stars": 10})

        sources = await get_sources_for_startup(session, outcome.startup_id, source_type="hacker_news")
        assert len(sources) == 1
        assert sources[0].raw_data == hn_story_payload
        assert sources[0].source_url == "https://news.ycombinator.com/item?id=4242"

        everything = await get_sources_for_startup(session, outcome.startup_id)
        assert [s.source_type for s in everything] == ["hacker_news", "github"]

    @pytest.mark.asyncio
    async def test_invalid_name_is_skipped(self, session):
        from src.archivist.storage import count_startups, process_startup_lead

        outcome = await process_startup_lead(session, "the", "rss", {"title": "x"})

        assert outcome.skipped
        assert outcome.reason == "invalid_name"
        assert await count_startups(session) == 0

    @pytest.mark.asyncio
    async def test_blank_fields_fill_but_do_not_overwrite(self, session):
        from src.archivist.storage import get_startup, process_startup_lead

        outcome = await process_startup_lead(
            session, "Acme", "product_hunt", {}, fields={"description": "First description"}
        )
        await process_startup_lead(
            session,
            "Acme",
            "hacker_news",
            {},
            fields={"description": "Second description", "website_url": "https://acme.example"},
        )

        startup = await get_startup(session, outcome.startup_id)
        assert startup.description == "First description"
        assert startup.website_url == "https://acme.example"

    @pytest.mark.asyncio
    async def test_funding_source_is_authoritative(self, session):
        from src.archivist.storage import get_startup, process_startup_lead

        outcome = await process_startup_lead(
            session, "Acme", "rss", {}, fields={"funding_amount": 1_000_000, "funding_stage": "seed"}
        )
        await process_startup_lead(
            session, "Acme", "funding", {}, fields={"funding_amount": "20000000", "funding_stage": "series_a"}
        )

        startup = await get_startup(session, outcome.startup_id)
        assert startup.funding_amount == 20_000_000
        assert startup.funding_stage == "series_a"

    @pytest.mark.asyncio
    async def test_unknown_fields_are_ignored(self, session):
        from src.archivist.storage import get_startup_by_name, process_startup_lead

        await process_startup_lead(
            session, "Acme", "github", {}, fields={"stars": 100, "founded_date": "2021-03-04T00:00:00"}
        )
        startup = await get_startup_by_name(session, "ACME inc")
        assert startup is not None
        assert str(startup.founded_date) == "2021-03-04"


# =============================================================================
# Candidates and stories
# =============================================================================
class TestStories:
    @pytest.mark.asyncio
    async def test_story_candidates_need_min_sources_and_no_story(self, session):
        from src.archivist.storage import find_story_candidates, process_startup_lead, save_story

        acme = await process_startup_lead(session, "Acme", "hacker_news", {})
        await process_startup_lead(session, "Acme", "product_hunt", {})
        await process_startup_lead(session, "Vectorly", "github", {})

        candidates = await find_story_candidates(session, lookback_days=14, min_sources=2, limit=10)
        assert [c.name for c in candidates] == ["Acme"]

        await save_story(
            session, acme.startup_id, "Title", "Content", "Summary", "success", 0.9,
            sources=[{"type": "hacker_news", "url": None}],
        )
        assert await find_story_candidates(session, 14, 2, 10) == []

    @pytest.mark.asyncio
    async def test_funding_candidates_respect_floor(self, session):
        from src.archivist.storage import find_funding_story_candidates, process_startup_lead

        await process_startup_lead(session, "Acme", "funding", {}, fields={"funding_amount": 20_000_000})
        await process_startup_lead(session, "Smallco", "funding", {}, fields={"funding_amount": 100_000})
        await process_startup_lead(session, "Midco", "funding", {}, fields={"funding_amount": 500_000})

        candidates = await find_funding_story_candidates(session, floor=500_000, lookback_days=30, limit=10)
        assert [c.name for c in candidates] == ["Acme", "Midco"]

    @pytest.mark.asyncio
    async def test_rejected_story_cannot_be_saved(self, session):
        from src.archivist.storage import process_startup_lead, save_story

        acme = await process_startup_lead(session, "Acme", "hacker_news", {})
        with pytest.raises(ValueError):
            await save_story(session, acme.startup_id, "t", "c", "s", "success", 0.1, verdict="rejected")

    @pytest.mark.asyncio
    async def test_get_stories_filters(self, session):
        from src.archivist.storage import (
            count_stories,
            get_stories,
            process_startup_lead,
            save_story,
            startup_has_story,
        )

        acme = await process_startup_lead(session, "Acme", "hacker_news", {})
        other = await process_startup_lead(session, "Vectorly", "github", {})
        await save_story(session, acme.startup_id, "A", "c", "s", "funding", 0.9, featured=True)
        await save_story(session, other.startup_id, "B", "c", "s", "success", 0.7, verdict="needs_review")

        assert await count_stories(session) == 2
        assert await count_stories(session, story_type="funding") == 1
        assert [s.title for s in await get_stories(session, featured=True)] == ["A"]
        assert await startup_has_story(session, acme.startup_id)

    @pytest.mark.asyncio
    async def test_similar_startups_exclude_self(self, session):
        from src.archivist.storage import find_similar_startups, process_startup_lead

        acme = await process_startup_lead(session, "Acme", "hacker_news", {})
        await process_startup_lead(session, "Acme Labs", "github", {})
        await process_startup_lead(
            session, "Roadrunner", "rss", {}, fields={"website_url": "https://acme.example"}
        )

        similar = await find_similar_startups(
            session, "Acme", website_url="https://acme.example", exclude_id=acme.startup_id
        )
        assert sorted(s.name for s in similar) == ["Acme Labs", "Roadrunner"]


# =============================================================================
# Retention
# =============================================================================
class TestRetention:
    @pytest.mark.asyncio
    async def test_purge_old_sources(self, session):
        from src.archivist.models import DataSourceRecord, utc_now_naive
        from src.archivist.storage import process_startup_lead, purge_old_sources

        old = await process_startup_lead(session, "Acme", "hacker_news", {})
        await process_startup_lead(session, "Acme", "github", {})
        record = await session.get(DataSourceRecord, old.source_id)
        record.extracted_at = utc_now_naive() - timedelta(days=40)
        await session.flush()

        assert await purge_old_sources(session, 30) == 1

    @pytest.mark.asyncio
    async def test_purge_old_job_runs_keeps_running(self, session):
        from src.archivist.models import JobRun, utc_now_naive
        from src.archivist.storage import get_job_runs, purge_old_job_runs

        old = utc_now_naive() - timedelta(days=60)
        session.add(JobRun(job_id="a_1", job_name="a", status="completed", started_at=old))
        session.add(JobRun(job_id="a_2", job_name="a", status="running", started_at=old))
        session.add(JobRun(job_id="a_3", job_name="a", status="failed"))
        await session.flush()

        assert await purge_old_job_runs(session, 30) == 1
        assert sorted(r.job_id for r in await get_job_runs(session, job_name="a")) == ["a_2", "a_3"]

    @pytest.mark.asyncio
    async def test_purge_keeps_evidence_behind_stories(self, session):
        from src.archivist.models import DataSourceRecord, utc_now_naive
        from src.archivist.storage import get_sources_for_startup, process_startup_lead, purge_old_sources, save_story

        acme = await process_startup_lead(session, "Acme", "hacker_news", {}, source_url="https://acme.example")
        stale = await process_startup_lead(session, "Vectorly", "hacker_news", {})
        await save_story(session, acme.startup_id, "t", "c", "s", "success", 0.9,
                         sources=[{"type": "hacker_news", "url": "https://acme.example"}])
        for source_id in (acme.source_id, stale.source_id):
            record = await session.get(DataSourceRecord, source_id)
            record.extracted_at = utc_now_naive() - timedelta(days=40)
        await session.flush()

        assert await purge_old_sources(session, 30) == 1
        assert len(await get_sources_for_startup(session, acme.startup_id)) == 1

    @pytest.mark.asyncio
    async def test_delete_unsupported_stories(self, session):
        from src.archivist.storage import count_stories, delete_unsupported_stories, process_startup_lead, save_story

        acme = await process_startup_lead(session, "Acme", "hacker_news", {}, source_url="https://acme.example")
        empty = await process_startup_lead(session, "Vectorly", "hacker_news", {}, source_url="https://vectorly.example")
        await save_story(session, acme.startup_id, "kept", "c", "s", "success", 0.9,
                         sources=[{"type": "hacker_news", "url": "https://acme.example"}])
        await save_story(session, empty.startup_id, "empty", "c", "s", "success", 0.9, sources=[])
        await save_story(session, 9999, "orphan", "c", "s", "success", 0.9,
                         sources=[{"type": "rss", "url": None}])

        assert await delete_unsupported_stories(session) == 2
        assert await count_stories(session) == 1

    @pytest.mark.asyncio
    async def test_story_without_company_site_is_removed(self, session):
        from src.archivist.storage import count_stories, delete_unsupported_stories, process_startup_lead, save_story

        acme = await process_startup_lead(session, "Acme", "hacker_news", {},
                                          source_url="https://news.ycombinator.com/item?id=1")
        await process_startup_lead(session, "Acme", "github", {}, source_url="https://github.com/acme/acme")
        await save_story(session, acme.startup_id, "t", "c", "s", "success", 0.9,
                         sources=[{"type": "hacker_news", "url": "https://news.ycombinator.com/item?id=1"}])

        assert await delete_unsupported_stories(session) == 1
        assert await count_stories(session) == 0

    @pytest.mark.asyncio
    async def test_funding_story_needs_funding_evidence(self, session):
        from src.archivist.models import DataSourceRecord
        from src.archivist.storage import count_stories, delete_unsupported_stories, process_startup_lead, save_story

        acme = await process_startup_lead(session, "Acme", "hacker_news", {}, source_url="https://acme.example")
        round_news = await process_startup_lead(
            session, "Acme", "funding", {"funding_amount": 5_000_000},
            source_url="https://techcrunch.com/acme-series-a",
            fields={"funding_amount": 5_000_000, "funding_stage": "series_a"},
        )
        await save_story(session, acme.startup_id, "Acme raises $5M", "c", "s", "funding", 0.9,
                         sources=[{"type": "funding", "url": "https://techcrunch.com/acme-series-a"}])

        assert await delete_unsupported_stories(session) == 0

        await session.delete(await session.get(DataSourceRecord, round_news.source_id))
        await session.flush()

        assert await delete_unsupported_stories(session) == 1
        assert await count_stories(session) == 0

    @pytest.mark.asyncio
    async def test_story_with_only_old_evidence_is_removed(self, session):
        from src.archivist.models import DataSourceRecord, utc_now_naive
        from src.archivist.storage import count_stories, delete_unsupported_stories, process_startup_lead, save_story

        acme = await process_startup_lead(session, "Acme", "rss", {}, source_url="https://acme.example/blog")
        await save_story(session, acme.startup_id, "t", "c", "s", "milestone", 0.9,
                         sources=[{"type": "rss", "url": "https://acme.example/blog"}])
        record = await session.get(DataSourceRecord, acme.source_id)
        record.extracted_at = utc_now_naive() - timedelta(days=3 * 365)
        await session.flush()

        assert await delete_unsupported_stories(session, activity_days=730) == 1
        assert await count_stories(session) == 0

    def test_evidence_kinds(self):
        from src.archivist.models import DataSourceRecord
        from src.archivist.storage import is_funding_evidence, is_website_evidence

        def record(source_type="rss", url=None, raw=None):
            return DataSourceRecord(startup_id=1, source_type=source_type, source_url=url, raw_data=raw)

        assert is_funding_evidence(record("funding_detection"))
        assert is_funding_evidence(record(raw={"funding_stage": "seed"}))
        assert is_funding_evidence(record(url="https://www.crunchbase.com/organization/acme"))
        assert not is_funding_evidence(record("hacker_news", url="https://acme.example", raw={"score": 10}))

        assert is_website_evidence(record(url="https://acme.example"))
        assert is_website_evidence(record(url="https://techcrunch.com/acme"))
        assert not is_website_evidence(record(url="https://www.producthunt.com/posts/acme"))
        assert not is_website_evidence(record(url="https://acme.medium.com/launch"))
        assert not is_website_evidence(record(url=None))


# =============================================================================
# One story per startup
# =============================================================================
class TestStoryUniqueness:
    @pytest.mark.asyncio
    async def test_second_story_for_startup_is_refused(self, session):
        from sqlalchemy.exc import IntegrityError

        from src.archivist.storage import process_startup_lead, save_story

        acme = await process_startup_lead(session, "Acme", "hacker_news", {})
        await save_story(session, acme.startup_id, "first", "c", "s", "success", 0.9)

        with pytest.raises(IntegrityError):
            await save_story(session, acme.startup_id, "second", "c", "s", "success", 0.9)
