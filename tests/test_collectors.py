"""
Tests for the concrete source collectors.

HTTP is served by httpx.MockTransport, so each test controls exactly what a
source returns, including outages and malformed payloads.
"""

import asyncio
import json
import time
from datetime import date, datetime, timezone
from email.utils import format_datetime
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest


def _client(routes):
    """AsyncClient answering from a {url: (status, body)} table; unknown urls 404."""
    def handler(request):
        status, body = routes.get(str(request.url), (404, ""))
        if isinstance(body, (dict, list)):
            return httpx.Response(status, json=body)
        return httpx.Response(status, text=body)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def fast_settings(monkeypatch):
    from src.config.settings import settings

    monkeypatch.setattr(settings, "max_retries", 1)
    monkeypatch.setattr(settings, "hn_batch_delay", 0)
    return settings


def _rss(*entries):
    items = "".join(
        f"<item><title>{title}</title><link>{link}</link>"
        f"<description>{description}</description>"
        f"<pubDate>{format_datetime(published)}</pubDate></item>"
        for title, link, description, published in entries
    )
    return f'<?xml version="1.0"?><rss version="2.0"><channel><title>t</title>{items}</channel></rss>'


# =============================================================================
# Hacker News
# =============================================================================
class TestHackerNewsCollector:
    @pytest.mark.asyncio
    async def test_collect_filters_dead_old_and_unrelated(self, fast_settings, hn_story_payload):
        from src.harvester.scrapers.hackernews import HN_API, HackerNewsCollector

        now = int(time.time())
        fresh = dict(hn_story_payload, time=now)
        routes = {
            f"{HN_API}/newstories.json": (200, [4242, 2, 3]),
            f"{HN_API}/topstories.json": (200, [4242, 5]),
            f"{HN_API}/item/4242.json": (200, fresh),
            f"{HN_API}/item/2.json": (200, {"id": 2, "type": "story", "title": "Show HN: Gone", "dead": True}),
            f"{HN_API}/item/3.json": (200, {"id": 3, "type": "story", "title": "Show HN: Old", "time": now - 90 * 86400}),
            f"{HN_API}/item/5.json": (200, {"id": 5, "type": "story", "title": "Weather report", "time": now}),
        }
        async with HackerNewsCollector(client=_client(routes)) as collector:
            leads = await collector.collect(window_days=7)

        assert [lead.company_name for lead in leads] == ["Acme"]
        item = leads[0].item
        assert item.id == "4242"
        assert item.raw == fresh
        assert item.extra["comments"] == fresh["descendants"]

    @pytest.mark.asyncio
    async def test_listing_outage_yields_no_items(self, fast_settings):
        from src.harvester.scrapers.hackernews import HN_API, HackerNewsCollector

        routes = {
            f"{HN_API}/newstories.json": (503, ""),
            f"{HN_API}/topstories.json": (503, ""),
        }
        collector = HackerNewsCollector(client=_client(routes))
        assert await collector.fetch_recent(7) == []

    def test_parse_story_rejects_non_stories(self):
        from src.harvester.scrapers.hackernews import parse_story

        assert parse_story({}) is None
        assert parse_story({"id": 1, "type": "comment", "title": "x"}) is None
        assert parse_story({"id": 1, "deleted": True}) is None
        item = parse_story({"id": 7, "title": "Launch HN: Acme", "score": 12})
        assert item.url == "https://news.ycombinator.com/item?id=7"
        assert item.engagement_score == 12


# =============================================================================
# RSS
# =============================================================================
class TestRSSCollector:
    def test_parse_feed(self):
        from src.harvester.base_collector import SourceType
        from src.harvester.scrapers.rss_feeds import parse_feed

        published = datetime(2026, 10, 18, 9, 30, tzinfo=timezone.utc)
        text = _rss(
            ("Acme raises $20M", "https://news.example/acme", "&lt;p&gt;The &lt;b&gt;startup&lt;/b&gt; grew fast&lt;/p&gt;", published),
            ("", "https://news.example/untitled", "no title", published),
        )
        items = parse_feed(text, "Example", SourceType.RSS)

        assert len(items) == 1
        assert items[0].title == "Acme raises $20M"
        assert items[0].text == "The startup grew fast"
        assert items[0].published_at == published
        assert items[0].raw["source"] == "Example"

    def test_garbage_feed_is_empty(self):
        from src.harvester.scrapers.rss_feeds import parse_feed

        assert parse_feed("not a feed at all", "Broken") == []

    @pytest.mark.asyncio
    async def test_one_bad_feed_does_not_block_others(self, fast_settings):
        from src.harvester.scrapers.rss_feeds import FeedConfig, RSSCollector

        now = datetime.now(timezone.utc)
        entry = ("Acme Robotics raises $20M Series A", "https://news.example/acme",
                 "A robotics startup", now)
        feeds = {
            "good": FeedConfig("https://good.example/feed", "Good", "startups"),
            "mirror": FeedConfig("https://mirror.example/feed", "Mirror", "startups"),
            "down": FeedConfig("https://down.example/feed", "Down", "startups"),
        }
        routes = {
            "https://good.example/feed": (200, _rss(entry)),
            "https://mirror.example/feed": (200, _rss(entry)),
            "https://down.example/feed": (500, ""),
        }
        collector = RSSCollector(feeds=feeds, client=_client(routes))
        leads = await collector.collect(window_days=7)

        assert [lead.company_name for lead in leads] == ["Acme Robotics"]


# =============================================================================
# Valuation
# =============================================================================
class TestValuationCollector:
    @pytest.mark.asyncio
    async def test_curated_file_and_news(self, tmp_path):
        from src.harvester.base_collector import CandidateItem, SourceType
        from src.harvester.scrapers.valuation import ValuationCollector

        path = tmp_path / "valuations.json"
        path.write_text(json.dumps([
            {"company_name": "Acme", "current_valuation": 2_000_000_000,
             "valuation_date": "2026-09-01", "source": "https://news.example/acme", "confidence": 0.9},
            {"company_name": "Guessco", "current_valuation": 1_000_000, "confidence": 0.2},
            {"company_name": "Broken", "current_valuation": "lots"},
            {"company_name": "Vague", "current_valuation": 5_000_000, "confidence": "high"},
            "not a row",
        ]))
        news = CandidateItem(
            id="n1",
            title="Vectorly valued at $500 million",
            text="Vectorly is now valued at $500 million",
            url="https://news.example/vectorly",
            engagement_score=0,
            published_at=datetime(2026, 10, 1, tzinfo=timezone.utc),
            source_type=SourceType.FUNDING,
            extra={"company": "Vectorly"},
            lead_fields={"current_valuation": 500_000_000},
        )
        funding = MagicMock()
        funding.fetch_recent = AsyncMock(return_value=[news])

        collector = ValuationCollector(valuation_file=str(path), funding=funding)
        leads = await collector.collect(window_days=7)

        by_name = {lead.company_name: lead.item for lead in leads}
        assert set(by_name) == {"Acme", "Vectorly"}
        assert by_name["Acme"].lead_fields == {
            "current_valuation": 2_000_000_000,
            "valuation_date": date(2026, 9, 1),
        }
        assert by_name["Vectorly"].lead_fields["valuation_date"] == date(2026, 10, 1)

    def test_unusable_rows_raise_data_quality_errors(self):
        from src.common.errors import DataQualityError
        from src.harvester.scrapers.valuation import parse_valuation_entry

        cases = [
            ({"current_valuation": 1_000_000}, "company_name"),
            ({"company_name": "Acme", "current_valuation": True}, "current_valuation"),
            ({"company_name": "Acme", "current_valuation": -5}, "current_valuation"),
            ({"company_name": "Acme", "current_valuation": 5, "confidence": "high"}, "confidence"),
            ({"company_name": "Acme", "current_valuation": 5, "confidence": 0.1}, "confidence"),
            (["Acme", 5], "entry"),
        ]
        for entry, field in cases:
            with pytest.raises(DataQualityError) as info:
                parse_valuation_entry(entry)
            assert info.value.field == field

        item = parse_valuation_entry({"company_name": "Acme", "current_valuation": 5, "valuation_date": 20260901})
        assert item.lead_fields == {"current_valuation": 5, "valuation_date": None}

    def test_missing_file(self, tmp_path):
        from src.harvester.scrapers.valuation import load_curated_valuations

        assert load_curated_valuations("") == []
        assert load_curated_valuations(str(tmp_path / "nope.json")) == []


# =============================================================================
# Web scraper
# =============================================================================
class TestWebScraper:
    def _stub(self):
        from src.common.errors import ThrottledError
        from src.harvester.scrapers.web_scraper import ScrapedPage, WebScraper

        class StubScraper(WebScraper):
            """Serves one funding headline per company; throttled for "Blocked"."""

            async def scrape_funding_announcements(self, company_name, days=90):
                await asyncio.sleep(0)
                if company_name == "Blocked":
                    raise ThrottledError("web_scraping", 60.0)
                return [ScrapedPage(
                    url=f"https://news.example/{company_name}",
                    title=f"{company_name} raises $5M seed funding",
                    content="",
                )]

        return StubScraper

    @pytest.mark.asyncio
    async def test_throttled_target_stops_the_run(self, monkeypatch):
        from src.config.settings import settings

        monkeypatch.setattr(settings, "web_scraping_delay", 0)
        scraper = self._stub()(targets=["Acme", "Blocked", "Vectorly"], query_delay=0)

        items = await scraper.fetch_recent(7)

        assert [item.extra["company"] for item in items] == ["Acme"]

    @pytest.mark.asyncio
    async def test_concurrent_runs_keep_their_own_targets(self, monkeypatch):
        from src.config.settings import settings

        monkeypatch.setattr(settings, "web_scraping_delay", 0)
        shared = self._stub()(client=_client({}), query_delay=0)

        first, second = shared.for_targets(["Acme"]), shared.for_targets(["Vectorly", "Zenbase"])
        a, b = await asyncio.gather(first.collect(7), second.collect(7))

        assert [lead.company_name for lead in a] == ["Acme"]
        assert [lead.company_name for lead in b] == ["Vectorly", "Zenbase"]
        assert shared.targets == []
        assert first.client is shared.client
        assert first.rate_limiter is shared.rate_limiter
        assert type(first) is type(shared)
