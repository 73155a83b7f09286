"""
Pytest fixtures for test infrastructure.

This module is automatically loaded by pytest and provides shared fixtures.
Store tests run against an in-memory SQLite database through aiosqlite.
"""

import sys
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from src.archivist.database import init_db  # noqa: E402


# =============================================================================
# Store fixtures
# =============================================================================
@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory SQLite engine with all tables created."""
    eng = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s
        await s.rollback()


# =============================================================================
# Shared data
# =============================================================================
@pytest.fixture
def hn_story_payload():
    """Raw Hacker News item as returned by the Firebase API."""
    return {
        "id": 4242,
        "type": "story",
        "by": "founder",
        "title": "Show HN: Acme — we raised $2M seed",
        "text": "",
        "url": "https://acme.example",
        "score": 150,
        "descendants": 12,
        "time": int(datetime(2026, 10, 15, tzinfo=timezone.utc).timestamp()),
    }


@pytest.fixture
def startup_snapshot():
    """Factory for startup-like objects handed to the validator and generator."""
    def _make(**overrides):
        data = {
            "id": 1,
            "name": "Acme",
            "description": "Acme builds developer tooling for payments teams.",
            "website_url": "https://acme.example",
            "product_hunt_url": None,
            "github_repo": None,
            "funding_amount": None,
            "funding_stage": None,
            "employee_count": None,
            "founded_date": None,
            "investors": None,
            "industry": None,
            "location": None,
            "current_valuation": None,
        }
        data.update(overrides)
        return SimpleNamespace(**data)

    return _make
