"""
Database models using SQLModel (SQLAlchemy + Pydantic).

Schema:
- Startup: Canonical startup keyed by normalized name
- DataSourceRecord: Append-only evidence tying one source item to a startup
- SuccessStory: Validated narrative published for a startup
- JobRun: One row per orchestrator stage invocation
"""

from datetime import datetime, date, timezone
from enum import Enum
from typing import Optional, List, Any
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, BigInteger, JSON
from sqlalchemy.dialects.postgresql import JSONB


def utc_now_naive() -> datetime:
    """Return current UTC time as timezone-naive datetime.

    PostgreSQL TIMESTAMP WITHOUT TIME ZONE columns require naive datetimes.
    Using timezone-aware datetimes causes asyncpg DataError.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


# JSONB on PostgreSQL, plain JSON elsewhere (sqlite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class StoryType(str, Enum):
    SUCCESS = "success"
    FUNDING = "funding"
    MILESTONE = "milestone"
    PIVOT = "pivot"


class JobStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Startup(SQLModel, table=True):
    """A startup discovered by one or more collectors."""
    __tablename__ = "startups"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    normalized_name: str = Field(unique=True, index=True)  # Case-folded, legal suffixes stripped
    description: Optional[str] = None
    website_url: Optional[str] = None
    founded_date: Optional[date] = None
    funding_amount: Optional[int] = Field(default=None, sa_column=Column(BigInteger))
    funding_stage: Optional[str] = None
    investors: Optional[List[str]] = Field(default=None, sa_column=Column(JSONType))
    current_valuation: Optional[int] = Field(default=None, sa_column=Column(BigInteger))
    valuation_date: Optional[date] = None
    employee_count: Optional[int] = None
    location: Optional[str] = None
    industry: Optional[str] = None
    tags: Optional[List[str]] = Field(default=None, sa_column=Column(JSONType))
    github_repo: Optional[str] = None
    product_hunt_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now_naive, index=True)
    updated_at: datetime = Field(default_factory=utc_now_naive)


class DataSourceRecord(SQLModel, table=True):
    """One immutable observation of a startup by a collector."""
    __tablename__ = "data_sources"

    id: Optional[int] = Field(default=None, primary_key=True)
    startup_id: int = Field(foreign_key="startups.id", index=True)
    source_type: str = Field(index=True)  # SourceType value
    source_url: Optional[str] = None
    raw_data: Optional[Any] = Field(default=None, sa_column=Column(JSONType))
    extracted_at: datetime = Field(default_factory=utc_now_naive, index=True)


class SuccessStory(SQLModel, table=True):
    """A validated narrative about a startup."""
    __tablename__ = "success_stories"

    id: Optional[int] = Field(default=None, primary_key=True)
    # One story per startup
    startup_id: int = Field(foreign_key="startups.id", unique=True, index=True)
    title: str
    content: str
    summary: str
    story_type: str = Field(default=StoryType.SUCCESS.value)
    confidence_score: float = 0.0
    tags: Optional[List[str]] = Field(default=None, sa_column=Column(JSONType))
    # Snapshot of the evidence used: [{"type": ..., "url": ...}]
    sources: Optional[List[dict]] = Field(default=None, sa_column=Column(JSONType))
    verdict: str = "approved"  # approved / needs_review
    ai_generated: bool = True
    featured: bool = False
    published_at: datetime = Field(default_factory=utc_now_naive, index=True)
    view_count: int = 0


class JobRun(SQLModel, table=True):
    """Operational ledger entry for one stage run."""
    __tablename__ = "job_runs"

    id: Optional[int] = Field(default=None, primary_key=True)
    job_id: str = Field(unique=True, index=True)  # <stage>_<YYYYmmdd_HHMMSS_ffffff>
    job_name: str = Field(index=True)
    status: str = Field(default=JobStatus.RUNNING.value)
    trigger: str = "scheduled"  # scheduled / manual
    started_at: datetime = Field(default_factory=utc_now_naive, index=True)
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    records_processed: int = 0
    job_metadata: Optional[dict] = Field(default=None, sa_column=Column("metadata", JSONType))
    error_message: Optional[str] = None
