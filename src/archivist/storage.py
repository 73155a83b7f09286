"""
Storage pipeline for startups, evidence and stories.

The lead processor is the only writer of Startup rows from collectors. It
upserts on normalized_name so concurrent collectors that discover the same
company converge on one row, and it always appends one DataSourceRecord per
call for a valid name.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

from sqlalchemy import delete, func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from ..common.url_utils import sanitize_url
from ..harvester.heuristics import COMMON_WORDS, looks_like_personal_account
from .models import DataSourceRecord, JobRun, Startup, StoryType, SuccessStory, utc_now_naive

logger = logging.getLogger(__name__)


# Legal entity suffixes stripped before lookup (longer first to avoid partial matches).
# Descriptive words like "labs" or "ai" stay: "Acme Labs" and "Acme" may be different companies.
COMPANY_NAME_SUFFIXES = [
    ", incorporated", " incorporated",
    ", corporation", " corporation",
    ", limited", " limited",
    ", inc.", " inc.",
    ", inc", " inc",
    ", llc", " llc",
    ", ltd.", " ltd.",
    ", ltd", " ltd",
    ", corp.", " corp.",
    ", corp", " corp",
    ", co.", " co.",
    ", gmbh", " gmbh",
    ", s.a.", " s.a.",
    ", plc", " plc",
    ", pbc", " pbc",
]

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 100

# Columns a lead may fill on a Startup
MERGEABLE_FIELDS = (
    "description",
    "website_url",
    "founded_date",
    "funding_amount",
    "funding_stage",
    "investors",
    "current_valuation",
    "valuation_date",
    "employee_count",
    "location",
    "industry",
    "tags",
    "github_repo",
    "product_hunt_url",
)

# Sources whose values replace existing ones instead of only filling blanks
AUTHORITATIVE_FIELDS: Dict[str, frozenset] = {
    "funding": frozenset({"funding_amount", "funding_stage", "investors", "current_valuation"}),
    "funding_detection": frozenset({"funding_amount", "funding_stage", "investors"}),
    "valuation": frozenset({"current_valuation", "valuation_date"}),
}

DATE_FIELDS = ("founded_date", "valuation_date")


def normalize_company_name(name: str) -> str:
    """
    Normalize company name for lookup.

    Examples:
        "Acme" -> "acme"
        "ACME, Inc." -> "acme"
        "The Acme Corporation" -> "acme"
        "Acme Labs" -> "acmelabs"
    """
    name = (name or "").lower().strip()

    if name.startswith("the "):
        name = name[4:]

    # Strip every trailing legal suffix ("Acme Holdings, Inc., LLC")
    changed = True
    while changed:
        changed = False
        for suffix in COMPANY_NAME_SUFFIXES:
            if name.endswith(suffix):
                name = name[:-len(suffix)].rstrip()
                changed = True
                break

    return re.sub(r"[^a-z0-9]", "", name)


def is_valid_company_name(name: Optional[str]) -> bool:
    """Reject empty, too short, generic or personal-account-like names."""
    if not name:
        return False
    stripped = name.strip()
    if not (MIN_NAME_LENGTH <= len(stripped) <= MAX_NAME_LENGTH):
        return False
    if not stripped[0].isalnum():
        return False
    if stripped.lower() in COMMON_WORDS:
        return False
    if len(normalize_company_name(stripped)) < MIN_NAME_LENGTH:
        return False
    # Lowercase handles like "john_doe" or "jsmith1990" are people, not companies
    if stripped == stripped.lower() and looks_like_personal_account(stripped):
        return False
    return True


@dataclass
class LeadOutcome:
    """Result of processing one lead."""
    status: str  # created / merged / skipped
    normalized_name: str
    startup_id: Optional[int] = None
    source_id: Optional[int] = None
    reason: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"


def _coerce_date(value: Any) -> Optional[date]:
    if value is None or (isinstance(value, date) and not isinstance(value, datetime)):
        return value
    if isinstance(value, datetime):
        return value.date()
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _clean_fields(fields: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Keep known, non-empty Startup fields with storage-ready types."""
    cleaned: Dict[str, Any] = {}
    for key, value in (fields or {}).items():
        if key not in MERGEABLE_FIELDS or value is None or value == "" or value == []:
            continue
        if key == "website_url":
            value = sanitize_url(value)
        elif key in DATE_FIELDS:
            value = _coerce_date(value)
        elif key in ("funding_amount", "current_valuation", "employee_count"):
            try:
                value = int(value)
            except (TypeError, ValueError):
                value = None
        elif key in ("description", "location", "industry", "funding_stage"):
            value = str(value).strip()[:2000] or None
        if value is not None:
            cleaned[key] = value
    return cleaned


def _dialect_insert(session: AsyncSession):
    """INSERT construct for the session's backend (both support ON CONFLICT)."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise NotImplementedError(f"Upsert not supported for dialect {dialect}")


async def upsert_startup(
    session: AsyncSession,
    name: str,
    source_type: str,
    fields: Optional[Dict[str, Any]] = None,
) -> Startup:
    """
    Insert a startup or merge into the existing row with the same normalized name.

    Uses INSERT ... ON CONFLICT so concurrent collectors never create two rows
    for one company. Non-authoritative fields only fill blanks
    (COALESCE(existing, new)); fields the source owns replace existing values
    (COALESCE(new, existing)).
    """
    now = utc_now_naive()
    normalized = normalize_company_name(name)
    values = _clean_fields(fields)
    authoritative = AUTHORITATIVE_FIELDS.get(source_type, frozenset())

    insert = _dialect_insert(session)
    stmt = insert(Startup).values(
        name=name.strip(),
        normalized_name=normalized,
        created_at=now,
        updated_at=now,
        **values,
    )

    set_ = {"updated_at": now}
    for key in values:
        existing = getattr(Startup, key)
        incoming = getattr(stmt.excluded, key)
        if key in authoritative:
            set_[key] = func.coalesce(incoming, existing)
        else:
            set_[key] = func.coalesce(existing, incoming)

    stmt = stmt.on_conflict_do_update(
        index_elements=[Startup.normalized_name],
        set_=set_,
    ).returning(Startup)

    result = await session.execute(stmt, execution_options={"populate_existing": True})
    return result.scalar_one()


async def process_startup_lead(
    session: AsyncSession,
    name: Optional[str],
    source_type: str,
    raw_data: Any,
    source_url: Optional[str] = None,
    fields: Optional[Dict[str, Any]] = None,
) -> LeadOutcome:
    """
    Resolve a lead to a canonical Startup and attach the evidence.

    Invalid names are skipped (logged, not raised). Storage errors propagate so
    the caller can count the single item as failed.
    """
    if not is_valid_company_name(name):
        logger.debug(f"Skipping lead with invalid company name: {name!r} ({source_type})")
        return LeadOutcome(status="skipped", normalized_name="", reason="invalid_name")

    normalized = normalize_company_name(name)
    existing_id = await session.scalar(
        select(Startup.id).where(Startup.normalized_name == normalized)
    )

    startup = await upsert_startup(session, name, source_type, fields)

    record = DataSourceRecord(
        startup_id=startup.id,
        source_type=source_type,
        source_url=sanitize_url(source_url),
        raw_data=raw_data,
        extracted_at=utc_now_naive(),
    )
    session.add(record)
    await session.flush()

    status = "created" if existing_id is None else "merged"
    logger.debug(f"Lead {status}: {startup.name} (id={startup.id}) from {source_type}")
    return LeadOutcome(
        status=status,
        normalized_name=normalized,
        startup_id=startup.id,
        source_id=record.id,
    )


# =============================================================================
# Queries
# =============================================================================

async def get_startup(session: AsyncSession, startup_id: int) -> Optional[Startup]:
    return await session.get(Startup, startup_id)


async def get_startup_by_name(session: AsyncSession, name: str) -> Optional[Startup]:
    """Case- and legal-suffix-insensitive lookup."""
    stmt = select(Startup).where(Startup.normalized_name == normalize_company_name(name))
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_sources_for_startup(
    session: AsyncSession,
    startup_id: int,
    source_type: Optional[str] = None,
) -> List[DataSourceRecord]:
    """Evidence for a startup, oldest first."""
    stmt = select(DataSourceRecord).where(DataSourceRecord.startup_id == startup_id)
    if source_type:
        stmt = stmt.where(DataSourceRecord.source_type == source_type)
    stmt = stmt.order_by(DataSourceRecord.extracted_at, DataSourceRecord.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


def _has_story():
    return select(SuccessStory.id).where(SuccessStory.startup_id == Startup.id).exists()


async def find_story_candidates(
    session: AsyncSession,
    lookback_days: int,
    min_sources: int,
    limit: int,
) -> List[Startup]:
    """
    Recently created startups with at least min_sources evidence rows and no story.

    The "no story" filter keeps generation idempotent across reruns.
    """
    cutoff = utc_now_naive() - timedelta(days=lookback_days)
    source_counts = (
        select(DataSourceRecord.startup_id, func.count(DataSourceRecord.id).label("n"))
        .group_by(DataSourceRecord.startup_id)
        .subquery()
    )
    stmt = (
        select(Startup)
        .join(source_counts, source_counts.c.startup_id == Startup.id)
        .where(Startup.created_at >= cutoff)
        .where(source_counts.c.n >= min_sources)
        .where(~_has_story())
        .order_by(Startup.created_at.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def find_funding_story_candidates(
    session: AsyncSession,
    floor: int,
    lookback_days: int,
    limit: int,
) -> List[Startup]:
    """Startups with funding at or above floor and no story yet."""
    cutoff = utc_now_naive() - timedelta(days=lookback_days)
    stmt = (
        select(Startup)
        .where(Startup.funding_amount >= floor)
        .where(Startup.created_at >= cutoff)
        .where(~_has_story())
        .order_by(Startup.funding_amount.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def find_similar_startups(
    session: AsyncSession,
    name: str,
    website_url: Optional[str] = None,
    exclude_id: Optional[int] = None,
    limit: int = 10,
) -> List[Startup]:
    """
    Other startups whose name contains this name or that share the website.

    The startup being checked is excluded via exclude_id.
    """
    normalized = normalize_company_name(name)
    if not normalized:
        return []
    conditions = [Startup.normalized_name.contains(normalized, autoescape=True)]
    website = sanitize_url(website_url)
    if website:
        conditions.append(Startup.website_url == website)

    stmt = select(Startup).where(or_(*conditions))
    if exclude_id is not None:
        stmt = stmt.where(Startup.id != exclude_id)
    stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def find_recent_startups(
    session: AsyncSession,
    days: int,
    limit: int,
) -> List[Startup]:
    cutoff = utc_now_naive() - timedelta(days=days)
    stmt = (
        select(Startup)
        .where(Startup.created_at >= cutoff)
        .order_by(Startup.created_at.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def startup_has_story(session: AsyncSession, startup_id: int) -> bool:
    stmt = select(func.count(SuccessStory.id)).where(SuccessStory.startup_id == startup_id)
    return (await session.scalar(stmt) or 0) > 0


async def save_story(
    session: AsyncSession,
    startup_id: int,
    title: str,
    content: str,
    summary: str,
    story_type: str,
    confidence_score: float,
    tags: Optional[List[str]] = None,
    sources: Optional[List[Dict[str, Any]]] = None,
    verdict: str = "approved",
    featured: bool = False,
    ai_generated: bool = True,
) -> SuccessStory:
    """Persist a validated story. Rejected verdicts never reach this function."""
    if verdict == "rejected":
        raise ValueError("Rejected stories cannot be published")
    story = SuccessStory(
        startup_id=startup_id,
        title=title,
        content=content,
        summary=summary,
        story_type=story_type,
        confidence_score=confidence_score,
        tags=tags or [],
        sources=sources or [],
        verdict=verdict,
        featured=featured,
        ai_generated=ai_generated,
        published_at=utc_now_naive(),
    )
    session.add(story)
    await session.flush()
    return story


async def get_stories(
    session: AsyncSession,
    story_type: Optional[str] = None,
    featured: Optional[bool] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[SuccessStory]:
    stmt = select(SuccessStory).order_by(SuccessStory.published_at.desc())
    if story_type:
        stmt = stmt.where(SuccessStory.story_type == story_type)
    if featured is not None:
        stmt = stmt.where(SuccessStory.featured == featured)
    stmt = stmt.offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_stories(session: AsyncSession, story_type: Optional[str] = None) -> int:
    stmt = select(func.count(SuccessStory.id))
    if story_type:
        stmt = stmt.where(SuccessStory.story_type == story_type)
    return await session.scalar(stmt) or 0


async def count_startups(session: AsyncSession) -> int:
    return await session.scalar(select(func.count(Startup.id))) or 0


# =============================================================================
# Job runs
# =============================================================================

async def get_job_runs(
    session: AsyncSession,
    job_name: Optional[str] = None,
    limit: int = 50,
) -> List[JobRun]:
    stmt = select(JobRun).order_by(JobRun.started_at.desc(), JobRun.id.desc())
    if job_name:
        stmt = stmt.where(JobRun.job_name == job_name)
    stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


# =============================================================================
# Retention
# =============================================================================

async def purge_old_sources(session: AsyncSession, older_than_days: int) -> int:
    """
    Delete stale evidence for startups that never got a story.

    Evidence behind a published story is kept: revalidation reads it.
    """
    cutoff = utc_now_naive() - timedelta(days=older_than_days)
    result = await session.execute(
        delete(DataSourceRecord)
        .where(DataSourceRecord.extracted_at < cutoff)
        .where(DataSourceRecord.startup_id.not_in(select(SuccessStory.startup_id)))
    )
    return result.rowcount or 0


async def purge_old_job_runs(session: AsyncSession, older_than_days: int) -> int:
    """Delete finished runs older than the cutoff; running rows are kept."""
    cutoff = utc_now_naive() - timedelta(days=older_than_days)
    result = await session.execute(
        delete(JobRun)
        .where(JobRun.started_at < cutoff)
        .where(JobRun.status != "running")
    )
    return result.rowcount or 0


# =============================================================================
# Story revalidation
# =============================================================================

# Aggregators and launch boards; a link here is not the company's own site
AGGREGATOR_HOSTS = ("github.com", "producthunt.com", "news.ycombinator.com", "medium.com", "dev.to")
FUNDING_SOURCE_TYPES = {"funding", "funding_detection"}
FUNDING_URL_MARKERS = ("crunchbase", "techcrunch", "funding")


def is_funding_evidence(record: DataSourceRecord) -> bool:
    """Funding collector output, a record carrying round data, or a funding-news URL."""
    if record.source_type in FUNDING_SOURCE_TYPES:
        return True
    raw = record.raw_data
    if isinstance(raw, dict) and (raw.get("funding_amount") or raw.get("funding_stage")):
        return True
    url = (record.source_url or "").lower()
    return any(marker in url for marker in FUNDING_URL_MARKERS)


def is_website_evidence(record: DataSourceRecord) -> bool:
    """An http(s) link that is not an aggregator page."""
    url = sanitize_url(record.source_url)
    if not url:
        return False
    host = urlsplit(url).hostname or ""
    if host.startswith("www."):
        host = host[4:]
    return not any(host == h or host.endswith(f".{h}") for h in AGGREGATOR_HOSTS)


def evidence_supports_story(
    records: List[DataSourceRecord],
    needs_funding: bool,
    active_since: datetime,
) -> bool:
    """
    Whether current evidence still backs a story.

    Requires a non-aggregator website record and at least one record newer
    than `active_since`. Stories that claim funding also need funding evidence.
    """
    if not records:
        return False
    if not any(r.extracted_at and r.extracted_at >= active_since for r in records):
        return False
    if not any(is_website_evidence(r) for r in records):
        return False
    if needs_funding and not any(is_funding_evidence(r) for r in records):
        return False
    return True


async def delete_unsupported_stories(session: AsyncSession, activity_days: int = 730) -> int:
    """
    Remove stories that fail revalidation against the evidence on file now.

    A story goes when its startup row is gone, it cites nothing, or
    evidence_supports_story() says the remaining records no longer back it.
    Funding stories and stories about a startup with a recorded round need
    funding evidence.

    Duplicate startups are not touched here; the validator penalizes them.
    """
    active_since = utc_now_naive() - timedelta(days=activity_days)
    result = await session.execute(select(SuccessStory))

    doomed = []
    for story in result.scalars().all():
        startup = await session.get(Startup, story.startup_id)
        if startup is None or not story.sources:
            doomed.append(story)
            continue
        records = await get_sources_for_startup(session, story.startup_id)
        needs_funding = story.story_type == StoryType.FUNDING.value or bool(startup.funding_amount)
        if not evidence_supports_story(records, needs_funding, active_since):
            logger.info(f"Story {story.id} for {startup.name} no longer supported by its evidence")
            doomed.append(story)

    for story in doomed:
        await session.delete(story)
    await session.flush()
    return len(doomed)
