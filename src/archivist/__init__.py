"""Database models and storage utilities."""

from .models import (
    Startup,
    DataSourceRecord,
    SuccessStory,
    JobRun,
    JobStatus,
    StoryType,
)
from .database import get_session, get_db, init_db, close_db
from .storage import (
    LeadOutcome,
    normalize_company_name,
    is_valid_company_name,
    process_startup_lead,
    get_sources_for_startup,
    find_story_candidates,
    find_funding_story_candidates,
    find_similar_startups,
    find_recent_startups,
    save_story,
    count_stories,
)

__all__ = [
    "Startup",
    "DataSourceRecord",
    "SuccessStory",
    "JobRun",
    "JobStatus",
    "StoryType",
    "get_session",
    "get_db",
    "init_db",
    "close_db",
    "LeadOutcome",
    "normalize_company_name",
    "is_valid_company_name",
    "process_startup_lead",
    "get_sources_for_startup",
    "find_story_candidates",
    "find_funding_story_candidates",
    "find_similar_startups",
    "find_recent_startups",
    "save_story",
    "count_stories",
]
