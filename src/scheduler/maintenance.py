"""
Retention sweeps, run weekly and independently of collection.

- Evidence older than the retention age is purged, unless it backs a story
- Finished JobRuns older than the retention age are purged
- Stories whose current evidence no longer supports them are removed

Duplicate startups are never deleted here; the validator scores them down
instead.
"""

import logging
from typing import Dict, TYPE_CHECKING

from ..archivist import storage
from ..archivist.database import get_session

if TYPE_CHECKING:
    from .context import PipelineContext

logger = logging.getLogger(__name__)


async def run_maintenance(ctx: "PipelineContext") -> Dict[str, int]:
    s = ctx.settings
    async with get_session(ctx.session_factory) as session:
        sources = await storage.purge_old_sources(session, s.evidence_retention_days)
        job_runs = await storage.purge_old_job_runs(session, s.job_run_retention_days)
        stories = await storage.delete_unsupported_stories(session, s.story_activity_days)

    logger.info(
        f"Maintenance: purged {sources} sources, {job_runs} job runs, "
        f"removed {stories} unsupported stories"
    )
    return {"sources_purged": sources, "job_runs_purged": job_runs, "stories_removed": stories}
