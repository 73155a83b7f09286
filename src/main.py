"""
Startup Stories - Main Application Entry Point

Collects startup signals from public sources, resolves them to canonical
startups, and publishes validated success stories on a schedule.

Operator surface:
- Health and scheduler status
- Manual collection for a subset of sources
- On-demand runs of any registered stage
- Recent job runs and published stories
"""

import logging
import subprocess
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from .archivist import close_db, get_db, init_db
from .archivist import storage
from .config import settings
from .scheduler import (
    PipelineContext,
    build_context,
    run_manual_collection,
    run_named_stage,
    setup_scheduler,
    shutdown_scheduler,
)
from .scheduler import jobs as scheduler_module
from .scheduler.stages import COLLECTION_SOURCES, STAGES

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ----- API Key Security -----

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(api_key: str = Security(api_key_header)):
    """Verify API key for protected endpoints."""
    if not api_key:
        raise HTTPException(status_code=401, detail="API key required")
    if api_key not in settings.valid_api_keys:
        raise HTTPException(status_code=403, detail="Invalid API key")
    return api_key


def run_migrations() -> bool:
    """Run Alembic migrations on startup. Returns False when they could not run."""
    logger.info("Running database migrations...")
    try:
        result = subprocess.run(
            [sys.executable, "-m", "alembic", "upgrade", "head"],
            capture_output=True,
            text=True,
            timeout=120,
        )
    except subprocess.TimeoutExpired:
        logger.warning("Migration timed out (database may be unavailable)")
        return False
    except Exception as e:
        logger.warning(f"Could not run migrations: {e}")
        return False

    if result.returncode != 0:
        logger.warning(f"Migration warning: {result.stderr[-500:]}")
        return False
    logger.info("Database migrations completed successfully")
    return True


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting Startup Stories...")

    if not run_migrations():
        try:
            await init_db()
            logger.info("Database tables created without migrations")
        except Exception as e:
            logger.warning(f"Could not initialize database: {e}")

    pipeline = build_context()
    app.state.pipeline = pipeline

    if settings.scheduler_enabled:
        try:
            setup_scheduler(pipeline)
        except Exception as e:
            logger.warning(f"Could not start scheduler: {e}")
    else:
        logger.info("Scheduler disabled by configuration")

    yield

    logger.info("Shutting down...")
    shutdown_scheduler()

    try:
        await pipeline.close()
    except Exception as e:
        logger.warning(f"Error closing pipeline resources: {e}")

    try:
        await close_db()
        logger.info("Database connections closed")
    except Exception as e:
        logger.warning(f"Error closing database: {e}")


app = FastAPI(
    title="Startup Stories",
    description="Collect, validate and publish startup success stories",
    version="0.1.0",
    lifespan=lifespan,
)


def get_pipeline(request: Request) -> PipelineContext:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")
    return pipeline


# ----- Response Models -----

class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    scheduler_running: bool
    stages: int


class CollectRequest(BaseModel):
    sources: Optional[List[str]] = Field(
        default=None,
        description=f"Subset of {sorted(COLLECTION_SOURCES)}; empty runs all",
    )


class SourceResult(BaseModel):
    success: bool
    records_processed: int = 0
    error: Optional[str] = None
    job_id: Optional[str] = None


class CollectResponse(BaseModel):
    success: bool
    results: Dict[str, SourceResult]


class TriggerStageResponse(BaseModel):
    status: str
    message: str
    stage: str


class SchedulerJobStatus(BaseModel):
    id: str
    name: str
    next_run_time: Optional[str] = None


class SchedulerStageEntry(BaseModel):
    name: str
    cron: str
    description: str


class SchedulerStatusResponse(BaseModel):
    status: str
    stages: List[SchedulerStageEntry] = []
    jobs: List[SchedulerJobStatus] = []


class JobRunResponse(BaseModel):
    job_id: str
    job_name: str
    status: str
    trigger: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    records_processed: int = 0
    metadata: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None


class StoryResponse(BaseModel):
    id: int
    startup_id: int
    title: str
    summary: str
    content: str
    story_type: str
    confidence_score: float
    tags: List[str] = []
    sources: List[Dict[str, Any]] = []
    verdict: str
    featured: bool
    published_at: datetime


# ----- Endpoints -----

@app.get("/health", response_model=HealthResponse)
async def health_check():
    sched = scheduler_module.scheduler
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        scheduler_running=bool(sched and sched.running),
        stages=len(STAGES),
    )


@app.post("/collect", response_model=CollectResponse)
async def collect(
    request: CollectRequest,
    pipeline: PipelineContext = Depends(get_pipeline),
    api_key: str = Depends(verify_api_key),
):
    """
    Run collection now for the given sources (all when omitted).

    Runs synchronously and always returns a per-source summary, including
    unknown source names as failed entries.
    """
    summary = await run_manual_collection(pipeline, request.sources)
    return CollectResponse(**summary)


@app.post("/stages/{name}/run", response_model=TriggerStageResponse)
async def trigger_stage(
    name: str,
    background_tasks: BackgroundTasks,
    pipeline: PipelineContext = Depends(get_pipeline),
    api_key: str = Depends(verify_api_key),
):
    """Start a stage in the background. Check /jobs for the outcome."""
    if name not in STAGES:
        raise HTTPException(status_code=404, detail=f"Unknown stage: {name}")

    background_tasks.add_task(run_named_stage, pipeline, name, "api")
    return TriggerStageResponse(
        status="started",
        message=f"Stage {name} triggered. Check /jobs for progress.",
        stage=name,
    )


@app.get("/scheduler/status", response_model=SchedulerStatusResponse)
async def get_scheduler_status():
    """Get scheduler status and next run times."""
    sched = scheduler_module.scheduler
    if not sched:
        return SchedulerStatusResponse(status="not_initialized")

    status = sched.status()
    return SchedulerStatusResponse(
        status="running" if status["running"] else "stopped",
        stages=[SchedulerStageEntry(**s) for s in status["stages"]],
        jobs=[SchedulerJobStatus(**j) for j in status["jobs"]],
    )


@app.get("/jobs", response_model=List[JobRunResponse])
async def list_job_runs(
    job_name: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
    session: AsyncSession = Depends(get_db),
):
    """Most recent stage runs, newest first."""
    runs = await storage.get_job_runs(session, job_name=job_name, limit=limit)
    return [
        JobRunResponse(
            job_id=r.job_id,
            job_name=r.job_name,
            status=r.status,
            trigger=r.trigger,
            started_at=r.started_at,
            completed_at=r.completed_at,
            duration_seconds=r.duration_seconds,
            records_processed=r.records_processed,
            metadata=r.job_metadata,
            error_message=r.error_message,
        )
        for r in runs
    ]


@app.get("/stories", response_model=List[StoryResponse])
async def list_stories(
    story_type: Optional[str] = None,
    featured: Optional[bool] = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_db),
):
    """Published stories, newest first."""
    stories = await storage.get_stories(
        session, story_type=story_type, featured=featured, limit=limit, offset=offset
    )
    return [
        StoryResponse(
            id=s.id,
            startup_id=s.startup_id,
            title=s.title,
            summary=s.summary,
            content=s.content,
            story_type=s.story_type,
            confidence_score=s.confidence_score,
            tags=s.tags or [],
            sources=s.sources or [],
            verdict=s.verdict,
            featured=s.featured,
            published_at=s.published_at,
        )
        for s in stories
    ]
