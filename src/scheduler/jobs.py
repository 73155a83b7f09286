"""
Stage schedule and the APScheduler backend that drives it.

The schedule is a plain table of stage name -> cron expression. Scheduler
binds that table to a PipelineContext and hands each entry to a
ScheduleBackend; APSchedulerBackend is the in-process implementation, and an
external cron can call run_named_stage() directly with the same names.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from ..config.settings import settings
from .context import PipelineContext
from .stages import STAGES, StageRunResult, run_named_stage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StageSchedule:
    name: str
    cron: str  # Five-field crontab expression; weekdays by name
    description: str


DEFAULT_SCHEDULE: List[StageSchedule] = [
    StageSchedule("product_hunt_collection", "0 */6 * * *", "every 6 hours"),
    StageSchedule("hacker_news_collection", "0 */6 * * *", "every 6 hours"),
    StageSchedule("funding_collection", "30 */6 * * *", "every 6 hours at :30"),
    StageSchedule("rss_collection", "0 8 * * *", "daily at 08:00"),
    StageSchedule("github_collection", "0 12 * * *", "daily at 12:00"),
    StageSchedule("web_scraping", "0 2 * * *", "daily at 02:00"),
    StageSchedule("story_generation", "0 4 * * *", "daily at 04:00"),
    StageSchedule("funding_story_generation", "0 5 * * *", "daily at 05:00"),
    StageSchedule("funding_detection", "0 6 * * *", "daily at 06:00"),
    StageSchedule("valuation_collection", "0 3 * * mon", "weekly, Monday 03:00"),
    StageSchedule("weekly_maintenance", "0 0 * * sun", "weekly, Sunday 00:00"),
]


JobCallback = Callable[[], Awaitable[Any]]


class ScheduleBackend(Protocol):
    """Anything that can fire callbacks on a cron cadence."""

    def add_stage(self, schedule: StageSchedule, callback: JobCallback) -> None:
        ...

    def start(self) -> None:
        ...

    def shutdown(self) -> None:
        ...

    def jobs(self) -> List[Dict[str, Any]]:
        ...


class APSchedulerBackend:
    """ScheduleBackend on an AsyncIOScheduler with cron triggers."""

    def __init__(self, timezone: Optional[str] = None):
        self.timezone = timezone or settings.scheduler_timezone
        self.scheduler = AsyncIOScheduler(
            timezone=self.timezone,
            job_defaults={
                "coalesce": False,  # Queue missed runs instead of dropping them
                "max_instances": 1,  # Only one instance of a stage at a time
                "misfire_grace_time": 600,  # 10 min grace for misfires
            },
        )

    def add_stage(self, schedule: StageSchedule, callback: JobCallback) -> None:
        self.scheduler.add_job(
            callback,
            trigger=CronTrigger.from_crontab(schedule.cron, timezone=self.timezone),
            id=schedule.name,
            name=f"{schedule.name} ({schedule.description})",
            replace_existing=True,
        )

    def start(self) -> None:
        self.scheduler.start()

    def shutdown(self) -> None:
        # Running stages are abandoned; their JobRun rows stay "running"
        self.scheduler.shutdown(wait=False)

    def jobs(self) -> List[Dict[str, Any]]:
        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in self.scheduler.get_jobs()
        ]


class Scheduler:
    """
    Binds a stage schedule to a pipeline context and a backend.

    Usage:
        sched = Scheduler(ctx, APSchedulerBackend())
        sched.start()
        ...
        sched.shutdown()
    """

    def __init__(
        self,
        ctx: PipelineContext,
        backend: ScheduleBackend,
        schedule: Sequence[StageSchedule] = DEFAULT_SCHEDULE,
    ):
        unknown = [s.name for s in schedule if s.name not in STAGES]
        if unknown:
            raise ValueError(f"Schedule references unknown stages: {unknown}")
        self.ctx = ctx
        self.backend = backend
        self.schedule = list(schedule)
        self.running = False

    def _callback(self, name: str) -> JobCallback:
        async def _run() -> StageRunResult:
            return await run_named_stage(self.ctx, name, trigger="scheduled")

        return _run

    def start(self) -> None:
        if self.running:
            return
        for entry in self.schedule:
            self.backend.add_stage(entry, self._callback(entry.name))
        self.backend.start()
        self.running = True
        logger.info(f"Scheduler started with {len(self.schedule)} stages")
        for job in self.backend.jobs():
            logger.info(f"Scheduled job: {job['id']} - next run: {job['next_run_time']}")

    def shutdown(self) -> None:
        if not self.running:
            return
        self.backend.shutdown()
        self.running = False
        logger.info("Scheduler shutdown complete")

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "stages": [
                {"name": s.name, "cron": s.cron, "description": s.description}
                for s in self.schedule
            ],
            "jobs": self.backend.jobs() if self.running else [],
        }


scheduler: Optional[Scheduler] = None


def setup_scheduler(ctx: PipelineContext) -> Scheduler:
    """Create and start the process-wide APScheduler-backed scheduler."""
    global scheduler
    scheduler = Scheduler(ctx, APSchedulerBackend())
    scheduler.start()
    return scheduler


def shutdown_scheduler() -> None:
    """Shutdown the scheduler without waiting for running stages."""
    global scheduler
    if scheduler:
        scheduler.shutdown()
        scheduler = None
