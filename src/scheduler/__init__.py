"""
Scheduler module: pipeline context, stages, and cron scheduling.
"""
from .context import PipelineContext, build_context
from .stages import (
    STAGES,
    StageOutcome,
    StageRunResult,
    run_stage,
    run_named_stage,
    run_manual_collection,
)
from .jobs import (
    DEFAULT_SCHEDULE,
    APSchedulerBackend,
    Scheduler,
    StageSchedule,
    setup_scheduler,
    shutdown_scheduler,
)

__all__ = [
    "PipelineContext",
    "build_context",
    "STAGES",
    "StageOutcome",
    "StageRunResult",
    "run_stage",
    "run_named_stage",
    "run_manual_collection",
    "DEFAULT_SCHEDULE",
    "APSchedulerBackend",
    "Scheduler",
    "StageSchedule",
    "setup_scheduler",
    "shutdown_scheduler",
]
