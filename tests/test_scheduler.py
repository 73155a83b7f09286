"""
Tests for the stage schedule and scheduler backends.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest


class FakeBackend:
    """Records registrations instead of scheduling anything."""

    def __init__(self):
        self.added = {}
        self.started = False
        self.stopped = False

    def add_stage(self, schedule, callback):
        self.added[schedule.name] = (schedule, callback)

    def start(self):
        self.started = True

    def shutdown(self):
        self.stopped = True

    def jobs(self):
        return [{"id": name, "name": name, "next_run_time": None} for name in self.added]


class TestDefaultSchedule:
    def test_every_entry_is_a_registered_stage(self):
        from src.scheduler.jobs import DEFAULT_SCHEDULE
        from src.scheduler.stages import STAGES

        names = [s.name for s in DEFAULT_SCHEDULE]
        assert len(names) == len(set(names))
        assert set(names) == set(STAGES)

    def test_weekly_entries_use_day_names(self):
        from src.scheduler.jobs import DEFAULT_SCHEDULE

        by_name = {s.name: s.cron for s in DEFAULT_SCHEDULE}
        assert by_name["weekly_maintenance"] == "0 0 * * sun"
        assert by_name["valuation_collection"] == "0 3 * * mon"


class TestScheduler:
    """Scheduler binds schedule entries to run_named_stage."""

    def test_unknown_stage_rejected(self):
        from src.scheduler.jobs import Scheduler, StageSchedule

        with pytest.raises(ValueError):
            Scheduler(MagicMock(), FakeBackend(), [StageSchedule("nope", "0 * * * *", "hourly")])

    def test_start_registers_every_stage_once(self):
        from src.scheduler.jobs import DEFAULT_SCHEDULE, Scheduler

        backend = FakeBackend()
        sched = Scheduler(MagicMock(), backend)
        sched.start()
        sched.start()

        assert backend.started
        assert set(backend.added) == {s.name for s in DEFAULT_SCHEDULE}
        assert sched.status()["running"] is True
        assert len(sched.status()["jobs"]) == len(DEFAULT_SCHEDULE)

    def test_shutdown(self):
        from src.scheduler.jobs import Scheduler

        backend = FakeBackend()
        sched = Scheduler(MagicMock(), backend)
        sched.shutdown()
        assert not backend.stopped

        sched.start()
        sched.shutdown()
        assert backend.stopped
        assert sched.status() == {
            "running": False,
            "stages": sched.status()["stages"],
            "jobs": [],
        }

    @pytest.mark.asyncio
    async def test_callback_runs_named_stage(self):
        from src.scheduler.jobs import Scheduler, StageSchedule

        ctx = MagicMock()
        backend = FakeBackend()
        sched = Scheduler(ctx, backend, [StageSchedule("story_generation", "0 4 * * *", "daily")])
        sched.start()

        _, callback = backend.added["story_generation"]
        with patch("src.scheduler.jobs.run_named_stage", new=AsyncMock(return_value="ran")) as run:
            assert await callback() == "ran"
        run.assert_awaited_once_with(ctx, "story_generation", trigger="scheduled")


class TestAPSchedulerBackend:
    def test_cron_triggers_and_defaults(self):
        from apscheduler.triggers.cron import CronTrigger

        from src.scheduler.jobs import APSchedulerBackend, StageSchedule

        backend = APSchedulerBackend(timezone="UTC")
        backend.add_stage(StageSchedule("weekly_maintenance", "0 0 * * sun", "weekly"), AsyncMock())

        job = backend.scheduler.get_job("weekly_maintenance")
        assert isinstance(job.trigger, CronTrigger)
        fields = {f.name: str(f) for f in job.trigger.fields}
        assert fields["day_of_week"] == "sun"
        assert fields["hour"] == "0"
        assert backend.scheduler._job_defaults["max_instances"] == 1
        assert backend.scheduler._job_defaults["coalesce"] is False

