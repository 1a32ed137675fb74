"""Tests for the recurring sweep job."""

from unittest.mock import MagicMock

from apscheduler.triggers.interval import IntervalTrigger

from pricewatch.models.schemas import SweepSummary
from pricewatch.tasks.scheduler import JOB_ID, build_scheduler


class TestBuildScheduler:

    def test_registers_single_interval_job(self) -> None:
        runner = MagicMock()

        scheduler = build_scheduler(runner, interval_hours=6)

        job = scheduler.get_job(JOB_ID)
        assert isinstance(job.trigger, IntervalTrigger)
        assert job.trigger.interval.total_seconds() == 6 * 3600
        assert job.max_instances == 1
        assert job.coalesce is True

    def test_job_runs_a_sweep(self) -> None:
        runner = MagicMock()
        runner.check_all_products.return_value = SweepSummary(total=3, updated=2, failed=1)

        job = build_scheduler(runner, interval_hours=1).get_job(JOB_ID)
        job.func()

        runner.check_all_products.assert_called_once_with()
