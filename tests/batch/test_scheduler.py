"""SweepScheduler driven by tick() and a deterministic clock."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from inventory_batch.services.scheduler import SweepScheduler
from inventory_batch.tasks.reservation_expiry import SweepResult
from inventory_kernel.domain.clock import DeterministicClock

START = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class RecordingSweeper:
    def __init__(self, error: Exception | None = None):
        self.calls: list = []
        self.error = error

    def sweep(self, organization_id=None) -> SweepResult:
        self.calls.append(organization_id)
        if self.error is not None:
            raise self.error
        return SweepResult(candidates=2, expired_count=2, batches=1)


@pytest.fixture
def clock():
    return DeterministicClock(START)


class TestTick:
    def test_first_run_is_next_cron_match(self, clock):
        scheduler = SweepScheduler(RecordingSweeper(), "0 */6 * * *", clock=clock)
        assert scheduler.next_run_at == datetime(2024, 1, 1, 18, 0, tzinfo=timezone.utc)

    def test_not_due(self, clock):
        sweeper = RecordingSweeper()
        scheduler = SweepScheduler(sweeper, "0 */6 * * *", clock=clock)
        clock.advance(hours=5, minutes=59)
        assert scheduler.tick() is None
        assert sweeper.calls == []

    def test_fires_when_due(self, clock):
        sweeper = RecordingSweeper()
        scheduler = SweepScheduler(sweeper, "0 */6 * * *", clock=clock)
        clock.set_time(datetime(2024, 1, 1, 18, 0, tzinfo=timezone.utc))

        result = scheduler.tick()

        assert result.expired_count == 2
        assert sweeper.calls == [None]
        assert scheduler.next_run_at == datetime(2024, 1, 2, 0, 0, tzinfo=timezone.utc)
        assert scheduler.tick() is None

    def test_missed_windows_fire_once(self, clock):
        sweeper = RecordingSweeper()
        scheduler = SweepScheduler(sweeper, "0 */6 * * *", clock=clock)
        clock.set_time(datetime(2024, 1, 3, 5, 0, tzinfo=timezone.utc))

        assert scheduler.tick() is not None
        assert scheduler.tick() is None
        assert len(sweeper.calls) == 1
        assert scheduler.next_run_at == datetime(2024, 1, 3, 6, 0, tzinfo=timezone.utc)

    def test_organization_is_passed_through(self, clock):
        organization_id = uuid4()
        sweeper = RecordingSweeper()
        scheduler = SweepScheduler(sweeper, "*/5 * * * *", clock=clock, organization_id=organization_id)
        clock.advance(minutes=5)
        scheduler.tick()
        assert sweeper.calls == [organization_id]

    def test_failed_sweep_is_logged_and_rescheduled(self, clock, captured_logs):
        sweeper = RecordingSweeper(error=RuntimeError("database unavailable"))
        scheduler = SweepScheduler(sweeper, "0 * * * *", clock=clock)
        clock.advance(hours=1)

        assert scheduler.tick() is None
        assert scheduler.next_run_at == datetime(2024, 1, 1, 14, 0, tzinfo=timezone.utc)
        failures = [r for r in captured_logs() if r["message"] == "scheduled_sweep_failed"]
        assert len(failures) == 1
        assert failures[0]["exc_message"] == "database unavailable"

    def test_invalid_cron(self, clock):
        with pytest.raises(ValueError):
            SweepScheduler(RecordingSweeper(), "every six hours", clock=clock)


class TestThread:
    def test_start_and_stop(self, clock):
        scheduler = SweepScheduler(RecordingSweeper(), clock=clock, poll_seconds=0.01)
        scheduler.start()
        try:
            assert scheduler.is_running
        finally:
            scheduler.stop(timeout=5)
        assert not scheduler.is_running

    def test_start_twice_keeps_one_thread(self, clock):
        scheduler = SweepScheduler(RecordingSweeper(), clock=clock, poll_seconds=0.01)
        scheduler.start()
        try:
            thread = scheduler._thread
            scheduler.start()
            assert scheduler._thread is thread
        finally:
            scheduler.stop(timeout=5)
