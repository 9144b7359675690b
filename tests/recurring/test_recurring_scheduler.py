"""
Tests for billing_recurring.services.scheduler.

Validates RecurringScheduler: run_tick() over real templates, tick()
swallowing failures, start/stop lifecycle, graceful shutdown, and the
shared-secret trigger guard.
"""

import threading
from datetime import date

import pytest

from billing_kernel.exceptions import TriggerAuthenticationError

from billing_recurring.domain.types import RunStatus, TickResult
from billing_recurring.services.scheduler import RecurringScheduler, verify_trigger_secret


class RecordingRunner:
    """Runner stand-in that counts ticks and can fail on demand."""

    def __init__(self, clock, error: Exception | None = None):
        self.clock = clock
        self.error = error
        self.calls = 0
        self.ticked = threading.Event()

    def run_due_templates(self, now=None, should_stop=None):
        self.calls += 1
        self.ticked.set()
        if self.error is not None:
            raise self.error
        return TickResult(processed_count=0, results=(), timestamp=now)


@pytest.fixture
def recording_runner(clock):
    return RecordingRunner(clock)


class TestRunTick:
    def test_processes_due_templates(self, runner, clock, make_template, captured_logs):
        make_template(name="A")
        make_template(name="B", start_date=date(2026, 3, 2))

        result = RecurringScheduler(runner, clock).run_tick()

        assert result.processed_count == 1
        assert result.count(RunStatus.SUCCESS) == 1
        assert result.timestamp == clock.now()
        [completed] = [r for r in captured_logs() if r["message"] == "recurring_tick_completed"]
        assert completed["processed"] == 1
        assert completed["succeeded"] == 1
        assert completed["failed"] == 0

    def test_second_tick_same_day_does_nothing(self, runner, clock, make_template):
        make_template()
        scheduler = RecurringScheduler(runner, clock)
        scheduler.run_tick()
        assert scheduler.run_tick().processed_count == 0

    def test_tick_swallows_runner_failure(self, clock, captured_logs):
        scheduler = RecurringScheduler(RecordingRunner(clock, RuntimeError("db down")), clock)
        assert scheduler.tick() is None
        assert any(r["message"] == "scheduler_tick_failed" for r in captured_logs())

    def test_run_tick_propagates_runner_failure(self, clock):
        scheduler = RecurringScheduler(RecordingRunner(clock, RuntimeError("db down")), clock)
        with pytest.raises(RuntimeError):
            scheduler.run_tick()


class TestLifecycle:
    def test_start_runs_a_tick_in_background(self, recording_runner, clock):
        scheduler = RecurringScheduler(recording_runner, clock, tick_interval_seconds=3600)
        scheduler.start()
        try:
            assert recording_runner.ticked.wait(timeout=5)
            assert scheduler.is_running
        finally:
            scheduler.stop(timeout=5)
        assert not scheduler.is_running

    def test_double_start_is_noop(self, recording_runner, clock):
        scheduler = RecurringScheduler(recording_runner, clock, tick_interval_seconds=3600)
        scheduler.start()
        try:
            recording_runner.ticked.wait(timeout=5)
            first = scheduler._thread
            scheduler.start()
            assert scheduler._thread is first
        finally:
            scheduler.stop(timeout=5)
        assert recording_runner.calls == 1

    def test_stop_without_start_is_safe(self, recording_runner, clock):
        scheduler = RecurringScheduler(recording_runner, clock)
        scheduler.stop()
        assert not scheduler.is_running

    def test_stop_signal_reaches_runner(self, clock):
        seen = {}

        class StopAwareRunner(RecordingRunner):
            def run_due_templates(self, now=None, should_stop=None):
                seen["should_stop"] = should_stop
                return super().run_due_templates(now, should_stop)

        runner = StopAwareRunner(clock)
        scheduler = RecurringScheduler(runner, clock)
        scheduler.run_tick()
        assert seen["should_stop"]() is False
        scheduler.stop()
        assert seen["should_stop"]() is True


class TestTriggerSecret:
    def test_correct_bearer_accepted(self):
        verify_trigger_secret("Bearer s3cret", "s3cret")

    @pytest.mark.parametrize("presented", [None, "", "s3cret", "Bearer wrong", "bearer s3cret"])
    def test_wrong_header_rejected(self, presented, captured_logs):
        with pytest.raises(TriggerAuthenticationError):
            verify_trigger_secret(presented, "s3cret")
        assert any(r["message"] == "recurring_trigger_rejected" for r in captured_logs())

    @pytest.mark.parametrize("expected", [None, ""])
    def test_unset_secret_rejects_everything(self, expected, captured_logs):
        with pytest.raises(TriggerAuthenticationError) as exc_info:
            verify_trigger_secret("Bearer ", expected)
        assert exc_info.value.code == "TRIGGER_UNAUTHORIZED"
        assert any(
            r["message"] == "recurring_trigger_secret_not_configured" for r in captured_logs()
        )
