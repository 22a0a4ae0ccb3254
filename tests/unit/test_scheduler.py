"""Tests for the Scheduler's deadline computation and failure handling."""

import threading
from datetime import timedelta

import pytest

from temporal.core.clock import VirtualClock
from temporal.core.errors import InvalidState, SchedulerInvariantError
from temporal.core.scheduler import FireResult, Scheduler
from temporal.debug.breakpoints import BreakpointEvaluator, BreakpointHit, TimerFired


class _OverdueEntry:
    """Entry whose bookkeeping claims it is overdue yet not due."""

    entry_id = "broken"

    def is_due_at(self, seconds):
        return False

    def delay_at(self, seconds):
        return -0.001


def _scheduler(fake_time, entries):
    clock = VirtualClock(time_source=fake_time)
    return Scheduler(clock, threading.Condition(), BreakpointEvaluator(), lambda: entries)


class TestScheduler:
    def test_negative_wait_is_invariant_violation(self, fake_time):
        scheduler = _scheduler(fake_time, [_OverdueEntry()])
        with pytest.raises(SchedulerInvariantError):
            scheduler.run_pending()

    @pytest.mark.filterwarnings("ignore::pytest.PytestUnhandledThreadExceptionWarning")
    def test_loop_records_failure(self, fake_time, caplog):
        scheduler = _scheduler(fake_time, [_OverdueEntry()])
        scheduler.start()
        scheduler._thread.join(timeout=2.0)
        assert isinstance(scheduler.failure, SchedulerInvariantError)
        assert "aborted" in caplog.text
        with pytest.raises(InvalidState, match="aborted"):
            scheduler.raise_if_failed()
        with pytest.raises(InvalidState):
            scheduler.run_pending()

    def test_no_entries_waits_forever(self, fake_time):
        scheduler = _scheduler(fake_time, [])
        assert scheduler.next_wakeup() is None
        assert scheduler.run_pending() == []

    def test_stop_without_start(self, fake_time):
        scheduler = _scheduler(fake_time, [])
        scheduler.stop()
        assert not scheduler.is_running

    def test_start_and_stop(self, fake_time):
        scheduler = _scheduler(fake_time, [])
        scheduler.start()
        assert scheduler.is_running
        scheduler.stop()
        assert not scheduler.is_running

    def test_dispatch_runs_listeners_then_actions(self, fake_time):
        scheduler = _scheduler(fake_time, [])
        order = []
        scheduler.on_breakpoint(lambda hit: order.append(("listener", hit.condition)))
        hit = BreakpointHit(TimerFired("t1"), timedelta(), ("t1",))
        result = FireResult(
            virtual_time=timedelta(),
            fired=["t1"],
            actions=[("t1", lambda: order.append("action"))],
            breakpoint=hit,
        )
        scheduler.dispatch(result)
        assert order == [("listener", TimerFired("t1")), "action"]
