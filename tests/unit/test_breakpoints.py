"""Tests for breakpoint conditions, the evaluator, and breakpoint pauses."""

from datetime import timedelta

import pytest

from temporal.core.errors import InvalidArgument
from temporal.debug.breakpoints import (
    BreakpointEvaluator,
    BreakpointHit,
    TickCount,
    TimeReached,
    TimerFired,
    describe,
)

MS = timedelta(milliseconds=1)


class TestBreakpointEvaluator:
    def test_timer_fired(self):
        ev = BreakpointEvaluator()
        ev.add(TimerFired("t1"))
        assert ev.evaluate(["t2"], 10 * MS, {"t2": 1}) is None
        assert ev.evaluate(["t1", "t2"], 10 * MS, {"t1": 1, "t2": 2}) == TimerFired("t1")
        # Matches on every fire
        assert ev.evaluate(["t1"], 20 * MS, {"t1": 2}) == TimerFired("t1")

    def test_tick_count_matches_exact_count(self):
        ev = BreakpointEvaluator()
        ev.add(TickCount("t1", 3))
        assert ev.evaluate(["t1"], 10 * MS, {"t1": 2}) is None
        assert ev.evaluate(["t1"], 10 * MS, {"t1": 3}) == TickCount("t1", 3)
        assert ev.evaluate(["t1"], 10 * MS, {"t1": 4}) is None

    def test_tick_count_needs_fire(self):
        ev = BreakpointEvaluator()
        ev.add(TickCount("t1", 3))
        assert ev.evaluate(["t2"], 10 * MS, {"t1": 3, "t2": 1}) is None

    def test_time_reached_is_one_shot(self):
        ev = BreakpointEvaluator()
        ev.add(TimeReached(25 * MS))
        assert ev.armed_deadlines() == [25 * MS]
        assert ev.evaluate([], 20 * MS, {}) is None
        assert ev.evaluate([], 30 * MS, {}) == TimeReached(25 * MS)
        assert ev.evaluate([], 40 * MS, {}) is None
        assert ev.armed_deadlines() == []

    def test_rewind_rearms_future_instants(self):
        ev = BreakpointEvaluator()
        ev.add(TimeReached(10 * MS))
        ev.add(TimeReached(30 * MS))
        ev.evaluate([], 10 * MS, {})
        ev.evaluate([], 30 * MS, {})
        ev.rewind(20 * MS)
        assert ev.armed_deadlines() == [30 * MS]

    def test_first_match_wins(self):
        ev = BreakpointEvaluator()
        ev.add(TickCount("t1", 1))
        ev.add(TimerFired("t1"))
        assert ev.evaluate(["t1"], 10 * MS, {"t1": 1}) == TickCount("t1", 1)

    def test_time_reached_accepts_seconds(self):
        ev = BreakpointEvaluator()
        assert ev.add(TimeReached(0.5)) == TimeReached(timedelta(milliseconds=500))

    def test_invalid_conditions(self):
        ev = BreakpointEvaluator()
        with pytest.raises(InvalidArgument):
            ev.add(TickCount("t1", 0))
        with pytest.raises(InvalidArgument):
            ev.add(TickCount("t1", 2.5))
        with pytest.raises(InvalidArgument):
            ev.add(TimerFired(""))
        with pytest.raises(InvalidArgument):
            ev.add(TimeReached(-1.0))
        with pytest.raises(InvalidArgument):
            ev.add("t1 fires")
        assert ev.conditions == []

    def test_clear(self):
        ev = BreakpointEvaluator()
        ev.add(TimerFired("t1"))
        ev.clear()
        assert ev.evaluate(["t1"], 10 * MS, {"t1": 1}) is None

    def test_describe(self):
        assert describe(TimerFired("t1")) == "TimerFired(t1)"
        assert describe(TickCount("t1", 5)) == "TickCount(t1, 5)"
        assert describe(TimeReached(2 * MS)) == "TimeReached(0.002s)"

    def test_hit_to_dict(self):
        hit = BreakpointHit(TimerFired("t1"), 10 * MS, ("t1",))
        assert hit.to_dict() == {
            "condition": "TimerFired(t1)",
            "virtual_time_s": 0.01,
            "fired": ["t1"],
        }


class TestControllerBreakpoints:
    def test_tick_count_pauses_controller(self, controller, fake_time):
        ticker = controller.new_ticker(0.01, entry_id="t1")
        controller.set_breakpoint(TickCount("t1", 5))
        for _ in range(5):
            fake_time.advance(0.01)
            controller.run_pending()
        assert controller.global_paused
        assert ticker.tick_count == 5
        hit = controller.last_breakpoint
        assert hit.condition == TickCount("t1", 5)
        assert hit.virtual_time == 50 * MS
        assert hit.fired_ids == ("t1",)

        # No further fires until resumed
        fake_time.advance(1.0)
        assert controller.run_pending() == []
        assert ticker.tick_count == 5

        controller.resume_all()
        fake_time.advance(0.01)
        assert controller.run_pending() == ["t1"]
        assert ticker.tick_count == 6
        assert not controller.global_paused

    def test_time_reached_pauses_between_fires(self, controller, fake_time):
        ticker = controller.new_ticker(0.01, entry_id="t1")
        controller.set_breakpoint(TimeReached(25 * MS))
        fake_time.advance(0.02)
        controller.run_pending()
        # The breakpoint is the nearer deadline
        assert controller.next_wakeup() == pytest.approx(0.005)
        fake_time.advance(0.005)
        assert controller.run_pending() == []
        assert controller.global_paused
        assert controller.now() == 25 * MS
        assert controller.last_breakpoint.condition == TimeReached(25 * MS)
        assert controller.last_breakpoint.fired_ids == ()
        assert ticker.tick_count == 1

    def test_time_reached_in_the_past(self, controller, fake_time):
        fake_time.advance(1.0)
        controller.set_breakpoint(TimeReached(0.5))
        assert controller.next_wakeup() == 0.0
        controller.run_pending()
        assert controller.global_paused

    def test_listener_called(self, controller, fake_time):
        hits = []
        controller.on_breakpoint(hits.append)
        controller.new_ticker(0.01, entry_id="t1")
        controller.set_breakpoint(TimerFired("t1"))
        fake_time.advance(0.01)
        controller.run_pending()
        assert len(hits) == 1
        assert hits[0].fired_ids == ("t1",)
        assert hits[0].virtual_time == 10 * MS

    def test_failing_listener_is_logged(self, controller, fake_time, caplog):
        def broken(hit):
            raise ValueError("listener")

        controller.on_breakpoint(broken)
        controller.new_ticker(0.01, entry_id="t1")
        controller.set_breakpoint(TimerFired("t1"))
        fake_time.advance(0.01)
        assert controller.run_pending() == ["t1"]
        assert "Breakpoint listener failed" in caplog.text
        assert controller.global_paused

    def test_action_runs_after_pause(self, controller, fake_time):
        seen = []
        controller.after_func(0.01, lambda: seen.append(controller.global_paused), entry_id="t1")
        controller.set_breakpoint(TimerFired("t1"))
        fake_time.advance(0.01)
        controller.run_pending()
        assert seen == [True]

    def test_step_all_hits_breakpoint(self, controller):
        controller.new_ticker(0.005, entry_id="t5")
        controller.set_breakpoint(TickCount("t5", 3))
        controller.pause_all()
        for _ in range(3):
            controller.step_all()
        assert controller.last_breakpoint.condition == TickCount("t5", 3)

    def test_set_breakpoint_validates(self, controller):
        with pytest.raises(InvalidArgument):
            controller.set_breakpoint(TickCount("t1", -1))
        assert controller.breakpoints == []

    def test_clear_breakpoints(self, controller, fake_time):
        controller.new_ticker(0.01, entry_id="t1")
        controller.set_breakpoint(TimerFired("t1"))
        controller.clear_breakpoints()
        assert controller.breakpoints == []
        fake_time.advance(0.01)
        controller.run_pending()
        assert not controller.global_paused

    def test_status_reports_last_breakpoint(self, controller, fake_time):
        controller.new_ticker(0.01, entry_id="t1")
        controller.set_breakpoint(TimerFired("t1"))
        fake_time.advance(0.01)
        controller.run_pending()
        status = controller.status()
        assert status["breakpoints"] == 1
        assert status["last_breakpoint"]["condition"] == "TimerFired(t1)"

    def test_restore_rearms_time_reached(self, controller, fake_time):
        snapshot = controller.create_snapshot()
        controller.set_breakpoint(TimeReached(20 * MS))
        fake_time.advance(0.02)
        controller.run_pending()
        assert controller.global_paused

        controller.restore_snapshot(snapshot)
        assert not controller.global_paused
        assert controller.now() == timedelta()
        fake_time.advance(0.02)
        controller.run_pending()
        assert controller.global_paused
        assert controller.now() == 20 * MS
