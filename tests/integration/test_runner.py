"""
CLI runner integration test.

Runs scripts/run_timers.py through click's CliRunner with a short plan
and verifies:
1. The plan runs to its virtual duration and shuts down cleanly
2. A final snapshot is written and can be restored in a second run
3. Built-in plan actions behave as documented
"""

from datetime import timedelta

import pytest
import yaml
from click.testing import CliRunner

from scripts.run_timers import build_actions, main
from temporal.core.timer import TimerKind
from temporal.plan.loader import TimerSpec
from temporal.snapshot.io import load_snapshot

PLAN = {
    "plan": {
        "name": "short",
        "speed": 2.0,
        "duration": "200ms",
        "tickers": [
            {"id": "fast", "interval": "5ms"},
            {"id": "slow", "interval": "50ms", "speed": 0.5},
        ],
        "timers": [
            {"id": "hello", "after": "20ms", "action": "log", "message": "hello"},
        ],
    }
}


@pytest.fixture
def plan_path(tmp_path):
    path = tmp_path / "short.yaml"
    path.write_text(yaml.safe_dump(PLAN))
    return path


def _invoke(*args: str):
    result = CliRunner().invoke(main, ["--no-health", "--poll", "0.01", *args])
    assert result.exit_code == 0, result.output
    return result


class TestRunTimers:
    def test_runs_plan_to_duration(self, plan_path, tmp_path):
        out = tmp_path / "final.yaml"
        result = _invoke("--plan", str(plan_path), "--snapshot-out", str(out))
        assert "Loaded 2 tickers, 1 timers, 0 breakpoints" in result.output
        assert "Runner stopped" in result.output

        snapshot = load_snapshot(out)
        assert snapshot.global_paused
        assert snapshot.speed == 2.0
        assert snapshot.virtual_now >= timedelta(milliseconds=200)
        assert snapshot.entries["fast"].tick_count > 0
        assert snapshot.entries["hello"].has_fired
        assert snapshot.count(TimerKind.PERIODIC) == 2

    def test_speed_override(self, plan_path):
        result = _invoke("--plan", str(plan_path), "--speed", "4", "--duration", "100ms")
        assert "Running at 4.0x" in result.output

    def test_restore_from_snapshot(self, plan_path, tmp_path):
        first = tmp_path / "first.json"
        _invoke("--plan", str(plan_path), "--snapshot-out", str(first))
        before = load_snapshot(first)

        second = tmp_path / "second.json"
        result = _invoke(
            "--restore", str(first), "--duration", "1s", "--snapshot-out", str(second),
        )
        assert "Restoring snapshot" in result.output
        after = load_snapshot(second)
        assert after.entry_ids == before.entry_ids
        assert after.entries["fast"].tick_count >= before.entries["fast"].tick_count

    def test_bad_plan_fails(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("plan:\n  speed: 1.0\n")
        result = CliRunner().invoke(main, ["--no-health", "--plan", str(path)])
        assert result.exit_code != 0

    def test_rejects_non_positive_poll(self, plan_path):
        result = CliRunner().invoke(main, ["--no-health", "--poll", "0", "--plan", str(plan_path)])
        assert result.exit_code == 2
        assert "--poll" in result.output


class TestBuiltInActions:
    def test_snapshot_action(self, controller, fake_time, tmp_path):
        actions = build_actions(controller, str(tmp_path))
        fake_time.advance(0.25)
        actions["snapshot"](TimerSpec("cp", timedelta(seconds=1), action="snapshot"))()
        assert (tmp_path / "cp-250ms.yaml").exists()

    def test_pause_action(self, controller):
        actions = build_actions(controller, "unused")
        actions["pause"](TimerSpec("stop", timedelta(seconds=1), action="pause"))()
        assert controller.global_paused

    def test_log_action(self, controller, caplog):
        actions = build_actions(controller, "unused")
        with caplog.at_level("INFO"):
            actions["log"](TimerSpec("hi", timedelta(seconds=1), action="log", message="hey"))()
        assert "[hi] hey" in caplog.text
