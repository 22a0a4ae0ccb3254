"""Tests for the console reporter."""

from datetime import timedelta

from temporal.debug.breakpoints import BreakpointHit, TickCount
from temporal.output.console import ConsoleReporter


class TestConsoleReporter:
    def test_name(self):
        assert ConsoleReporter().name == "console"

    def test_report_fire(self, controller, fake_time, capsys):
        ticker = controller.new_ticker(0.01, entry_id="spike")
        fake_time.advance(0.01)
        controller.run_pending()
        reporter = ConsoleReporter(time_source=fake_time)
        assert reporter.report_fire(ticker, ticker.channel.get_nowait()) is True
        out = capsys.readouterr().out
        assert "spike" in out
        assert "0.0100s" in out
        assert "#1" in out
        assert "RUNNING" in out

    def test_one_shot_fire(self, controller, capsys):
        timer = controller.new_timer(0, entry_id="bell")
        controller.run_pending()
        ConsoleReporter().report_fire(timer, None)
        out = capsys.readouterr().out
        assert "one-shot" in out
        assert "FIRED" in out

    def test_rate_limited_per_timer(self, controller, fake_time, capsys):
        a = controller.new_ticker(0.01, entry_id="a")
        b = controller.new_ticker(0.01, entry_id="b")
        reporter = ConsoleReporter(min_interval=1.0, time_source=fake_time)
        assert reporter.report_fire(a, timedelta()) is True
        assert reporter.report_fire(a, timedelta()) is False
        assert reporter.report_fire(b, timedelta()) is True
        fake_time.advance(1.0)
        assert reporter.report_fire(a, timedelta()) is True
        assert capsys.readouterr().out.count("\n") == 3

    def test_report_breakpoint(self, capsys):
        hit = BreakpointHit(TickCount("spike", 100), timedelta(milliseconds=500), ("spike", "lfp"))
        ConsoleReporter().report_breakpoint(hit)
        out = capsys.readouterr().out
        assert "BREAKPOINT TickCount(spike, 100)" in out
        assert "spike, lfp" in out

    def test_report_status(self, controller, capsys):
        controller.new_ticker(0.01, entry_id="t1")
        controller.pause_all()
        ConsoleReporter().report_status(controller.status())
        out = capsys.readouterr().out
        assert "PAUSED" in out
        assert "timers 1/1 active" in out
