"""
Console reporter that prints timer fires and breakpoint hits to stdout.

Useful for development and for watching a plan run without any other
tooling. Rate-limited per timer to avoid flooding the console.
"""

import time
from datetime import timedelta
from typing import Callable

from temporal.core.timer import TimerEntry
from temporal.debug.breakpoints import BreakpointHit, describe


class ConsoleReporter:
    """Prints fires, breakpoint hits and periodic status lines."""

    def __init__(
        self,
        min_interval: float = 1.0,
        time_source: Callable[[], float] | None = None,
    ) -> None:
        """
        Args:
            min_interval: Minimum wall seconds between prints for the same timer.
        """
        self._min_interval = min_interval
        self._time_source = time_source or time.monotonic
        self._last_print: dict[str, float] = {}

    @property
    def name(self) -> str:
        return "console"

    def report_fire(self, entry: TimerEntry, value: timedelta | None) -> bool:
        """Print a fire if enough wall time has passed for this timer. Returns True if printed."""
        now = self._time_source()
        last = self._last_print.get(entry.entry_id)
        if last is not None and now - last < self._min_interval:
            return False
        self._last_print[entry.entry_id] = now
        at = f"{value.total_seconds():10.4f}s" if value is not None else "   one-shot"
        print(
            f"[{at}] "
            f"{entry.entry_id:<20} "
            f"#{entry.tick_count:<8} "
            f"SPD {entry.own_speed:5.2f}x "
            f"{entry.status.value}"
        )
        return True

    def report_breakpoint(self, hit: BreakpointHit) -> None:
        fired = ", ".join(hit.fired_ids) or "-"
        print(
            f"[{hit.virtual_time.total_seconds():10.4f}s] BREAKPOINT "
            f"{describe(hit.condition)} (fired: {fired})"
        )

    def report_status(self, status: dict) -> None:
        state = "PAUSED" if status["paused"] else f"{status['speed']}x"
        print(
            f"[{status['virtual_time_s']:10.4f}s] {status['name']} {state} | "
            f"timers {status['timers_active']}/{status['timers_total']} active"
        )
