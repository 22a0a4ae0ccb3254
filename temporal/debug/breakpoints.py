"""
Breakpoint conditions and their evaluator.

The scheduler hands every fire batch to the evaluator. Conditions are
checked in registration order and the first match wins; a match puts the
controller into global pause before any fire results reach callers.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Iterable, Mapping

from temporal.core.clock import to_timedelta
from temporal.core.errors import InvalidArgument

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimerFired:
    """Matches every time the entry fires."""
    entry_id: str


@dataclass(frozen=True)
class TimeReached:
    """Matches once, the first time controller virtual time reaches instant."""
    instant: timedelta


@dataclass(frozen=True)
class TickCount:
    """Matches when the entry fires and its tick count equals count."""
    entry_id: str
    count: int


Breakpoint = TimerFired | TimeReached | TickCount


@dataclass(frozen=True)
class BreakpointHit:
    """A breakpoint that paused the controller."""
    condition: Breakpoint
    virtual_time: timedelta
    fired_ids: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "condition": describe(self.condition),
            "virtual_time_s": self.virtual_time.total_seconds(),
            "fired": list(self.fired_ids),
        }


def describe(condition: Breakpoint) -> str:
    if isinstance(condition, TimerFired):
        return f"TimerFired({condition.entry_id})"
    if isinstance(condition, TimeReached):
        return f"TimeReached({condition.instant.total_seconds()}s)"
    return f"TickCount({condition.entry_id}, {condition.count})"


def validate_condition(condition: Breakpoint) -> Breakpoint:
    """Reject anything outside the closed set of condition kinds."""
    if isinstance(condition, TimerFired):
        if not condition.entry_id:
            raise InvalidArgument("TimerFired needs an entry id")
        return condition
    if isinstance(condition, TimeReached):
        instant = to_timedelta(condition.instant, "instant")
        if instant < timedelta():
            raise InvalidArgument(f"TimeReached instant must be >= 0, got {instant}")
        return TimeReached(instant)
    if isinstance(condition, TickCount):
        if not condition.entry_id:
            raise InvalidArgument("TickCount needs an entry id")
        if isinstance(condition.count, bool) or not isinstance(condition.count, int) or condition.count < 1:
            raise InvalidArgument(f"TickCount count must be a positive integer, got {condition.count!r}")
        return condition
    raise InvalidArgument(f"Unsupported breakpoint condition: {condition!r}")


class BreakpointEvaluator:
    """Ordered list of conditions. Not thread-safe; the controller lock guards it."""

    def __init__(self) -> None:
        self._conditions: list[Breakpoint] = []
        self._spent: set[int] = set()  # indices of TimeReached conditions already hit

    @property
    def conditions(self) -> list[Breakpoint]:
        return list(self._conditions)

    def add(self, condition: Breakpoint) -> Breakpoint:
        condition = validate_condition(condition)
        self._conditions.append(condition)
        return condition

    def clear(self) -> None:
        self._conditions.clear()
        self._spent.clear()

    def armed_deadlines(self) -> list[timedelta]:
        """Instants of TimeReached conditions that have not matched yet."""
        return [
            c.instant for i, c in enumerate(self._conditions)
            if isinstance(c, TimeReached) and i not in self._spent
        ]

    def rewind(self, now: timedelta) -> None:
        """Re-arm time conditions that lie ahead of now (after a restore)."""
        self._spent = {
            i for i in self._spent if self._conditions[i].instant <= now
        }

    def evaluate(
        self,
        fired_ids: Iterable[str],
        now: timedelta,
        tick_counts: Mapping[str, int],
    ) -> Breakpoint | None:
        """Return the first matching condition, or None."""
        fired = set(fired_ids)
        for i, condition in enumerate(self._conditions):
            if isinstance(condition, TimerFired):
                if condition.entry_id in fired:
                    return condition
            elif isinstance(condition, TickCount):
                if (
                    condition.entry_id in fired
                    and tick_counts.get(condition.entry_id) == condition.count
                ):
                    return condition
            elif isinstance(condition, TimeReached):
                if i not in self._spent and now >= condition.instant:
                    self._spent.add(i)
                    return condition
        return None
