"""
YAML timer plan parser.

Reads a plan file describing tickers, one-shot timers and breakpoints,
validates it, and returns a TimerPlan that can be applied to a
TemporalController.

Example:

    plan:
      name: cortex-demo
      speed: 2.0
      duration: 30s
      tickers:
        - {id: spike, interval: 5ms}
        - {id: lfp, interval: 50ms, speed: 0.5}
      timers:
        - {id: checkpoint, after: 10s, action: snapshot}
      breakpoints:
        - tick_count: {id: spike, count: 100}
        - time_reached: 20s
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml

from temporal.core.clock import validate_speed
from temporal.core.controller import TemporalController
from temporal.core.errors import InvalidArgument
from temporal.debug.breakpoints import Breakpoint, TickCount, TimeReached, TimerFired

logger = logging.getLogger(__name__)

_UNITS = {
    "us": timedelta(microseconds=1),
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
}
_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(us|ms|s|m|h)\s*$")


def parse_duration(value: Any) -> timedelta:
    """Parse '250ms', '1.5s', '2m', '1h', 'HH:MM', 'HH:MM:SS' or plain seconds."""
    if isinstance(value, timedelta):
        duration = value
    elif isinstance(value, bool):
        raise InvalidArgument(f"Invalid duration: {value!r}")
    elif isinstance(value, (int, float)):
        duration = timedelta(seconds=value)
    elif isinstance(value, str):
        duration = _parse_duration_str(value)
    else:
        raise InvalidArgument(f"Invalid duration: {value!r}")
    if duration < timedelta():
        raise InvalidArgument(f"Duration must be >= 0, got {value!r}")
    return duration


def _parse_duration_str(text: str) -> timedelta:
    match = _DURATION_RE.match(text)
    if match:
        return _UNITS[match.group(2)] * float(match.group(1))
    parts = text.strip().split(":")
    try:
        if len(parts) == 2:
            return timedelta(hours=int(parts[0]), minutes=int(parts[1]))
        if len(parts) == 3:
            return timedelta(
                hours=int(parts[0]), minutes=int(parts[1]), seconds=float(parts[2])
            )
    except ValueError:
        pass
    raise InvalidArgument(f"Invalid duration format: {text!r}")


@dataclass
class TickerSpec:
    entry_id: str
    interval: timedelta
    speed: float = 1.0
    paused: bool = False


@dataclass
class TimerSpec:
    entry_id: str
    after: timedelta
    action: str | None = None
    message: str = ""

    @property
    def token(self) -> str | None:
        """Stable action token, so restored snapshots re-bind the same action."""
        if self.action is None:
            return None
        return f"{self.action}:{self.entry_id}"


ActionFactory = Callable[[TimerSpec], Callable[[], Any]]


@dataclass
class TimerPlan:
    """Fully parsed plan, ready to apply to a controller."""
    name: str
    description: str = ""
    speed: float = 1.0
    duration: timedelta | None = None
    tickers: list[TickerSpec] = field(default_factory=list)
    timers: list[TimerSpec] = field(default_factory=list)
    breakpoints: list[Breakpoint] = field(default_factory=list)

    @property
    def entry_ids(self) -> list[str]:
        return [t.entry_id for t in self.tickers] + [t.entry_id for t in self.timers]

    def apply(
        self,
        controller: TemporalController,
        actions: Mapping[str, ActionFactory] | None = None,
    ) -> None:
        """Create every ticker, timer and breakpoint on controller."""
        actions = actions or {}
        controller.set_global_speed(self.speed)
        for spec in self.tickers:
            ticker = controller.new_ticker(spec.interval, entry_id=spec.entry_id, speed=spec.speed)
            if spec.paused:
                ticker.pause()
        for spec in self.timers:
            if spec.action is None:
                controller.new_timer(spec.after, entry_id=spec.entry_id)
                continue
            factory = actions.get(spec.action)
            if factory is None:
                raise InvalidArgument(
                    f"Timer {spec.entry_id}: unknown action '{spec.action}'. "
                    f"Available: {sorted(actions)}"
                )
            controller.after_func(
                spec.after, factory(spec), token=spec.token, entry_id=spec.entry_id,
            )
        for condition in self.breakpoints:
            controller.set_breakpoint(condition)
        logger.info(
            f"Plan '{self.name}' applied: {len(self.tickers)} tickers, "
            f"{len(self.timers)} timers, {len(self.breakpoints)} breakpoints"
        )


class PlanLoader:
    """Loads and validates plan files."""

    def load(self, path: str | Path) -> TimerPlan:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Plan file not found: {path}")
        with open(path) as f:
            raw = yaml.safe_load(f)
        return self.parse(raw)

    def parse(self, raw: Any) -> TimerPlan:
        if not isinstance(raw, dict) or "plan" not in raw:
            raise InvalidArgument("Plan file must have a top-level 'plan' key")
        plan = raw["plan"] or {}
        if "name" not in plan:
            raise InvalidArgument("Plan is missing required field 'name'")

        tickers = [self._parse_ticker(i, t) for i, t in enumerate(plan.get("tickers") or [])]
        timers = [self._parse_timer(i, t) for i, t in enumerate(plan.get("timers") or [])]

        seen: set[str] = set()
        for entry_id in [t.entry_id for t in tickers] + [t.entry_id for t in timers]:
            if entry_id in seen:
                raise InvalidArgument(f"Duplicate timer id '{entry_id}'")
            seen.add(entry_id)

        breakpoints = [
            self._parse_breakpoint(i, b, seen)
            for i, b in enumerate(plan.get("breakpoints") or [])
        ]
        duration = plan.get("duration")
        return TimerPlan(
            name=str(plan["name"]),
            description=plan.get("description", ""),
            speed=validate_speed(plan.get("speed", 1.0)),
            duration=parse_duration(duration) if duration is not None else None,
            tickers=tickers,
            timers=timers,
            breakpoints=breakpoints,
        )

    def _parse_ticker(self, index: int, entry: dict) -> TickerSpec:
        if not isinstance(entry, dict):
            raise InvalidArgument(f"Ticker {index} must be a mapping, got {type(entry).__name__}")
        entry_id = entry.get("id") or f"ticker-{index + 1}"
        if "interval" not in entry:
            raise InvalidArgument(f"Ticker '{entry_id}' is missing 'interval'")
        interval = parse_duration(entry["interval"])
        if interval <= timedelta():
            raise InvalidArgument(f"Ticker '{entry_id}' interval must be > 0")
        return TickerSpec(
            entry_id=str(entry_id),
            interval=interval,
            speed=validate_speed(entry.get("speed", 1.0)),
            paused=bool(entry.get("paused", False)),
        )

    def _parse_timer(self, index: int, entry: dict) -> TimerSpec:
        if not isinstance(entry, dict):
            raise InvalidArgument(f"Timer {index} must be a mapping, got {type(entry).__name__}")
        entry_id = entry.get("id") or f"timer-{index + 1}"
        if "after" not in entry:
            raise InvalidArgument(f"Timer '{entry_id}' is missing 'after'")
        return TimerSpec(
            entry_id=str(entry_id),
            after=parse_duration(entry["after"]),
            action=entry.get("action"),
            message=entry.get("message", ""),
        )

    def _parse_breakpoint(self, index: int, entry: dict, known_ids: set[str]) -> Breakpoint:
        if not isinstance(entry, dict) or len(entry) != 1:
            raise InvalidArgument(f"Breakpoint {index} must have exactly one condition")
        kind, value = next(iter(entry.items()))
        if kind == "time_reached":
            return TimeReached(parse_duration(value))
        if kind == "timer_fired":
            entry_id = str(value)
        elif kind == "tick_count":
            if not isinstance(value, dict) or "id" not in value or "count" not in value:
                raise InvalidArgument(f"Breakpoint {index}: tick_count needs 'id' and 'count'")
            entry_id = str(value["id"])
        else:
            raise InvalidArgument(f"Breakpoint {index}: unknown condition '{kind}'")
        if entry_id not in known_ids:
            raise InvalidArgument(f"Breakpoint {index} references unknown timer '{entry_id}'")
        if kind == "timer_fired":
            return TimerFired(entry_id)
        count = value["count"]
        if isinstance(count, bool) or not isinstance(count, int):
            raise InvalidArgument(f"Breakpoint {index}: tick_count count must be an integer, got {count!r}")
        return TickCount(entry_id, count)
