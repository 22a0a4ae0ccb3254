"""
Temporal controller: the public entry point of the engine.

Owns the virtual clock, the registry of timer entries, the breakpoint
list, the action registry and the scheduler loop. All mutations run under
one controller-wide lock (a threading.Condition the scheduler sleeps on),
so the scheduler never observes a torn state, and every mutation wakes it.

Controllers are constructed explicitly and passed to whatever needs
coordinated timers; there is no process-wide default instance.
"""

import logging
import threading
from datetime import timedelta
from typing import Any, Callable, Iterator

from temporal.core.actions import ActionRegistry
from temporal.core.clock import VirtualClock, to_timedelta, validate_speed
from temporal.core.errors import InvalidArgument, InvalidSnapshot, InvalidState
from temporal.core.scheduler import FireResult, Scheduler
from temporal.core.timer import (
    EntryState,
    Ticker,
    Timer,
    TimerEntry,
    TimerKind,
    TimerStatus,
)
from temporal.debug.breakpoints import (
    Breakpoint,
    BreakpointEvaluator,
    BreakpointHit,
)
from temporal.snapshot.snapshot import Snapshot

logger = logging.getLogger(__name__)


class TemporalController:
    """
    Coordinates a set of timers against one virtual clock.

    With autostart=True a daemon scheduler thread fires timers in real
    time. With autostart=False nothing fires until run_pending() or a step
    call, which together with an injected time_source makes runs fully
    deterministic.
    """

    def __init__(
        self,
        speed: float = 1.0,
        time_source: Callable[[], float] | None = None,
        autostart: bool = True,
        name: str = "temporal",
    ) -> None:
        self._name = name
        self._clock = VirtualClock(speed=speed, time_source=time_source)
        self._lock = threading.Condition()
        self._entries: dict[str, TimerEntry] = {}
        self._actions = ActionRegistry()
        self._breakpoints = BreakpointEvaluator()
        self._scheduler = Scheduler(
            self._clock,
            self._lock,
            self._breakpoints,
            self._active_entries,
            name=f"{name}-scheduler",
        )
        self._counter = 0
        self._closed = False
        if autostart:
            self._scheduler.start()

    def __enter__(self) -> "TemporalController":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __iter__(self) -> Iterator[TimerEntry]:
        return iter(self.entries.values())

    # -- shared resources used by entries --

    @property
    def clock(self) -> VirtualClock:
        return self._clock

    @property
    def lock(self) -> threading.Condition:
        """Controller-wide exclusion; notify_all() wakes the scheduler."""
        return self._lock

    @property
    def actions(self) -> ActionRegistry:
        return self._actions

    def ensure_usable(self) -> None:
        """Raise if the controller is closed or its scheduler has aborted."""
        if self._closed:
            raise InvalidState(f"Controller {self._name} is closed")
        self._scheduler.raise_if_failed()

    def _active_entries(self) -> list[TimerEntry]:
        return [e for e in self._entries.values() if e.running]

    # -- registry --

    @property
    def entries(self) -> dict[str, TimerEntry]:
        """All entries, including stopped and fired ones."""
        with self._lock:
            return dict(self._entries)

    @property
    def active_entries(self) -> list[TimerEntry]:
        with self._lock:
            return self._active_entries()

    def get(self, entry_id: str) -> TimerEntry | None:
        """Get entry by id, or None if not found."""
        with self._lock:
            return self._entries.get(entry_id)

    def _next_id(self, prefix: str) -> str:
        while True:
            self._counter += 1
            entry_id = f"{prefix}-{self._counter}"
            if entry_id not in self._entries:
                return entry_id

    def _register(self, entry: TimerEntry) -> None:
        if entry.entry_id in self._entries:
            raise InvalidArgument(f"Timer {entry.entry_id} already exists")
        self._entries[entry.entry_id] = entry
        entry.activate()
        self._lock.notify_all()
        logger.debug(f"Registered {entry!r}")

    def new_ticker(
        self,
        interval: timedelta | float,
        entry_id: str | None = None,
        speed: float = 1.0,
    ) -> Ticker:
        """Create and start a periodic timer."""
        interval = to_timedelta(interval, "interval")
        if interval <= timedelta():
            raise InvalidArgument(f"interval must be > 0, got {interval}")
        speed = validate_speed(speed)
        with self._lock:
            self.ensure_usable()
            ticker = Ticker(self, entry_id or self._next_id("ticker"), interval, speed)
            self._register(ticker)
        return ticker

    def new_timer(self, duration: timedelta | float, entry_id: str | None = None) -> Timer:
        """Create a one-shot timer that only signals its channel."""
        return self._new_one_shot(duration, None, None, entry_id)

    def after_func(
        self,
        duration: timedelta | float,
        action: Callable[[], Any],
        token: str | None = None,
        entry_id: str | None = None,
    ) -> Timer:
        """Create a one-shot timer that runs action once when it fires."""
        if not callable(action):
            raise InvalidArgument(f"Action must be callable, got {action!r}")
        return self._new_one_shot(duration, action, token, entry_id)

    def _new_one_shot(
        self,
        duration: timedelta | float,
        action: Callable[[], Any] | None,
        token: str | None,
        entry_id: str | None,
    ) -> Timer:
        duration = to_timedelta(duration, "duration")
        if duration < timedelta():
            raise InvalidArgument(f"duration must be >= 0, got {duration}")
        with self._lock:
            self.ensure_usable()
            if action is not None:
                token = self._actions.register(action, token)
            timer = Timer(self, entry_id or self._next_id("timer"), duration, action, token)
            self._register(timer)
        return timer

    # -- global speed and pause --

    @property
    def global_speed(self) -> float:
        return self._clock.speed

    @property
    def global_paused(self) -> bool:
        return self._clock.is_paused

    def now(self) -> timedelta:
        """Controller virtual time."""
        with self._lock:
            return self._clock.now()

    def set_global_speed(self, multiplier: float) -> None:
        multiplier = validate_speed(multiplier)
        with self._lock:
            self.ensure_usable()
            self._clock.set_speed(multiplier)
            self._lock.notify_all()
        logger.info(f"Global speed set to {multiplier}x")

    def pause_all(self) -> None:
        """Pause virtual time for every entry. Idempotent."""
        with self._lock:
            self.ensure_usable()
            if self._clock.is_paused:
                return
            self._clock.pause()
            self._lock.notify_all()
        logger.info(f"Controller {self._name} paused at {self.now().total_seconds():.6f}s")

    def resume_all(self) -> None:
        """Resume virtual time at the configured speed. Idempotent."""
        with self._lock:
            self.ensure_usable()
            if not self._clock.is_paused:
                return
            self._clock.resume()
            self._lock.notify_all()
        logger.info(f"Controller {self._name} resumed at {self.global_speed}x")

    # -- stepping --

    def step_all(self) -> list[str]:
        """Advance to the next due instant among running entries and fire it.

        Only valid while globally paused. Returns the ids that fired.
        """
        with self._lock:
            self.ensure_usable()
            if not self._clock.is_paused:
                raise InvalidState("step_all requires the controller to be paused")
            seconds = self._clock.seconds()
            delays = {}
            for entry in self._active_entries():
                delay = entry.delay_at(seconds)
                if delay is not None:
                    delays[entry.entry_id] = max(0.0, delay)
            if not delays:
                logger.debug("step_all: nothing to step")
                return []
            step = min(delays.values())
            self._clock.advance_virtual(timedelta(seconds=step))
            now = self._clock.now()
            seconds = now.total_seconds()
            due = [
                entry for entry in self._active_entries()
                if delays.get(entry.entry_id) == step or entry.is_due_at(seconds)
            ]
            result = self._scheduler.fire(due, now)
        self._scheduler.dispatch(result)
        return result.fired

    def step_entry(self, entry: TimerEntry) -> FireResult:
        """Fire one entry immediately. Backs TimerEntry.step()."""
        with self._lock:
            self.ensure_usable()
            if self._entries.get(entry.entry_id) is not entry:
                raise InvalidState(f"Timer {entry.entry_id} is not owned by {self._name}")
            if entry.status in (TimerStatus.STOPPED, TimerStatus.FIRED):
                raise InvalidState(f"Timer {entry.entry_id} is {entry.status.value.lower()}")
            if not (entry.paused or self._clock.is_paused):
                raise InvalidState(f"Timer {entry.entry_id} must be paused to step")
            remaining = entry.remaining_at(self._clock.seconds())
            if remaining > timedelta():
                entry.clock.advance_virtual(remaining)
            result = self._scheduler.fire([entry], self._clock.now())
        self._scheduler.dispatch(result)
        return result

    # -- manual driving --

    def run_pending(self) -> list[str]:
        """Fire whatever is due right now. Returns the ids that fired."""
        self.ensure_usable()
        return self._scheduler.run_pending()

    def next_wakeup(self) -> float | None:
        """Wall seconds until the scheduler's next deadline (None if none)."""
        return self._scheduler.next_wakeup()

    # -- breakpoints --

    def set_breakpoint(self, condition: Breakpoint) -> Breakpoint:
        with self._lock:
            self.ensure_usable()
            condition = self._breakpoints.add(condition)
            self._lock.notify_all()
        return condition

    def clear_breakpoints(self) -> None:
        with self._lock:
            self._breakpoints.clear()
            self._lock.notify_all()

    @property
    def breakpoints(self) -> list[Breakpoint]:
        with self._lock:
            return self._breakpoints.conditions

    @property
    def last_breakpoint(self) -> BreakpointHit | None:
        return self._scheduler.last_hit

    def on_breakpoint(self, callback: Callable[[BreakpointHit], None]) -> None:
        """Register a listener for breakpoint hits."""
        self._scheduler.on_breakpoint(callback)

    # -- snapshots --

    def create_snapshot(self) -> Snapshot:
        """Consistent copy of the clock and every entry. Does not pause timers."""
        with self._lock:
            self.ensure_usable()
            now = self._clock.now()
            seconds = now.total_seconds()
            states = {
                entry_id: entry.state_at(seconds)
                for entry_id, entry in self._entries.items()
            }
            return Snapshot(
                virtual_now=now,
                speed=self._clock.speed,
                global_paused=self._clock.is_paused,
                entries=states,
            )

    def restore_snapshot(self, snapshot: Snapshot) -> None:
        """Reinstate the clock and every entry captured in snapshot.

        Entries missing from the controller are recreated; entries missing
        from the snapshot are left untouched.
        """
        if not isinstance(snapshot, Snapshot):
            raise InvalidSnapshot(f"Expected a Snapshot, got {type(snapshot).__name__}")
        snapshot.validate()
        with self._lock:
            self.ensure_usable()
            for entry_id, state in snapshot.entries.items():
                existing = self._entries.get(entry_id)
                if existing is not None and existing.kind is not state.kind:
                    raise InvalidSnapshot(
                        f"Timer {entry_id} is {existing.kind.value} but the snapshot "
                        f"holds a {state.kind.value} state"
                    )
            old_seconds = self._clock.seconds()
            # Entries the snapshot does not name keep their local time
            # across the jump of the controller clock
            kept = {
                entry_id: entry.local_at(old_seconds)
                for entry_id, entry in self._entries.items()
                if entry_id not in snapshot.entries
            }
            self._clock.restore(snapshot.virtual_now, snapshot.speed, snapshot.global_paused)
            reference = snapshot.virtual_now.total_seconds()
            for entry_id, local_now in kept.items():
                clock = self._entries[entry_id].clock
                clock.restore(local_now, clock.speed, paused=clock.is_paused, reference=reference)
            recreated = 0
            for entry_id in sorted(snapshot.entries):
                state = snapshot.entries[entry_id]
                entry = self._entries.get(entry_id)
                if entry is None:
                    entry = self._recreate(state)
                    self._entries[entry_id] = entry
                    recreated += 1
                entry.apply_state(state, reference)
            self._breakpoints.rewind(snapshot.virtual_now)
            self._lock.notify_all()
        logger.info(
            f"Restored snapshot at {snapshot.virtual_now.total_seconds():.6f}s "
            f"({len(snapshot.entries)} timers, {recreated} recreated)"
        )

    def _recreate(self, state: EntryState) -> TimerEntry:
        if state.kind is TimerKind.PERIODIC:
            return Ticker(self, state.entry_id, state.interval, state.own_speed)
        return Timer(
            self,
            state.entry_id,
            state.interval,
            self._actions.resolve(state.callback_token),
            state.callback_token,
        )

    # -- lifecycle --

    def status(self) -> dict[str, Any]:
        """Plain summary of the controller for reporting."""
        with self._lock:
            hit = self._scheduler.last_hit
            return {
                "name": self._name,
                "virtual_time_s": self._clock.now().total_seconds(),
                "speed": self._clock.speed,
                "paused": self._clock.is_paused,
                "closed": self._closed,
                "timers_total": len(self._entries),
                "timers_active": len(self._active_entries()),
                "timers": {
                    entry_id: {
                        "kind": entry.kind.value,
                        "status": entry.status.value,
                        "ticks": entry.tick_count,
                        "speed": entry.own_speed,
                    }
                    for entry_id, entry in sorted(self._entries.items())
                },
                "breakpoints": len(self._breakpoints.conditions),
                "last_breakpoint": hit.to_dict() if hit else None,
            }

    @property
    def is_closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Stop the scheduler loop and every entry. Idempotent."""
        with self._lock:
            if self._closed:
                return
            for entry in self._entries.values():
                if entry.running:
                    entry.stop()
            self._closed = True
            self._lock.notify_all()
        self._scheduler.stop()
        logger.debug(f"Controller {self._name} closed")
