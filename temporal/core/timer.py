"""
Timer entries: periodic tickers and one-shot timers.

Each entry runs a local VirtualClock whose time source is the controller's
virtual clock, at the entry's own speed. The composed rate against
wall-clock time is therefore global speed * own speed, and pausing an
entry freezes its local clock so the remaining interval is kept exactly.

Entries belong to the controller that created them. Every public method
takes the controller-wide lock and wakes the scheduler. Methods documented
as "lock held" are called by the scheduler and controller only.
"""

import logging
import queue
from abc import abstractmethod
from dataclasses import dataclass, fields
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from temporal.core.clock import VirtualClock, to_timedelta, validate_speed
from temporal.core.errors import InvalidArgument, InvalidSnapshot, InvalidState
from temporal.core.interfaces import ControlledTimer, StandardTimer

if TYPE_CHECKING:
    from temporal.core.controller import TemporalController

logger = logging.getLogger(__name__)

Action = Callable[[], Any]


class TimerKind(Enum):
    PERIODIC = "PERIODIC"
    ONE_SHOT = "ONE_SHOT"


class TimerStatus(Enum):
    CREATED = "CREATED"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    STOPPED = "STOPPED"
    FIRED = "FIRED"


def _micros(value: timedelta) -> int:
    return value // timedelta(microseconds=1)


def _duration_field(d: dict[str, Any], key: str, optional: bool = False) -> timedelta | None:
    raw = d.get(key)
    if raw is None:
        if optional:
            return None
        raise InvalidSnapshot(f"Missing field '{key}'")
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise InvalidSnapshot(f"Field '{key}' must be integer microseconds, got {raw!r}")
    return timedelta(microseconds=raw)


@dataclass(frozen=True)
class TickerState:
    """Value copy of a periodic entry, suitable for persistence.

    All instants are on the entry's local virtual timeline.
    """
    entry_id: str
    interval: timedelta
    own_speed: float
    virtual_now: timedelta
    virtual_last_fire: timedelta | None
    virtual_next_due: timedelta
    tick_count: int
    running: bool
    paused: bool

    kind = TimerKind.PERIODIC

    def validate(self) -> None:
        """Raise InvalidSnapshot if any field is structurally invalid."""
        if not isinstance(self.entry_id, str) or not self.entry_id:
            raise InvalidSnapshot(f"Invalid entry id {self.entry_id!r}")
        if self.kind is TimerKind.PERIODIC and self.interval <= timedelta():
            raise InvalidSnapshot(f"{self.entry_id}: interval must be > 0, got {self.interval}")
        if self.interval < timedelta():
            raise InvalidSnapshot(f"{self.entry_id}: interval must be >= 0, got {self.interval}")
        if isinstance(self.own_speed, bool) or not isinstance(self.own_speed, (int, float)):
            raise InvalidSnapshot(f"{self.entry_id}: speed must be a number")
        if self.own_speed != self.own_speed or self.own_speed < 0:
            raise InvalidSnapshot(f"{self.entry_id}: speed must be >= 0, got {self.own_speed}")
        if isinstance(self.tick_count, bool) or not isinstance(self.tick_count, int) or self.tick_count < 0:
            raise InvalidSnapshot(f"{self.entry_id}: tick count must be a non-negative integer")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON/YAML-compatible dictionary (durations in microseconds)."""
        return {
            "kind": self.kind.value,
            "entry_id": self.entry_id,
            "interval_us": _micros(self.interval),
            "own_speed": self.own_speed,
            "virtual_now_us": _micros(self.virtual_now),
            "virtual_last_fire_us": (
                None if self.virtual_last_fire is None else _micros(self.virtual_last_fire)
            ),
            "virtual_next_due_us": _micros(self.virtual_next_due),
            "tick_count": self.tick_count,
            "running": self.running,
            "paused": self.paused,
        }

    @classmethod
    def _common_fields(cls, d: dict[str, Any]) -> dict[str, Any]:
        if not isinstance(d, dict):
            raise InvalidSnapshot(f"Entry state must be a mapping, got {type(d).__name__}")
        if "entry_id" not in d:
            raise InvalidSnapshot("Missing field 'entry_id'")
        return {
            "entry_id": d["entry_id"],
            "interval": _duration_field(d, "interval_us"),
            "own_speed": d.get("own_speed", 1.0),
            "virtual_now": _duration_field(d, "virtual_now_us"),
            "virtual_last_fire": _duration_field(d, "virtual_last_fire_us", optional=True),
            "virtual_next_due": _duration_field(d, "virtual_next_due_us"),
            "tick_count": d.get("tick_count", 0),
            "running": bool(d.get("running", True)),
            "paused": bool(d.get("paused", False)),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "TickerState":
        """Deserialize from dictionary. Raises InvalidSnapshot on bad input."""
        state = cls(**cls._common_fields(d))
        state.validate()
        return state


@dataclass(frozen=True)
class TimerState(TickerState):
    """Value copy of a one-shot entry. The action itself is never stored."""
    has_fired: bool = False
    callback_token: str | None = None

    kind = TimerKind.ONE_SHOT

    def validate(self) -> None:
        super().validate()
        if self.tick_count > 1:
            raise InvalidSnapshot(f"{self.entry_id}: one-shot tick count cannot exceed 1")
        if self.has_fired != (self.tick_count == 1):
            raise InvalidSnapshot(f"{self.entry_id}: has_fired disagrees with tick count")
        if self.callback_token is not None and not isinstance(self.callback_token, str):
            raise InvalidSnapshot(f"{self.entry_id}: callback token must be a string")

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["has_fired"] = self.has_fired
        d["callback_token"] = self.callback_token
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "TimerState":
        common = cls._common_fields(d)
        state = cls(
            **common,
            has_fired=bool(d.get("has_fired", False)),
            callback_token=d.get("callback_token"),
        )
        state.validate()
        return state


EntryState = TickerState | TimerState


def state_from_dict(d: dict[str, Any]) -> EntryState:
    """Build the right state type from a serialized entry."""
    if not isinstance(d, dict):
        raise InvalidSnapshot(f"Entry state must be a mapping, got {type(d).__name__}")
    kind = d.get("kind")
    if kind == TimerKind.PERIODIC.value:
        return TickerState.from_dict(d)
    if kind == TimerKind.ONE_SHOT.value:
        return TimerState.from_dict(d)
    raise InvalidSnapshot(f"Unknown timer kind {kind!r}")


class FireChannel:
    """Single-slot mailbox. A fire that finds the slot full is dropped."""

    def __init__(self) -> None:
        self._queue: queue.Queue = queue.Queue(maxsize=1)

    def offer(self, value: Any) -> bool:
        """Deliver without blocking. Returns False if the value was dropped."""
        try:
            self._queue.put_nowait(value)
        except queue.Full:
            return False
        return True

    def get(self, timeout: float | None = None) -> Any:
        """Block until a fire arrives. Raises queue.Empty on timeout."""
        return self._queue.get(timeout=timeout)

    def get_nowait(self) -> Any:
        return self._queue.get_nowait()

    def drain(self) -> list[Any]:
        """Remove and return whatever is buffered (at most one value)."""
        values = []
        while True:
            try:
                values.append(self._queue.get_nowait())
            except queue.Empty:
                return values

    def empty(self) -> bool:
        return self._queue.empty()


class TimerEntry(StandardTimer, ControlledTimer):
    """Shared state and controls for tickers and one-shot timers."""

    kind: TimerKind

    def __init__(
        self,
        controller: "TemporalController",
        entry_id: str,
        interval: timedelta,
        speed: float = 1.0,
    ) -> None:
        self._controller = controller
        self._entry_id = entry_id
        self._interval = interval
        master = controller.clock
        # One reading of the controller clock for both anchors, so the
        # local clock starts level with it
        start = master.now()
        self._clock = VirtualClock(
            speed=speed,
            time_source=master.seconds,
            start=start,
            reference=start.total_seconds(),
        )
        self._channel = FireChannel()
        self._status = TimerStatus.CREATED
        self._paused = False
        self._tick_count = 0
        self._last_fire: timedelta | None = None
        self._next_due = start + interval

    # -- read-only views --

    @property
    def entry_id(self) -> str:
        return self._entry_id

    @property
    def channel(self) -> FireChannel:
        return self._channel

    @property
    def clock(self) -> VirtualClock:
        """Local clock; its time source is the controller's virtual time."""
        return self._clock

    @property
    def status(self) -> TimerStatus:
        return self._status

    @property
    def interval(self) -> timedelta:
        return self._interval

    @property
    def own_speed(self) -> float:
        return self._clock.speed

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def running(self) -> bool:
        return self._status in (TimerStatus.RUNNING, TimerStatus.PAUSED)

    @property
    def virtual_last_fire(self) -> timedelta | None:
        return self._last_fire

    @property
    def virtual_next_due(self) -> timedelta:
        return self._next_due

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self._entry_id!r}, interval={self._interval}, "
            f"speed={self.own_speed}, ticks={self._tick_count}, {self._status.value})"
        )

    # -- scheduler interface (lock held) --

    def activate(self) -> None:
        """Move from CREATED to RUNNING once registered. Lock held."""
        self._status = TimerStatus.RUNNING

    def local_at(self, master_seconds: float) -> timedelta:
        """Local virtual time at a given controller virtual time. Lock held."""
        return self._clock.at(master_seconds)

    def remaining_at(self, master_seconds: float) -> timedelta:
        return self._next_due - self.local_at(master_seconds)

    def is_schedulable(self) -> bool:
        return self._status is TimerStatus.RUNNING and not self._paused

    def is_due_at(self, master_seconds: float) -> bool:
        return self.is_schedulable() and self.local_at(master_seconds) >= self._next_due

    def delay_at(self, master_seconds: float) -> float | None:
        """Controller-virtual seconds until due, or None if never. Lock held."""
        if not self.is_schedulable():
            return None
        rate = self._clock.rate
        if rate == 0.0:
            return None
        return self.remaining_at(master_seconds).total_seconds() / rate

    @abstractmethod
    def fire(self, master_seconds: float) -> Action | None:
        """Fire once. Returns an action to run after the lock is released."""
        ...

    def _offer(self, value: Any) -> None:
        if not self._channel.offer(value):
            logger.debug(f"Tick dropped for {self._entry_id}: channel full")

    # -- public controls --

    def _require_live(self) -> None:
        self._controller.ensure_usable()
        if self._status in (TimerStatus.STOPPED, TimerStatus.FIRED):
            raise InvalidState(f"Timer {self._entry_id} is {self._status.value.lower()}")

    def set_speed(self, multiplier: float) -> None:
        """Set this entry's own multiplier (composed with the global speed)."""
        multiplier = validate_speed(multiplier)
        with self._controller.lock:
            self._require_live()
            self._clock.set_speed(multiplier)
            self._controller.lock.notify_all()
        logger.info(f"Timer {self._entry_id} speed set to {multiplier}x")

    def pause(self) -> None:
        """Freeze this entry. Its remaining interval is kept."""
        with self._controller.lock:
            self._require_live()
            if self._paused:
                return
            self._paused = True
            self._status = TimerStatus.PAUSED
            self._clock.pause()
            self._controller.lock.notify_all()

    def resume(self) -> None:
        with self._controller.lock:
            self._require_live()
            if not self._paused:
                return
            self._paused = False
            self._status = TimerStatus.RUNNING
            self._clock.resume()
            self._controller.lock.notify_all()

    def step(self) -> None:
        """Fire exactly once now. Only valid while this entry or the controller is paused."""
        self._controller.step_entry(self)

    def stop(self) -> bool:
        """Remove from scheduling. Returns False if already stopped or fired."""
        with self._controller.lock:
            if self._status in (TimerStatus.STOPPED, TimerStatus.FIRED):
                return False
            self._status = TimerStatus.STOPPED
            self._clock.pause()
            self._controller.lock.notify_all()
        logger.debug(f"Timer {self._entry_id} stopped")
        return True

    def reset(self, interval: timedelta | float) -> bool:
        """Change the interval; the next fire is one new interval from now.

        Only live (running or paused) entries can be reset, so this returns
        True or raises InvalidState.
        """
        interval = self._check_interval(to_timedelta(interval, "interval"))
        with self._controller.lock:
            self._require_live()
            self._interval = interval
            self._next_due = self._clock.now() + interval
            self._controller.lock.notify_all()
        return True

    def _check_interval(self, interval: timedelta) -> timedelta:
        if interval <= timedelta():
            raise InvalidArgument(f"interval must be > 0, got {interval}")
        return interval

    def get_state(self) -> EntryState:
        with self._controller.lock:
            return self.state_at(self._controller.clock.seconds())

    def state_at(self, master_seconds: float) -> EntryState:
        """Value copy at a given controller virtual time. Lock held."""
        return TickerState(
            entry_id=self._entry_id,
            interval=self._interval,
            own_speed=self._clock.speed,
            virtual_now=self.local_at(master_seconds),
            virtual_last_fire=self._last_fire,
            virtual_next_due=self._next_due,
            tick_count=self._tick_count,
            running=self.running,
            paused=self._paused,
        )

    def restore_state(self, state: EntryState) -> None:
        """Install a state captured by get_state()."""
        if not isinstance(state, TickerState) or state.kind is not self.kind:
            got = getattr(state, "kind", type(state).__name__)
            raise InvalidState(
                f"Cannot restore {got} state into {self.kind.value} timer {self._entry_id}"
            )
        if state.entry_id != self._entry_id:
            raise InvalidArgument(
                f"State belongs to {state.entry_id}, not {self._entry_id}"
            )
        state.validate()
        with self._controller.lock:
            self._require_live()
            self.apply_state(state, reference=self._controller.clock.seconds())
            self._controller.lock.notify_all()

    def apply_state(self, state: EntryState, reference: float) -> None:
        """Overwrite every field from state, anchored at reference. Lock held."""
        self._interval = state.interval
        self._paused = state.paused
        self._clock.restore(
            state.virtual_now,
            state.own_speed,
            paused=state.paused or not state.running,
            reference=reference,
        )
        self._last_fire = state.virtual_last_fire
        self._next_due = state.virtual_next_due
        self._tick_count = state.tick_count
        if not state.running:
            self._status = TimerStatus.STOPPED
        elif state.paused:
            self._status = TimerStatus.PAUSED
        else:
            self._status = TimerStatus.RUNNING


class Ticker(TimerEntry):
    """Periodic entry. Each fire offers the virtual fire instant on the channel."""

    kind = TimerKind.PERIODIC

    def fire(self, master_seconds: float) -> Action | None:
        due = self._next_due
        self._offer(due)
        self._tick_count += 1
        self._last_fire = due
        self._next_due = due + self._interval
        local_now = self.local_at(master_seconds)
        if self._next_due <= local_now:
            # Catch up in whole intervals rather than replaying the backlog
            missed = (local_now - self._next_due) // self._interval + 1
            self._next_due += self._interval * missed
        return None


class Timer(TimerEntry):
    """One-shot entry. Fires once, then runs its bound action."""

    kind = TimerKind.ONE_SHOT

    def __init__(
        self,
        controller: "TemporalController",
        entry_id: str,
        duration: timedelta,
        action: Action | None = None,
        callback_token: str | None = None,
    ) -> None:
        super().__init__(controller, entry_id, duration)
        self._action = action
        self._callback_token = callback_token
        self._has_fired = False

    @property
    def has_fired(self) -> bool:
        return self._has_fired

    @property
    def callback_token(self) -> str | None:
        return self._callback_token

    def fire(self, master_seconds: float) -> Action | None:
        self._offer(None)
        self._tick_count = 1
        self._last_fire = self._next_due
        self._has_fired = True
        self._status = TimerStatus.FIRED
        self._clock.pause()
        return self._action

    def _check_interval(self, interval: timedelta) -> timedelta:
        if interval < timedelta():
            raise InvalidArgument(f"duration must be >= 0, got {interval}")
        return interval

    def state_at(self, master_seconds: float) -> TimerState:
        base = super().state_at(master_seconds)
        return TimerState(
            **{f.name: getattr(base, f.name) for f in fields(base)},
            has_fired=self._has_fired,
            callback_token=self._callback_token,
        )

    def apply_state(self, state: EntryState, reference: float) -> None:
        super().apply_state(state, reference)
        self._has_fired = state.has_fired
        if state.has_fired:
            self._status = TimerStatus.FIRED
            self._clock.pause()
        if state.callback_token != self._callback_token or self._action is None:
            self._callback_token = state.callback_token
            self._action = self._controller.actions.resolve(state.callback_token)
            if state.callback_token is not None and self._action is None:
                logger.warning(
                    f"No action registered for token '{state.callback_token}'; "
                    f"{self._entry_id} will fire as a signal only"
                )
