"""
Virtual clock with configurable speed multiplier.

Maps a wall-clock time source to virtual time through an anchor pair:

    virtual = virtual_anchor + (wall - real_anchor) * rate

Every mutation (speed change, pause, resume, step, restore) first freezes
the current virtual time into a new anchor pair, so the mapping stays
continuous across rate changes. The time source is injectable: the
controller clock reads time.monotonic, while each timer entry runs a
local clock whose time source is the controller clock itself.
"""

import time
from datetime import timedelta
from typing import Callable

from temporal.core.errors import InvalidArgument


def to_timedelta(value: timedelta | float | int, name: str = "duration") -> timedelta:
    """Coerce seconds or a timedelta into a timedelta."""
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidArgument(f"{name} must be a timedelta or seconds, got {value!r}")
    return timedelta(seconds=value)


def validate_speed(multiplier: float, name: str = "speed") -> float:
    """Reject negative or non-numeric speed multipliers."""
    if isinstance(multiplier, bool) or not isinstance(multiplier, (int, float)):
        raise InvalidArgument(f"{name} must be a number, got {multiplier!r}")
    if multiplier != multiplier or multiplier < 0:
        raise InvalidArgument(f"{name} must be >= 0, got {multiplier}")
    return float(multiplier)


class VirtualClock:
    """
    Virtual clock driven by a wall-clock time source.

    Not async and no background thread: virtual time is computed from the
    time source when queried.
    """

    def __init__(
        self,
        speed: float = 1.0,
        time_source: Callable[[], float] | None = None,
        start: timedelta = timedelta(),
        paused: bool = False,
        reference: float | None = None,
    ) -> None:
        self._time_source = time_source or time.monotonic
        self._speed = validate_speed(speed)
        self._paused = paused
        # start is the virtual time at reference, when given
        self._real_anchor = self._time_source() if reference is None else reference
        self._virtual_anchor = start

    @property
    def speed(self) -> float:
        """Configured speed multiplier (kept while paused)."""
        return self._speed

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def rate(self) -> float:
        """Virtual seconds advanced per wall second right now."""
        if self._paused:
            return 0.0
        return self._speed

    @property
    def real_anchor(self) -> float:
        return self._real_anchor

    @property
    def virtual_anchor(self) -> timedelta:
        return self._virtual_anchor

    def now(self) -> timedelta:
        """Current virtual time."""
        return self.at(self._time_source())

    def seconds(self) -> float:
        """Current virtual time in float seconds."""
        return self.now().total_seconds()

    def at(self, source_time: float) -> timedelta:
        """Virtual time corresponding to a reading of the time source."""
        rate = self.rate
        if rate == 0.0:
            return self._virtual_anchor
        return self._virtual_anchor + timedelta(seconds=(source_time - self._real_anchor) * rate)

    def _reanchor(self) -> None:
        source_time = self._time_source()
        self._virtual_anchor = self.at(source_time)
        self._real_anchor = source_time

    def set_speed(self, multiplier: float) -> None:
        """Change speed multiplier. Freezes elapsed time at the old rate first."""
        multiplier = validate_speed(multiplier)
        self._reanchor()
        self._speed = multiplier

    def pause(self) -> None:
        """Stop virtual time from advancing. No-op if already paused."""
        if self._paused:
            return
        self._reanchor()
        self._paused = True

    def resume(self) -> None:
        """Continue at the configured speed. No-op if not paused."""
        if not self._paused:
            return
        self._reanchor()
        self._paused = False

    def advance_virtual(self, delta: timedelta) -> None:
        """Jump virtual time forward by delta, independent of wall time."""
        if delta < timedelta():
            raise InvalidArgument(f"cannot advance virtual time by a negative delta ({delta})")
        self._reanchor()
        self._virtual_anchor += delta

    def restore(
        self,
        virtual_now: timedelta,
        speed: float,
        paused: bool,
        reference: float | None = None,
    ) -> None:
        """Re-anchor so that virtual time reads virtual_now at this instant.

        reference pins the anchor to a specific time-source reading instead
        of the current one.
        """
        speed = validate_speed(speed)
        self._real_anchor = self._time_source() if reference is None else reference
        self._virtual_anchor = virtual_now
        self._speed = speed
        self._paused = paused

    def wall_delay(self, virtual_delta: timedelta) -> float | None:
        """Wall seconds until virtual time has advanced by virtual_delta.

        Returns None when the clock is not advancing.
        """
        rate = self.rate
        if rate == 0.0:
            return None
        return virtual_delta.total_seconds() / rate
