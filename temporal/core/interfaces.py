"""
Capability interfaces for timer entries.

StandardTimer is the minimal timer-library shape (channel, stop, reset).
ControlledTimer adds the virtual-time controls. Timer entries implement
both by composition rather than by wrapping a library timer type.
"""

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any


class StandardTimer(ABC):
    """Channel-based timer contract."""

    @property
    @abstractmethod
    def channel(self) -> Any:
        """Single-slot channel that receives one value per fire."""
        ...

    @abstractmethod
    def stop(self) -> bool:
        """Stop the timer. Returns True if it was still active."""
        ...

    @abstractmethod
    def reset(self, interval: timedelta | float) -> bool:
        """Re-arm an active timer with a new interval. Returns True on success."""
        ...


class ControlledTimer(ABC):
    """Virtual-time controls layered on top of a standard timer."""

    @abstractmethod
    def set_speed(self, multiplier: float) -> None:
        ...

    @abstractmethod
    def pause(self) -> None:
        ...

    @abstractmethod
    def resume(self) -> None:
        ...

    @abstractmethod
    def step(self) -> None:
        """Force exactly one fire while paused."""
        ...

    @abstractmethod
    def get_state(self) -> Any:
        ...

    @abstractmethod
    def restore_state(self, state: Any) -> None:
        ...
