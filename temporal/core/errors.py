"""
Error taxonomy for the temporal control engine.

Every error is raised synchronously to the caller of the offending
operation. Dropped ticks on a full fire channel are not errors.
"""


class TemporalError(Exception):
    """Base class for all engine errors."""


class InvalidArgument(TemporalError, ValueError):
    """Negative speed or interval, or a malformed duration."""


class InvalidState(TemporalError, RuntimeError):
    """Operation not allowed in the entry's or controller's current state."""


class InvalidSnapshot(TemporalError, ValueError):
    """Snapshot or state object is structurally malformed."""


class SchedulerInvariantError(TemporalError, AssertionError):
    """The scheduler loop computed an impossible deadline."""
