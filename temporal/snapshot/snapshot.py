"""
Immutable capture of a controller's full temporal state.

A snapshot holds the controller clock reading, the global speed and pause
flag, and a value copy of every timer entry. Channels and actions are not
part of it: channels are re-created, and actions are re-bound by token.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Any, Mapping

from temporal.core.errors import InvalidSnapshot
from temporal.core.timer import EntryState, TickerState, TimerKind, state_from_dict

SNAPSHOT_SCHEMA_VERSION = 1


@dataclass(frozen=True)
class Snapshot:
    virtual_now: timedelta
    speed: float
    global_paused: bool
    entries: Mapping[str, EntryState] = field(default_factory=dict)
    taken_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    schema_version: int = SNAPSHOT_SCHEMA_VERSION

    def __post_init__(self) -> None:
        # Freeze the entry mapping so the snapshot cannot change after capture
        object.__setattr__(self, "entries", MappingProxyType(dict(self.entries)))

    def validate(self) -> None:
        """Raise InvalidSnapshot if any field is structurally invalid."""
        if self.schema_version != SNAPSHOT_SCHEMA_VERSION:
            raise InvalidSnapshot(f"Unsupported snapshot schema version {self.schema_version}")
        if not isinstance(self.virtual_now, timedelta) or self.virtual_now < timedelta():
            raise InvalidSnapshot(f"Invalid virtual time {self.virtual_now!r}")
        if isinstance(self.speed, bool) or not isinstance(self.speed, (int, float)):
            raise InvalidSnapshot(f"Invalid speed {self.speed!r}")
        if self.speed != self.speed or self.speed < 0:
            raise InvalidSnapshot(f"Speed must be >= 0, got {self.speed}")
        for entry_id, state in self.entries.items():
            if not isinstance(state, TickerState):
                raise InvalidSnapshot(f"Entry {entry_id} is not a timer state: {state!r}")
            if state.entry_id != entry_id:
                raise InvalidSnapshot(f"Entry key {entry_id} does not match state id {state.entry_id}")
            state.validate()

    @property
    def entry_ids(self) -> list[str]:
        return sorted(self.entries)

    def count(self, kind: TimerKind | None = None) -> int:
        if kind is None:
            return len(self.entries)
        return sum(1 for s in self.entries.values() if s.kind is kind)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON/YAML-compatible dictionary."""
        return {
            "schema_version": self.schema_version,
            "taken_at": self.taken_at.isoformat(),
            "virtual_now_us": self.virtual_now // timedelta(microseconds=1),
            "speed": self.speed,
            "global_paused": self.global_paused,
            "entries": {
                entry_id: state.to_dict()
                for entry_id, state in sorted(self.entries.items())
            },
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Snapshot":
        """Deserialize from dictionary. Raises InvalidSnapshot on bad input."""
        if not isinstance(d, dict):
            raise InvalidSnapshot(f"Snapshot must be a mapping, got {type(d).__name__}")
        virtual_now = d.get("virtual_now_us")
        if isinstance(virtual_now, bool) or not isinstance(virtual_now, int):
            raise InvalidSnapshot(f"Invalid virtual_now_us {virtual_now!r}")
        raw_entries = d.get("entries") or {}
        if not isinstance(raw_entries, dict):
            raise InvalidSnapshot("'entries' must be a mapping")
        taken_at = d.get("taken_at")
        if isinstance(taken_at, datetime):
            taken = taken_at
        elif taken_at:
            try:
                taken = datetime.fromisoformat(taken_at)
            except (TypeError, ValueError) as e:
                raise InvalidSnapshot(f"Invalid taken_at {taken_at!r}") from e
        else:
            taken = datetime.now(timezone.utc)
        snapshot = cls(
            virtual_now=timedelta(microseconds=virtual_now),
            speed=d.get("speed", 1.0),
            global_paused=bool(d.get("global_paused", False)),
            entries={
                str(entry_id): state_from_dict(state)
                for entry_id, state in raw_entries.items()
            },
            taken_at=taken,
            schema_version=d.get("schema_version", SNAPSHOT_SCHEMA_VERSION),
        )
        snapshot.validate()
        return snapshot
