"""
Validate a snapshot file.

Usage: python scripts/validate_snapshot.py snapshots/checkpoint-10000ms.yaml

Checks file syntax, required fields, entry states, and internal
consistency of every timer (due times, tick counts, one-shot flags).
"""

import json
import sys
from pathlib import Path

import yaml

from temporal.core.errors import InvalidSnapshot
from temporal.core.timer import TimerKind
from temporal.snapshot.snapshot import Snapshot


def _read(path: Path):
    with open(path) as f:
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(f)
        return json.load(f)


def validate(snapshot_path: str) -> bool:
    """Validate snapshot and print results. Returns True if valid."""
    print(f"Validating: {snapshot_path}\n")

    path = Path(snapshot_path)
    if not path.exists():
        print(f"  ✗ File not found: {snapshot_path}")
        print("\nFAIL: File not found")
        return False

    try:
        raw = _read(path)
        print("  ✓ Syntax valid")
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        print(f"  ✗ Syntax error: {e}")
        print("\nFAIL: parse error")
        return False

    try:
        snapshot = Snapshot.from_dict(raw)
    except InvalidSnapshot as e:
        print(f"  ✗ {e}")
        print("\nFAIL: malformed snapshot")
        return False

    print(f"  ✓ Structure valid (schema v{snapshot.schema_version})")
    state = "paused" if snapshot.global_paused else f"{snapshot.speed}x"
    print(f"  ✓ Virtual time {snapshot.virtual_now.total_seconds():.6f}s, {state}")
    print(
        f"  ✓ {snapshot.count(TimerKind.PERIODIC)} tickers, "
        f"{snapshot.count(TimerKind.ONE_SHOT)} one-shot timers"
    )

    warnings = []
    for entry_id in snapshot.entry_ids:
        entry = snapshot.entries[entry_id]
        if entry.virtual_last_fire is not None and entry.virtual_last_fire > entry.virtual_now:
            warnings.append(f"{entry_id}: last fire is ahead of its current time")
        if entry.kind is TimerKind.PERIODIC and entry.running and not entry.paused:
            behind = entry.virtual_now - entry.virtual_next_due
            if behind > entry.interval:
                warnings.append(
                    f"{entry_id}: next due is {behind / entry.interval:.0f} intervals behind"
                )
        if entry.kind is TimerKind.ONE_SHOT and entry.running and entry.callback_token is None:
            warnings.append(f"{entry_id}: one-shot without an action token (signal only)")
        if entry.own_speed == 0 and entry.running:
            warnings.append(f"{entry_id}: running at speed 0 never fires")

    if not warnings:
        print("  ✓ Timer states consistent")
    else:
        for w in warnings:
            print(f"  ⚠ {w}")

    print("\nPASS: Snapshot is valid")
    return True


def main():
    if len(sys.argv) < 2:
        print("Usage: python scripts/validate_snapshot.py <snapshot.yaml|json>")
        sys.exit(1)

    valid = validate(sys.argv[1])
    sys.exit(0 if valid else 1)


if __name__ == "__main__":
    main()
