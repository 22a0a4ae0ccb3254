"""
Snapshot files on disk.

The format follows the file suffix: .yaml/.yml through PyYAML, .json
through the json module.
"""

import json
import logging
from pathlib import Path

import yaml

from temporal.core.errors import InvalidSnapshot
from temporal.snapshot.snapshot import Snapshot

logger = logging.getLogger(__name__)

YAML_SUFFIXES = (".yaml", ".yml")


def save_snapshot(snapshot: Snapshot, path: str | Path) -> Path:
    """Write snapshot to path, creating parent directories. Returns the path."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = snapshot.to_dict()
    with open(path, "w") as f:
        if path.suffix in YAML_SUFFIXES:
            yaml.safe_dump(data, f, sort_keys=False)
        else:
            json.dump(data, f, indent=2)
    logger.info(f"Snapshot saved to {path} ({len(snapshot.entries)} timers)")
    return path


def load_snapshot(path: str | Path) -> Snapshot:
    """Read a snapshot file. Raises InvalidSnapshot if it cannot be parsed."""
    path = Path(path)
    try:
        with open(path) as f:
            if path.suffix in YAML_SUFFIXES:
                raw = yaml.safe_load(f)
            else:
                raw = json.load(f)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise InvalidSnapshot(f"Cannot parse snapshot {path}: {e}") from e
    return Snapshot.from_dict(raw)
