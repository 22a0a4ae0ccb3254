"""
Runtime configuration, loaded from environment variables.
"""

import os


DEFAULT_SPEED = float(os.environ.get("TEMPORAL_DEFAULT_SPEED", "1.0"))

LOG_LEVEL = os.environ.get("TEMPORAL_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

SNAPSHOT_DIR = os.environ.get("TEMPORAL_SNAPSHOT_DIR", "snapshots")

HEALTH_ENABLED = os.environ.get("TEMPORAL_HEALTH_ENABLED", "true").lower() == "true"
HEALTH_HOST = os.environ.get("TEMPORAL_HEALTH_HOST", "127.0.0.1")
HEALTH_PORT = int(os.environ.get("TEMPORAL_HEALTH_PORT", "8766"))

# Wall seconds between channel drains in the CLI runner
POLL_INTERVAL_S = float(os.environ.get("TEMPORAL_POLL_INTERVAL_S", "0.05"))
