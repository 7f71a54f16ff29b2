"""
PortKeeper Configuration
"""

from pathlib import Path

APP_NAME = "PortKeeper"

# Per-user data directory (settings + logs)
APP_DIR = Path.home() / ".portkeeper"
SETTINGS_FILE_NAME = "settings.json"
DEFAULT_SETTINGS_PATH = APP_DIR / SETTINGS_FILE_NAME

# Refresh
DEFAULT_REFRESH_INTERVAL = 5  # seconds
MIN_REFRESH_INTERVAL = 1

# Termination
GRACE_PERIOD_SECONDS = 2.0  # wait after the graceful request before force kill
FORCE_KILL_CONFIRM_SECONDS = 1.0  # wait after force kill to confirm exit

# Scanning
LSOF_TIMEOUT_SECONDS = 10
SLOW_SCAN_THRESHOLD_MS = 500
COMMAND_MAX_LENGTH = 200

# Valid TCP port range
MIN_PORT = 1
MAX_PORT = 65535

# Placeholder values
UNKNOWN = "Unknown"
NOT_RUNNING = "Not running"
NO_VALUE = "-"

# Worker pool for scans and kills
WORKER_THREADS = 2
