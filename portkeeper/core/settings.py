"""JSON-backed persistence for favorites, watched ports and preferences."""

import json
from pathlib import Path
from typing import Any, Optional

from .models import WatchedPort, validate_port
from ..config import DEFAULT_REFRESH_INTERVAL, DEFAULT_SETTINGS_PATH, MIN_REFRESH_INTERVAL
from ..utils.logging_config import get_logger

logger = get_logger('settings')


class SettingsStore:
    """
    Reads and writes the settings document.

    Every save is a read-modify-write of the whole file so unrelated keys
    survive. Load errors fall back to defaults; save errors are logged.
    """

    def __init__(self, path: Optional[str | Path] = None):
        self.path = Path(path) if path else DEFAULT_SETTINGS_PATH
        logger.debug(f"SettingsStore using {self.path}")

    def _load(self) -> dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read settings from {self.path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Ignoring settings file {self.path}: top level is not an object")
            return {}
        return data

    def _save(self, **changes: Any):
        data = self._load()
        data.update(changes)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            logger.error(f"Could not save settings to {self.path}: {e}")

    # Favorites

    def load_favorites(self) -> set[int]:
        raw = self._load().get("favorites")
        if not isinstance(raw, list):
            return set()

        favorites = set()
        for value in raw:
            try:
                favorites.add(validate_port(value))
            except ValueError:
                logger.debug(f"Skipping invalid favorite {value!r}")
        return favorites

    def save_favorites(self, favorites: set[int]):
        self._save(favorites=sorted(favorites))

    # Watched ports

    def load_watched(self) -> list[WatchedPort]:
        raw = self._load().get("watchedPorts")
        if not isinstance(raw, list):
            return []

        watched: list[WatchedPort] = []
        for entry in raw:
            try:
                watched.append(WatchedPort.from_dict(entry))
            except ValueError as e:
                logger.debug(f"Skipping invalid watched port {entry!r}: {e}")
        return watched

    def save_watched(self, watched_ports: list[WatchedPort]):
        self._save(watchedPorts=[w.to_dict() for w in watched_ports])

    # Refresh interval

    def load_refresh_interval(self) -> int:
        value = self._load().get("refreshInterval", DEFAULT_REFRESH_INTERVAL)
        if isinstance(value, bool) or not isinstance(value, int) or value < MIN_REFRESH_INTERVAL:
            return DEFAULT_REFRESH_INTERVAL
        return value

    def save_refresh_interval(self, seconds: int):
        self._save(refreshInterval=seconds)

    # Notifications

    def load_show_notifications(self) -> bool:
        value = self._load().get("showNotifications", True)
        return value if isinstance(value, bool) else True

    def save_show_notifications(self, show: bool):
        self._save(showNotifications=show)

    def clear_all(self):
        """Delete the settings file."""
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Could not delete settings file {self.path}: {e}")
