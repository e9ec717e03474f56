"""User settings: JSON-backed defaults for the command line.

Usage:
    from fily.core.settings import Settings

    settings = Settings()
    threshold = settings.get("threshold")

Command-line flags and environment variables take precedence over these
values; the settings only replace the built-in defaults.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from fily.core.errors import FilyError
from fily.core.models import ExactMode, HashAlgorithm, ResizeFilter

logger = logging.getLogger(__name__)

LOG_LEVELS = ("off", "trace", "debug", "info", "warn", "error")

# Built-in defaults; a settings file can only override these keys
_DEFAULT_SETTINGS: dict[str, Any] = {
    "log_level": "off",
    "log_file": "fily.log",
    "input_path_separator": "",  # empty = line breaks
    "duplicate_mode": ExactMode.CONTENT.value,
    "hash_alg": HashAlgorithm.GRADIENT.value,
    "hash_size": 8,
    "resize_filter": ResizeFilter.LANCZOS3.value,
    "threshold": 10,
    "workers": 0,  # 0 = pick from CPU count
}

_CHOICES: dict[str, tuple[str, ...]] = {
    "log_level": LOG_LEVELS,
    "duplicate_mode": tuple(m.value for m in ExactMode),
    "hash_alg": tuple(a.value for a in HashAlgorithm),
    "resize_filter": tuple(f.value for f in ResizeFilter),
}

_SETTINGS_DIR = Path.home() / ".fily"
_SETTINGS_FILE = _SETTINGS_DIR / "settings.json"


class SettingsError(FilyError):
    """Raised when a setting name or value is invalid."""


def _coerce(key: str, value: Any) -> Any:
    """Convert a raw value to the type of the key's default, validating it."""
    default = _DEFAULT_SETTINGS[key]
    if isinstance(default, int):
        if isinstance(value, bool):
            raise SettingsError(f"{key} must be an integer, got {value!r}")
        try:
            value = int(value)
        except (TypeError, ValueError) as e:
            raise SettingsError(f"{key} must be an integer, got {value!r}") from e
        if value < 0:
            raise SettingsError(f"{key} must not be negative, got {value}")
        return value
    if not isinstance(value, str):
        raise SettingsError(f"{key} must be a string, got {value!r}")
    if key in _CHOICES and value not in _CHOICES[key]:
        raise SettingsError(f"{key} must be one of {', '.join(_CHOICES[key])}, got {value!r}")
    return value


class Settings:
    """Manages user settings with JSON persistence."""

    def __init__(self, settings_file: Path = _SETTINGS_FILE) -> None:
        self._settings_file = settings_file
        self._settings: dict[str, Any] = dict(_DEFAULT_SETTINGS)
        self._load()

    @property
    def path(self) -> Path:
        return self._settings_file

    def _load(self) -> None:
        """Load settings from disk, merging with defaults."""
        if self._settings_file.exists():
            try:
                with open(self._settings_file, encoding="utf-8") as f:
                    saved: dict[str, Any] = json.load(f)
            except (json.JSONDecodeError, OSError) as e:
                logger.warning(f"Ignoring unreadable settings file {self._settings_file}: {e}")
                return
            if not isinstance(saved, dict):
                logger.warning(f"Ignoring settings file {self._settings_file}: not a JSON object")
                return
            # Saved values override defaults; unknown keys and bad values are dropped
            for key, value in saved.items():
                if key not in self._settings:
                    continue
                try:
                    self._settings[key] = _coerce(key, value)
                except SettingsError as e:
                    logger.warning(f"Ignoring setting from {self._settings_file}: {e}")

    def _save(self) -> None:
        """Persist current settings to disk."""
        self._settings_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self._settings_file, "w", encoding="utf-8") as f:
            json.dump(self._settings, f, indent=2)

    def get(self, key: str) -> Any:
        """Return the current value of a setting.

        Raises:
            SettingsError: If the setting does not exist.
        """
        if key not in self._settings:
            raise SettingsError(f"Unknown setting: {key}")
        return self._settings[key]

    def set(self, key: str, value: Any) -> Any:
        """Validate, store and persist a setting.

        Strings are converted for integer settings, so values typed on the
        command line can be passed directly.

        Returns:
            The stored value.

        Raises:
            SettingsError: If the key is unknown or the value invalid.
        """
        if key not in self._settings:
            raise SettingsError(f"Unknown setting: {key}")
        self._settings[key] = _coerce(key, value)
        self._save()
        return self._settings[key]

    def all_settings(self) -> dict[str, Any]:
        """Return a copy of all settings."""
        return dict(self._settings)

    def reset(self) -> None:
        """Reset all settings to defaults."""
        self._settings = dict(_DEFAULT_SETTINGS)
        self._save()
