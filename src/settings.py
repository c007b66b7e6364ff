import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from models import HELPER_MODES, Config

logger = logging.getLogger(__name__)


class SettingsError(RuntimeError):
    """Raised when the settings file is unreadable or holds invalid values."""


def default_config_path() -> Path:
    return Path.home() / ".config" / "pactrack" / "settings.json"


class Settings:
    """Central settings management with sensible defaults."""

    DEFAULTS = {
        # Polling
        "poll_minutes": 30,
        "notify_on_change": True,

        # AUR
        "enable_aur": True,
        "aur_helper": "auto",  # "auto", "paru", "yay", "none"

        # Commands
        "terminal": "auto",            # "auto" or e.g. "kitty" / "gnome-terminal --wait"
        "official_check_cmd": "auto",  # "auto" or e.g. "checkupdates"
        "upgrade_cmd": "auto",         # "auto" or a shell command
    }

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = Path(config_file) if config_file else default_config_path()
        self._data: Dict[str, Any] = {}
        self.load()

    def load(self):
        """Load settings from file and fall back to defaults.

        On failure the previously loaded values stay in place.
        """
        data = dict(self.DEFAULTS)

        if not self.config_file.exists():
            self._data = data
            return

        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                user_data = json.load(f)
        except (OSError, ValueError) as e:
            raise SettingsError(f"failed to read settings at {self.config_file}: {e}") from e

        if not isinstance(user_data, dict):
            raise SettingsError(f"settings at {self.config_file} must be a JSON object")

        for key, value in user_data.items():
            self._validate(key, value)
        data.update(user_data)
        self._data = data
        logger.debug("loaded settings from %s", self.config_file)

    def get(self, key: str, default=None) -> Any:
        """Retrieve a setting value."""
        return self._data.get(key, default)

    # ---- Validation ----

    def _validate(self, key: str, value: Any):
        if key not in self.DEFAULTS:
            raise SettingsError(f"unknown setting: {key}")

        expected = type(self.DEFAULTS[key])
        # bool is a subclass of int, keep them apart
        if type(value) is not expected:
            raise SettingsError(
                f"setting {key} must be of type {expected.__name__}, got {type(value).__name__}"
            )

        if key == "poll_minutes" and value < 1:
            raise SettingsError("poll_minutes must be a positive number of minutes")
        if key == "aur_helper" and value not in HELPER_MODES:
            raise SettingsError(f"aur_helper must be one of {', '.join(HELPER_MODES)}")
        if expected is str and not value.strip():
            raise SettingsError(f"setting {key} must not be empty")

    # ---- Convenience methods ----

    def to_config(self, poll_minutes: Optional[int] = None, no_aur: bool = False) -> Config:
        """Merge command line overrides and return the effective configuration."""
        minutes = self.get("poll_minutes")
        if poll_minutes is not None:
            minutes = max(1, poll_minutes)

        return Config(
            poll_minutes=minutes,
            notify_on_change=self.get("notify_on_change"),
            enable_aur=self.get("enable_aur") and not no_aur,
            aur_helper=self.get("aur_helper"),
            terminal=self.get("terminal"),
            official_check_cmd=self.get("official_check_cmd"),
            upgrade_cmd=self.get("upgrade_cmd"),
        )
