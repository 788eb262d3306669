"""Persistent defaults for the link, the status poller and the console tools.

Values live in one JSON object. Keys missing from the file fall back to
DEFAULT_SETTINGS, and saves go through a staging file so an interrupted
write never leaves a truncated settings file behind.
"""

import copy
import json
import logging
import os
import shutil
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from .constants import (
    BAUD_DEFAULT,
    CONFIG_DIR_ENV,
    CONFIG_DIR_NAME,
    JOG_FEED_DEFAULT,
    JOG_STEP_DEFAULT,
    SETTINGS_BACKUP_SUFFIX,
    SETTINGS_FILENAME,
    SETTINGS_REFRESH_DELAY,
    SETTINGS_TEMP_SUFFIX,
    STATUS_POLL_DEFAULT,
    STATUS_QUERY_FAILURE_LIMIT_DEFAULT,
    VALID_BAUD_RATES,
)
from .exceptions import (
    SettingsLoadError,
    SettingsSaveError,
    SettingsValidationError,
)

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: Dict[str, Any] = {
    "baud_rate": BAUD_DEFAULT,
    "last_port": "",
    "status_poll_interval": STATUS_POLL_DEFAULT,
    "status_query_failure_limit": STATUS_QUERY_FAILURE_LIMIT_DEFAULT,
    "settings_refresh_delay": SETTINGS_REFRESH_DELAY,
    "pause_on_error": True,
    "jog_feed": JOG_FEED_DEFAULT,
    "jog_step": JOG_STEP_DEFAULT,
    "logging": {
        "console_level": "INFO",
        "file_enabled": True,
    },
}

_POSITIVE_NUMBERS = ("status_poll_interval", "settings_refresh_delay", "jog_feed", "jog_step")


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay ``override`` on a copy of ``base``, section by section."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = _merge(current, value)
        else:
            result[key] = value
    return result


def _is_positive_number(value: Any) -> bool:
    return not isinstance(value, bool) and isinstance(value, (int, float)) and value > 0


def get_default_settings_dir() -> str:
    """Directory holding settings.json.

    ``GRBLCAD_CONFIG_DIR`` wins; otherwise the platform config root
    (LOCALAPPDATA/APPDATA on Windows, XDG_CONFIG_HOME elsewhere) or the
    home directory.
    """
    override = os.getenv(CONFIG_DIR_ENV)
    if override:
        return override

    if sys.platform.startswith("win"):
        root = os.getenv("LOCALAPPDATA") or os.getenv("APPDATA")
    else:
        root = os.getenv("XDG_CONFIG_HOME")
    base = Path(root) if root else Path.home()
    return str(base / CONFIG_DIR_NAME)


def get_settings_path() -> str:
    """Path of the settings file, creating its directory on demand.

    Falls back to ``~/.grblcad`` and then the working directory when the
    preferred directory cannot be created.
    """
    for directory in (Path(get_default_settings_dir()), Path.home() / ".grblcad"):
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Cannot use settings directory {directory}: {e}")
            continue
        return str(directory / SETTINGS_FILENAME)
    return str(Path.cwd() / SETTINGS_FILENAME)


class Settings:
    """JSON-backed settings with dotted-key access.

    Example:
        settings = Settings()
        settings.load()
        settings.set("logging.console_level", "DEBUG")
        settings.save()
    """

    def __init__(self, filepath: Optional[str] = None):
        self.filepath = filepath or get_settings_path()
        self.data: Dict[str, Any] = copy.deepcopy(DEFAULT_SETTINGS)

    def load(self) -> bool:
        """Read the file over the defaults.

        Returns:
            False when there is no file yet (defaults stay in effect)

        Raises:
            SettingsLoadError: Unreadable file, bad JSON or a non-object root
        """
        path = Path(self.filepath)
        if not path.exists():
            logger.info(f"No settings at {path}; using defaults")
            return False

        try:
            loaded = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise SettingsLoadError(f"{path} is not valid JSON: {e}")
        except OSError as e:
            raise SettingsLoadError(f"Cannot read {path}: {e}")
        if not isinstance(loaded, dict):
            raise SettingsLoadError(f"{path} must hold a JSON object")

        self.data = _merge(DEFAULT_SETTINGS, loaded)
        logger.debug(f"Loaded settings from {path}")
        return True

    def save(self) -> None:
        """Write the settings, keeping the previous file as ``.bak``.

        Raises:
            SettingsSaveError: If the file cannot be written
        """
        target = Path(self.filepath)
        staging = target.with_name(target.name + SETTINGS_TEMP_SUFFIX)
        backup = target.with_name(target.name + SETTINGS_BACKUP_SUFFIX)

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            staging.write_text(json.dumps(self.data, indent=2, sort_keys=True), encoding="utf-8")
            if target.exists():
                try:
                    shutil.copy2(target, backup)
                except OSError as e:
                    logger.warning(f"No backup of {target}: {e}")
            os.replace(staging, target)
        except OSError as e:
            logger.error(f"Saving settings to {target} failed: {e}")
            raise SettingsSaveError(f"Failed to save {target}: {e}")
        finally:
            if staging.exists():
                try:
                    staging.unlink()
                except OSError as e:
                    logger.debug(f"Could not remove {staging}: {e}")
        logger.debug(f"Saved settings to {target}")

    def get(self, key: str, default: Any = None) -> Any:
        """Look up ``key``; dots walk into sections ("logging.console_level")."""
        node: Any = self.data
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, key: str, value: Any) -> None:
        *sections, leaf = key.split(".")
        node = self.data
        for part in sections:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        node[leaf] = value

    def reset_to_defaults(self) -> None:
        self.data = copy.deepcopy(DEFAULT_SETTINGS)
        logger.info("Settings reset to defaults")

    def validate(self) -> bool:
        """Check value types and ranges.

        Raises:
            SettingsValidationError: On the first bad value
        """
        baud = self.get("baud_rate")
        if baud not in VALID_BAUD_RATES:
            raise SettingsValidationError(f"baud_rate must be one of {VALID_BAUD_RATES}, got {baud!r}")

        for key in _POSITIVE_NUMBERS:
            value = self.get(key)
            if not _is_positive_number(value):
                raise SettingsValidationError(f"{key} must be a positive number, got {value!r}")

        limit = self.get("status_query_failure_limit")
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise SettingsValidationError(f"status_query_failure_limit must be an integer >= 1, got {limit!r}")

        if not isinstance(self.get("pause_on_error"), bool):
            raise SettingsValidationError("pause_on_error must be true or false")
        return True
