"""Configuration manager for Mensura.

Handles loading, saving, and accessing configuration values.
Configuration is stored as JSON and organized into groups. Values with
a validator are checked on ``set`` and when the file is loaded.
"""

import copy
import json
import math
from pathlib import Path
from typing import Any, Callable

from loguru import logger
from platformdirs import user_config_dir

from mensura.config.defaults import DEFAULT_CONFIG
from mensura.core.errors import InvalidConfigurationValueError

LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


def _number_format(value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise InvalidConfigurationValueError(f"Number format must be a format string, got {value!r}")
    try:
        text = value % 1.5 if value.startswith("%") else format(1.5, value)
    except (TypeError, ValueError) as e:
        raise InvalidConfigurationValueError(f"Invalid number format {value!r}: {e}") from e
    if not text:
        raise InvalidConfigurationValueError(f"Invalid number format {value!r}")
    return value


def _int_at_least(minimum: int) -> Callable[[Any], int]:
    def check(value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value != int(value):
            raise InvalidConfigurationValueError(f"Expected an integer, got {value!r}")
        if value < minimum:
            raise InvalidConfigurationValueError(f"Value must be at least {minimum}, got {value}")
        return int(value)

    return check


def _hit_tolerance(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidConfigurationValueError(f"Expected a number, got {value!r}")
    if not 0 < value <= 1:
        raise InvalidConfigurationValueError(f"Hit tolerance must be in (0, 1], got {value}")
    return float(value)


def _positive(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidConfigurationValueError(f"Expected a number, got {value!r}")
    if not math.isfinite(value) or value <= 0:
        raise InvalidConfigurationValueError(f"Value must be positive, got {value}")
    return float(value)


def _alpha(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        raise InvalidConfigurationValueError(f"Expected a number, got {value!r}")
    return min(max(float(value), 0.0), 1.0)


def _flag(value: Any) -> bool:
    if not isinstance(value, bool):
        raise InvalidConfigurationValueError(f"Expected true or false, got {value!r}")
    return value


def _log_level(value: Any) -> str:
    level = str(value).upper()
    if level not in LOG_LEVELS:
        raise InvalidConfigurationValueError(f"Unknown log level {value!r}")
    return level


def _unit(value: Any) -> str:
    from mensura.core.calibration import Unit

    return Unit.parse(value).label


VALIDATORS: dict[tuple[str, str], Callable[[Any], Any]] = {
    ("measurement", "number_format"): _number_format,
    ("measurement", "spline_points"): _int_at_least(2),
    ("measurement", "max_polyline_points"): _int_at_least(0),
    ("measurement", "zoom_box"): _int_at_least(50),
    ("measurement", "hit_tolerance"): _hit_tolerance,
    ("measurement", "auto_edit"): _flag,
    ("measurement", "repeat_tool"): _flag,
    ("measurement", "show_all"): _flag,
    ("measurement", "zoom_select"): _flag,
    ("measurement", "default_unit"): _unit,
    ("measurement", "default_calibration_length"): _positive,
    ("appearance", "text_box_alpha"): _alpha,
    ("logging", "log_level"): _log_level,
}


class ConfigManager:
    """Manages application configuration with grouped settings."""

    CONFIG_FILENAME = "mensura_config.json"

    def __init__(self, config_dir: str | Path | None = None):
        if config_dir is None:
            self._config_dir = Path(user_config_dir("Mensura", "Mensura"))
        else:
            self._config_dir = Path(config_dir)

        self._config_path = self._config_dir / self.CONFIG_FILENAME
        self._data: dict[str, dict[str, Any]] = copy.deepcopy(DEFAULT_CONFIG)
        self._listeners: list = []

    @property
    def config_dir(self) -> Path:
        return self._config_dir

    @property
    def config_path(self) -> Path:
        return self._config_path

    def load(self):
        """Load configuration from disk, merging with defaults."""
        self._data = copy.deepcopy(DEFAULT_CONFIG)

        if not self._config_path.exists():
            logger.info("No config file found, using defaults.")
            return

        try:
            with open(self._config_path, "r", encoding="utf-8") as f:
                user_data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load config, using defaults: {e}")
            return

        # Merge user values over defaults (preserving defaults for missing keys)
        for group, values in user_data.items():
            if not isinstance(values, dict):
                continue
            target = self._data.setdefault(group, {})
            for key, value in values.items():
                validator = VALIDATORS.get((group, key))
                if validator is not None:
                    try:
                        value = validator(value)
                    except InvalidConfigurationValueError as e:
                        logger.warning(f"Ignoring {group}.{key} from config file: {e}")
                        continue
                target[key] = value

        logger.info(f"Configuration loaded from {self._config_path}")

    def save(self):
        """Save current configuration to disk (excluding internal keys)."""
        self._config_dir.mkdir(parents=True, exist_ok=True)

        save_data = {}
        for group, values in self._data.items():
            save_data[group] = {k: v for k, v in values.items() if not k.startswith("_")}

        with open(self._config_path, "w", encoding="utf-8") as f:
            json.dump(save_data, f, indent=2)

        logger.info(f"Configuration saved to {self._config_path}")

    def get(self, group: str, key: str, default: Any = None) -> Any:
        """Get a configuration value."""
        return self._data.get(group, {}).get(key, default)

    def set(self, group: str, key: str, value: Any):
        """Set a configuration value and notify listeners.

        Raises InvalidConfigurationValueError and keeps the previous value
        when the value is rejected.
        """
        validator = VALIDATORS.get((group, key))
        if validator is not None:
            value = validator(value)
        if group not in self._data:
            self._data[group] = {}
        old_value = self._data[group].get(key)
        self._data[group][key] = value
        if old_value != value:
            self._notify_listeners(group, key, value, old_value)

    def get_group(self, group: str) -> dict[str, Any]:
        """Get all values in a configuration group."""
        return {k: v for k, v in self._data.get(group, {}).items() if not k.startswith("_")}

    def get_group_label(self, group: str) -> str:
        """Get the display label for a configuration group."""
        return self._data.get(group, {}).get("_label", group.title())

    def groups(self) -> list[str]:
        """Get list of configuration group names."""
        return list(self._data.keys())

    def reset_group(self, group: str):
        """Restore the defaults of one group."""
        for key, value in DEFAULT_CONFIG.get(group, {}).items():
            if not key.startswith("_"):
                self.set(group, key, copy.deepcopy(value))

    def add_listener(self, callback):
        """Register a callback for config changes: callback(group, key, new_value, old_value)."""
        self._listeners.append(callback)

    def _notify_listeners(self, group: str, key: str, new_value: Any, old_value: Any):
        for listener in self._listeners:
            try:
                listener(group, key, new_value, old_value)
            except Exception as e:
                logger.error(f"Config listener error: {e}")
