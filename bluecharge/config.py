"""Configuration management for BlueCharge."""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any

log = logging.getLogger(__name__)


# Default configuration values
DEFAULTS = {
    # Refresh settings
    "polling": {
        "interval_seconds": 30,  # How often to re-collect from all sources
    },

    # Which sources to use
    "providers": {
        "upower": True,
        "sysfs": True,
        "gatt": True,
        "diagnostic": True,
    },

    # BLE GATT battery service
    "gatt": {
        "grace_period_seconds": 15,  # Keep a disconnected device this long
        "rescan_delay_seconds": 2,  # Re-scan all sources after a disconnect
        "scan_timeout_seconds": 5,
    },

    # External diagnostic report
    "diagnostic": {
        "command": ["system_profiler", "SPBluetoothDataType"],
        "timeout_seconds": 15,
    },

    # Battery history and estimation
    "history": {
        "max_readings": 2016,  # One week at 5 minute spacing
        "debounce_seconds": 240,  # Re-record an unchanged level after this
        "min_span_seconds": 120,  # Minimum span before estimating
    },
}


APP_DIR_NAME = "bluecharge"
CONFIG_FILENAME = "config.json"


def get_config_dir() -> Path:
    """$XDG_CONFIG_HOME/bluecharge (or ~/.config/bluecharge), created on demand."""
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    config_dir = Path(base) / APP_DIR_NAME
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_config_path() -> Path:
    return get_config_dir() / CONFIG_FILENAME


def _deep_merge(base: dict, override: dict) -> dict:
    """Return a copy of ``base`` with ``override`` merged in, recursively."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _lookup(config: dict, key: str, default: Any = None) -> Any:
    node = config
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return node


def _assign(config: dict, key: str, value: Any) -> None:
    *parents, leaf = key.split(".")
    node = config
    for part in parents:
        child = node.get(part)
        if not isinstance(child, dict):
            child = node[part] = {}
        node = child
    node[leaf] = value


def load_config() -> dict:
    """Load the user config merged over DEFAULTS.

    A missing file is created with the defaults. An unreadable or
    malformed file is left alone and the defaults are used.
    """
    path = get_config_path()
    if not path.exists():
        save_config(DEFAULTS)
        return copy.deepcopy(DEFAULTS)

    try:
        with open(path, "r") as f:
            user_config = json.load(f)
        if not isinstance(user_config, dict):
            raise ValueError("top-level value is not an object")
    except (ValueError, OSError) as e:
        log.warning("Could not load config from %s: %s", path, e)
        return copy.deepcopy(DEFAULTS)
    return _deep_merge(DEFAULTS, user_config)


def save_config(config: dict) -> bool:
    path = get_config_path()
    try:
        with open(path, "w") as f:
            json.dump(config, f, indent=2)
    except OSError as e:
        log.error("Could not save config to %s: %s", path, e)
        return False
    return True


def get(key: str, default: Any = None) -> Any:
    """Read one value by dotted key, e.g. ``get("gatt.grace_period_seconds")``."""
    return _lookup(load_config(), key, default)


def set(key: str, value: Any) -> bool:
    """Persist one value by dotted key."""
    config = load_config()
    _assign(config, key, value)
    return save_config(config)


class Config:
    """Section accessor over the merged configuration.

    ``Config()`` reads the user's file; ``Config(data)`` merges ``data``
    over the defaults without touching the disk.
    """

    def __init__(self, data: dict = None):
        self._persistent = data is None
        self._config = load_config() if data is None else _deep_merge(DEFAULTS, data)

    def reload(self):
        if self._persistent:
            self._config = load_config()

    def save(self) -> bool:
        return save_config(self._config)

    def section(self, name: str) -> dict:
        value = self._config.get(name)
        return value if isinstance(value, dict) else copy.deepcopy(DEFAULTS[name])

    @property
    def polling(self) -> dict:
        return self.section("polling")

    @property
    def providers(self) -> dict:
        return self.section("providers")

    @property
    def gatt(self) -> dict:
        return self.section("gatt")

    @property
    def diagnostic(self) -> dict:
        return self.section("diagnostic")

    @property
    def history(self) -> dict:
        return self.section("history")

    @property
    def refresh_interval(self) -> int:
        return max(1, int(self.polling.get("interval_seconds", 30)))

    def __getitem__(self, key: str) -> Any:
        return _lookup(self._config, key)

    def __setitem__(self, key: str, value: Any):
        _assign(self._config, key, value)
        if self._persistent:
            self.save()
