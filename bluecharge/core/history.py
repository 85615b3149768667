"""Battery history per device and remaining-time estimation."""

import json
import logging
import math
import os
import time
from pathlib import Path
from typing import Dict, List, Optional

from bluecharge.core.types import BatteryReading, clamp_percent

log = logging.getLogger(__name__)

DEFAULT_MAX_READINGS = 2016
DEFAULT_DEBOUNCE_SECONDS = 240.0
DEFAULT_MIN_SPAN_SECONDS = 120.0

# Fallback regression windows, newest first. None = whole history.
ESTIMATE_WINDOWS = (3600.0, 86400.0, None)

COLLECTING_DATA = "Collecting data..."
INSUFFICIENT_DATA = "Insufficient data"


def get_data_dir() -> Path:
    """Get the data directory for persisted history."""
    xdg_data = os.environ.get("XDG_DATA_HOME", "")
    if xdg_data:
        return Path(xdg_data) / "bluecharge"
    return Path.home() / ".local" / "share" / "bluecharge"


def format_time_remaining(hours_left: float) -> str:
    """Format hours as "~2h 30m remaining", "~1d 1h remaining", "~5m remaining"."""
    if hours_left >= 24:
        days = int(hours_left // 24)
        hours = int(hours_left) % 24
        if hours == 0:
            return f"~{days}d remaining"
        return f"~{days}d {hours}h remaining"
    if hours_left < 1:
        mins = max(1, int(math.floor(hours_left * 60)))
        return f"~{mins}m remaining"
    hours = int(hours_left)
    mins = int((hours_left - hours) * 60)
    if mins == 0:
        return f"~{hours}h remaining"
    return f"~{hours}h {mins}m remaining"


class HistoryStore:
    """JSON-file persistence for readings and learned drain rates.

    With ``path=None`` nothing touches the disk.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = path

    @classmethod
    def default(cls) -> "HistoryStore":
        return cls(get_data_dir() / "history.json")

    def load(self):
        """Return (readings, drain_rates). Corrupt or missing data -> empty."""
        if self.path is None or not self.path.exists():
            return {}, {}
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
            readings = {
                str(device_id): [
                    BatteryReading(timestamp=float(ts), level=clamp_percent(level))
                    for ts, level in entries
                ]
                for device_id, entries in data.get("readings", {}).items()
            }
            rates = {
                str(device_id): float(rate)
                for device_id, rate in data.get("drain_rates", {}).items()
                if float(rate) > 0
            }
            return readings, rates
        except (OSError, ValueError, TypeError, AttributeError) as e:
            log.warning("Could not load battery history from %s: %s", self.path, e)
            return {}, {}

    def save(self, readings: Dict[str, List[BatteryReading]],
             drain_rates: Dict[str, float]) -> bool:
        if self.path is None:
            return True
        data = {
            "readings": {
                device_id: [[r.timestamp, r.level] for r in entries]
                for device_id, entries in readings.items()
            },
            "drain_rates": dict(drain_rates),
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(".tmp")
            with open(tmp_path, "w") as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
            return True
        except OSError as e:
            log.warning("Could not save battery history to %s: %s", self.path, e)
            return False


class BatteryHistoryEngine:
    """Records battery observations and estimates remaining time.

    Two estimation paths:

    1. A learned drain model (hours per percent) derived from the oldest
       and newest retained readings. Preferred, because it covers the
       whole observed history.
    2. Windowed fallback over the last hour, the last day, then all
       readings, using the first window with a usable level drop.

    Only this class mutates the history and its backing file.
    """

    def __init__(self,
                 store: Optional[HistoryStore] = None,
                 max_readings: int = DEFAULT_MAX_READINGS,
                 debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
                 min_span_seconds: float = DEFAULT_MIN_SPAN_SECONDS):
        self._store = store or HistoryStore()
        self.max_readings = max_readings
        self.debounce_seconds = debounce_seconds
        self.min_span_seconds = min_span_seconds
        self._history, self._drain_rates = self._store.load()

    def readings(self, device_id: str) -> List[BatteryReading]:
        return list(self._history.get(device_id, []))

    def drain_rate(self, device_id: str) -> Optional[float]:
        """Learned hours per percent, if any."""
        return self._drain_rates.get(device_id)

    def device_ids(self) -> List[str]:
        return list(self._history)

    def record(self, device_id: str, level: int, now: Optional[float] = None) -> bool:
        """Append a reading. Returns False when debounced.

        An unchanged level is only re-recorded after the debounce window;
        a changed level is always recorded.
        """
        if now is None:
            now = time.time()
        level = clamp_percent(level)
        readings = self._history.setdefault(device_id, [])

        if readings:
            last = readings[-1]
            if now - last.timestamp < self.debounce_seconds and last.level == level:
                return False

        readings.append(BatteryReading(timestamp=now, level=level))
        if len(readings) > self.max_readings:
            del readings[:len(readings) - self.max_readings]

        self._update_drain_model(device_id, readings)
        self._store.save(self._history, self._drain_rates)
        return True

    def _update_drain_model(self, device_id: str, readings: List[BatteryReading]) -> None:
        first, last = readings[0], readings[-1]
        elapsed = last.timestamp - first.timestamp
        drop = first.level - last.level
        if elapsed > self.min_span_seconds and drop > 0:
            self._drain_rates[device_id] = (elapsed / 3600.0) / drop

    def estimate_remaining(self, device_id: str, now: Optional[float] = None) -> Optional[str]:
        """Human-readable estimate, COLLECTING_DATA, INSUFFICIENT_DATA, or None.

        COLLECTING_DATA while the whole history is still too short to span
        the minimum; INSUFFICIENT_DATA once it is long enough but no window
        shows a usable drop.
        """
        if now is None:
            now = time.time()
        readings = self._history.get(device_id, [])
        if not readings:
            return None

        current = readings[-1].level
        rate = self._drain_rates.get(device_id)
        if rate is not None:
            return format_time_remaining(rate * current)

        if len(readings) < 2:
            return None
        if readings[-1].timestamp - readings[0].timestamp <= self.min_span_seconds:
            return COLLECTING_DATA

        for window in ESTIMATE_WINDOWS:
            if window is None:
                subset = readings
            else:
                subset = [r for r in readings if r.timestamp >= now - window]
            hours_left = self._windowed_hours_left(subset)
            if hours_left is not None:
                return format_time_remaining(hours_left)

        return INSUFFICIENT_DATA

    def _windowed_hours_left(self, subset: List[BatteryReading]) -> Optional[float]:
        if len(subset) < 2:
            return None
        first, last = subset[0], subset[-1]
        elapsed = last.timestamp - first.timestamp
        if elapsed <= self.min_span_seconds:
            return None
        drop = first.level - last.level
        if drop <= 0:
            return None
        drain_per_hour = drop / (elapsed / 3600.0)
        return last.level / drain_per_hour

    def forget(self, device_id: str) -> None:
        self._history.pop(device_id, None)
        self._drain_rates.pop(device_id, None)
        self._store.save(self._history, self._drain_rates)
