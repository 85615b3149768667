"""Merge kernel, GATT and diagnostic-report data into one device list."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from bluecharge.core.provider import BatteryUpdate, Connected, Disconnected
from bluecharge.core.types import (
    GENERIC_DEVICE_NAME,
    DeviceRecord,
    ParsedDiagnosticEntry,
    SourceType,
    normalize_address,
    sanitize_name,
)

log = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD_SECONDS = 15.0
DEFAULT_RESCAN_DELAY_SECONDS = 2.0

GATT_ID_PREFIX = "ble-"
DEFAULT_GATT_NAME = "BLE Device"


@dataclass(frozen=True)
class ReconcileResult:
    devices: List[DeviceRecord]
    changed: bool


def merge_sources(
    kernel_devices: Iterable[DeviceRecord],
    gatt_devices: Iterable[DeviceRecord],
    diagnostic_map: Dict[str, ParsedDiagnosticEntry],
) -> List[DeviceRecord]:
    """Stateless merge of the three channels.

    Priority: kernel records verbatim, then GATT records the kernel did
    not cover, then diagnostic-only entries that carry battery data and
    whose address and name are both unused so far. Result is sorted by
    display name.
    """
    merged: List[DeviceRecord] = []
    covered = set()

    for device in kernel_devices:
        if device.id in covered:
            continue
        merged.append(device)
        covered.add(device.id)
        if device.address:
            covered.add(device.address)

    for device in gatt_devices:
        if device.id in covered or (device.address and device.address in covered):
            continue
        merged.append(device)
        covered.add(device.id)
        if device.address:
            covered.add(device.address)

    known_names = {device.name for device in merged}
    for address in sorted(diagnostic_map):
        entry = diagnostic_map[address]
        if address in covered:
            continue
        name = sanitize_name(entry.name) or GENERIC_DEVICE_NAME
        if name in known_names:
            continue
        if not entry.has_battery_data:
            continue

        components = entry.components
        device = DeviceRecord.create(
            id=address,
            name=name,
            battery_level=components.overall(entry.battery),
            components=components,
            address=address,
            source=SourceType.DIAGNOSTIC,
        )
        merged.append(device)
        covered.add(address)
        known_names.add(device.name)

    merged.sort(key=lambda d: (d.name, d.id))
    return merged


class DeviceReconciler:
    """Owns the previously emitted list and reports changes against it.

    ``update()`` may be called from the refresh tick and from GATT event
    handling; the previous-list state is only touched under the lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._devices: List[DeviceRecord] = []

    @property
    def devices(self) -> List[DeviceRecord]:
        with self._lock:
            return list(self._devices)

    def reconcile(self, kernel_devices, gatt_devices, diagnostic_map) -> List[DeviceRecord]:
        return merge_sources(kernel_devices, gatt_devices, diagnostic_map)

    def update(self, kernel_devices, gatt_devices, diagnostic_map) -> ReconcileResult:
        merged = self.reconcile(kernel_devices, gatt_devices, diagnostic_map)
        with self._lock:
            if merged == self._devices:
                return ReconcileResult(list(self._devices), changed=False)
            self._devices = merged
            log.debug("Device list changed: %d device(s)", len(merged))
            return ReconcileResult(list(merged), changed=True)

    def reset(self) -> None:
        with self._lock:
            self._devices = []


class GattDeviceTable:
    """Last-known GATT records plus pending removals keyed by session id.

    A disconnect does not drop the record immediately; it schedules a
    removal deadline that a reconnect or fresh battery update cancels.
    Deadlines are plain timestamps checked by ``expire()``, so the table
    has no dependency on any event loop or timer implementation.
    """

    def __init__(self,
                 grace_period: float = DEFAULT_GRACE_PERIOD_SECONDS,
                 rescan_delay: float = DEFAULT_RESCAN_DELAY_SECONDS):
        self.grace_period = grace_period
        self.rescan_delay = rescan_delay
        self._records: Dict[str, DeviceRecord] = {}
        self._names: Dict[str, str] = {}
        self._addresses: Dict[str, str] = {}
        self._pending_removals: Dict[str, float] = {}  # session_id -> deadline
        self._rescan_at: Optional[float] = None

    @staticmethod
    def device_id(session_id: str) -> str:
        return f"{GATT_ID_PREFIX}{session_id}"

    def apply(self, event, now: Optional[float] = None) -> bool:
        """Apply one event. Returns True if the visible records changed."""
        if now is None:
            now = time.monotonic()

        if isinstance(event, BatteryUpdate):
            self._cancel_removal(event.session_id)
            self._remember_identity(event.session_id, event.name, event.address)
            record = DeviceRecord.create(
                id=self.device_id(event.session_id),
                name=self._names.get(event.session_id) or DEFAULT_GATT_NAME,
                battery_level=event.level,
                address=self._addresses.get(event.session_id),
                source=SourceType.GATT,
            )
            previous = self._records.get(event.session_id)
            self._records[event.session_id] = record
            return previous != record

        if isinstance(event, Connected):
            self._cancel_removal(event.session_id)
            self._remember_identity(event.session_id, event.name, event.address)
            return False

        if isinstance(event, Disconnected):
            if event.session_id in self._records or event.session_id in self._names:
                self._pending_removals[event.session_id] = now + self.grace_period
                log.debug("GATT session %s disconnected, removal in %.0fs",
                          event.session_id, self.grace_period)
            self._rescan_at = now + self.rescan_delay
            return False

        log.debug("Ignoring unknown GATT event %r", event)
        return False

    def expire(self, now: Optional[float] = None) -> List[str]:
        """Purge sessions whose grace period elapsed. Returns purged ids."""
        if now is None:
            now = time.monotonic()
        purged = []
        for session_id, deadline in list(self._pending_removals.items()):
            if now < deadline:
                continue
            del self._pending_removals[session_id]
            self._names.pop(session_id, None)
            self._addresses.pop(session_id, None)
            if self._records.pop(session_id, None) is not None:
                purged.append(self.device_id(session_id))
        if purged:
            log.debug("Purged GATT device(s): %s", ", ".join(purged))
        return purged

    def take_rescan_due(self, now: Optional[float] = None) -> bool:
        """True once when a disconnect-triggered rescan is due."""
        if now is None:
            now = time.monotonic()
        if self._rescan_at is not None and now >= self._rescan_at:
            self._rescan_at = None
            return True
        return False

    def is_pending_removal(self, session_id: str) -> bool:
        return session_id in self._pending_removals

    def next_deadline(self) -> Optional[float]:
        deadlines = list(self._pending_removals.values())
        if self._rescan_at is not None:
            deadlines.append(self._rescan_at)
        return min(deadlines) if deadlines else None

    def devices(self) -> List[DeviceRecord]:
        return list(self._records.values())

    def clear(self) -> None:
        self._records.clear()
        self._names.clear()
        self._addresses.clear()
        self._pending_removals.clear()
        self._rescan_at = None

    # ---- Internal ----------------------------------------------------------

    def _cancel_removal(self, session_id: str) -> None:
        if self._pending_removals.pop(session_id, None) is not None:
            log.debug("GATT session %s reconnected, removal cancelled", session_id)

    def _remember_identity(self, session_id: str, name: Optional[str],
                           address: Optional[str]) -> None:
        clean = sanitize_name(name)
        if clean:
            self._names[session_id] = clean
        normalized = normalize_address(address)
        if normalized:
            self._addresses[session_id] = normalized
