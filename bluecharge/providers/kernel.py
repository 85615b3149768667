"""Kernel battery source - merges registry backends into DeviceRecords."""

import logging
import math
from typing import Callable, Dict, List, Optional

from bluecharge.core.provider import KernelBackend, KernelBattery, KernelSource
from bluecharge.core.types import (
    GENERIC_DEVICE_NAME,
    DeviceRecord,
    ParsedDiagnosticEntry,
    SourceType,
    clamp_percent,
    name_from_wake_reason,
    normalize_address,
    sanitize_name,
)

log = logging.getLogger(__name__)


def resolve_name(battery: KernelBattery,
                 entry: Optional[ParsedDiagnosticEntry]) -> str:
    """Device-reported name, then diagnostic name, then a type guess."""
    name = sanitize_name(battery.product)
    if name:
        return name
    if entry is not None:
        mapped = sanitize_name(entry.name)
        if mapped:
            return mapped
    if battery.wake_reason:
        return name_from_wake_reason(battery.wake_reason)
    return GENERIC_DEVICE_NAME


class KernelBatterySource(KernelSource):
    """Polls registry backends in priority order, one record per address.

    The first backend to report an address wins; a backend that fails is
    skipped without affecting the others.
    """

    def __init__(self, backends: Optional[List[KernelBackend]] = None):
        self._backends: List[KernelBackend] = []
        for backend in backends or []:
            self.register_backend(backend)

    def register_backend(self, backend: KernelBackend) -> None:
        """Register a backend, maintaining priority order."""
        self._backends.append(backend)
        self._backends.sort(key=lambda b: b.priority)

    @property
    def backends(self) -> List[KernelBackend]:
        return list(self._backends)

    def poll(self, diagnostic_map: Dict[str, ParsedDiagnosticEntry]) -> List[DeviceRecord]:
        devices: List[DeviceRecord] = []
        seen = set()

        for backend in self._backends:
            try:
                found = backend.enumerate()
            except Exception:
                log.exception("Enumeration failed for backend %s", backend.name)
                continue

            for battery in found:
                record = self._to_record(battery, diagnostic_map)
                if record is None or record.id in seen:
                    continue
                seen.add(record.id)
                devices.append(record)

        return devices

    @staticmethod
    def _to_record(battery: KernelBattery,
                   diagnostic_map: Dict[str, ParsedDiagnosticEntry]) -> Optional[DeviceRecord]:
        address = normalize_address(battery.address)
        if address is None:
            return None
        if battery.percent is None or math.isnan(battery.percent):
            return None

        entry = diagnostic_map.get(address)
        return DeviceRecord.create(
            id=address,
            name=resolve_name(battery, entry),
            battery_level=clamp_percent(battery.percent),
            components=entry.components if entry is not None else None,
            address=address,
            source=SourceType.KERNEL,
        )

    def supports_hotplug(self) -> bool:
        return any(b.supports_hotplug() for b in self._backends)

    def start_watching(self, on_change: Callable[[], None]) -> None:
        for backend in self._backends:
            if backend.supports_hotplug():
                backend.start_watching(on_change)

    def close(self) -> None:
        for backend in self._backends:
            try:
                backend.stop_watching()
                backend.close()
            except Exception:
                log.debug("Failed to close backend %s", backend.name)
