"""sysfs kernel backend - reads /sys/class/power_supply/ for peripheral batteries.

Catches Bluetooth HID batteries the kernel exposes (hid-<mac>-battery)
that UPower does not report.
Priority: 20 (after UPower).
"""

import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional

from bluecharge.core.provider import KernelBackend, KernelBattery
from bluecharge.providers.upower import extract_address

log = logging.getLogger(__name__)

POWER_SUPPLY_ROOT = Path("/sys/class/power_supply")

_ATTRIBUTES = ("type", "scope", "capacity", "model_name")


def read_attributes(supply_dir: Path) -> Dict[str, str]:
    """Read the power_supply attributes we care about; missing ones are omitted."""
    attrs = {}
    for attr in _ATTRIBUTES:
        try:
            attrs[attr] = (supply_dir / attr).read_text().strip()
        except OSError:
            continue
    return attrs


class SysfsBackend(KernelBackend):
    """Kernel backend reading /sys/class/power_supply/*/ entries."""

    @property
    def name(self) -> str:
        return "sysfs"

    @property
    def priority(self) -> int:
        return 20

    def __init__(self, root: Path = POWER_SUPPLY_ROOT):
        self._root = root
        self._observer = None

    def enumerate(self) -> List[KernelBattery]:
        try:
            entries = sorted(p for p in self._root.iterdir() if p.is_dir())
        except OSError:
            return []
        return [b for b in map(self._battery_for, entries) if b is not None]

    @staticmethod
    def _battery_for(supply_dir: Path) -> Optional[KernelBattery]:
        """None unless the entry is a device-scoped battery named after a MAC."""
        attrs = read_attributes(supply_dir)
        # scope "System" is the machine's own battery
        if attrs.get("type") != "Battery" or attrs.get("scope") != "Device":
            return None

        address = extract_address(supply_dir.name)
        if address is None:
            return None

        try:
            capacity = float(attrs["capacity"])
        except (KeyError, ValueError):
            return None

        return KernelBattery(
            address=address,
            percent=capacity,
            product=attrs.get("model_name", ""),
        )

    def supports_hotplug(self) -> bool:
        try:
            import pyudev  # noqa: F401
            return True
        except ImportError:
            return False

    def start_watching(self, on_change: Callable[[], None]) -> None:
        try:
            import pyudev
        except ImportError:
            return

        context = pyudev.Context()
        monitor = pyudev.Monitor.from_netlink(context)
        monitor.filter_by(subsystem="power_supply")
        self._observer = pyudev.MonitorObserver(
            monitor,
            callback=lambda _device: on_change(),
            name="bluecharge-sysfs-monitor",
        )
        self._observer.daemon = True
        self._observer.start()

    def stop_watching(self) -> None:
        if self._observer is not None:
            self._observer.send_stop()
            self._observer = None

    def close(self) -> None:
        self.stop_watching()
