"""UPower kernel backend - Bluetooth peripheral batteries via D-Bus.

Covers HID-over-Bluetooth keyboards and mice (kernel hid battery) and
BlueZ-reported batteries of audio devices.
Priority: 10 (preferred over sysfs).
"""

import logging
import re
from typing import Callable, List, Optional

from bluecharge.core.provider import KernelBackend, KernelBattery
from bluecharge.core.types import normalize_address

log = logging.getLogger(__name__)

# UPower device kind constants -> coarse type hint
_UPOWER_KINDS = {
    5: "mouse",
    6: "keyboard",
    12: "gaming input",
    14: "touchpad",
    17: "headset",
    19: "headphones",
}

_UPOWER_BUS = "org.freedesktop.UPower"
_UPOWER_PATH = "/org/freedesktop/UPower"
_DEVICE_IFACE = "org.freedesktop.UPower.Device"
_PROPERTIES_IFACE = "org.freedesktop.DBus.Properties"
_HOTPLUG_SIGNALS = ("DeviceAdded", "DeviceRemoved")

# hid-aa:bb:cc:dd:ee:ff-battery, /org/bluez/hci0/dev_AA_BB_CC_DD_EE_FF
_MAC_RE = re.compile(r'([0-9a-fA-F]{2}(?:[:_-][0-9a-fA-F]{2}){5})')


def _try_import_dbus():
    """Import dbus lazily so the module is loadable even without dbus-python."""
    try:
        import dbus
        return dbus
    except ImportError:
        return None


def extract_address(*texts: str) -> Optional[str]:
    """Find a Bluetooth MAC in UPower's NativePath / Serial values."""
    for text in texts:
        if not text:
            continue
        m = _MAC_RE.search(text)
        if m:
            address = normalize_address(m.group(1))
            if address:
                return address
    return None


def battery_from_properties(props) -> Optional[KernelBattery]:
    """Build a KernelBattery from a UPower device's property map.

    Returns None for anything without a Bluetooth address (laptop
    battery, line power) or that is not currently present.
    """
    address = extract_address(str(props.get("NativePath", "")),
                              str(props.get("Serial", "")))
    if address is None or not bool(props.get("IsPresent", False)):
        return None
    return KernelBattery(
        address=address,
        percent=float(props.get("Percentage", float("nan"))),
        product=str(props.get("Model", "")),
        wake_reason=_UPOWER_KINDS.get(int(props.get("Type", 0)), ""),
    )


class UPowerBackend(KernelBackend):
    """Kernel backend using the UPower D-Bus daemon."""

    @property
    def name(self) -> str:
        return "UPower"

    @property
    def priority(self) -> int:
        return 10

    def __init__(self):
        self._bus = None
        self._on_change: Optional[Callable[[], None]] = None
        self._matches = []

    def _connect(self):
        """Return (dbus module, system bus), or (None, None) if unavailable."""
        dbus = _try_import_dbus()
        if dbus is None:
            return None, None
        if self._bus is None:
            try:
                self._bus = dbus.SystemBus()
            except Exception:
                log.debug("Could not connect to system D-Bus")
                return dbus, None
        return dbus, self._bus

    def enumerate(self) -> List[KernelBattery]:
        dbus, bus = self._connect()
        if bus is None:
            return []

        try:
            upower = dbus.Interface(bus.get_object(_UPOWER_BUS, _UPOWER_PATH), _UPOWER_BUS)
            paths = [str(p) for p in upower.EnumerateDevices()]
        except Exception:
            log.debug("Failed to enumerate UPower devices")
            return []

        batteries = []
        for path in paths:
            try:
                obj = bus.get_object(_UPOWER_BUS, path)
                props = dbus.Interface(obj, _PROPERTIES_IFACE).GetAll(_DEVICE_IFACE)
            except Exception:
                log.debug("Failed to read UPower device %s", path)
                continue
            battery = battery_from_properties(props)
            if battery is not None:
                batteries.append(battery)
        return batteries

    def supports_hotplug(self) -> bool:
        return _try_import_dbus() is not None

    def start_watching(self, on_change: Callable[[], None]) -> None:
        _dbus, bus = self._connect()
        if bus is None:
            return

        self._on_change = on_change
        for signal_name in _HOTPLUG_SIGNALS:
            try:
                self._matches.append(bus.add_signal_receiver(
                    self._handle_signal,
                    signal_name=signal_name,
                    dbus_interface=_UPOWER_BUS,
                    bus_name=_UPOWER_BUS,
                ))
            except Exception:
                log.debug("Failed to watch UPower %s", signal_name)

    def stop_watching(self) -> None:
        self._on_change = None
        while self._matches:
            match = self._matches.pop()
            try:
                match.remove()
            except Exception:
                log.debug("Failed to remove UPower signal match")

    def close(self) -> None:
        self.stop_watching()
        self._bus = None

    def _handle_signal(self, *_args):
        if self._on_change is not None:
            self._on_change()
