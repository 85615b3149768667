"""Abstract battery sources and the events the GATT channel emits."""

import queue
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from bluecharge.core.types import DeviceRecord, ParsedDiagnosticEntry


class KernelBackend(ABC):
    """A platform battery registry the kernel source can enumerate.

    Implementations:
    - UPowerBackend: D-Bus UPower daemon
    - SysfsBackend: /sys/class/power_supply/
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name (e.g., 'UPower')."""
        ...

    @property
    @abstractmethod
    def priority(self) -> int:
        """Lower = preferred. UPower=10, sysfs=20."""
        ...

    @abstractmethod
    def enumerate(self) -> List["KernelBattery"]:
        """Return every Bluetooth battery the registry currently reports.

        Called on every refresh tick. Should be reasonably fast and must
        not raise for an unavailable registry; return [] instead.
        """
        ...

    def supports_hotplug(self) -> bool:
        """Whether this backend can emit hotplug callbacks."""
        return False

    def start_watching(self, on_change: Callable[[], None]) -> None:
        """Start monitoring for device add/remove events.

        Args:
            on_change: Callback when devices change (debounced by manager).
        """
        pass

    def stop_watching(self) -> None:
        pass

    def close(self) -> None:
        pass


@dataclass(frozen=True)
class KernelBattery:
    """Raw battery entry as a kernel backend sees it, before naming."""
    address: str
    percent: Optional[float]
    product: str = ""
    wake_reason: str = ""


class KernelSource(ABC):
    """Polled source of kernel-registry battery records."""

    @abstractmethod
    def poll(self, diagnostic_map: Dict[str, ParsedDiagnosticEntry]) -> List[DeviceRecord]:
        """Return one record per Bluetooth device with a usable percentage.

        ``diagnostic_map`` is only used to backfill names and attach
        component levels.
        """
        ...

    def supports_hotplug(self) -> bool:
        return False

    def start_watching(self, on_change: Callable[[], None]) -> None:
        pass

    def close(self) -> None:
        pass


# ---- GATT channel events ------------------------------------------------

@dataclass(frozen=True)
class Connected:
    session_id: str
    name: Optional[str] = None
    address: Optional[str] = None


@dataclass(frozen=True)
class BatteryUpdate:
    session_id: str
    level: int
    name: Optional[str] = None
    address: Optional[str] = None


@dataclass(frozen=True)
class Disconnected:
    session_id: str


class GattSource(ABC):
    """Push-based battery source.

    Instead of handing data to callbacks, a running source puts
    ``Connected``, ``BatteryUpdate`` and ``Disconnected`` events on the
    queue it was started with. The manager drains that queue on its own
    loop; the optional ``notify`` hook only wakes it up.
    """

    @abstractmethod
    def start(self, events: "queue.Queue",
              notify: Optional[Callable[[], None]] = None) -> None:
        """Begin pushing events onto ``events``.

        Args:
            notify: Called from the source thread after each event is
                queued, so the owner can drain without waiting for a poll.
        """
        ...

    @abstractmethod
    def stop(self) -> None:
        ...

    def rescan(self) -> None:
        """Look for newly connected peripherals (no-op by default)."""
        pass
