"""Core data types for Bluetooth peripheral battery tracking."""

import re
import time
import unicodedata
from dataclasses import dataclass, field, replace
from enum import Enum, auto
from typing import Optional

MAX_NAME_LENGTH = 100
GENERIC_DEVICE_NAME = "Bluetooth Device"

_ADDRESS_RE = re.compile(r'^[0-9a-f]{2}(?:-[0-9a-f]{2}){5}$')
_STRIPPED_CATEGORIES = ("Cc", "Cf")


class DeviceKind(Enum):
    """Coarse device category, inferred from the display name."""
    KEYBOARD = auto()
    MOUSE = auto()
    TRACKPAD = auto()
    AUDIO = auto()
    UNKNOWN = auto()


class SourceType(Enum):
    """Which channel a record came from."""
    KERNEL = auto()
    GATT = auto()
    DIAGNOSTIC = auto()


# Checked in order; first match wins.
_KIND_KEYWORDS = (
    (DeviceKind.KEYBOARD, ("keyboard",)),
    (DeviceKind.MOUSE, ("mouse", "mx master", "mx anywhere")),
    (DeviceKind.TRACKPAD, ("trackpad",)),
    (DeviceKind.AUDIO, ("airpods", "headphone", "headset", "earbuds", "buds", "beats")),
)


def clamp_percent(value: int) -> int:
    """Clamp a battery percentage to [0, 100]."""
    return max(0, min(100, int(value)))


def sanitize_name(name: Optional[str]) -> str:
    """Cap a device name at 100 characters and drop control and format characters.

    Format characters (Cf) cover bidi overrides and zero-width marks.
    """
    if not name:
        return ""
    return "".join(
        ch for ch in name[:MAX_NAME_LENGTH]
        if unicodedata.category(ch) not in _STRIPPED_CATEGORIES
    )


def normalize_address(raw: Optional[str]) -> Optional[str]:
    """Normalize a hardware address to lowercase hyphen-delimited form.

    "AA:BB:CC:DD:EE:FF", "aa_bb_cc_dd_ee_ff" and "aa-bb-cc-dd-ee-ff" all
    map to "aa-bb-cc-dd-ee-ff". Returns None for anything that is not six
    hex pairs.
    """
    if not raw:
        return None
    address = raw.strip().lower().replace(":", "-").replace("_", "-")
    if not _ADDRESS_RE.match(address):
        return None
    return address


def detect_device_kind(name: str) -> DeviceKind:
    lower = name.lower()
    for kind, keywords in _KIND_KEYWORDS:
        if any(kw in lower for kw in keywords):
            return kind
    return DeviceKind.UNKNOWN


def name_from_wake_reason(reason: Optional[str]) -> str:
    """Guess a display name from a coarse wake-reason / type hint string."""
    lower = (reason or "").lower()
    if "keyboard" in lower:
        return "Keyboard"
    if "mouse" in lower:
        return "Mouse"
    if "trackpad" in lower or "touchpad" in lower:
        return "Trackpad"
    return GENERIC_DEVICE_NAME


@dataclass(frozen=True)
class ComponentLevels:
    """Sub-battery readings of a multi-cell device (earbuds and case)."""
    left: Optional[int] = None
    right: Optional[int] = None
    case: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return self.left is None and self.right is None and self.case is None

    def present(self) -> list:
        return [v for v in (self.left, self.right, self.case) if v is not None]

    def overall(self, main: Optional[int] = None) -> Optional[int]:
        """Main reading if available, else the integer mean of the parts."""
        if main is not None:
            return main
        levels = self.present()
        if not levels:
            return None
        return sum(levels) // len(levels)

    @property
    def text(self) -> Optional[str]:
        parts = []
        if self.left is not None:
            parts.append(f"L:{self.left}%")
        if self.right is not None:
            parts.append(f"R:{self.right}%")
        if self.case is not None:
            parts.append(f"C:{self.case}%")
        return " ".join(parts) if parts else None


@dataclass(frozen=True)
class DeviceRecord:
    """Canonical, post-merge representation of one physical peripheral.

    Equality (used for change detection) covers id, name, battery level
    and component levels only.
    """
    id: str
    name: str
    battery_level: int
    kind: DeviceKind = field(default=DeviceKind.UNKNOWN, compare=False)
    components: Optional[ComponentLevels] = None
    address: Optional[str] = field(default=None, compare=False)
    source: SourceType = field(default=SourceType.KERNEL, compare=False)

    @classmethod
    def create(cls, id: str, name: str, battery_level: int,
               components: Optional[ComponentLevels] = None,
               address: Optional[str] = None,
               source: SourceType = SourceType.KERNEL) -> "DeviceRecord":
        """Build a record with a sanitized name, clamped level and inferred kind."""
        clean = sanitize_name(name) or GENERIC_DEVICE_NAME
        if components is not None and components.is_empty:
            components = None
        return cls(
            id=id,
            name=clean,
            battery_level=clamp_percent(battery_level),
            kind=detect_device_kind(clean),
            components=components,
            address=address,
            source=source,
        )

    @property
    def has_component_batteries(self) -> bool:
        return self.components is not None and not self.components.is_empty

    @property
    def component_text(self) -> Optional[str]:
        if self.components is None:
            return None
        return self.components.text

    def with_components(self, components: Optional[ComponentLevels]) -> "DeviceRecord":
        if components is not None and components.is_empty:
            components = None
        return replace(self, components=components)


@dataclass
class ParsedDiagnosticEntry:
    """One device block pulled out of the diagnostic text report."""
    address: Optional[str] = None
    name: str = ""
    battery: Optional[int] = None
    left: Optional[int] = None
    right: Optional[int] = None
    case: Optional[int] = None
    minor_type: Optional[str] = None

    @property
    def components(self) -> ComponentLevels:
        return ComponentLevels(left=self.left, right=self.right, case=self.case)

    @property
    def has_battery_data(self) -> bool:
        return self.battery is not None or not self.components.is_empty

    def merge(self, other: "ParsedDiagnosticEntry") -> None:
        """Fold a later block for the same address into this one.

        Fields already set here win; fields still missing are filled in
        from ``other``.
        """
        if not self.name:
            self.name = other.name
        for attr in ("battery", "left", "right", "case", "minor_type"):
            if getattr(self, attr) is None:
                setattr(self, attr, getattr(other, attr))


@dataclass(frozen=True)
class BatteryReading:
    """A single battery observation (epoch seconds, percent)."""
    timestamp: float = field(default_factory=time.time)
    level: int = 0
