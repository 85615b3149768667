"""Parser for the Bluetooth diagnostic report (system_profiler SPBluetoothDataType).

Example input::

    Bluetooth:
        Connected:
            Magic Keyboard:
                Address: AA:BB:CC:DD:EE:FF
                Battery Level: 75%
                Minor Type: Keyboard
        Not Connected:
            AirPods Pro:
                Address: 11:22:33:44:55:66
                Left Battery Level: 90%

The indentation width differs between tool versions, so the depth of
device name lines is learned from the first candidate after each
"Connected:" / "Not Connected:" header instead of being hardcoded.
"""

import logging
import re
from enum import Enum, auto
from typing import Dict, Optional

from bluecharge.core.types import ParsedDiagnosticEntry, clamp_percent, normalize_address

log = logging.getLogger(__name__)

SECTION_LABELS = frozenset({"Connected", "Not Connected"})

RESERVED_LABELS = frozenset({
    "Address",
    "Battery Level",
    "Left Battery Level",
    "Right Battery Level",
    "Case Battery Level",
    "Minor Type",
    "Connected",
    "Not Connected",
    "Services",
    "Vendor ID",
    "Product ID",
    "Firmware Version",
    "Paired",
    "Favourite",
    "Major Type",
    "Transport",
    "Bluetooth",
    "Bluetooth Controller",
    "State",
    "Chipset",
    "Discoverable",
    "RSSI",
    "Manufacturer",
    "Supported services",
})

# Field label -> ParsedDiagnosticEntry attribute
_BATTERY_FIELDS = {
    "Battery Level": "battery",
    "Left Battery Level": "left",
    "Right Battery Level": "right",
    "Case Battery Level": "case",
}

_MIN_NAME_LENGTH = 3
_NUMBER_RE = re.compile(r'^-?\d+')


def parse_battery_value(text: str) -> Optional[int]:
    """Parse "75%" style values. Non-numeric values yield None."""
    m = _NUMBER_RE.match(text.strip())
    if not m:
        return None
    return clamp_percent(int(m.group(0)))


def _indent_of(line: str) -> int:
    expanded = line.expandtabs(4)
    return len(expanded) - len(expanded.lstrip(" "))


class _State(Enum):
    SEEKING_SECTION = auto()
    IN_SECTION = auto()
    IN_DEVICE = auto()


class DiagnosticReportParser:
    """Line-driven state machine turning the report into entries by address.

    A parser instance holds scan state only for the duration of one
    ``parse()`` call, so it can be reused.
    """

    def __init__(self):
        self._reset()

    def _reset(self) -> None:
        self._state = _State.SEEKING_SECTION
        self._section_indent = -1
        self._device_indent: Optional[int] = None
        self._pending: Optional[ParsedDiagnosticEntry] = None
        self._result: Dict[str, ParsedDiagnosticEntry] = {}

    def parse(self, text: str) -> Dict[str, ParsedDiagnosticEntry]:
        self._reset()
        for line in text.splitlines():
            if not line.strip():
                continue
            self._feed(line)
        self._flush()
        result = self._result
        self._reset()
        return result

    # ---- State machine ---------------------------------------------------

    def _feed(self, line: str) -> None:
        indent = _indent_of(line)
        stripped = line.strip()
        label, value = self._split(stripped)

        if label in SECTION_LABELS and not value:
            self._enter_section(indent)
            return

        if self._state is _State.SEEKING_SECTION:
            return

        if indent <= self._section_indent:
            # Dedented past the section header: the section is over.
            self._flush()
            self._state = _State.SEEKING_SECTION
            return

        if self._is_device_header(label, value, indent):
            self._flush()
            self._pending = ParsedDiagnosticEntry(name=label)
            self._state = _State.IN_DEVICE
            return

        if self._state is _State.IN_DEVICE and label is not None:
            self._apply_field(label, value)

    def _enter_section(self, indent: int) -> None:
        self._flush()
        self._state = _State.IN_SECTION
        self._section_indent = indent
        self._device_indent = None

    def _is_device_header(self, label: Optional[str], value: str, indent: int) -> bool:
        if label is None or value or label in RESERVED_LABELS:
            return False
        if self._device_indent is None:
            if len(label) < _MIN_NAME_LENGTH:
                return False
            self._device_indent = indent
            return True
        return indent == self._device_indent and len(label) >= _MIN_NAME_LENGTH

    def _apply_field(self, label: str, value: str) -> None:
        entry = self._pending
        if label == "Address":
            address = normalize_address(value)
            if address is None:
                log.debug("Ignoring malformed address %r for %s", value, entry.name)
            else:
                entry.address = address
        elif label in _BATTERY_FIELDS:
            setattr(entry, _BATTERY_FIELDS[label], parse_battery_value(value))
        elif label == "Minor Type":
            entry.minor_type = value or None

    def _flush(self) -> None:
        entry = self._pending
        self._pending = None
        if entry is None:
            return
        if entry.address is None:
            return
        existing = self._result.get(entry.address)
        if existing is None:
            self._result[entry.address] = entry
        else:
            existing.merge(entry)

    @staticmethod
    def _split(stripped: str):
        """Split "Label: value" into (label, value); (None, "") if no colon."""
        if ":" not in stripped:
            return None, ""
        if stripped.endswith(":"):
            return stripped[:-1].strip(), ""
        # Addresses contain colons, so only the first ": " separates the label.
        if ": " not in stripped:
            return None, ""
        label, value = stripped.split(": ", 1)
        return label.strip(), value.strip()


def parse_diagnostic_report(text: str) -> Dict[str, ParsedDiagnosticEntry]:
    """Parse the full report text into {normalized address: entry}."""
    return DiagnosticReportParser().parse(text)
