"""Shared fixtures: diagnostic report samples and fake sources."""

from __future__ import annotations

import pytest

from bluecharge.core.provider import KernelBackend, KernelBattery, KernelSource
from bluecharge.core.types import DeviceRecord, SourceType


MOUSE_ADDR = "aa-bb-cc-dd-ee-ff"
KEYBOARD_ADDR = "11-22-33-44-55-66"
PODS_ADDR = "01-23-45-67-89-ab"


SINGLE_DEVICE_REPORT = """\
Bluetooth:

    Bluetooth Controller:
      Address: F0:18:98:00:00:01
      State: On
      Chipset: BCM_4387
    Connected:
        Magic Keyboard:
          Address: 11:22:33:44:55:66
          Battery Level: 75%
          Minor Type: Keyboard
"""

EIGHT_SPACE_REPORT = """\
    Bluetooth:
      Connected:
        Magic Keyboard:
          Address: 11:22:33:44:55:66
          Battery Level: 80%
        Magic Mouse:
          Address: AA:BB:CC:DD:EE:FF
          Battery Level: 65%
          Minor Type: Mouse
"""

TEN_SPACE_REPORT = """\
  Bluetooth:
      Connected:
          AirPods Pro:
              Address: 01:23:45:67:89:AB
              Left Battery Level: 90%
              Right Battery Level: 85%
              Case Battery Level: 70%
              Minor Type: Headphones
"""

DUPLICATE_SECTIONS_REPORT = """\
    Bluetooth:
      Connected:
        AirPods Pro:
          Address: 01:23:45:67:89:AB
          Battery Level: 80%
      Not Connected:
        AirPods Pro:
          Address: 01:23:45:67:89:AB
          Battery Level: 20%
          Left Battery Level: 90%
          Minor Type: Headphones
"""


class FakeBackend(KernelBackend):
    """Kernel backend returning canned batteries."""

    def __init__(self, batteries=None, name="fake", priority=10, fail=False):
        self._batteries = list(batteries or [])
        self._name = name
        self._priority = priority
        self._fail = fail

    @property
    def name(self) -> str:
        return self._name

    @property
    def priority(self) -> int:
        return self._priority

    def enumerate(self):
        if self._fail:
            raise RuntimeError("registry exploded")
        return list(self._batteries)


class FakeKernelSource(KernelSource):
    """Kernel source returning a settable list of records."""

    def __init__(self, devices=None):
        self.devices = list(devices or [])
        self.poll_count = 0
        self.last_map = None

    def poll(self, diagnostic_map):
        self.poll_count += 1
        self.last_map = diagnostic_map
        return list(self.devices)


class FakeCollector:
    def __init__(self, text=""):
        self.text = text
        self.calls = 0

    def collect(self) -> str:
        self.calls += 1
        return self.text


def kernel_record(address: str, name: str, level: int) -> DeviceRecord:
    return DeviceRecord.create(
        id=address, name=name, battery_level=level,
        address=address, source=SourceType.KERNEL,
    )


@pytest.fixture
def mouse_battery() -> KernelBattery:
    return KernelBattery(address="AA:BB:CC:DD:EE:FF", percent=40.0, product="Magic Mouse")


@pytest.fixture
def fake_kernel() -> FakeKernelSource:
    return FakeKernelSource()


@pytest.fixture
def xdg_dirs(tmp_path, monkeypatch):
    """Point config and data directories at a temporary location."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    return tmp_path
