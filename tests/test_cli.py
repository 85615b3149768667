"""Tests for the one-shot command-line modes."""

import json
import sys

import pytest

from bluecharge import cli
from bluecharge.core.manager import _DeviceManagerCore
from bluecharge.core.types import ComponentLevels, DeviceRecord, SourceType

from conftest import MOUSE_ADDR, PODS_ADDR, FakeKernelSource, kernel_record


@pytest.fixture
def run_cli(xdg_dirs, monkeypatch):
    """Run main() against a core whose kernel source returns ``devices``."""

    def _run(args, devices):
        core = _DeviceManagerCore(kernel_source=FakeKernelSource(devices))
        monkeypatch.setattr(_DeviceManagerCore, "from_config",
                            classmethod(lambda cls, config: core))
        monkeypatch.setattr(sys, "argv", ["bluecharge", *args])
        return cli.main()

    return _run


@pytest.fixture
def pods():
    return DeviceRecord.create(
        id=PODS_ADDR, name="AirPods Pro", battery_level=81,
        components=ComponentLevels(90, 85, 70), address=PODS_ADDR,
        source=SourceType.KERNEL,
    )


class TestMain:

    def test_status_lines(self, run_cli, capsys, pods):
        mouse = kernel_record(MOUSE_ADDR, "Magic Mouse", 40)

        assert run_cli([], [mouse, pods]) == 0

        out = capsys.readouterr().out.splitlines()
        assert out == ["AirPods Pro: 81% (L:90% R:85% C:70%)", "Magic Mouse: 40%"]

    def test_json(self, run_cli, capsys, pods):
        assert run_cli(["--json"], [pods]) == 0

        data = json.loads(capsys.readouterr().out)
        assert data == [{
            "id": PODS_ADDR,
            "name": "AirPods Pro",
            "battery_percent": 81,
            "kind": "audio",
            "source": "kernel",
            "components": {"left": 90, "right": 85, "case": 70},
        }]

    def test_device_filter(self, run_cli, capsys, pods):
        mouse = kernel_record(MOUSE_ADDR, "Magic Mouse", 40)

        assert run_cli(["--device", MOUSE_ADDR], [mouse, pods]) == 0
        assert capsys.readouterr().out.strip() == "Magic Mouse: 40%"

    def test_unknown_device(self, run_cli, capsys):
        assert run_cli(["--device", "nope"], []) == 1
        assert "not found" in capsys.readouterr().out

    def test_no_devices(self, run_cli, capsys):
        assert run_cli([], []) == 0
        assert "No Bluetooth battery devices found." in capsys.readouterr().out

    def test_no_devices_json(self, run_cli, capsys):
        assert run_cli(["--json"], []) == 0
        assert json.loads(capsys.readouterr().out) == []

    def test_list(self, run_cli, capsys):
        mouse = kernel_record(MOUSE_ADDR, "Magic Mouse", 40)

        assert run_cli(["--list"], [mouse]) == 0

        out = capsys.readouterr().out
        assert "Found 1 device(s)" in out
        assert f"ID:         {MOUSE_ADDR}" in out
        assert "Kind:       mouse" in out
        assert "Estimate:   N/A" in out
