#!/usr/bin/env python3
"""Command-line interface for the BlueCharge Bluetooth battery tracker."""

import sys
import json
import signal
import logging
import argparse

from bluecharge.config import Config
from bluecharge.core.manager import _DeviceManagerCore


def _format_status(dev, estimate) -> str:
    line = f"{dev.name}: {dev.battery_level}%"
    if dev.component_text:
        line += f" ({dev.component_text})"
    if estimate:
        line += f"  {estimate}"
    return line


def _to_json(dev, estimate) -> dict:
    entry = {
        "id": dev.id,
        "name": dev.name,
        "battery_percent": dev.battery_level,
        "kind": dev.kind.name.lower(),
        "source": dev.source.name.lower(),
    }
    if dev.components is not None:
        entry["components"] = {
            k: v for k, v in (
                ("left", dev.components.left),
                ("right", dev.components.right),
                ("case", dev.components.case),
            ) if v is not None
        }
    if estimate:
        entry["estimate"] = estimate
    return entry


def _print_list(mgr, devices) -> None:
    print(f"Found {len(devices)} device(s):\n")
    for dev in devices:
        estimate = mgr.estimate_remaining(dev.id) or "N/A"
        print(f"  {dev.name}")
        print(f"    ID:         {dev.id}")
        print(f"    Kind:       {dev.kind.name.lower()}")
        print(f"    Battery:    {dev.battery_level}%")
        if dev.component_text:
            print(f"    Components: {dev.component_text}")
        print(f"    Source:     {dev.source.name.lower()}")
        print(f"    Estimate:   {estimate}")
        print()


def _print_status(mgr, devices, as_json: bool) -> None:
    if as_json:
        print(json.dumps([_to_json(d, mgr.estimate_remaining(d.id)) for d in devices]))
        return
    for dev in devices:
        print(_format_status(dev, mgr.estimate_remaining(dev.id)))


def _watch(core: _DeviceManagerCore, interval: int, device_id, as_json: bool) -> int:
    from PyQt5.QtCore import QCoreApplication, QTimer
    from bluecharge.core.manager import DeviceManager

    app = QCoreApplication(sys.argv[:1])
    manager = DeviceManager(core, refresh_interval=interval)

    def on_changed(devices):
        if device_id:
            devices = [d for d in devices if d.id == device_id]
        _print_status(manager, devices, as_json)
        if not as_json:
            print()

    manager.devices_changed.connect(on_changed)
    signal.signal(signal.SIGINT, lambda *_: app.quit())

    # Wake the interpreter periodically so the SIGINT handler gets to run.
    tick = QTimer()
    tick.timeout.connect(lambda: None)
    tick.start(250)

    print(f"Monitoring batteries (every {interval}s, Ctrl+C to stop)...\n")
    manager.start()
    try:
        return app.exec_()
    finally:
        manager.stop()
        print("\nStopped.")


def main():
    parser = argparse.ArgumentParser(
        description="BlueCharge - Bluetooth Peripheral Battery Tracker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Examples:
  %(prog)s              Show battery status for all Bluetooth peripherals
  %(prog)s --json       Output as JSON (for scripts/waybar)
  %(prog)s --list       List all detected devices with details
  %(prog)s --watch      Continuously monitor, printing on every change
  %(prog)s --device ID  Filter to a specific device id
""",
    )
    parser.add_argument("--list", "-l", action="store_true", help="List all detected devices")
    parser.add_argument("--json", "-j", action="store_true", help="Output as JSON")
    parser.add_argument("--watch", "-w", action="store_true", help="Continuously monitor battery")
    parser.add_argument("--device", "-d", type=str, default=None, help="Filter to a specific device id")
    parser.add_argument(
        "--interval", "-i", type=int, default=None,
        help="Refresh interval in seconds (default: from config)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    config = Config()
    core = _DeviceManagerCore.from_config(config)
    interval = args.interval or config.refresh_interval

    if args.watch:
        return _watch(core, interval, args.device, args.json)

    try:
        devices = core.scan_once()
    finally:
        core.close()

    if args.device:
        devices = [d for d in devices if d.id == args.device]

    if not devices:
        if args.json:
            print(json.dumps([]))
        elif args.device:
            print(f"Error: Device '{args.device}' not found.")
        else:
            print("No Bluetooth battery devices found.")
            print("\nMake sure:")
            print("  - The device is paired and connected")
            print("  - The UPower daemon is running")
            print("\nRun with --watch to include BLE GATT devices.")
        return 1 if args.device else 0

    if args.list:
        _print_list(core, devices)
    else:
        _print_status(core, devices, args.json)
    return 0


if __name__ == "__main__":
    sys.exit(main())
