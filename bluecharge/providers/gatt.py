"""BLE GATT Battery Service source built on bleak.

bleak is asyncio-based, so the source runs its own event loop in a daemon
thread. It never hands data to the manager directly: every connect, battery
notification and disconnect becomes an event on the queue handed to
``start()``, followed by a call to the optional ``notify`` hook.
"""

import asyncio
import logging
import queue
import threading
from typing import Callable, Dict, Optional

from bleak import BleakClient, BleakScanner

from bluecharge.core.provider import BatteryUpdate, Connected, Disconnected, GattSource
from bluecharge.core.types import clamp_percent, normalize_address

log = logging.getLogger(__name__)

BATTERY_SERVICE_UUID = "0000180f-0000-1000-8000-00805f9b34fb"
BATTERY_LEVEL_CHAR_UUID = "00002a19-0000-1000-8000-00805f9b34fb"

DEFAULT_SCAN_TIMEOUT_SECONDS = 5.0
DEFAULT_SCAN_INTERVAL_SECONDS = 60.0
CONNECT_TIMEOUT_SECONDS = 15.0


def decode_battery_level(data) -> Optional[int]:
    """Battery Level characteristic: one unsigned byte, percent."""
    if not data:
        return None
    return clamp_percent(data[0])


class BleakGattSource(GattSource):
    """Connects to peripherals exposing the Battery Service and subscribes
    to Battery Level notifications."""

    def __init__(self,
                 scan_timeout: float = DEFAULT_SCAN_TIMEOUT_SECONDS,
                 scan_interval: float = DEFAULT_SCAN_INTERVAL_SECONDS):
        self.scan_timeout = scan_timeout
        self.scan_interval = scan_interval
        self._events: Optional[queue.Queue] = None
        self._notify: Optional[Callable[[], None]] = None
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._wake: Optional[asyncio.Event] = None
        self._running = False
        self._clients: Dict[str, object] = {}  # session_id -> BleakClient

    def start(self, events: "queue.Queue",
              notify: Optional[Callable[[], None]] = None) -> None:
        if self._running:
            return
        self._events = events
        self._notify = notify
        self._running = True
        self._thread = threading.Thread(target=self._thread_main, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._running = False
        self._signal_wake()

    def rescan(self) -> None:
        self._signal_wake()

    # ---- Background loop -------------------------------------------------

    def _thread_main(self) -> None:
        try:
            asyncio.run(self._run())
        except Exception:
            log.exception("GATT source loop crashed")
        finally:
            self._loop = None

    async def _run(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._wake = asyncio.Event()
        try:
            while self._running:
                await self._scan_once()
                self._wake.clear()
                try:
                    await asyncio.wait_for(self._wake.wait(), timeout=self.scan_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self._disconnect_all()

    async def _scan_once(self) -> None:
        try:
            found = await BleakScanner.discover(
                timeout=self.scan_timeout,
                service_uuids=[BATTERY_SERVICE_UUID],
            )
        except Exception as e:
            log.debug("BLE scan failed: %s", e)
            return

        for device in found:
            if not self._running:
                break
            if device.address in self._clients:
                continue
            await self._connect(device)

    async def _connect(self, device) -> None:
        session_id = device.address
        name = device.name
        address = normalize_address(device.address)

        def _on_disconnect(_client):
            self._clients.pop(session_id, None)
            self._emit(Disconnected(session_id=session_id))

        def _on_notify(_sender, data: bytearray):
            level = decode_battery_level(data)
            if level is not None:
                self._emit(BatteryUpdate(session_id, level, name=name, address=address))

        client = BleakClient(device, disconnected_callback=_on_disconnect,
                             timeout=CONNECT_TIMEOUT_SECONDS)
        try:
            await client.connect()
            self._clients[session_id] = client
            self._emit(Connected(session_id, name=name, address=address))

            level = decode_battery_level(await client.read_gatt_char(BATTERY_LEVEL_CHAR_UUID))
            if level is not None:
                self._emit(BatteryUpdate(session_id, level, name=name, address=address))
            await client.start_notify(BATTERY_LEVEL_CHAR_UUID, _on_notify)
        except Exception as e:
            log.debug("GATT battery read failed for %s: %s", session_id, e)
            if session_id in self._clients:
                self._clients.pop(session_id, None)
                try:
                    await client.disconnect()
                except Exception:
                    log.debug("Disconnect after failure raised for %s", session_id)

    async def _disconnect_all(self) -> None:
        for session_id, client in list(self._clients.items()):
            try:
                await client.disconnect()
            except Exception:
                log.debug("Failed to disconnect %s", session_id)
        self._clients.clear()

    def _emit(self, event) -> None:
        if self._events is None:
            return
        self._events.put(event)
        if self._notify is not None:
            self._notify()

    def _signal_wake(self) -> None:
        loop, wake = self._loop, self._wake
        if loop is not None and wake is not None:
            try:
                loop.call_soon_threadsafe(wake.set)
            except RuntimeError:
                # Loop already closed
                pass
