"""Device manager - schedules collection and feeds the reconciler."""

import logging
import queue
import threading
import time
from typing import Dict, List, Optional, Tuple

# Qt is optional; the CLI one-shot path only needs the core.
try:
    from PyQt5.QtCore import QObject, QTimer, pyqtSignal
    _HAS_QT = True
except ImportError:
    _HAS_QT = False

from bluecharge.core.history import BatteryHistoryEngine, HistoryStore
from bluecharge.core.parser import DiagnosticReportParser
from bluecharge.core.provider import GattSource, KernelSource
from bluecharge.core.reconciler import (
    DEFAULT_GRACE_PERIOD_SECONDS,
    DEFAULT_RESCAN_DELAY_SECONDS,
    DeviceReconciler,
    GattDeviceTable,
    ReconcileResult,
)
from bluecharge.core.types import DeviceRecord, ParsedDiagnosticEntry

log = logging.getLogger(__name__)

EVENT_DRAIN_INTERVAL_MS = 500
HOTPLUG_SETTLE_MS = 2000


class _DeviceManagerCore:
    """Pure-Python manager core; uses no Qt objects or timers.

    Holds the cached kernel list and diagnostic map, the GATT session
    table, the reconciler and the history engine. Used directly by the
    CLI (scan_once) and wrapped by the Qt-aware DeviceManager.
    """

    def __init__(self,
                 kernel_source: Optional[KernelSource] = None,
                 gatt_source: Optional[GattSource] = None,
                 collector=None,
                 history: Optional[BatteryHistoryEngine] = None,
                 grace_period: float = DEFAULT_GRACE_PERIOD_SECONDS,
                 rescan_delay: float = DEFAULT_RESCAN_DELAY_SECONDS):
        self._kernel = kernel_source
        self._gatt = gatt_source
        self._collector = collector
        self._parser = DiagnosticReportParser()
        self._history = history if history is not None else BatteryHistoryEngine()
        self._reconciler = DeviceReconciler()
        self._gatt_table = GattDeviceTable(grace_period, rescan_delay)
        self._events: "queue.Queue" = queue.Queue()

        self._diagnostic_map: Dict[str, ParsedDiagnosticEntry] = {}
        self._kernel_devices: List[DeviceRecord] = []

    @classmethod
    def from_config(cls, config) -> "_DeviceManagerCore":
        """Create a core with all sources enabled in ``config``."""
        from bluecharge.providers.diagnostic import DiagnosticCollector
        from bluecharge.providers.kernel import KernelBatterySource
        from bluecharge.providers.sysfs import SysfsBackend
        from bluecharge.providers.upower import UPowerBackend

        providers_cfg = config.providers
        kernel = KernelBatterySource()
        if providers_cfg.get("upower", True):
            kernel.register_backend(UPowerBackend())
        if providers_cfg.get("sysfs", True):
            kernel.register_backend(SysfsBackend())

        gatt_cfg = config.gatt
        gatt = None
        if providers_cfg.get("gatt", True):
            from bluecharge.providers.gatt import BleakGattSource
            gatt = BleakGattSource(scan_timeout=gatt_cfg.get("scan_timeout_seconds", 5))

        collector = None
        if providers_cfg.get("diagnostic", True):
            diag_cfg = config.diagnostic
            collector = DiagnosticCollector(
                command=diag_cfg.get("command") or [],
                timeout=diag_cfg.get("timeout_seconds", 15),
            )

        hist_cfg = config.history
        history = BatteryHistoryEngine(
            store=HistoryStore.default(),
            max_readings=hist_cfg.get("max_readings", 2016),
            debounce_seconds=hist_cfg.get("debounce_seconds", 240),
            min_span_seconds=hist_cfg.get("min_span_seconds", 120),
        )

        return cls(
            kernel_source=kernel,
            gatt_source=gatt,
            collector=collector,
            history=history,
            grace_period=gatt_cfg.get("grace_period_seconds", DEFAULT_GRACE_PERIOD_SECONDS),
            rescan_delay=gatt_cfg.get("rescan_delay_seconds", DEFAULT_RESCAN_DELAY_SECONDS),
        )

    @property
    def history(self) -> BatteryHistoryEngine:
        return self._history

    @property
    def events(self) -> "queue.Queue":
        return self._events

    @property
    def kernel_source(self) -> Optional[KernelSource]:
        return self._kernel

    def get_all_devices(self) -> List[DeviceRecord]:
        return self._reconciler.devices

    def get_device(self, device_id: str) -> Optional[DeviceRecord]:
        for device in self._reconciler.devices:
            if device.id == device_id:
                return device
        return None

    def estimate_remaining(self, device_id: str) -> Optional[str]:
        return self._history.estimate_remaining(device_id)

    # ---- Collection (blocking, run off the event loop) -------------------

    def collect(self) -> Tuple[Dict[str, ParsedDiagnosticEntry], List[DeviceRecord]]:
        """Run the diagnostic command and poll the kernel registry."""
        diagnostic_map: Dict[str, ParsedDiagnosticEntry] = {}
        if self._collector is not None:
            try:
                diagnostic_map = self._parser.parse(self._collector.collect())
            except Exception:
                log.exception("Diagnostic collection failed")

        kernel_devices: List[DeviceRecord] = []
        if self._kernel is not None:
            try:
                kernel_devices = self._kernel.poll(diagnostic_map)
            except Exception:
                log.exception("Kernel battery poll failed")

        return diagnostic_map, kernel_devices

    # ---- Reconciliation (event loop) -------------------------------------

    def apply_collection(self,
                         diagnostic_map: Dict[str, ParsedDiagnosticEntry],
                         kernel_devices: List[DeviceRecord],
                         now: Optional[float] = None) -> ReconcileResult:
        """Cache a finished collection and reconcile with it."""
        self._diagnostic_map = diagnostic_map
        self._kernel_devices = kernel_devices
        self._gatt_table.expire(now)
        return self.reconcile()

    def drain_gatt_events(self, now: Optional[float] = None) -> Tuple[Optional[ReconcileResult], bool]:
        """Apply queued GATT events and expire grace periods.

        Uses the cached kernel list and diagnostic map; never re-runs the
        collectors. Returns (result or None if nothing happened, whether a
        disconnect-triggered full rescan is due).
        """
        handled = 0
        while True:
            try:
                event = self._events.get_nowait()
            except queue.Empty:
                break
            self._gatt_table.apply(event, now)
            handled += 1

        purged = self._gatt_table.expire(now)
        rescan_due = self._gatt_table.take_rescan_due(now)

        result = None
        if handled or purged:
            result = self.reconcile()
        return result, rescan_due

    def reconcile(self, wall_time: Optional[float] = None) -> ReconcileResult:
        """Merge cached sources, then record every merged level in history."""
        result = self._reconciler.update(
            self._kernel_devices,
            self._gatt_table.devices(),
            self._diagnostic_map,
        )
        if wall_time is None:
            wall_time = time.time()
        for device in result.devices:
            self._history.record(device.id, device.battery_level, now=wall_time)
        return result

    def scan_once(self) -> List[DeviceRecord]:
        """Synchronous one-shot: collect from polled sources and reconcile.

        Useful for the CLI where there is no event loop. The GATT source
        is push-based and is not consulted here.
        """
        diagnostic_map, kernel_devices = self.collect()
        return self.apply_collection(diagnostic_map, kernel_devices).devices

    # ---- Source lifecycle -------------------------------------------------

    def start_sources(self, notify=None) -> None:
        """Start the GATT source; ``notify`` runs after each queued event."""
        if self._gatt is not None:
            self._gatt.start(self._events, notify)

    def rescan_gatt(self) -> None:
        if self._gatt is not None:
            self._gatt.rescan()

    def close(self) -> None:
        """Stop the GATT source and clean up the kernel backends."""
        if self._gatt is not None:
            try:
                self._gatt.stop()
            except Exception:
                log.debug("Failed to stop GATT source")
        if self._kernel is not None:
            self._kernel.close()


if _HAS_QT:
    class DeviceManager(QObject):
        """Qt-aware device manager: refresh timer, GATT event drain, signals.

        Signals:
            devices_changed(list): merged DeviceRecord list, only on change.
        """

        devices_changed = pyqtSignal(list)

        _collection_ready = pyqtSignal(object, object)
        _hotplug = pyqtSignal()
        _gatt_event = pyqtSignal()

        def __init__(self, core: _DeviceManagerCore, refresh_interval: int = 30, parent=None):
            super().__init__(parent)
            self._core = core
            self._refresh_interval = refresh_interval
            self._collecting = False
            self._collect_lock = threading.Lock()

            self._refresh_timer = QTimer(self)
            self._refresh_timer.timeout.connect(self.refresh)

            self._event_timer = QTimer(self)
            self._event_timer.timeout.connect(self._drain_events)

            self._collection_ready.connect(self._on_collection_ready)
            self._hotplug.connect(self._on_hotplug_event)
            self._gatt_event.connect(self._drain_events)

        # --- Delegate to core ---

        @property
        def core(self) -> _DeviceManagerCore:
            return self._core

        @property
        def refresh_interval(self) -> int:
            return self._refresh_interval

        def get_all_devices(self) -> List[DeviceRecord]:
            return self._core.get_all_devices()

        def get_device(self, device_id: str) -> Optional[DeviceRecord]:
            return self._core.get_device(device_id)

        def estimate_remaining(self, device_id: str) -> Optional[str]:
            return self._core.estimate_remaining(device_id)

        # --- Qt lifecycle ---

        def start(self) -> None:
            """Start sources, run a first collection and begin the timers."""
            # Emitted from the GATT thread; each event is drained on the Qt loop.
            # The event timer only has to catch grace-period and rescan deadlines.
            self._core.start_sources(self._gatt_event.emit)
            kernel = self._core.kernel_source
            if kernel is not None and kernel.supports_hotplug():
                # Called from watcher threads; the signal hops onto the Qt loop.
                kernel.start_watching(self._hotplug.emit)
            self.refresh()
            self._refresh_timer.start(self._refresh_interval * 1000)
            self._event_timer.start(EVENT_DRAIN_INTERVAL_MS)

        def stop(self) -> None:
            """Stop all timers and clean up."""
            self._refresh_timer.stop()
            self._event_timer.stop()
            self._core.close()

        def set_refresh_interval(self, seconds: int) -> None:
            """Fully stop and restart the refresh timer with a new interval."""
            self._refresh_interval = max(1, int(seconds))
            was_active = self._refresh_timer.isActive()
            self._refresh_timer.stop()
            if was_active:
                self._refresh_timer.start(self._refresh_interval * 1000)

        def refresh(self) -> None:
            """Re-collect from the polled sources in a worker thread."""
            with self._collect_lock:
                if self._collecting:
                    return
                self._collecting = True
            thread = threading.Thread(target=self._collect_worker, daemon=True)
            thread.start()

        # --- Internal ---

        def _collect_worker(self) -> None:
            try:
                diagnostic_map, kernel_devices = self._core.collect()
            except Exception:
                log.exception("Collection worker failed")
                diagnostic_map, kernel_devices = {}, []
            self._collection_ready.emit(diagnostic_map, kernel_devices)

        def _on_collection_ready(self, diagnostic_map, kernel_devices) -> None:
            with self._collect_lock:
                self._collecting = False
            result = self._core.apply_collection(diagnostic_map, kernel_devices)
            self._emit_if_changed(result)

        def _drain_events(self) -> None:
            result, rescan_due = self._core.drain_gatt_events()
            self._emit_if_changed(result)
            if rescan_due:
                self._core.rescan_gatt()
                self.refresh()

        def _on_hotplug_event(self) -> None:
            QTimer.singleShot(HOTPLUG_SETTLE_MS, self.refresh)

        def _emit_if_changed(self, result: Optional[ReconcileResult]) -> None:
            if result is not None and result.changed:
                self.devices_changed.emit(result.devices)
