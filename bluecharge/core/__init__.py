"""Core reconciliation and battery estimation engine."""

from bluecharge.core.types import (
    DeviceKind,
    SourceType,
    ComponentLevels,
    DeviceRecord,
    ParsedDiagnosticEntry,
    BatteryReading,
)
from bluecharge.core.parser import DiagnosticReportParser, parse_diagnostic_report
from bluecharge.core.reconciler import DeviceReconciler, GattDeviceTable, ReconcileResult
from bluecharge.core.history import BatteryHistoryEngine, HistoryStore, format_time_remaining

__all__ = [
    "DeviceKind",
    "SourceType",
    "ComponentLevels",
    "DeviceRecord",
    "ParsedDiagnosticEntry",
    "BatteryReading",
    "DiagnosticReportParser",
    "parse_diagnostic_report",
    "DeviceReconciler",
    "GattDeviceTable",
    "ReconcileResult",
    "BatteryHistoryEngine",
    "HistoryStore",
    "format_time_remaining",
]
