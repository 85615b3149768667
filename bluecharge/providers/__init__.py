"""Battery source implementations."""

from bluecharge.providers.upower import UPowerBackend
from bluecharge.providers.sysfs import SysfsBackend
from bluecharge.providers.kernel import KernelBatterySource
from bluecharge.providers.diagnostic import DiagnosticCollector

__all__ = ["UPowerBackend", "SysfsBackend", "KernelBatterySource", "DiagnosticCollector"]
