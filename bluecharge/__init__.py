"""BlueCharge - Bluetooth peripheral battery tracker."""

__version__ = "0.1.0"
