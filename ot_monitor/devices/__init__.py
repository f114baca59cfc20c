# ot_monitor/devices/__init__.py
"""Device polling and reading sources."""

from ot_monitor.devices.device_poller import DevicePoller, TickResult
from ot_monitor.devices.reading_source import (
    ModbusReadingSource,
    ReadingSource,
    SimulatedReadingSource,
)

__all__ = [
    "DevicePoller",
    "TickResult",
    "ModbusReadingSource",
    "ReadingSource",
    "SimulatedReadingSource",
]
