# ot_monitor/exceptions.py
"""
Error taxonomy for the monitoring pipeline.

Only failures that cross a component boundary get an exception type.
"Unknown parameter" and "insufficient history" are not errors: the
analyzer simply returns no alert.
"""

__all__ = [
    "MonitorError",
    "ConfigError",
    "TransientStoreError",
    "DeviceLookupFailure",
    "SubscriberDeliveryFailure",
    "ReadingSourceError",
]


class MonitorError(Exception):
    """Base class for monitoring pipeline errors."""


class ConfigError(MonitorError):
    """Configuration value is invalid and has no usable default."""


class TransientStoreError(MonitorError):
    """A store call failed (unreachable, timeout). Safe to retry next tick."""


class DeviceLookupFailure(MonitorError):
    """A device referenced by a reading no longer exists in the registry."""

    def __init__(self, device_id: int):
        super().__init__(f"Device {device_id} not found in registry")
        self.device_id = device_id


class SubscriberDeliveryFailure(MonitorError):
    """A subscriber channel is full or closed."""


class ReadingSourceError(MonitorError):
    """A reading source could not produce samples for a device."""
