# ot_monitor/state/stores.py
"""
Persistence interfaces consumed by the monitoring pipeline, plus an
in-memory implementation.

The relational schema of the wider application is out of reach of this
package; it only needs the three narrow capabilities below. InMemoryStore
backs tests, the demo runner and deployments without a database.
"""

from __future__ import annotations

import asyncio
import copy
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from ot_monitor.exceptions import DeviceLookupFailure
from ot_monitor.security.logging_system import get_logger
from ot_monitor.state.models import (
    Alert,
    AlertCandidate,
    AttackLog,
    Device,
    DeviceStatus,
    NewReading,
    Reading,
)

__all__ = [
    "DeviceRegistry",
    "ReadingStore",
    "AlertStore",
    "InMemoryStore",
]

logger = get_logger(__name__, device="state_store")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ----------------------------------------------------------------
# Interfaces
# ----------------------------------------------------------------


class DeviceRegistry(ABC):
    """Read-mostly device lookups."""

    @abstractmethod
    async def get_device(self, device_id: int) -> Device | None:
        """Return the device, or None if it does not exist."""

    @abstractmethod
    async def get_devices(self) -> list[Device]:
        """Return every registered device."""

    @abstractmethod
    async def update_device_status(
        self, device_id: int, status: DeviceStatus
    ) -> Device | None:
        """Persist the aggregate status; None if the device is gone."""


class ReadingStore(ABC):
    """Append-only reading history."""

    @abstractmethod
    async def create_sensor_data(self, reading: NewReading) -> Reading:
        """Persist a reading; the store assigns id and timestamp."""

    @abstractmethod
    async def get_sensor_data(
        self,
        device_id: int | None = None,
        parameter: str | None = None,
        limit: int | None = None,
    ) -> list[Reading]:
        """Readings, newest first."""

    @abstractmethod
    async def get_latest_sensor_data(self, device_id: int | None = None) -> list[Reading]:
        """Most recent reading per (device, parameter)."""


class AlertStore(ABC):
    """Alert persistence."""

    @abstractmethod
    async def create_alert(self, candidate: AlertCandidate) -> Alert:
        """Persist an alert; the store assigns id and timestamp."""

    @abstractmethod
    async def get_alerts(self, acknowledged: bool | None = None) -> list[Alert]:
        """Alerts newest first, optionally filtered by acknowledgement."""

    @abstractmethod
    async def acknowledge_alert(self, alert_id: int) -> Alert | None:
        """Mark an alert acknowledged; None if it does not exist."""


# ----------------------------------------------------------------
# In-memory implementation
# ----------------------------------------------------------------


class InMemoryStore(DeviceRegistry, ReadingStore, AlertStore):
    """
    All three stores in one process-local object.

    Records are immutable dataclasses; updates swap in a replaced copy.
    A single asyncio.Lock guards id allocation and list mutation.

    Example:
        >>> store = InMemoryStore()
        >>> await store.seed_devices(devices)
        >>> reading = await store.create_sensor_data(new_reading)
    """

    def __init__(self, max_readings: int | None = None):
        """
        Args:
            max_readings: Oldest readings are discarded beyond this many
                (None keeps everything)
        """
        self.max_readings = max_readings

        self._devices: dict[int, Device] = {}
        self._readings: list[Reading] = []
        self._alerts: dict[int, Alert] = {}
        self._attack_logs: list[AttackLog] = []

        self._next_reading_id = 1
        self._next_alert_id = 1
        self._next_attack_log_id = 1
        self._lock = asyncio.Lock()

    # ----------------------------------------------------------------
    # Devices
    # ----------------------------------------------------------------

    async def add_device(self, device: Device) -> Device:
        async with self._lock:
            self._devices[device.id] = device
        logger.debug(f"Registered device {device.id} ({device.name})")
        return device

    async def seed_devices(self, devices: list[Device]) -> int:
        for device in devices:
            await self.add_device(device)
        return len(devices)

    async def get_device(self, device_id: int) -> Device | None:
        return self._devices.get(device_id)

    async def get_devices(self) -> list[Device]:
        return list(self._devices.values())

    async def require_device(self, device_id: int) -> Device:
        """
        Raises:
            DeviceLookupFailure: If the device is not registered
        """
        device = await self.get_device(device_id)
        if device is None:
            raise DeviceLookupFailure(device_id)
        return device

    async def update_device_status(
        self, device_id: int, status: DeviceStatus
    ) -> Device | None:
        async with self._lock:
            device = self._devices.get(device_id)
            if device is None:
                return None
            if device.status is not status:
                device = replace(device, status=status)
                self._devices[device_id] = device
        return device

    # ----------------------------------------------------------------
    # Readings
    # ----------------------------------------------------------------

    async def create_sensor_data(self, reading: NewReading) -> Reading:
        async with self._lock:
            stored = Reading(
                id=self._next_reading_id,
                device_id=reading.device_id,
                parameter_name=reading.parameter_name,
                value=reading.value,
                unit=reading.unit,
                status=reading.status,
                timestamp=_utcnow(),
            )
            self._next_reading_id += 1
            self._readings.append(stored)
            if self.max_readings is not None and len(self._readings) > self.max_readings:
                del self._readings[: len(self._readings) - self.max_readings]
        return stored

    async def get_sensor_data(
        self,
        device_id: int | None = None,
        parameter: str | None = None,
        limit: int | None = None,
    ) -> list[Reading]:
        # Append order is creation order; ids break timestamp ties
        matches = [
            r
            for r in reversed(self._readings)
            if (device_id is None or r.device_id == device_id)
            and (parameter is None or r.parameter_name == parameter)
        ]
        if limit is not None:
            matches = matches[:limit]
        return matches

    async def get_latest_sensor_data(self, device_id: int | None = None) -> list[Reading]:
        latest: dict[tuple[int, str], Reading] = {}
        for reading in reversed(self._readings):
            if device_id is not None and reading.device_id != device_id:
                continue
            latest.setdefault((reading.device_id, reading.parameter_name), reading)
        return list(latest.values())

    # ----------------------------------------------------------------
    # Alerts
    # ----------------------------------------------------------------

    async def create_alert(self, candidate: AlertCandidate) -> Alert:
        async with self._lock:
            alert = Alert(
                id=self._next_alert_id,
                severity=candidate.severity,
                title=candidate.title,
                description=candidate.description,
                source=candidate.source,
                device_id=candidate.device_id,
                raw_data=copy.deepcopy(candidate.raw_data),
                timestamp=_utcnow(),
            )
            self._next_alert_id += 1
            self._alerts[alert.id] = alert
        return alert.detached()

    async def get_alerts(self, acknowledged: bool | None = None) -> list[Alert]:
        alerts = [
            a.detached() for a in sorted(self._alerts.values(), key=lambda a: a.id, reverse=True)
        ]
        if acknowledged is None:
            return alerts
        return [a for a in alerts if a.acknowledged is acknowledged]

    async def get_alert(self, alert_id: int) -> Alert | None:
        alert = self._alerts.get(alert_id)
        return alert.detached() if alert is not None else None

    async def acknowledge_alert(self, alert_id: int) -> Alert | None:
        async with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                return None
            if not alert.acknowledged:
                alert = replace(alert, acknowledged=True)
                self._alerts[alert_id] = alert
        logger.info(f"Alert {alert_id} acknowledged")
        return alert.detached()

    # ----------------------------------------------------------------
    # Attack logs
    # ----------------------------------------------------------------

    async def create_attack_log(
        self,
        attack_type: str,
        target_id: int | None,
        result: str,
        parameters: dict[str, Any] | None = None,
        notes: str = "",
    ) -> AttackLog:
        async with self._lock:
            entry = AttackLog(
                id=self._next_attack_log_id,
                attack_type=attack_type,
                target_id=target_id,
                result=result,
                timestamp=_utcnow(),
                parameters=dict(parameters or {}),
                notes=notes,
            )
            self._next_attack_log_id += 1
            self._attack_logs.append(entry)
        return entry

    async def get_attack_logs(self) -> list[AttackLog]:
        return list(reversed(self._attack_logs))

    def get_stats(self) -> dict[str, int]:
        return {
            "devices": len(self._devices),
            "readings": len(self._readings),
            "alerts": len(self._alerts),
            "unacknowledged_alerts": sum(
                1 for a in self._alerts.values() if not a.acknowledged
            ),
            "attack_logs": len(self._attack_logs),
        }
