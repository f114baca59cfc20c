# ot_monitor/state/models.py
"""
Domain models for the monitoring pipeline.

Readings and alerts are immutable once created. The only mutable alert
field, ``acknowledged``, is changed by the alert store replacing the record
with an acknowledged copy, never in place.
"""

from __future__ import annotations

import copy
import json
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

__all__ = [
    "ReadingStatus",
    "AlertSeverity",
    "DeviceStatus",
    "MessageType",
    "POLLABLE_DEVICE_TYPES",
    "AcceptableRange",
    "ParameterSpec",
    "Device",
    "ReadingSample",
    "NewReading",
    "Reading",
    "AlertCandidate",
    "Alert",
    "AttackLog",
    "BroadcastMessage",
    "format_value",
    "aggregate_device_status",
]


# ----------------------------------------------------------------
# Classifications
# ----------------------------------------------------------------


class ReadingStatus(Enum):
    """Classification of a single reading."""

    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertSeverity(Enum):
    """Alert severity, ordered by ``rank``."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    AlertSeverity.INFO: 0,
    AlertSeverity.WARNING: 1,
    AlertSeverity.CRITICAL: 2,
}


class DeviceStatus(Enum):
    """Aggregate device status shown on the dashboard."""

    UNKNOWN = "unknown"
    ONLINE = "online"
    OFFLINE = "offline"
    WARNING = "warning"
    CRITICAL = "critical"


class MessageType(Enum):
    """Broadcast envelope types."""

    ALERT = "alert"
    SENSOR_DATA = "sensorData"
    ATTACK_LOG = "attackLog"
    DEVICE_STATUS = "deviceStatus"


POLLABLE_DEVICE_TYPES = frozenset({"plc", "sensor"})


def format_value(value: float) -> str:
    """Render a number the way operators read it: ``90`` not ``90.0``."""
    if math.isfinite(value) and float(value).is_integer():
        return str(int(value))
    return str(value)


def _parse_limit(raw: Any) -> float | None:
    # bool is an int subclass but never a meaningful engineering limit
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw) if math.isfinite(raw) else None
    if isinstance(raw, str):
        try:
            parsed = float(raw)
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


# ----------------------------------------------------------------
# Device registry entities
# ----------------------------------------------------------------


@dataclass(frozen=True)
class AcceptableRange:
    """Device-specific engineering limits. ``None`` means "use the default"."""

    min: float | None = None
    max: float | None = None

    @classmethod
    def from_config(cls, raw: Any) -> AcceptableRange:
        """Build from a loosely-typed mapping; non-numeric limits are dropped."""
        if not isinstance(raw, dict):
            return cls()
        return cls(min=_parse_limit(raw.get("min")), max=_parse_limit(raw.get("max")))

    def to_dict(self) -> dict[str, float | None]:
        return {"min": self.min, "max": self.max}


@dataclass(frozen=True)
class ParameterSpec:
    """A live parameter exposed by a device."""

    name: str
    unit: str = ""
    address: int | None = None  # Modbus holding register, if polled over Modbus
    scale: float = 1.0

    @classmethod
    def from_config(cls, raw: Any) -> ParameterSpec:
        if isinstance(raw, str):
            return cls(name=raw)
        if not isinstance(raw, dict) or not raw.get("name"):
            raise ValueError(f"Invalid parameter entry: {raw!r}")
        address = raw.get("address")
        return cls(
            name=str(raw["name"]),
            unit=str(raw.get("unit", "")),
            address=int(address) if address is not None else None,
            scale=float(raw.get("scale", 1.0)),
        )


@dataclass(frozen=True)
class Device:
    """Registry view of a monitored device.

    ``acceptable_ranges`` is either a single ``{min, max}`` mapping that
    applies to every parameter, or a mapping keyed by parameter name.
    """

    id: int
    name: str
    type: str
    protocol: str = ""
    ip_address: str = ""
    port: int = 0
    status: DeviceStatus = DeviceStatus.UNKNOWN
    acceptable_ranges: dict[str, Any] = field(default_factory=dict)
    parameters: tuple[ParameterSpec, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_pollable(self) -> bool:
        return self.type.lower() in POLLABLE_DEVICE_TYPES

    def range_for(self, parameter: str) -> AcceptableRange:
        """Return the acceptable range configured for ``parameter``."""
        per_parameter = self.acceptable_ranges.get(parameter)
        if isinstance(per_parameter, dict):
            return AcceptableRange.from_config(per_parameter)
        return AcceptableRange.from_config(self.acceptable_ranges)

    @classmethod
    def from_config(cls, raw: dict[str, Any]) -> Device:
        """Build a device from a ``devices.yml``-style entry."""
        if "id" not in raw or not raw.get("name") or not raw.get("type"):
            raise ValueError(f"Device entry needs id, name and type: {raw!r}")
        status = raw.get("status", DeviceStatus.UNKNOWN.value)
        return cls(
            id=int(raw["id"]),
            name=str(raw["name"]),
            type=str(raw["type"]),
            protocol=str(raw.get("protocol", "")),
            ip_address=str(raw.get("ip_address", "")),
            port=int(raw.get("port", 0)),
            status=DeviceStatus(status),
            acceptable_ranges=dict(raw.get("acceptable_ranges") or {}),
            parameters=tuple(
                ParameterSpec.from_config(p) for p in raw.get("parameters") or []
            ),
            metadata=dict(raw.get("metadata") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "protocol": self.protocol,
            "ip_address": self.ip_address,
            "port": self.port,
            "status": self.status.value,
            "acceptable_ranges": self.acceptable_ranges,
            "parameters": [p.name for p in self.parameters],
            "metadata": self.metadata,
        }


# ----------------------------------------------------------------
# Readings
# ----------------------------------------------------------------


@dataclass(frozen=True)
class ReadingSample:
    """Raw value produced by a reading source, before persistence."""

    parameter: str
    value: float
    unit: str = ""


@dataclass(frozen=True)
class NewReading:
    """Reading ready to be persisted; the store assigns id and timestamp."""

    device_id: int
    parameter_name: str
    value: str
    unit: str
    status: ReadingStatus = ReadingStatus.NORMAL


@dataclass(frozen=True)
class Reading:
    """One persisted observation of one parameter on one device."""

    id: int
    device_id: int
    parameter_name: str
    value: str  # decimal text, parsed for analysis
    unit: str
    status: ReadingStatus
    timestamp: datetime

    @property
    def numeric_value(self) -> float:
        """Parsed value.

        Raises:
            ValueError: If the stored text is not a number
        """
        return float(self.value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "device_id": self.device_id,
            "parameter_name": self.parameter_name,
            "value": self.value,
            "unit": self.unit,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
        }


def aggregate_device_status(latest: list[Reading]) -> DeviceStatus:
    """Worst of critical > warning > online across the latest readings."""
    statuses = {reading.status for reading in latest}
    if ReadingStatus.CRITICAL in statuses:
        return DeviceStatus.CRITICAL
    if ReadingStatus.WARNING in statuses:
        return DeviceStatus.WARNING
    return DeviceStatus.ONLINE


# ----------------------------------------------------------------
# Alerts
# ----------------------------------------------------------------


@dataclass(frozen=True)
class AlertCandidate:
    """Anomaly finding that has not been persisted yet."""

    severity: AlertSeverity
    title: str
    description: str
    source: str
    device_id: int | None = None
    raw_data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Alert:
    """Persisted alert record."""

    id: int
    severity: AlertSeverity
    title: str
    description: str
    source: str
    device_id: int | None
    raw_data: dict[str, Any]
    timestamp: datetime
    acknowledged: bool = False

    def detached(self) -> Alert:
        """Copy whose raw_data shares nothing with this record."""
        return replace(self, raw_data=copy.deepcopy(self.raw_data))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "source": self.source,
            "device_id": self.device_id,
            "raw_data": self.raw_data,
            "timestamp": self.timestamp.isoformat(),
            "acknowledged": self.acknowledged,
        }


@dataclass(frozen=True)
class AttackLog:
    """Entry produced by the attack simulation subsystem. Opaque here."""

    id: int
    attack_type: str
    target_id: int | None
    result: str
    timestamp: datetime
    parameters: dict[str, Any] = field(default_factory=dict)
    notes: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "attack_type": self.attack_type,
            "target_id": self.target_id,
            "parameters": self.parameters,
            "result": self.result,
            "notes": self.notes,
            "timestamp": self.timestamp.isoformat(),
        }


# ----------------------------------------------------------------
# Broadcast envelope
# ----------------------------------------------------------------


@dataclass(frozen=True)
class BroadcastMessage:
    """Transient ``{type, data}`` envelope pushed to real-time subscribers."""

    type: MessageType
    data: Any

    def to_dict(self) -> dict[str, Any]:
        data = self.data.to_dict() if hasattr(self.data, "to_dict") else self.data
        return {"type": self.type.value, "data": data}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)
