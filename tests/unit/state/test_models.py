# tests/unit/state/test_models.py
"""Tests for domain models.

Test Coverage:
- Value formatting
- AcceptableRange parsing
- Device parsing and range lookup
- Reading parsing and serialisation
- Aggregate device status
- Broadcast envelope serialisation
"""

import dataclasses
import json
from datetime import datetime, timezone

import pytest

from ot_monitor.state.models import (
    AcceptableRange,
    Alert,
    AlertSeverity,
    BroadcastMessage,
    Device,
    DeviceStatus,
    MessageType,
    ParameterSpec,
    Reading,
    ReadingStatus,
    aggregate_device_status,
    format_value,
)

TS = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


# ================================================================
# FORMATTING TESTS
# ================================================================
class TestFormatValue:
    """Test format_value."""

    @pytest.mark.parametrize(
        "value,expected",
        [(90.0, "90"), (90, "90"), (8.4, "8.4"), (-3.0, "-3"), (0.0, "0")],
    )
    def test_format(self, value, expected):
        """Test integral values drop the trailing .0.

        WHY: Alert text reads "90PSI", not "90.0PSI".
        """
        assert format_value(value) == expected

    def test_non_finite(self):
        """Test non-finite values render without error.

        WHY: Corrupt device data must still produce text.
        """
        assert format_value(float("inf")) == "inf"


class TestSeverity:
    """Test AlertSeverity ordering."""

    def test_rank_ordering(self):
        """Test info < warning < critical.

        WHY: Severity comparisons drive monotonicity checks.
        """
        assert AlertSeverity.INFO.rank < AlertSeverity.WARNING.rank
        assert AlertSeverity.WARNING.rank < AlertSeverity.CRITICAL.rank


# ================================================================
# RANGE AND DEVICE TESTS
# ================================================================
class TestAcceptableRange:
    """Test AcceptableRange.from_config."""

    def test_numeric_limits(self):
        """Test numeric limits are kept.

        WHY: Core path.
        """
        assert AcceptableRange.from_config({"min": 55, "max": 85}) == AcceptableRange(
            55.0, 85.0
        )

    def test_zero_is_a_limit(self):
        """Test zero survives parsing.

        WHY: Zero is a valid engineering limit.
        """
        assert AcceptableRange.from_config({"min": 0}).min == 0.0

    @pytest.mark.parametrize("raw", ["abc", True, None, [1], float("nan")])
    def test_invalid_limits_dropped(self, raw):
        """Test non-numeric limits fall back to defaults.

        WHY: Malformed device config must not break analysis.
        """
        assert AcceptableRange.from_config({"max": raw}).max is None

    def test_numeric_string_accepted(self):
        """Test numeric strings are parsed.

        WHY: Ranges edited through a UI often arrive as text.
        """
        assert AcceptableRange.from_config({"max": "85.5"}).max == 85.5

    def test_non_mapping(self):
        """Test a non-mapping yields an empty range.

        WHY: Registry data is loosely typed.
        """
        assert AcceptableRange.from_config("55-85") == AcceptableRange()


class TestDevice:
    """Test Device."""

    def test_from_config(self):
        """Test parsing a configuration entry.

        WHY: Devices come from monitoring.yml.
        """
        device = Device.from_config(
            {
                "id": 1,
                "name": "Main Control PLC",
                "type": "plc",
                "protocol": "modbus_tcp",
                "ip_address": "192.168.1.10",
                "port": 502,
                "status": "online",
                "parameters": [
                    {"name": "flow_rate", "unit": "L/min", "address": 0},
                    "tank_level",
                ],
            }
        )

        assert device.status is DeviceStatus.ONLINE
        assert device.parameters == (
            ParameterSpec(name="flow_rate", unit="L/min", address=0),
            ParameterSpec(name="tank_level"),
        )
        assert device.is_pollable

    def test_missing_fields_rejected(self):
        """Test entries without id, name or type are rejected.

        WHY: Those fields are needed to poll and report.
        """
        with pytest.raises(ValueError):
            Device.from_config({"id": 1, "name": "no type"})

    @pytest.mark.parametrize(
        "device_type,pollable",
        [("plc", True), ("PLC", True), ("Sensor", True), ("gateway", False), ("hmi", False)],
    )
    def test_pollable_types(self, device_type, pollable):
        """Test only PLC and sensor devices are polled.

        WHY: Other device kinds expose no live parameters.
        """
        assert Device(id=1, name="d", type=device_type).is_pollable is pollable

    def test_device_level_range(self):
        """Test a flat range applies to every parameter.

        WHY: Single-parameter sensors configure one range.
        """
        device = Device(id=5, name="s", type="sensor", acceptable_ranges={"min": 55, "max": 85})
        assert device.range_for("pressure") == AcceptableRange(55, 85)

    def test_per_parameter_range(self):
        """Test ranges keyed by parameter name.

        WHY: Multi-parameter PLCs need one range per parameter.
        """
        device = Device(
            id=1,
            name="p",
            type="plc",
            acceptable_ranges={"flow_rate": {"min": 20}, "tank_level": {"max": 80}},
        )
        assert device.range_for("flow_rate") == AcceptableRange(min=20)
        assert device.range_for("tank_level") == AcceptableRange(max=80)
        assert device.range_for("vibration") == AcceptableRange()


# ================================================================
# READING TESTS
# ================================================================
class TestReading:
    """Test Reading."""

    def _reading(self, value="72"):
        return Reading(
            id=1,
            device_id=5,
            parameter_name="pressure",
            value=value,
            unit="PSI",
            status=ReadingStatus.NORMAL,
            timestamp=TS,
        )

    def test_numeric_value(self):
        """Test decimal text is parsed.

        WHY: Values are stored as text.
        """
        assert self._reading("72.5").numeric_value == 72.5

    def test_numeric_value_rejects_garbage(self):
        """Test unparseable text raises ValueError.

        WHY: The analyzer relies on ValueError to skip bad readings.
        """
        with pytest.raises(ValueError):
            _ = self._reading("n/a").numeric_value

    def test_immutable(self):
        """Test readings cannot be modified.

        WHY: Readings are never updated after creation.
        """
        with pytest.raises(dataclasses.FrozenInstanceError):
            self._reading().value = "99"

    def test_to_dict(self):
        """Test wire representation.

        WHY: Broadcast payloads are built from it.
        """
        data = self._reading().to_dict()
        assert data["status"] == "normal"
        assert data["timestamp"] == "2024-01-01T12:00:00+00:00"


class TestAggregateStatus:
    """Test aggregate_device_status."""

    def _reading(self, status):
        return Reading(1, 1, "p", "1", "", status, TS)

    @pytest.mark.parametrize(
        "statuses,expected",
        [
            ([ReadingStatus.NORMAL], DeviceStatus.ONLINE),
            ([ReadingStatus.NORMAL, ReadingStatus.WARNING], DeviceStatus.WARNING),
            ([ReadingStatus.WARNING, ReadingStatus.CRITICAL], DeviceStatus.CRITICAL),
            ([ReadingStatus.CRITICAL, ReadingStatus.NORMAL], DeviceStatus.CRITICAL),
        ],
    )
    def test_worst_wins(self, statuses, expected):
        """Test critical > warning > online.

        WHY: Dashboard shows the worst parameter state.
        """
        assert aggregate_device_status([self._reading(s) for s in statuses]) is expected


# ================================================================
# BROADCAST ENVELOPE TESTS
# ================================================================
class TestBroadcastMessage:
    """Test BroadcastMessage serialisation."""

    def test_entity_payload(self):
        """Test entities are serialised via to_dict.

        WHY: Clients receive plain JSON.
        """
        alert = Alert(
            id=3,
            severity=AlertSeverity.CRITICAL,
            title="Pressure Above Normal Range",
            description="...",
            source="Behavior Analyzer",
            device_id=5,
            raw_data={"limit": 85},
            timestamp=TS,
        )
        parsed = json.loads(BroadcastMessage(MessageType.ALERT, alert).to_json())

        assert parsed["type"] == "alert"
        assert parsed["data"]["id"] == 3
        assert parsed["data"]["severity"] == "critical"
        assert parsed["data"]["acknowledged"] is False

    def test_plain_payload(self):
        """Test plain dict payloads pass through.

        WHY: Some messages carry no entity.
        """
        message = BroadcastMessage(MessageType.SENSOR_DATA, {"value": "1"})
        assert message.to_dict() == {"type": "sensorData", "data": {"value": "1"}}
