# tests/unit/security/test_alert_sink.py
"""Tests for AlertSink.

Test Coverage:
- Persist then broadcast
- Store failures surface as TransientStoreError
- Security audit trail entries
- Broadcast failures do not undo persistence
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from ot_monitor.exceptions import TransientStoreError
from ot_monitor.network.broadcast_hub import BroadcastHub
from ot_monitor.security import alert_sink as alert_sink_module
from ot_monitor.security.alert_sink import AlertSink
from ot_monitor.security.logging_system import EventCategory, EventSeverity
from ot_monitor.state.models import AlertCandidate, AlertSeverity, MessageType
from ot_monitor.state.stores import InMemoryStore


def _candidate(severity=AlertSeverity.CRITICAL, device_id=5):
    return AlertCandidate(
        severity=severity,
        title="Pressure Above Normal Range",
        description="Pressure (100PSI) exceeds normal operating range (85PSI)",
        source="Behavior Analyzer",
        device_id=device_id,
        raw_data={"current": 100.0, "limit": 85.0},
    )


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def hub():
    return BroadcastHub()


# ================================================================
# SUBMIT TESTS
# ================================================================
class TestSubmit:
    """Test AlertSink.submit."""

    @pytest.mark.asyncio
    async def test_persists_then_broadcasts(self, store, hub):
        """Test a submitted alert is stored and broadcast.

        WHY: Every alert reaches both the store and live clients.
        """
        subscriber = hub.register("dashboard")
        sink = AlertSink(store, hub)

        alert = await sink.submit(_candidate())

        assert await store.get_alerts() == [alert]
        message = await subscriber.receive()
        assert message.type is MessageType.ALERT
        assert message.data == alert
        assert sink.submitted == 1

    @pytest.mark.asyncio
    async def test_subscriber_cannot_mutate_stored_alert(self, store, hub):
        """Test the broadcast alert is a copy of the stored record.

        WHY: In-process subscribers share the event loop with the store.
        """
        subscriber = hub.register("dashboard")
        sink = AlertSink(store, hub)
        candidate = _candidate()
        candidate.raw_data["current"] = {"value": "90"}

        alert = await sink.submit(candidate)
        message = await subscriber.receive()
        message.data.raw_data["current"]["value"] = "0"
        message.data.raw_data["limit"] = -1

        stored = await store.get_alert(alert.id)
        assert stored.raw_data == {"current": {"value": "90"}, "limit": 85.0}
        assert alert.raw_data["current"] == {"value": "90"}

    @pytest.mark.asyncio
    async def test_broadcast_carries_persisted_id(self, store, hub):
        """Test the broadcast payload has the store-assigned id.

        WHY: Clients acknowledge alerts by id.
        """
        subscriber = hub.register()
        sink = AlertSink(store, hub)

        await sink.submit(_candidate())
        second = await sink.submit(_candidate())

        await subscriber.receive()
        message = await subscriber.receive()
        assert message.to_dict()["data"]["id"] == second.id == 2

    @pytest.mark.asyncio
    async def test_store_failure_wrapped(self, hub):
        """Test store exceptions become TransientStoreError.

        WHY: The poller treats store failures as retryable.
        """
        failing_store = MagicMock()
        failing_store.create_alert = AsyncMock(side_effect=ConnectionError("db down"))
        subscriber = hub.register()
        sink = AlertSink(failing_store, hub)

        with pytest.raises(TransientStoreError, match="db down"):
            await sink.submit(_candidate())

        assert subscriber.pending() == 0
        assert sink.submitted == 0

    @pytest.mark.asyncio
    async def test_transient_error_passes_through(self, hub):
        """Test TransientStoreError is not double-wrapped.

        WHY: Stores may raise the typed error themselves.
        """
        failing_store = MagicMock()
        failing_store.create_alert = AsyncMock(side_effect=TransientStoreError("timeout"))
        sink = AlertSink(failing_store, hub)

        with pytest.raises(TransientStoreError, match="^timeout$"):
            await sink.submit(_candidate())

    @pytest.mark.asyncio
    async def test_broadcast_failure_keeps_alert(self, store):
        """Test a failing hub does not undo persistence.

        WHY: The stored alert is the record of truth.
        """
        broken_hub = MagicMock()
        broken_hub.publish.side_effect = RuntimeError("hub gone")
        sink = AlertSink(store, broken_hub)

        alert = await sink.submit(_candidate())

        assert await store.get_alerts() == [alert]
        broken_hub.publish.assert_called_once()


# ================================================================
# AUDIT TRAIL TESTS
# ================================================================
class TestAuditTrail:
    """Test security logging of submitted alerts."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "severity,expected",
        [
            (AlertSeverity.CRITICAL, EventSeverity.CRITICAL),
            (AlertSeverity.WARNING, EventSeverity.WARNING),
            (AlertSeverity.INFO, EventSeverity.NOTICE),
        ],
    )
    async def test_security_event_logged(self, store, hub, severity, expected):
        """Test each alert produces a security audit entry.

        WHY: Alerts are security events in an ICS audit trail.
        """
        await alert_sink_module.logger.clear_audit_trail()
        sink = AlertSink(store, hub)

        alert = await sink.submit(_candidate(severity=severity))

        entries = await alert_sink_module.logger.get_audit_trail(
            category=EventCategory.SECURITY
        )
        assert len(entries) == 1
        assert entries[0].severity is expected
        assert entries[0].device == "5"
        assert entries[0].component == "Behavior Analyzer"
        assert entries[0].data["alert_id"] == alert.id

    @pytest.mark.asyncio
    async def test_deviceless_alert_logged(self, store, hub):
        """Test alerts without a device log an empty device field.

        WHY: IDS alerts are not tied to a registered device.
        """
        await alert_sink_module.logger.clear_audit_trail()
        sink = AlertSink(store, hub)

        await sink.submit(_candidate(device_id=None))

        entries = await alert_sink_module.logger.get_audit_trail()
        assert entries[0].device == ""
