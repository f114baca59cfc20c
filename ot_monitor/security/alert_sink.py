# ot_monitor/security/alert_sink.py
"""
Single entry point for turning alert candidates into persisted, broadcast
alerts. Used by both the device poller and the IDS feed.
"""

from __future__ import annotations

from ot_monitor.exceptions import TransientStoreError
from ot_monitor.network.broadcast_hub import BroadcastHub
from ot_monitor.security.logging_system import EventSeverity, get_logger
from ot_monitor.state.models import (
    Alert,
    AlertCandidate,
    AlertSeverity,
    BroadcastMessage,
    MessageType,
)
from ot_monitor.state.stores import AlertStore

__all__ = ["AlertSink"]

logger = get_logger(__name__, device="alert_sink")

ALERT_LOG_SEVERITY = {
    AlertSeverity.CRITICAL: EventSeverity.CRITICAL,
    AlertSeverity.WARNING: EventSeverity.WARNING,
    AlertSeverity.INFO: EventSeverity.NOTICE,
}


class AlertSink:
    """Persist, then broadcast."""

    def __init__(self, alert_store: AlertStore, hub: BroadcastHub):
        self.alert_store = alert_store
        self.hub = hub
        self.submitted = 0

    async def submit(self, candidate: AlertCandidate) -> Alert:
        """
        Persist an alert candidate and broadcast it.

        A broadcast failure is logged and does not undo the persisted alert.

        Raises:
            TransientStoreError: If the alert store call failed
        """
        try:
            alert = await self.alert_store.create_alert(candidate)
        except TransientStoreError:
            raise
        except Exception as e:
            raise TransientStoreError(
                f"Failed to persist alert '{candidate.title}': {e}"
            ) from e

        self.submitted += 1

        await logger.log_security(
            f"{alert.severity.value.upper()} alert #{alert.id}: {alert.title}",
            severity=ALERT_LOG_SEVERITY[alert.severity],
            device=alert.device_id if alert.device_id is not None else "",
            component=alert.source,
            data={"alert_id": alert.id, "description": alert.description},
        )

        try:
            self.hub.publish(BroadcastMessage(MessageType.ALERT, alert.detached()))
        except Exception as e:
            logger.log_failure(
                f"Broadcast of alert {alert.id} failed", e, device=alert.device_id or ""
            )

        return alert
