# ot_monitor/security/ids_feed.py
"""
Intrusion detection alert feed.

Two modes feed the same AlertSink:
- simulated: canned Suricata alerts fire at random on a fixed interval
- eve.json: new ``alert`` records appended to a Suricata EVE log are
  converted and submitted
"""

from __future__ import annotations

import asyncio
import copy
import json
import random
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ot_monitor.security.alert_sink import AlertSink
from ot_monitor.security.logging_system import get_logger
from ot_monitor.state.models import AlertCandidate, AlertSeverity

__all__ = [
    "IDS_SOURCE",
    "SIMULATED_IDS_ALERTS",
    "eve_to_alert_candidate",
    "EveLogReader",
    "IDSMonitor",
]

logger = get_logger(__name__, device="ids_feed")

IDS_SOURCE = "Suricata"

SIMULATED_IDS_ALERTS: tuple[AlertCandidate, ...] = (
    AlertCandidate(
        severity=AlertSeverity.CRITICAL,
        title="Modbus Write to Restricted Register",
        description=(
            "Unauthorized write attempt to safety-critical register detected "
            "from 192.168.1.45."
        ),
        source=IDS_SOURCE,
        device_id=1,
        raw_data={
            "alert": {
                "signature_id": 1000001,
                "signature": "MODBUS: Unauthorized write to register 40001",
                "category": "Potentially Bad Traffic",
            },
            "src_ip": "192.168.1.45",
            "src_port": 49152,
            "dest_ip": "192.168.1.10",
            "dest_port": 502,
            "proto": "TCP",
        },
    ),
    AlertCandidate(
        severity=AlertSeverity.WARNING,
        title="MQTT Topic Subscription Attempt",
        description=(
            "Unusual MQTT subscription pattern detected from unregistered client ID."
        ),
        source=IDS_SOURCE,
        device_id=5,
        raw_data={
            "alert": {
                "signature_id": 1000015,
                "signature": "MQTT: Suspicious subscription to system/# topic",
                "category": "Potentially Bad Traffic",
            },
            "src_ip": "192.168.1.87",
            "src_port": 56324,
            "dest_ip": "192.168.1.20",
            "dest_port": 1883,
            "proto": "TCP",
        },
    ),
    AlertCandidate(
        severity=AlertSeverity.WARNING,
        title="OPC-UA Authentication Failure",
        description=(
            "Multiple failed authentication attempts to OPC-UA server from "
            "internal network."
        ),
        source=IDS_SOURCE,
        device_id=3,
        raw_data={
            "alert": {
                "signature_id": 1000023,
                "signature": "OPC-UA: Multiple authentication failures",
                "category": "Attempted Administrator Privilege Gain",
            },
            "src_ip": "192.168.1.134",
            "src_port": 52453,
            "dest_ip": "192.168.1.15",
            "dest_port": 4840,
            "proto": "TCP",
        },
    ),
    AlertCandidate(
        severity=AlertSeverity.CRITICAL,
        title="ARP Poisoning Detected",
        description="Possible ARP poisoning attack targeting PLC gateway detected.",
        source=IDS_SOURCE,
        device_id=None,
        raw_data={
            "alert": {
                "signature_id": 2000005,
                "signature": "INDICATOR-SCAN ARP poisoning attempt",
                "category": "Network Trojan Activity",
            },
            "src_ip": "192.168.1.76",
            "dest_ip": "192.168.1.1",
            "proto": "ARP",
        },
    ),
)


# ----------------------------------------------------------------
# EVE conversion
# ----------------------------------------------------------------


def eve_to_alert_candidate(event: dict[str, Any]) -> AlertCandidate:
    """Convert a Suricata EVE ``alert`` record."""
    alert = event.get("alert") or {}

    priority = alert.get("severity")
    if priority == 1:
        severity = AlertSeverity.CRITICAL
    elif priority == 2:
        severity = AlertSeverity.WARNING
    else:
        severity = AlertSeverity.INFO

    signature = alert.get("signature")
    description = signature or "Unknown signature"
    if event.get("src_ip") and event.get("dest_ip"):
        description += f" from {event['src_ip']} to {event['dest_ip']}"
    if alert.get("category"):
        description += f". Category: {alert['category']}"

    return AlertCandidate(
        severity=severity,
        title=signature or "Unknown Suricata Alert",
        description=description,
        source=IDS_SOURCE,
        # IP-to-device mapping is not available from the EVE record
        device_id=None,
        raw_data=event,
    )


class EveLogReader:
    """
    Incremental reader for a Suricata ``eve.json`` (one JSON object per line).

    Remembers how many lines it has consumed; if the file shrinks (rotated
    or truncated) reading restarts from the top.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.last_processed_line = 0
        self.skipped_lines = 0

    def read_new_alerts(self) -> list[AlertCandidate]:
        if not self.path.exists():
            logger.debug(f"EVE log not found: {self.path}")
            return []

        with open(self.path, "rb") as f:
            lines = f.read().splitlines()

        if len(lines) < self.last_processed_line:
            logger.info(f"EVE log {self.path} was truncated, re-reading from start")
            self.last_processed_line = 0

        new_lines = lines[self.last_processed_line :]
        self.last_processed_line = len(lines)

        candidates = []
        for line in new_lines:
            if not line.strip():
                continue
            try:
                event = json.loads(line.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                self.skipped_lines += 1
                logger.warning(f"Skipping malformed EVE line: {e}")
                continue
            if isinstance(event, dict) and event.get("event_type") == "alert":
                candidates.append(eve_to_alert_candidate(event))
        return candidates


# ----------------------------------------------------------------
# Monitor
# ----------------------------------------------------------------


class IDSMonitor:
    """
    Periodic IDS alert feed.

    With an ``eve_reader`` the feed tails the EVE log; otherwise it emits a
    random canned alert with probability ``probability`` per interval.
    """

    def __init__(
        self,
        alert_sink: AlertSink,
        interval: float = 5.0,
        probability: float = 0.05,
        rng: random.Random | None = None,
        eve_reader: EveLogReader | None = None,
    ):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        if not 0.0 <= probability <= 1.0:
            raise ValueError(f"probability must be within [0, 1], got {probability}")

        self.alert_sink = alert_sink
        self.interval = interval
        self.probability = probability
        self.rng = rng or random.Random()
        self.eve_reader = eve_reader

        self._running = False
        self._task: asyncio.Task | None = None
        self.submitted = 0
        self.error_count = 0

    @property
    def mode(self) -> str:
        return "eve" if self.eve_reader else "simulated"

    @property
    def running(self) -> bool:
        return self._running

    def _simulated_candidates(self) -> list[AlertCandidate]:
        if self.rng.random() >= self.probability:
            return []
        template = self.rng.choice(SIMULATED_IDS_ALERTS)
        raw_data = copy.deepcopy(template.raw_data)
        raw_data["timestamp"] = datetime.now(timezone.utc).isoformat()
        return [
            AlertCandidate(
                severity=template.severity,
                title=template.title,
                description=template.description,
                source=template.source,
                device_id=template.device_id,
                raw_data=raw_data,
            )
        ]

    async def poll_once(self) -> int:
        """Run one feed cycle. Returns the number of alerts submitted."""
        if self.eve_reader:
            try:
                candidates = await asyncio.to_thread(self.eve_reader.read_new_alerts)
            except OSError as e:
                logger.log_failure("Error reading Suricata logs", e)
                self.error_count += 1
                return 0
        else:
            candidates = self._simulated_candidates()

        submitted = 0
        for candidate in candidates:
            try:
                await self.alert_sink.submit(candidate)
                submitted += 1
            except Exception as e:
                logger.log_failure(f"Failed to submit IDS alert '{candidate.title}'", e)
                self.error_count += 1
        self.submitted += submitted
        return submitted

    async def start(self) -> None:
        if self._running:
            logger.warning("IDS monitor already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run(), name="ids-monitor")
        source = self.eve_reader.path if self.eve_reader else "simulated alerts"
        logger.info(f"IDS monitor started ({source}, interval: {self.interval}s)")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("IDS monitor stopped")

    async def _run(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval)
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"Error in IDS feed cycle: {e}", exc_info=True)
                self.error_count += 1
