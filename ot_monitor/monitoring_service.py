# ot_monitor/monitoring_service.py
"""
Monitoring service: wires store, hub, alert sink, analyzer, reading
source, poller and IDS feed together and owns their lifecycle.

Example:
    >>> service = MonitoringService.from_config("config")
    >>> await service.start()
    >>> # Poller and IDS feed run...
    >>> await service.stop()
"""

from __future__ import annotations

import random
from collections.abc import Mapping
from typing import Any

from ot_monitor.config.config_loader import ConfigLoader, MonitoringSettings
from ot_monitor.devices.device_poller import DevicePoller
from ot_monitor.devices.reading_source import (
    ModbusReadingSource,
    ReadingSource,
    SimulatedReadingSource,
)
from ot_monitor.network.broadcast_hub import BroadcastHub
from ot_monitor.security.alert_sink import AlertSink
from ot_monitor.security.anomaly_analyzer import AnomalyAnalyzer
from ot_monitor.security.ids_feed import EveLogReader, IDSMonitor
from ot_monitor.security.logging_system import configure_logging, get_logger
from ot_monitor.state.models import AttackLog, BroadcastMessage, Device, MessageType
from ot_monitor.state.stores import InMemoryStore

__all__ = ["MonitoringService"]

logger = get_logger(__name__, device="monitoring_service")


class MonitoringService:
    """
    Owns every pipeline component.

    Lifecycle: ``start()`` seeds the device registry (first start only),
    then starts the poller and the IDS feed. ``stop()`` stops both, closes
    the reading source and drains the broadcast hub. A stopped service
    cannot be restarted.
    """

    def __init__(
        self,
        settings: MonitoringSettings | None = None,
        devices: list[Device] | None = None,
        store: InMemoryStore | None = None,
        reading_source: ReadingSource | None = None,
        analyzer: AnomalyAnalyzer | None = None,
        rng: random.Random | None = None,
    ):
        self.settings = settings or MonitoringSettings()
        self.devices = list(devices or [])
        self.rng = rng or random.Random()

        self.store = store or InMemoryStore()
        self.hub = BroadcastHub(queue_size=self.settings.subscriber_queue_size)
        self.alert_sink = AlertSink(self.store, self.hub)
        self.analyzer = analyzer or AnomalyAnalyzer()
        self.reading_source = reading_source or self._create_reading_source()

        self.poller = DevicePoller(
            device_registry=self.store,
            reading_store=self.store,
            alert_sink=self.alert_sink,
            hub=self.hub,
            reading_source=self.reading_source,
            analyzer=self.analyzer,
            poll_interval=self.settings.poll_interval,
            max_workers=self.settings.max_workers,
            shutdown_timeout=self.settings.shutdown_timeout,
            history_window=self.settings.history_window,
        )

        self.ids_monitor: IDSMonitor | None = None
        if self.settings.ids_enabled:
            eve_reader = (
                EveLogReader(self.settings.eve_log_path)
                if self.settings.eve_log_path
                else None
            )
            self.ids_monitor = IDSMonitor(
                self.alert_sink,
                interval=self.settings.ids_interval,
                probability=self.settings.ids_probability,
                rng=self.rng,
                eve_reader=eve_reader,
            )

        self._initialised = False
        self._running = False
        self._stopped = False

    @classmethod
    def from_config(
        cls, config_dir: str = "config", env: Mapping[str, str] | None = None
    ) -> MonitoringService:
        """
        Build a service from ``<config_dir>/monitoring.yml``.

        Raises:
            ConfigError: If the configuration cannot be used
        """
        loader = ConfigLoader(config_dir)
        settings = loader.load_settings(env=env)
        devices = loader.load_devices()
        configure_logging(settings.log_dir)
        logger.info(
            f"Loaded {len(devices)} device(s) from {loader.config_path} "
            f"(reading source: {settings.reading_source})"
        )
        return cls(settings=settings, devices=devices)

    def _create_reading_source(self) -> ReadingSource:
        if self.settings.reading_source == "modbus":
            return ModbusReadingSource()
        return SimulatedReadingSource(rng=self.rng)

    # ----------------------------------------------------------------
    # Lifecycle
    # ----------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    async def initialise(self) -> None:
        """Seed the device registry."""
        if self._initialised:
            return
        count = await self.store.seed_devices(self.devices)
        pollable = sum(1 for device in self.devices if device.is_pollable)
        logger.info(f"Registered {count} device(s), {pollable} pollable")
        self._initialised = True

    async def start(self) -> None:
        """
        Raises:
            RuntimeError: If the service has already been stopped
        """
        if self._stopped:
            raise RuntimeError("Cannot start: monitoring service has been stopped")
        if self._running:
            logger.warning("Monitoring service already running")
            return

        await self.initialise()

        logger.info("=== Starting Monitoring Service ===")
        await self.poller.start()
        if self.ids_monitor:
            await self.ids_monitor.start()
        self._running = True

    async def stop(self) -> None:
        if self._stopped:
            return

        logger.info("=== Stopping Monitoring Service ===")
        self._running = False
        self._stopped = True

        if self.ids_monitor:
            try:
                await self.ids_monitor.stop()
            except Exception as e:
                logger.error(f"Error stopping IDS monitor: {e}")

        await self.poller.stop()

        try:
            await self.reading_source.close()
        except Exception as e:
            logger.error(f"Error closing reading source: {e}")

        await self.hub.close()

        stats = self.store.get_stats()
        logger.info(
            f"Monitoring stopped after {self.poller.metadata['tick_count']} tick(s): "
            f"{stats['readings']} reading(s), {stats['alerts']} alert(s)"
        )

    # ----------------------------------------------------------------
    # Attack-log passthrough
    # ----------------------------------------------------------------

    async def publish_attack_log(
        self,
        attack_type: str,
        target_id: int | None,
        result: str,
        parameters: dict[str, Any] | None = None,
        notes: str = "",
    ) -> AttackLog:
        """Persist an attack-simulation log entry and broadcast it verbatim."""
        entry = await self.store.create_attack_log(
            attack_type=attack_type,
            target_id=target_id,
            result=result,
            parameters=parameters,
            notes=notes,
        )
        await logger.log_audit(
            f"Attack simulation logged: {attack_type}",
            action=attack_type,
            result=result,
            device=target_id if target_id is not None else "",
        )
        self.hub.publish(BroadcastMessage(MessageType.ATTACK_LOG, entry))
        return entry

    # ----------------------------------------------------------------
    # Diagnostics
    # ----------------------------------------------------------------

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "reading_source": self.settings.reading_source,
            "poller": self.poller.get_status(),
            "hub": self.hub.get_stats(),
            "ids_feed": (
                {
                    "mode": self.ids_monitor.mode,
                    "running": self.ids_monitor.running,
                    "submitted": self.ids_monitor.submitted,
                    "errors": self.ids_monitor.error_count,
                }
                if self.ids_monitor
                else None
            ),
            "store": self.store.get_stats(),
        }
