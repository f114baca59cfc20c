# ot_monitor/devices/device_poller.py
"""
Fixed-interval device poller.

Each tick samples every pollable device through a ReadingSource, persists
the readings, broadcasts them, runs the anomaly analyzer and refreshes the
device's aggregate status. Device processing is concurrent (bounded by
``max_workers``); analysis of a single (device, parameter) pair is
serialised so "previous reading" comparisons never race.

A failure while processing one device is logged and counted; it never
aborts the tick, and a failed tick never stops the loop.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any

from ot_monitor.exceptions import (
    ConfigError,
    DeviceLookupFailure,
    TransientStoreError,
)
from ot_monitor.network.broadcast_hub import BroadcastHub
from ot_monitor.devices.reading_source import ReadingSource
from ot_monitor.security.alert_sink import AlertSink
from ot_monitor.security.anomaly_analyzer import AnomalyAnalyzer
from ot_monitor.security.logging_system import get_logger
from ot_monitor.state.models import (
    BroadcastMessage,
    Device,
    MessageType,
    NewReading,
    Reading,
    ReadingSample,
    aggregate_device_status,
    format_value,
)
from ot_monitor.state.stores import DeviceRegistry, ReadingStore

__all__ = ["DevicePoller", "TickResult"]

logger = get_logger(__name__, device="device_poller")


@dataclass
class TickResult:
    """Counters for one poll tick."""

    devices: int = 0
    readings: int = 0
    alerts: int = 0
    errors: int = 0
    duration: float = 0.0

    def merge(self, other: TickResult) -> None:
        self.readings += other.readings
        self.alerts += other.alerts
        self.errors += other.errors


class DevicePoller:
    """
    Example:
        >>> poller = DevicePoller(store, store, alert_sink, hub, SimulatedReadingSource())
        >>> await poller.start()
        >>> ...
        >>> await poller.stop()
    """

    def __init__(
        self,
        device_registry: DeviceRegistry,
        reading_store: ReadingStore,
        alert_sink: AlertSink,
        hub: BroadcastHub,
        reading_source: ReadingSource,
        analyzer: AnomalyAnalyzer | None = None,
        poll_interval: float = 5.0,
        max_workers: int = 8,
        shutdown_timeout: float = 5.0,
        history_window: int = 10,
    ):
        """
        Args:
            device_registry: Device lookups and status persistence
            reading_store: Reading history
            alert_sink: Destination for analyzer findings
            hub: Broadcast hub for sensorData / deviceStatus messages
            reading_source: Where sample values come from
            analyzer: Anomaly analyzer (default rule table if None)
            poll_interval: Seconds between tick starts
            max_workers: Maximum devices processed concurrently
            shutdown_timeout: Seconds stop() waits for an in-flight tick
            history_window: Prior readings fetched per analysis

        Raises:
            ConfigError: If an interval, limit or window is out of range
        """
        if poll_interval <= 0:
            raise ConfigError(f"poll_interval must be positive, got {poll_interval}")
        if max_workers < 1:
            raise ConfigError(f"max_workers must be at least 1, got {max_workers}")
        if shutdown_timeout < 0:
            raise ConfigError(
                f"shutdown_timeout must not be negative, got {shutdown_timeout}"
            )
        if history_window < 2:
            raise ConfigError(f"history_window must be at least 2, got {history_window}")

        self.device_registry = device_registry
        self.reading_store = reading_store
        self.alert_sink = alert_sink
        self.hub = hub
        self.reading_source = reading_source
        self.analyzer = analyzer or AnomalyAnalyzer()

        self.poll_interval = poll_interval
        self.max_workers = max_workers
        self.shutdown_timeout = shutdown_timeout
        self.history_window = history_window

        self._semaphore = asyncio.Semaphore(max_workers)
        self._key_locks: dict[tuple[int, str], asyncio.Lock] = {}

        self._running = False
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task | None = None

        self.metadata: dict[str, Any] = {
            "tick_count": 0,
            "error_count": 0,
            "readings_total": 0,
            "alerts_total": 0,
            "last_tick_time": None,
            "last_tick_duration": None,
        }

    # ----------------------------------------------------------------
    # Lifecycle
    # ----------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Begin polling. The first tick runs immediately."""
        if self._running:
            logger.warning("Device poller already running")
            return

        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._poll_loop(), name="device-poller")
        logger.info(
            f"Device poller started (interval: {self.poll_interval}s, "
            f"workers: {self.max_workers})"
        )

    async def stop(self, timeout: float | None = None) -> None:
        """
        Stop polling.

        The in-flight tick is given ``timeout`` seconds (default
        ``shutdown_timeout``) to finish, then cancelled.
        """
        if not self._running:
            return

        timeout = self.shutdown_timeout if timeout is None else timeout
        self._running = False
        if self._stop_event:
            self._stop_event.set()

        task = self._task
        self._task = None
        if task:
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"In-flight poll tick did not finish within {timeout}s, cancelling"
                )
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        logger.info("Device poller stopped")

    async def _poll_loop(self) -> None:
        logger.debug(f"Poll loop started (interval: {self.poll_interval}s)")

        while self._running:
            started = time.monotonic()
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in poll tick: {e}", exc_info=True)
                self.metadata["error_count"] += 1

            remaining = max(0.0, self.poll_interval - (time.monotonic() - started))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                pass

    # ----------------------------------------------------------------
    # Tick
    # ----------------------------------------------------------------

    async def poll_once(self) -> TickResult:
        """Run one tick over every pollable device."""
        started = time.monotonic()
        result = TickResult()

        try:
            devices = await self.device_registry.get_devices()
        except Exception as e:
            logger.log_failure("Device registry unavailable, skipping tick", e)
            self.metadata["error_count"] += 1
            result.errors += 1
            return result

        pollable = [device for device in devices if device.is_pollable]
        result.devices = len(pollable)

        outcomes = await asyncio.gather(
            *(self._poll_device_bounded(device) for device in pollable)
        )
        for outcome in outcomes:
            result.merge(outcome)

        result.duration = time.monotonic() - started
        self.metadata["tick_count"] += 1
        self.metadata["error_count"] += result.errors
        self.metadata["readings_total"] += result.readings
        self.metadata["alerts_total"] += result.alerts
        self.metadata["last_tick_time"] = time.time()
        self.metadata["last_tick_duration"] = result.duration

        logger.debug(
            f"Tick {self.metadata['tick_count']}: {result.devices} device(s), "
            f"{result.readings} reading(s), {result.alerts} alert(s), "
            f"{result.errors} error(s) in {result.duration:.3f}s"
        )
        return result

    async def _poll_device_bounded(self, device: Device) -> TickResult:
        async with self._semaphore:
            return await self._poll_device(device)

    async def _poll_device(self, device: Device) -> TickResult:
        result = TickResult()

        try:
            samples = await self.reading_source.read(device)
        except Exception as e:
            logger.log_failure(f"Failed to read {device.name}", e, device=device.id)
            result.errors += 1
            return result

        for sample in samples:
            try:
                alerted = await self._process_sample(device, sample)
                result.readings += 1
                if alerted:
                    result.alerts += 1
            except TransientStoreError as e:
                logger.log_failure(
                    "Store unavailable, reading skipped",
                    e,
                    device=device.id,
                    parameter=sample.parameter,
                )
                result.errors += 1
            except Exception as e:
                logger.log_failure(
                    "Error processing reading",
                    e,
                    device=device.id,
                    parameter=sample.parameter,
                )
                result.errors += 1

        try:
            await self._refresh_device_status(device)
        except DeviceLookupFailure as e:
            logger.warning(f"Skipping status update: {e}")
        except Exception as e:
            logger.log_failure("Failed to update device status", e, device=device.id)
            result.errors += 1

        return result

    def _lock_for(self, device_id: int, parameter: str) -> asyncio.Lock:
        return self._key_locks.setdefault((device_id, parameter), asyncio.Lock())

    async def _process_sample(self, device: Device, sample: ReadingSample) -> bool:
        """Persist, broadcast and analyse one sample. Returns True if it alerted."""
        ranges = device.range_for(sample.parameter)
        status = self.analyzer.classify(sample.parameter, sample.value, ranges)

        async with self._lock_for(device.id, sample.parameter):
            reading = await self._persist(
                NewReading(
                    device_id=device.id,
                    parameter_name=sample.parameter,
                    value=format_value(sample.value),
                    unit=sample.unit,
                    status=status,
                )
            )
            self.hub.publish(BroadcastMessage(MessageType.SENSOR_DATA, reading))

            history = await self.reading_store.get_sensor_data(
                device_id=device.id,
                parameter=sample.parameter,
                limit=self.history_window + 1,
            )
            candidate = self.analyzer.evaluate(reading, history, ranges)
            if candidate is None:
                return False

            await self.alert_sink.submit(candidate)
            return True

    async def _persist(self, reading: NewReading) -> Reading:
        try:
            return await self.reading_store.create_sensor_data(reading)
        except TransientStoreError:
            raise
        except Exception as e:
            raise TransientStoreError(f"create_sensor_data failed: {e}") from e

    async def _refresh_device_status(self, device: Device) -> None:
        latest = await self.reading_store.get_latest_sensor_data(device.id)
        if not latest:
            return

        status = aggregate_device_status(latest)
        updated = await self.device_registry.update_device_status(device.id, status)
        if updated is None:
            raise DeviceLookupFailure(device.id)

        if device.status is not status:
            self.hub.publish(BroadcastMessage(MessageType.DEVICE_STATUS, updated))

    # ----------------------------------------------------------------
    # Diagnostics
    # ----------------------------------------------------------------

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "poll_interval": self.poll_interval,
            "max_workers": self.max_workers,
            "tracked_keys": len(self._key_locks),
            **self.metadata,
        }
