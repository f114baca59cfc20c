# ot_monitor/devices/reading_source.py
"""
Where the poller's raw values come from.

The poller depends only on ReadingSource.read(device); scheduling, error
isolation and broadcast behave identically for simulated and real I/O.
"""

from __future__ import annotations

import math
import random
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from ot_monitor.exceptions import ReadingSourceError
from ot_monitor.protocols.modbus_adapter import ModbusReadAdapter
from ot_monitor.security.logging_system import get_logger
from ot_monitor.state.models import Device, ReadingSample

__all__ = [
    "ReadingSource",
    "SimulationProfile",
    "SIMULATION_PROFILES",
    "SimulatedReadingSource",
    "ModbusReadingSource",
]

logger = get_logger(__name__, device="reading_source")


class ReadingSource(ABC):
    """Capability the poller uses to sample a device."""

    @abstractmethod
    async def read(self, device: Device) -> list[ReadingSample]:
        """
        Sample every live parameter of ``device``.

        Raises:
            ReadingSourceError: If the device could not be sampled at all
        """

    async def close(self) -> None:
        """Release connections. Default: nothing to release."""


# ----------------------------------------------------------------
# Simulated source
# ----------------------------------------------------------------


@dataclass(frozen=True)
class SimulationProfile:
    """Random-walk-free generator for one parameter type.

    ``value = low + r * (high - low + overshoot)``, floored when
    ``integral``. ``low``/``high`` come from the device's acceptable range
    when ``use_device_range`` is set, else the fixed bounds. With
    probability ``spike_chance`` the value is drawn from
    ``[spike_low, spike_low + 1)`` instead.
    """

    unit: str
    low: float
    high: float
    overshoot: float = 0.0
    use_device_range: bool = False
    integral: bool = True
    spike_chance: float = 0.0
    spike_low: float = 0.0


SIMULATION_PROFILES: dict[str, SimulationProfile] = {
    "pressure": SimulationProfile(
        unit="PSI", low=55, high=85, overshoot=15, use_device_range=True
    ),
    "temperature": SimulationProfile(
        unit="°C", low=60, high=90, overshoot=10, use_device_range=True
    ),
    "flow_rate": SimulationProfile(unit="L/min", low=30, high=70),
    "tank_level": SimulationProfile(unit="%", low=20, high=90),
    "vibration": SimulationProfile(
        unit="Hz", low=0, high=8, integral=False, spike_chance=0.1, spike_low=9
    ),
}

_FALLBACK_PROFILE = SimulationProfile(unit="", low=0, high=100, integral=False)

# Scaled register values are rounded to drop binary float noise (73 * 0.1)
SCALED_VALUE_DECIMALS = 6


class SimulatedReadingSource(ReadingSource):
    """
    Random values per parameter profile, occasionally outside the
    acceptable range so the analyzer has something to find.

    Example:
        >>> source = SimulatedReadingSource(rng=random.Random(42))
        >>> samples = await source.read(device)
    """

    def __init__(
        self,
        rng: random.Random | None = None,
        profiles: dict[str, SimulationProfile] | None = None,
    ):
        self.rng = rng or random.Random()
        self.profiles = dict(SIMULATION_PROFILES if profiles is None else profiles)

    def sample(self, device: Device, parameter: str) -> float:
        profile = self.profiles.get(parameter, _FALLBACK_PROFILE)

        if profile.spike_chance and self.rng.random() < profile.spike_chance:
            value = profile.spike_low + self.rng.random()
        else:
            low, high = profile.low, profile.high
            if profile.use_device_range:
                ranges = device.range_for(parameter)
                # A zero limit is a real limit
                low = ranges.min if ranges.min is not None else low
                high = ranges.max if ranges.max is not None else high
            value = low + self.rng.random() * (high - low + profile.overshoot)

        if profile.integral:
            return float(math.floor(value))
        return round(value, 1)

    async def read(self, device: Device) -> list[ReadingSample]:
        samples = []
        for spec in device.parameters:
            profile = self.profiles.get(spec.name, _FALLBACK_PROFILE)
            samples.append(
                ReadingSample(
                    parameter=spec.name,
                    value=self.sample(device, spec.name),
                    unit=spec.unit or profile.unit,
                )
            )
        return samples


# ----------------------------------------------------------------
# Modbus source
# ----------------------------------------------------------------


class ModbusReadingSource(ReadingSource):
    """
    One holding register per configured parameter, scaled to engineering
    units. Parameters without a register address are skipped.

    Connections are opened lazily per device and reused across ticks.
    """

    def __init__(
        self,
        adapter_factory: Callable[..., ModbusReadAdapter] = ModbusReadAdapter,
        default_port: int = 502,
    ):
        self.adapter_factory = adapter_factory
        self.default_port = default_port
        self._adapters: dict[int, ModbusReadAdapter] = {}

    async def _adapter_for(self, device: Device) -> ModbusReadAdapter:
        adapter = self._adapters.get(device.id)
        if adapter is None:
            adapter = self.adapter_factory(
                host=device.ip_address,
                port=device.port or self.default_port,
                unit_id=int(device.metadata.get("unit_id", 1)),
            )
            self._adapters[device.id] = adapter

        if not await adapter.connect():
            # Drop it so the next tick builds a fresh client
            self._adapters.pop(device.id, None)
            await adapter.disconnect()
            raise ReadingSourceError(
                f"Could not connect to {device.name} at "
                f"{device.ip_address}:{device.port or self.default_port}"
            )
        return adapter

    async def read(self, device: Device) -> list[ReadingSample]:
        polled = [spec for spec in device.parameters if spec.address is not None]
        if not polled:
            return []
        if not device.ip_address:
            raise ReadingSourceError(f"{device.name} has no ip_address configured")

        adapter = await self._adapter_for(device)

        samples = []
        for spec in polled:
            registers = await adapter.read_holding_registers(spec.address, count=1)
            samples.append(
                ReadingSample(
                    parameter=spec.name,
                    value=round(registers[0] * spec.scale, SCALED_VALUE_DECIMALS),
                    unit=spec.unit,
                )
            )
        return samples

    async def close(self) -> None:
        adapters = list(self._adapters.values())
        self._adapters.clear()
        for adapter in adapters:
            await adapter.disconnect()
        logger.debug(f"Closed {len(adapters)} Modbus connection(s)")
