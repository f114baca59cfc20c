# tests/unit/devices/test_reading_source.py
"""Tests for reading sources.

Test Coverage:
- Simulated value ranges per parameter profile
- Device range use and units
- Modbus register polling and scaling
- Modbus connection failure handling
"""

import random
from unittest.mock import AsyncMock, MagicMock

import pytest

from ot_monitor.devices.reading_source import (
    ModbusReadingSource,
    SimulatedReadingSource,
    SimulationProfile,
)
from ot_monitor.exceptions import ReadingSourceError
from ot_monitor.state.models import Device, ParameterSpec, format_value


def _device(*parameters, **kwargs):
    defaults = dict(id=1, name="PLC", type="plc", ip_address="192.168.1.10", port=502)
    defaults.update(kwargs)
    return Device(parameters=tuple(parameters), **defaults)


# ================================================================
# SIMULATED SOURCE TESTS
# ================================================================
class TestSimulatedReadingSource:
    """Test SimulatedReadingSource."""

    @pytest.mark.parametrize(
        "parameter,low,high",
        [
            ("flow_rate", 30, 70),
            ("tank_level", 20, 90),
            ("pressure", 55, 100),
            ("temperature", 60, 100),
        ],
    )
    def test_value_bounds(self, parameter, low, high):
        """Test samples stay within profile bounds.

        WHY: Simulated plant values must look plausible.
        """
        source = SimulatedReadingSource(rng=random.Random(42))
        device = _device(ParameterSpec(parameter))

        values = [source.sample(device, parameter) for _ in range(200)]

        assert all(low <= v <= high for v in values)
        assert all(v == int(v) for v in values)

    def test_pressure_uses_device_range(self):
        """Test device limits replace profile bounds.

        WHY: Each sensor simulates around its own operating band.
        """
        source = SimulatedReadingSource(rng=random.Random(1))
        device = _device(ParameterSpec("pressure"), acceptable_ranges={"min": 10, "max": 20})

        values = [source.sample(device, "pressure") for _ in range(200)]

        assert all(10 <= v <= 35 for v in values)

    def test_overshoot_produces_excursions(self):
        """Test some values land above the acceptable maximum.

        WHY: The analyzer needs anomalies to detect.
        """
        source = SimulatedReadingSource(rng=random.Random(3))
        device = _device(ParameterSpec("pressure"), acceptable_ranges={"min": 55, "max": 85})

        values = [source.sample(device, "pressure") for _ in range(500)]

        assert any(v > 85 for v in values)

    def test_vibration_spikes(self):
        """Test vibration is fractional with occasional spikes.

        WHY: Spikes drive the vibration range rule.
        """
        source = SimulatedReadingSource(rng=random.Random(11))
        device = _device(ParameterSpec("vibration"))

        values = [source.sample(device, "vibration") for _ in range(500)]

        assert all(0 <= v <= 10 for v in values)
        assert any(v >= 9 for v in values)
        assert any(v != int(v) for v in values)

    def test_custom_profile(self):
        """Test profiles can be overridden.

        WHY: Sites simulate parameters beyond the defaults.
        """
        source = SimulatedReadingSource(
            rng=random.Random(0),
            profiles={"ph": SimulationProfile(unit="pH", low=6, high=8, integral=False)},
        )

        assert 6 <= source.sample(_device(), "ph") <= 8

    @pytest.mark.asyncio
    async def test_read_samples_every_parameter(self, control_plc):
        """Test one sample per configured parameter with units.

        WHY: The poller persists exactly what the source returns.
        """
        source = SimulatedReadingSource(rng=random.Random(5))

        samples = await source.read(control_plc)

        assert [s.parameter for s in samples] == ["flow_rate", "tank_level"]
        assert [s.unit for s in samples] == ["L/min", "%"]

    @pytest.mark.asyncio
    async def test_read_profile_unit_fallback(self):
        """Test the profile unit is used when the device has none.

        WHY: Minimal device configs omit units.
        """
        source = SimulatedReadingSource(rng=random.Random(5))

        samples = await source.read(_device(ParameterSpec("vibration")))

        assert samples[0].unit == "Hz"

    @pytest.mark.asyncio
    async def test_read_unknown_parameter(self):
        """Test unknown parameters use the fallback profile.

        WHY: Unmodelled parameters still produce readings.
        """
        source = SimulatedReadingSource(rng=random.Random(5))

        samples = await source.read(_device(ParameterSpec("humidity")))

        assert 0 <= samples[0].value <= 100
        assert samples[0].unit == ""


# ================================================================
# MODBUS SOURCE TESTS
# ================================================================
def _adapter(connect=True, registers=None):
    adapter = MagicMock()
    adapter.connect = AsyncMock(return_value=connect)
    adapter.disconnect = AsyncMock()
    adapter.read_holding_registers = AsyncMock(
        side_effect=lambda address, count=1: [registers[address]]
    )
    return adapter


class TestModbusReadingSource:
    """Test ModbusReadingSource."""

    @pytest.mark.asyncio
    async def test_reads_addressed_parameters(self):
        """Test each addressed parameter reads one scaled register.

        WHY: Registers hold raw integers.
        """
        adapter = _adapter(registers={0: 45, 3: 72})
        factory = MagicMock(return_value=adapter)
        source = ModbusReadingSource(adapter_factory=factory)
        device = _device(
            ParameterSpec("flow_rate", unit="L/min", address=0),
            ParameterSpec("vibration", unit="Hz", address=3, scale=0.1),
            ParameterSpec("tank_level"),
        )

        samples = await source.read(device)

        assert [(s.parameter, s.unit) for s in samples] == [
            ("flow_rate", "L/min"),
            ("vibration", "Hz"),
        ]
        assert samples[0].value == 45
        assert samples[1].value == pytest.approx(7.2)
        factory.assert_called_once_with(host="192.168.1.10", port=502, unit_id=1)

    @pytest.mark.asyncio
    async def test_scaled_values_rounded(self):
        """Test scaling does not leak float noise into stored values.

        WHY: Readings are stored and shown in alert text as strings.
        """
        adapter = _adapter(registers={0: 73, 1: 1234})
        source = ModbusReadingSource(adapter_factory=MagicMock(return_value=adapter))
        device = _device(
            ParameterSpec("vibration", unit="Hz", address=0, scale=0.1),
            ParameterSpec("pressure", unit="PSI", address=1, scale=0.01),
        )

        samples = await source.read(device)

        assert [format_value(s.value) for s in samples] == ["7.3", "12.34"]

    @pytest.mark.asyncio
    async def test_adapter_reused(self):
        """Test connections are cached per device.

        WHY: Reconnecting every tick floods field devices.
        """
        factory = MagicMock(return_value=_adapter(registers={0: 1}))
        source = ModbusReadingSource(adapter_factory=factory)
        device = _device(ParameterSpec("flow_rate", address=0))

        await source.read(device)
        await source.read(device)

        factory.assert_called_once()

    @pytest.mark.asyncio
    async def test_connect_failure(self):
        """Test an unreachable device raises ReadingSourceError.

        WHY: The poller isolates per-device failures.
        """
        adapter = _adapter(connect=False)
        factory = MagicMock(return_value=adapter)
        source = ModbusReadingSource(adapter_factory=factory)
        device = _device(ParameterSpec("flow_rate", address=0))

        with pytest.raises(ReadingSourceError, match="Could not connect"):
            await source.read(device)
        with pytest.raises(ReadingSourceError):
            await source.read(device)

        assert factory.call_count == 2
        adapter.disconnect.assert_awaited()

    @pytest.mark.asyncio
    async def test_no_addresses(self):
        """Test devices without addressed parameters yield nothing.

        WHY: Not every PLC exposes registers to the monitor.
        """
        factory = MagicMock()
        source = ModbusReadingSource(adapter_factory=factory)

        assert await source.read(_device(ParameterSpec("flow_rate"))) == []
        factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_ip(self):
        """Test a device without an address is rejected.

        WHY: There is nothing to connect to.
        """
        source = ModbusReadingSource(adapter_factory=MagicMock())

        with pytest.raises(ReadingSourceError, match="ip_address"):
            await source.read(_device(ParameterSpec("flow_rate", address=0), ip_address=""))

    @pytest.mark.asyncio
    async def test_close(self):
        """Test close disconnects every cached adapter.

        WHY: Shutdown releases TCP connections.
        """
        adapter = _adapter(registers={0: 1})
        source = ModbusReadingSource(adapter_factory=MagicMock(return_value=adapter))
        await source.read(_device(ParameterSpec("flow_rate", address=0)))

        await source.close()

        adapter.disconnect.assert_awaited_once()
