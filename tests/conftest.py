# tests/conftest.py
"""Shared pytest fixtures for OT monitor tests.

Foundation components are tested with real dependencies wherever
possible: the in-memory store, a real BroadcastHub and real YAML files.
Only field-bus I/O is mocked.
"""

import asyncio
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator

import pytest
import yaml

from ot_monitor.state.models import (
    Device,
    ParameterSpec,
    Reading,
    ReadingStatus,
)


# ----------------------------------------------------------------
# Configuration fixtures
# ----------------------------------------------------------------
@pytest.fixture
def temp_config_dir() -> Generator[Path, None, None]:
    """Empty directory standing in for the monitor's config dir."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def write_config_file(temp_config_dir):
    """Write a dict as monitoring.yml (or another name) into the config dir."""

    def _write_config(config: dict, filename: str = "monitoring.yml") -> Path:
        config_file = temp_config_dir / filename
        with open(config_file, "w", encoding="utf-8") as f:
            yaml.safe_dump(config, f, allow_unicode=True)
        return config_file

    return _write_config


@pytest.fixture
def no_env() -> dict:
    """Empty environment so host env vars never leak into config tests."""
    return {}


# ----------------------------------------------------------------
# Domain fixtures
# ----------------------------------------------------------------
@pytest.fixture
def make_reading():
    """Factory for persisted readings.

    Ids increase with each call so later readings are "newer".
    """
    counter = {"id": 0}
    base_time = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _make(
        value,
        parameter: str = "pressure",
        unit: str = "PSI",
        device_id: int = 1,
        status: ReadingStatus = ReadingStatus.NORMAL,
    ) -> Reading:
        counter["id"] += 1
        return Reading(
            id=counter["id"],
            device_id=device_id,
            parameter_name=parameter,
            value=str(value),
            unit=unit,
            status=status,
            timestamp=base_time + timedelta(seconds=counter["id"]),
        )

    return _make


@pytest.fixture
def make_history(make_reading):
    """Build a newest-first history from oldest-to-newest values."""

    def _make(values, parameter: str = "pressure", unit: str = "PSI", device_id: int = 1):
        readings = [
            make_reading(v, parameter=parameter, unit=unit, device_id=device_id)
            for v in values
        ]
        return list(reversed(readings))

    return _make


@pytest.fixture
def pressure_sensor() -> Device:
    return Device(
        id=5,
        name="Boiler Pressure Sensor",
        type="sensor",
        protocol="mqtt",
        ip_address="192.168.1.20",
        port=1883,
        acceptable_ranges={"min": 55, "max": 85},
        parameters=(ParameterSpec(name="pressure", unit="PSI"),),
    )


@pytest.fixture
def control_plc() -> Device:
    return Device(
        id=1,
        name="Main Control PLC",
        type="plc",
        protocol="modbus_tcp",
        ip_address="192.168.1.10",
        port=502,
        parameters=(
            ParameterSpec(name="flow_rate", unit="L/min", address=0),
            ParameterSpec(name="tank_level", unit="%", address=1),
        ),
    )


@pytest.fixture
def gateway() -> Device:
    return Device(id=9, name="Protocol Gateway", type="gateway", protocol="modbus_tcp")


# ----------------------------------------------------------------
# Async utilities
# ----------------------------------------------------------------
@pytest.fixture
def wait_for_condition():
    """Poll a predicate until it holds, failing the test after ``timeout``.

    Used instead of fixed sleeps when waiting on the poller or IDS feed.
    """

    async def _wait(
        condition_fn,
        timeout: float = 1.0,
        poll_interval: float = 0.01,
        error_msg: str = "Condition not met within timeout",
    ):
        loop = asyncio.get_running_loop()
        start = loop.time()
        while loop.time() - start < timeout:
            if condition_fn():
                return
            await asyncio.sleep(poll_interval)

        raise AssertionError(error_msg)

    return _wait
