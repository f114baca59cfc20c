# ot_monitor/config/config_loader.py
"""
YAML configuration for the monitoring service.

A single ``monitoring.yml`` holds the runtime settings and the device set.
A missing file is created with defaults. Environment variables override
the poll intervals and the Suricata log path.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ot_monitor.exceptions import ConfigError
from ot_monitor.security.logging_system import get_logger
from ot_monitor.state.models import Device

__all__ = [
    "MonitoringSettings",
    "ConfigLoader",
    "DEFAULT_DEVICES",
    "READING_SOURCES",
]

logger = get_logger(__name__, device="config")

CONFIG_FILE = "monitoring.yml"
READING_SOURCES = ("simulated", "modbus")


# ----------------------------------------------------------------
# Settings
# ----------------------------------------------------------------


def _positive_float(raw: Any, name: str, default: float, allow_zero: bool = False) -> float:
    if raw is None:
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.warning(f"Invalid {name} '{raw}', using default: {default}")
        return default
    if isinstance(raw, bool) or value < 0 or (value == 0 and not allow_zero):
        logger.warning(f"Invalid {name} '{raw}', using default: {default}")
        return default
    return value


def _positive_int(raw: Any, name: str, default: int, minimum: int = 1) -> int:
    if raw is None:
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning(f"Invalid {name} '{raw}', using default: {default}")
        return default
    if isinstance(raw, bool) or value < minimum:
        logger.warning(f"Invalid {name} '{raw}', using default: {default}")
        return default
    return value


_TRUE_WORDS = frozenset({"true", "yes", "on", "1"})
_FALSE_WORDS = frozenset({"false", "no", "off", "0"})


def _flag(raw: Any, name: str, default: bool) -> bool:
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    word = str(raw).strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    logger.warning(f"Invalid {name} '{raw}', using default: {default}")
    return default


def _ms_env(env: Mapping[str, str], name: str) -> float | None:
    raw = env.get(name)
    if raw is None or raw == "":
        return None
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Ignoring {name}='{raw}': not an integer")
        return None
    if value <= 0:
        logger.warning(f"Ignoring {name}='{raw}': must be positive")
        return None
    return value / 1000.0


@dataclass
class MonitoringSettings:
    """Runtime settings for the monitoring service."""

    poll_interval: float = 5.0
    max_workers: int = 8
    shutdown_timeout: float = 5.0
    history_window: int = 10
    subscriber_queue_size: int = 100
    reading_source: str = "simulated"

    ids_enabled: bool = True
    ids_interval: float = 5.0
    ids_probability: float = 0.05
    eve_log_path: str | None = None

    host: str = "0.0.0.0"
    port: int = 5000
    log_dir: str | None = None

    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(
        cls, raw: Mapping[str, Any] | None, env: Mapping[str, str] | None = None
    ) -> MonitoringSettings:
        """
        Build settings from the ``monitoring`` section.

        Invalid values fall back to defaults with a warning. Environment
        overrides (``DEVICE_POLL_INTERVAL_MS``, ``SURICATA_POLL_INTERVAL_MS``,
        ``SURICATA_LOG_PATH``) win over the file.

        Raises:
            ConfigError: If ``reading_source`` names an unknown source
        """
        raw = dict(raw or {})
        env = os.environ if env is None else env
        defaults = cls()

        ids = raw.pop("ids_feed", None) or {}
        server = raw.pop("server", None) or {}

        reading_source = str(raw.pop("reading_source", defaults.reading_source)).lower()
        if reading_source not in READING_SOURCES:
            raise ConfigError(
                f"Unknown reading_source '{reading_source}' "
                f"(expected one of: {', '.join(READING_SOURCES)})"
            )

        probability = _positive_float(
            ids.get("probability"), "ids_feed.probability", defaults.ids_probability,
            allow_zero=True,
        )
        if probability > 1.0:
            logger.warning(
                f"Invalid ids_feed.probability '{probability}', "
                f"using default: {defaults.ids_probability}"
            )
            probability = defaults.ids_probability

        settings = cls(
            poll_interval=_positive_float(
                raw.pop("poll_interval", None), "poll_interval", defaults.poll_interval
            ),
            max_workers=_positive_int(
                raw.pop("max_workers", None), "max_workers", defaults.max_workers
            ),
            shutdown_timeout=_positive_float(
                raw.pop("shutdown_timeout", None),
                "shutdown_timeout",
                defaults.shutdown_timeout,
                allow_zero=True,
            ),
            history_window=_positive_int(
                raw.pop("history_window", None),
                "history_window",
                defaults.history_window,
                minimum=2,
            ),
            subscriber_queue_size=_positive_int(
                raw.pop("subscriber_queue_size", None),
                "subscriber_queue_size",
                defaults.subscriber_queue_size,
            ),
            reading_source=reading_source,
            ids_enabled=_flag(
                ids.get("enabled"), "ids_feed.enabled", defaults.ids_enabled
            ),
            ids_interval=_positive_float(
                ids.get("interval"), "ids_feed.interval", defaults.ids_interval
            ),
            ids_probability=probability,
            eve_log_path=ids.get("eve_log_path") or None,
            host=str(server.get("host", defaults.host)),
            port=_positive_int(server.get("port"), "server.port", defaults.port),
            log_dir=raw.pop("log_dir", None) or None,
            extra=raw,
        )

        poll_override = _ms_env(env, "DEVICE_POLL_INTERVAL_MS")
        if poll_override is not None:
            settings.poll_interval = poll_override
        ids_override = _ms_env(env, "SURICATA_POLL_INTERVAL_MS")
        if ids_override is not None:
            settings.ids_interval = ids_override
        if env.get("SURICATA_LOG_PATH"):
            settings.eve_log_path = env["SURICATA_LOG_PATH"]

        return settings

    def to_dict(self) -> dict[str, Any]:
        return {
            "poll_interval": self.poll_interval,
            "max_workers": self.max_workers,
            "shutdown_timeout": self.shutdown_timeout,
            "history_window": self.history_window,
            "subscriber_queue_size": self.subscriber_queue_size,
            "reading_source": self.reading_source,
            "ids_feed": {
                "enabled": self.ids_enabled,
                "interval": self.ids_interval,
                "probability": self.ids_probability,
                "eve_log_path": self.eve_log_path,
            },
            "server": {"host": self.host, "port": self.port},
            "log_dir": self.log_dir,
        }


# ----------------------------------------------------------------
# Default device set
# ----------------------------------------------------------------

DEFAULT_DEVICES: list[dict[str, Any]] = [
    {
        "id": 1,
        "name": "Main Control PLC",
        "type": "plc",
        "protocol": "modbus_tcp",
        "ip_address": "192.168.1.10",
        "port": 502,
        "status": "online",
        "acceptable_ranges": {},
        "parameters": [
            {"name": "flow_rate", "unit": "L/min", "address": 0},
            {"name": "tank_level", "unit": "%", "address": 1},
        ],
    },
    {
        "id": 2,
        "name": "Process Control PLC",
        "type": "plc",
        "protocol": "modbus_tcp",
        "ip_address": "192.168.1.11",
        "port": 502,
        "status": "online",
        "acceptable_ranges": {},
        "parameters": [
            {"name": "vibration", "unit": "Hz", "address": 0, "scale": 0.1},
        ],
    },
    {
        "id": 3,
        "name": "Auxiliary Systems PLC",
        "type": "plc",
        "protocol": "opc_ua",
        "ip_address": "192.168.1.12",
        "port": 4840,
        "status": "warning",
        "acceptable_ranges": {},
        "parameters": [],
    },
    {
        "id": 4,
        "name": "Safety Systems PLC",
        "type": "plc",
        "protocol": "modbus_tcp",
        "ip_address": "192.168.1.13",
        "port": 502,
        "status": "online",
        "acceptable_ranges": {},
        "parameters": [],
    },
    {
        "id": 5,
        "name": "Boiler Pressure Sensor",
        "type": "sensor",
        "protocol": "mqtt",
        "ip_address": "192.168.1.20",
        "port": 1883,
        "status": "online",
        "acceptable_ranges": {"min": 55, "max": 85},
        "parameters": [{"name": "pressure", "unit": "PSI"}],
    },
    {
        "id": 6,
        "name": "Temperature Sensor",
        "type": "sensor",
        "protocol": "mqtt",
        "ip_address": "192.168.1.21",
        "port": 1883,
        "status": "warning",
        "acceptable_ranges": {"min": 60, "max": 90},
        "parameters": [{"name": "temperature", "unit": "°C"}],
    },
]


# ----------------------------------------------------------------
# Loader
# ----------------------------------------------------------------


class ConfigLoader:
    """Loads ``monitoring.yml``, creating it with defaults when missing."""

    def __init__(self, config_dir="config"):
        self.config_dir = Path(config_dir)
        self.config_dir.mkdir(parents=True, exist_ok=True)

    @property
    def config_path(self) -> Path:
        return self.config_dir / CONFIG_FILE

    def load_all(self) -> dict[str, Any]:
        """
        Load raw configuration.

        Returns:
            ``{"monitoring": {...}, "devices": [...]}``

        Raises:
            ConfigError: If the file is not valid YAML or not a mapping
        """
        path = self.config_path
        if not path.exists():
            config = {
                "monitoring": MonitoringSettings().to_dict(),
                "devices": [dict(d) for d in DEFAULT_DEVICES],
            }
            self._save(config)
            return config

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a mapping at the top level")

        devices = data.get("devices")
        return {
            "monitoring": data.get("monitoring") or {},
            "devices": list(DEFAULT_DEVICES) if devices is None else devices,
        }

    def load_settings(self, env: Mapping[str, str] | None = None) -> MonitoringSettings:
        return MonitoringSettings.from_dict(self.load_all()["monitoring"], env=env)

    def load_devices(self) -> list[Device]:
        """
        Raises:
            ConfigError: If an entry is malformed or ids repeat
        """
        raw_devices = self.load_all()["devices"]
        if not isinstance(raw_devices, list):
            raise ConfigError("'devices' must be a list")

        devices = []
        seen: set[int] = set()
        for index, raw in enumerate(raw_devices):
            if not isinstance(raw, dict):
                raise ConfigError(f"devices[{index}] must be a mapping")
            try:
                device = Device.from_config(raw)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"devices[{index}]: {e}") from e
            if device.id in seen:
                raise ConfigError(f"Duplicate device id {device.id}")
            seen.add(device.id)
            devices.append(device)
        return devices

    def _save(self, config: dict[str, Any]) -> None:
        with open(self.config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(config, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
        logger.info(f"Created default monitoring config at {self.config_path}")
