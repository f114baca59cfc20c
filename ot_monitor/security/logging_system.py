# ot_monitor/security/logging_system.py
"""
Structured logging for the OT monitoring core.

Each component gets an ``ICSLogger`` from ``get_logger(__name__, device=...)``.
Plain messages go to the console; when a log directory is configured they
are also written as JSON lines to ``<log_dir>/<device>.json.log``.

Structured events (``log_event`` and the security/audit shortcuts) carry a
severity, a category and device/parameter context. Security and audit
events are additionally kept in a bounded in-memory trail that can be
queried by severity and category.
"""

import asyncio
import json
import logging
import logging.handlers
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

__all__ = [
    "EventSeverity",
    "EventCategory",
    "LogEntry",
    "WallClockFormatter",
    "JSONFormatter",
    "ICSLogger",
    "configure_logging",
    "get_logger",
]

_STARTED_AT = time.monotonic()

JSON_LOG_MAX_BYTES = 10 * 1024 * 1024
JSON_LOG_BACKUPS = 5

# Categories retained in the audit trail
RETAINED_CATEGORIES = frozenset({"security", "audit"})


def seconds_since_start() -> float:
    return time.monotonic() - _STARTED_AT


# ----------------------------------------------------------------
# Event classification
# ----------------------------------------------------------------


class EventSeverity(Enum):
    """
    Event severity, IEC 62443 style.

    Smaller values are more severe, so sorting by value puts the
    most urgent events first.
    """

    CRITICAL = 1
    ALERT = 2
    ERROR = 3
    WARNING = 4
    NOTICE = 5
    INFO = 6
    DEBUG = 7

    @property
    def logging_level(self) -> int:
        """Closest stdlib logging level."""
        if self.value <= EventSeverity.ALERT.value:
            return logging.CRITICAL
        if self is EventSeverity.NOTICE:
            return logging.INFO
        return getattr(logging, self.name)

    @classmethod
    def from_logging_level(cls, levelno: int) -> "EventSeverity":
        """Map a stdlib level (including custom ones) onto a severity."""
        if levelno >= logging.CRITICAL:
            return cls.CRITICAL
        if levelno >= logging.ERROR:
            return cls.ERROR
        if levelno >= logging.WARNING:
            return cls.WARNING
        if levelno >= logging.INFO:
            return cls.INFO
        return cls.DEBUG


class EventCategory(Enum):
    SECURITY = "security"
    PROCESS = "process"
    AUDIT = "audit"
    SYSTEM = "system"
    COMMUNICATION = "communication"
    DIAGNOSTIC = "diagnostic"


# ----------------------------------------------------------------
# Log entry
# ----------------------------------------------------------------

_CONTEXT_FIELDS = ("device", "component", "user", "parameter")


@dataclass
class LogEntry:
    """One structured event.

    ``wall_time`` is epoch seconds, ``uptime`` is seconds since the
    process started. Empty context fields are left out of the
    serialised form.
    """

    wall_time: float
    uptime: float
    severity: EventSeverity
    category: EventCategory
    message: str
    device: str = ""
    component: str = ""
    user: str = ""
    parameter: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        raw = asdict(self)
        result: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(self.wall_time).isoformat(),
            "uptime": round(self.uptime, 3),
            "severity": self.severity.name,
            "category": self.category.value,
            "message": self.message,
        }
        result.update({key: raw[key] for key in (*_CONTEXT_FIELDS, "data") if raw[key]})
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def to_human_readable(self) -> str:
        context = "".join(
            f"{getattr(self, key)}:"
            for key in ("device", "component", "parameter")
            if getattr(self, key)
        )
        label = f"[{self.severity.name:<8}]"
        return " ".join(part for part in (label, context, self.message) if part)


# ----------------------------------------------------------------
# Formatters
# ----------------------------------------------------------------


class WallClockFormatter(logging.Formatter):
    """Console lines: wall-clock time, uptime, level, logger name."""

    CONSOLE_FORMAT = (
        "%(asctime)s [UP:%(uptime)9.2fs] [%(levelname)8s] %(name)s: %(message)s"
    )

    def __init__(self):
        super().__init__(fmt=self.CONSOLE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        record.uptime = seconds_since_start()
        return super().format(record)


class JSONFormatter(logging.Formatter):
    """One JSON object per record, in ``LogEntry`` shape."""

    def __init__(self, device: str = ""):
        super().__init__()
        self.device = device

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {}
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)

        return LogEntry(
            wall_time=record.created,
            uptime=seconds_since_start(),
            severity=EventSeverity.from_logging_level(record.levelno),
            category=EventCategory.SYSTEM,
            message=record.getMessage(),
            device=self.device,
            component=record.name,
            data=data,
        ).to_json()


# ----------------------------------------------------------------
# ICSLogger
# ----------------------------------------------------------------


class ICSLogger:
    """
    Component logger with structured events and an audit trail.

    Args:
        name: Logger name, usually the module's ``__name__``
        device: Device or component the logger reports for
        log_dir: Where JSON lines are written; ``None`` disables file output
        enable_json: Write JSON lines when ``log_dir`` is set
        enable_console: Echo INFO and above to stderr
        max_audit_entries: Oldest trail entries are dropped past this size
    """

    def __init__(
        self,
        name: str,
        device: str = "",
        log_dir: Path | None = None,
        enable_json: bool = True,
        enable_console: bool = True,
        max_audit_entries: int = 10000,
    ):
        self.name = name
        self.device = device
        self.log_dir = log_dir

        qualified = ".".join(part for part in (name, device) if part)
        self.logger = logging.getLogger(qualified)
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)

        if enable_console:
            console = logging.StreamHandler()
            console.setLevel(logging.INFO)
            console.setFormatter(WallClockFormatter())
            self.logger.addHandler(console)
        if enable_json and log_dir:
            self.attach_json_file()

        self._trail: deque[LogEntry] = deque(maxlen=max_audit_entries)
        self._trail_lock = asyncio.Lock()

    def attach_json_file(self) -> None:
        """Start writing rotated JSON lines under ``log_dir``."""
        if self.log_dir is None:
            return
        self.log_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            self.log_dir / f"{self.device or 'monitor'}.json.log",
            maxBytes=JSON_LOG_MAX_BYTES,
            backupCount=JSON_LOG_BACKUPS,
        )
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(JSONFormatter(device=self.device))
        self.logger.addHandler(handler)

    # Plain messages

    def debug(self, message: str, **kwargs) -> None:
        self.logger.debug(message, **kwargs)

    def info(self, message: str, **kwargs) -> None:
        self.logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs) -> None:
        self.logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs) -> None:
        self.logger.error(message, **kwargs)

    # Structured events

    def _entry(
        self,
        severity: EventSeverity,
        category: EventCategory,
        message: str,
        device: Any = None,
        **context: Any,
    ) -> LogEntry:
        return LogEntry(
            wall_time=time.time(),
            uptime=seconds_since_start(),
            severity=severity,
            category=category,
            message=message,
            device=self.device if device is None else str(device),
            **context,
        )

    async def log_event(
        self,
        severity: EventSeverity,
        category: EventCategory,
        message: str,
        **kwargs,
    ) -> LogEntry:
        """
        Emit a structured event.

        ``device`` defaults to the logger's own device. Other keyword
        arguments (component, user, parameter, data) become entry fields.
        Security and audit events are also appended to the audit trail.
        """
        entry = self._entry(severity, category, message, **kwargs)
        self.logger.log(severity.logging_level, entry.to_human_readable())

        if category.value in RETAINED_CATEGORIES:
            async with self._trail_lock:
                self._trail.append(entry)
        return entry

    async def log_security(
        self, message: str, severity: EventSeverity = EventSeverity.WARNING, **kwargs
    ) -> LogEntry:
        return await self.log_event(severity, EventCategory.SECURITY, message, **kwargs)

    async def log_audit(
        self, message: str, user: str = "", action: str = "", result: str = "", **kwargs
    ) -> LogEntry:
        """Record an operator action and its outcome."""
        kwargs["data"] = {**kwargs.get("data", {}), "action": action, "result": result}
        return await self.log_event(
            EventSeverity.NOTICE, EventCategory.AUDIT, message, user=user, **kwargs
        )

    def log_failure(
        self,
        message: str,
        error: BaseException,
        device: Any = "",
        parameter: str = "",
        **data: Any,
    ) -> LogEntry:
        """
        Report a failure that was contained and did not stop processing.

        Synchronous so it can be called from ``except`` blocks in worker
        threads as well as coroutines. Extra keyword arguments land in
        ``data`` next to the exception type.
        """
        entry = self._entry(
            EventSeverity.ERROR,
            EventCategory.DIAGNOSTIC,
            f"{message}: {error}",
            device=None if device == "" else device,
            parameter=parameter,
            data={"error_type": type(error).__name__, **data},
        )
        self.logger.error(entry.to_human_readable())
        return entry

    # Audit trail

    async def get_audit_trail(
        self,
        limit: int = 100,
        severity: EventSeverity | None = None,
        category: EventCategory | None = None,
    ) -> list[LogEntry]:
        """Latest ``limit`` retained entries matching the filters, oldest first."""
        async with self._trail_lock:
            matches = [
                entry
                for entry in self._trail
                if (severity is None or entry.severity is severity)
                and (category is None or entry.category is category)
            ]
        return matches[-limit:]

    async def clear_audit_trail(self) -> int:
        async with self._trail_lock:
            dropped = len(self._trail)
            self._trail.clear()
        return dropped


# ----------------------------------------------------------------
# Factory
# ----------------------------------------------------------------

_loggers: dict[str, ICSLogger] = {}
_registry_lock = threading.Lock()
_log_dir: Path | None = None


def configure_logging(log_dir: Path | str | None = None) -> None:
    """
    Set (or clear) the directory for JSON log files.

    Loggers created at import time, before configuration was read, get
    a JSON handler attached here.
    """
    global _log_dir

    _log_dir = Path(log_dir) if log_dir else None
    if _log_dir is None:
        return
    _log_dir.mkdir(parents=True, exist_ok=True)

    with _registry_lock:
        pending = [lg for lg in _loggers.values() if lg.log_dir is None]
        for ics_logger in pending:
            ics_logger.log_dir = _log_dir
            ics_logger.attach_json_file()


def get_logger(name: str, device: str = "", **kwargs) -> ICSLogger:
    """Return the shared logger for ``(name, device)``, creating it once."""
    key = f"{name}:{device}"
    with _registry_lock:
        ics_logger = _loggers.get(key)
        if ics_logger is None:
            if _log_dir is not None:
                kwargs.setdefault("log_dir", _log_dir)
            ics_logger = _loggers[key] = ICSLogger(name, device, **kwargs)
    return ics_logger
