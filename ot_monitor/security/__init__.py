# ot_monitor/security/__init__.py
"""
Security components for the OT monitor.

Modules:
- logging_system: Structured ICS logging with audit trail
- anomaly_analyzer: Behavioural anomaly rules over sensor readings
- alert_sink: Persist and broadcast alerts
- ids_feed: Intrusion detection alert ingestion
"""

from ot_monitor.security.anomaly_analyzer import (
    AnomalyAnalyzer,
    ParameterRule,
    RuleRegistry,
)
from ot_monitor.security.logging_system import (
    EventCategory,
    EventSeverity,
    ICSLogger,
    configure_logging,
    get_logger,
)

__all__ = [
    "AnomalyAnalyzer",
    "ParameterRule",
    "RuleRegistry",
    "EventCategory",
    "EventSeverity",
    "ICSLogger",
    "configure_logging",
    "get_logger",
]
