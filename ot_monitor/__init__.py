# ot_monitor/__init__.py
"""
OT security monitoring core.

Packages:
- config: YAML configuration loading and monitoring settings
- devices: Reading sources and the scheduled device poller
- network: Broadcast hub and WebSocket transport
- protocols: Field-bus adapters used by reading sources
- security: Anomaly analyzer, alert sink, IDS feed and ICS logging
- state: Domain models and store contracts
"""

__version__ = "0.3.0"
