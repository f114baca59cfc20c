#!/usr/bin/env python3
# tools/run_monitor.py
"""
OT Monitor runner.

Loads ``monitoring.yml``, builds the monitoring service and serves the
WebSocket transport with uvicorn. The poller and IDS feed start and stop
with the application lifespan.
"""

import argparse
import asyncio
import sys

import uvicorn

from ot_monitor.exceptions import ConfigError
from ot_monitor.monitoring_service import MonitoringService
from ot_monitor.network.websocket_transport import create_app
from ot_monitor.security.logging_system import get_logger

logger = get_logger(__name__, device="runner")


async def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Run the OT sensor anomaly monitor and alert stream",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m tools.run_monitor
  python -m tools.run_monitor --config-dir /etc/ot-monitor --port 8080
  DEVICE_POLL_INTERVAL_MS=1000 python -m tools.run_monitor
        """,
    )
    parser.add_argument(
        "--config-dir", default="config", help="Directory holding monitoring.yml"
    )
    parser.add_argument("--host", help="Bind address (overrides config)")
    parser.add_argument("--port", type=int, help="Bind port (overrides config)")
    args = parser.parse_args()

    try:
        service = MonitoringService.from_config(args.config_dir)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    host = args.host or service.settings.host
    port = args.port or service.settings.port

    logger.info("=== OT Monitor ===")
    logger.info(f"WebSocket stream: ws://{host}:{port}/ws")

    app = create_app(service.hub, service=service)
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="info"))
    await server.serve()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
