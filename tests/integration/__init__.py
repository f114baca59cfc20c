"""
Integration tests for the OT monitor.

These tests run several components together (config, store, poller,
analyzer, alert sink, broadcast hub, WebSocket transport) the way the
runner wires them.

Running Integration Tests:
    pytest tests/integration/                    # All integration tests
    pytest tests/integration/ -m integration     # Tagged as integration
"""
