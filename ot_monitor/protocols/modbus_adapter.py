# ot_monitor/protocols/modbus_adapter.py
"""
Read-only Modbus TCP adapter using pymodbus.

Transport-only: no scaling, no parameter semantics. The monitor never
writes to field devices, so only register reads are exposed.
"""

from __future__ import annotations

from pymodbus.client import AsyncModbusTcpClient

from ot_monitor.exceptions import ReadingSourceError

__all__ = ["ModbusReadAdapter"]


class ModbusReadAdapter:
    def __init__(self, host: str, port: int = 502, unit_id: int = 1, timeout: float = 3.0):
        self.host = host
        self.port = port
        self.unit_id = unit_id
        self.timeout = timeout

        self.client: AsyncModbusTcpClient | None = None
        self.connected: bool = False

    # ------------------------------------------------------------------
    # Client lifecycle
    # ------------------------------------------------------------------
    async def connect(self) -> bool:
        if not self.client:
            self.client = AsyncModbusTcpClient(
                host=self.host, port=self.port, timeout=self.timeout
            )
            self.client.unit_id = self.unit_id

        if not self.connected:
            self.connected = bool(await self.client.connect())

        return self.connected

    async def disconnect(self) -> None:
        if self.client:
            self.client.close()
            self.client = None

        self.connected = False

    async def __aenter__(self) -> ModbusReadAdapter:
        if not await self.connect():
            raise ReadingSourceError(
                f"Could not connect to Modbus device at {self.host}:{self.port}"
            )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def read_holding_registers(self, address: int, count: int = 1) -> list[int]:
        """
        Read holding registers.

        Raises:
            ReadingSourceError: If not connected or the device returned an error
        """
        if not self.client:
            raise ReadingSourceError("Client not connected")
        result = await self.client.read_holding_registers(address, count=count)
        if result.isError():
            raise ReadingSourceError(
                f"Modbus error reading {count} register(s) at {address} "
                f"from {self.host}:{self.port}: {result}"
            )
        return list(result.registers)

    async def probe(self) -> dict:
        return {
            "transport": "modbus-tcp",
            "host": self.host,
            "port": self.port,
            "unit_id": self.unit_id,
            "connected": self.connected,
        }
