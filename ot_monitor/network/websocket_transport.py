# ot_monitor/network/websocket_transport.py
"""
WebSocket transport for the broadcast hub.

Each connection becomes one hub subscriber. A per-connection sender task
drains the subscriber queue into the socket, so a slow or broken client
only ever loses its own subscription.

Server messages are ``{"type": ..., "data": ...}`` JSON envelopes. Client
messages are read and ignored.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator
from typing import Any, Protocol

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from ot_monitor import __version__
from ot_monitor.network.broadcast_hub import BroadcastHub, Subscriber
from ot_monitor.security.logging_system import get_logger

__all__ = ["create_app", "WS_PATH"]

logger = get_logger(__name__, device="websocket")

WS_PATH = "/ws"
CLOSE_GOING_AWAY = 1001
CLOSE_TRY_AGAIN_LATER = 1013


class ManagedService(Protocol):
    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    def get_status(self) -> dict[str, Any]: ...


async def _send_loop(websocket: WebSocket, subscriber: Subscriber) -> None:
    async for message in subscriber:
        await websocket.send_text(message.to_json())


async def _receive_loop(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


async def _pump(websocket: WebSocket, subscriber: Subscriber, peer: str) -> None:
    sender = asyncio.create_task(_send_loop(websocket, subscriber))
    receiver = asyncio.create_task(_receive_loop(websocket))
    try:
        done, pending = await asyncio.wait(
            {sender, receiver}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError, WebSocketDisconnect):
                await task

        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.warning(f"WebSocket {peer} closed on error: {error}")

        if sender in done and receiver not in done:
            # Hub closed or dropped this subscriber
            with contextlib.suppress(Exception):
                await websocket.close(code=CLOSE_GOING_AWAY)
    finally:
        for task in (sender, receiver):
            if not task.done():
                task.cancel()


def create_app(hub: BroadcastHub, service: ManagedService | None = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        hub: Broadcast hub whose messages are pushed to clients
        service: Started and stopped with the application lifespan

    Returns:
        FastAPI app exposing ``/ws`` and ``/health``
    """

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if service is not None:
            await service.start()
        try:
            yield
        finally:
            if service is not None:
                await service.stop()
            else:
                await hub.close()

    app = FastAPI(title="OT Monitor", version=__version__, lifespan=lifespan)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        status: dict[str, Any] = {
            "status": "closed" if hub.closed else "ok",
            "subscribers": hub.subscriber_count,
            "hub": hub.get_stats(),
        }
        if service is not None:
            status["service"] = service.get_status()
        return status

    @app.websocket(WS_PATH)
    async def websocket_endpoint(websocket: WebSocket) -> None:
        client = websocket.client
        peer = f"{client.host}:{client.port}" if client else "unknown"

        if hub.closed:
            await websocket.close(code=CLOSE_TRY_AGAIN_LATER)
            return

        # Registered before accept so nothing published after the handshake is missed
        subscriber = hub.register(name=f"ws-{peer}")
        try:
            await websocket.accept()
            logger.info(f"WebSocket client connected: {peer}")
            await _pump(websocket, subscriber, peer)
        finally:
            hub.unregister(subscriber)
            logger.info(f"WebSocket client disconnected: {peer}")

    return app
