# ot_monitor/network/broadcast_hub.py
"""
Real-time fan-out of pipeline events to connected subscribers.

Each subscriber owns a bounded asyncio.Queue. Publishing never awaits a
subscriber: a message is offered with put_nowait, and a subscriber whose
queue is closed or full is dropped from the registry. Transports (the
WebSocket endpoint) drain their subscriber's queue in their own task.

Lifecycle: created at startup, closed at shutdown. After close() the hub
accepts no new subscribers and publish() delivers nothing.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Any

from ot_monitor.exceptions import SubscriberDeliveryFailure
from ot_monitor.security.logging_system import get_logger
from ot_monitor.state.models import BroadcastMessage

__all__ = ["Subscriber", "BroadcastHub"]

logger = get_logger(__name__, device="broadcast_hub")

_CLOSED = object()


class Subscriber:
    """
    One connected recipient.

    Example:
        >>> subscriber = hub.register("ws-10.0.0.5")
        >>> async for message in subscriber:
        ...     await websocket.send_text(message.to_json())
    """

    def __init__(self, subscriber_id: int, name: str = "", queue_size: int = 100):
        self.id = subscriber_id
        self.name = name or f"subscriber-{subscriber_id}"
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._closed = False
        self.delivered = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, message: BroadcastMessage) -> None:
        """
        Offer a message without waiting.

        Raises:
            SubscriberDeliveryFailure: If the channel is closed or full
        """
        if self._closed:
            raise SubscriberDeliveryFailure(f"{self.name} is closed")
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull as e:
            raise SubscriberDeliveryFailure(f"{self.name} queue is full") from e
        self.delivered += 1

    def close(self) -> None:
        """Close the channel; a pending receive() returns None."""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # receive() sees the closed flag once the backlog drains
            pass

    async def receive(self) -> BroadcastMessage | None:
        """Next message, or None once the channel is closed and drained."""
        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item

    def pending(self) -> int:
        return self._queue.qsize()

    def __aiter__(self):
        return self

    async def __anext__(self) -> BroadcastMessage:
        message = await self.receive()
        if message is None:
            raise StopAsyncIteration
        return message

    def __repr__(self) -> str:
        return f"Subscriber(id={self.id}, name={self.name!r}, closed={self._closed})"


class BroadcastHub:
    """
    Concurrency-safe subscriber registry with non-blocking publish.

    register/unregister/publish run on the event loop thread; none of them
    awaits, so the registry is never observed half-updated.
    """

    def __init__(self, queue_size: int = 100):
        """
        Args:
            queue_size: Per-subscriber buffered message limit
        """
        if queue_size < 1:
            raise ValueError("queue_size must be at least 1")
        self.queue_size = queue_size
        self._subscribers: dict[int, Subscriber] = {}
        self._ids = itertools.count(1)
        self._closed = False

        self.published = 0
        self.dropped_subscribers = 0

    # ----------------------------------------------------------------
    # Registry
    # ----------------------------------------------------------------

    def register(self, name: str = "") -> Subscriber:
        """
        Add a subscriber.

        Raises:
            RuntimeError: If the hub has been closed
        """
        if self._closed:
            raise RuntimeError("BroadcastHub is closed")
        subscriber = Subscriber(next(self._ids), name=name, queue_size=self.queue_size)
        self._subscribers[subscriber.id] = subscriber
        logger.info(
            f"Subscriber registered: {subscriber.name} "
            f"({len(self._subscribers)} connected)"
        )
        return subscriber

    def unregister(self, subscriber: Subscriber) -> bool:
        """Remove and close a subscriber. Returns False if it was not registered."""
        removed = self._subscribers.pop(subscriber.id, None)
        subscriber.close()
        if removed is not None:
            logger.info(
                f"Subscriber unregistered: {subscriber.name} "
                f"({len(self._subscribers)} connected)"
            )
        return removed is not None

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribers(self) -> list[Subscriber]:
        return list(self._subscribers.values())

    # ----------------------------------------------------------------
    # Publish
    # ----------------------------------------------------------------

    def publish(self, message: BroadcastMessage) -> int:
        """
        Deliver a message to every open subscriber.

        Subscribers that cannot accept it are removed; the rest still get
        the message.

        Returns:
            Number of subscribers the message was delivered to
        """
        if self._closed:
            return 0

        self.published += 1
        delivered = 0
        failed: list[tuple[Subscriber, SubscriberDeliveryFailure]] = []

        for subscriber in list(self._subscribers.values()):
            try:
                subscriber.deliver(message)
                delivered += 1
            except SubscriberDeliveryFailure as e:
                failed.append((subscriber, e))

        for subscriber, error in failed:
            self._subscribers.pop(subscriber.id, None)
            subscriber.close()
            self.dropped_subscribers += 1
            logger.warning(
                f"Dropped subscriber {subscriber.name} during "
                f"{message.type.value} broadcast: {error}"
            )

        return delivered

    async def close(self) -> None:
        """Close every subscriber channel and refuse new registrations."""
        if self._closed:
            return
        self._closed = True
        subscribers = list(self._subscribers.values())
        self._subscribers.clear()
        for subscriber in subscribers:
            subscriber.close()
        logger.info(f"BroadcastHub closed ({len(subscribers)} subscribers drained)")

    @property
    def closed(self) -> bool:
        return self._closed

    def get_stats(self) -> dict[str, Any]:
        return {
            "subscribers": len(self._subscribers),
            "published": self.published,
            "dropped_subscribers": self.dropped_subscribers,
            "queue_size": self.queue_size,
            "closed": self._closed,
        }
