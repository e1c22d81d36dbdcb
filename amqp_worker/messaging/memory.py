"""
In-Memory Client Module
=======================
Broker client backed by asyncio queues, for tests and local development.

Every client-level operation is appended to ``InMemoryBrokerClient.calls``
so callers can assert exactly what reached the broker.
"""

import asyncio
import itertools
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..core.logging_config import get_logger

from .client import (
    BrokerClient,
    ChannelHandle,
    ConnectionHandle,
    ConsumerHandle,
    DeliveryCallback,
    ErrorCallback,
)

logger = get_logger(__name__)


@dataclass
class Delivery:
    """A message delivered to an in-memory consumer."""

    body: bytes
    destination: str
    properties: Dict[str, Any] = field(default_factory=dict)
    delivery_tag: int = 0
    consumer_tag: Optional[str] = None
    acked: bool = False
    rejected: bool = False

    async def ack(self) -> None:
        self.acked = True

    async def reject(self, requeue: bool = False) -> None:
        self.rejected = True


class InMemoryChannel(ChannelHandle):
    """Channel over an in-memory connection."""

    def __init__(self, connection: "InMemoryConnection"):
        self._connection = connection
        self._client = connection.client
        self._consumer_tasks: Dict[str, asyncio.Task] = {}
        self.is_closed = False

    async def declare(self, destination: str, options: Dict[str, Any]) -> None:
        self._client.record("declare", destination, dict(options))
        self._client.queue(destination)
        logger.debug(f"Declared in-memory queue: {destination}")

    async def consume(
        self,
        destination: str,
        callback: DeliveryCallback,
        options: Dict[str, Any],
    ) -> ConsumerHandle:
        self._client.record("consume", destination, dict(options))
        consumer_tag = options.get("consumer_tag") or f"ctag-{uuid.uuid4().hex[:8]}"
        queue = self._client.queue(destination)

        async def deliver():
            while True:
                delivery = await queue.get()
                delivery.consumer_tag = consumer_tag
                try:
                    await callback(delivery)
                except Exception as e:
                    logger.error(f"Error processing message: {e}")

        self._consumer_tasks[consumer_tag] = asyncio.create_task(deliver())
        return ConsumerHandle(tag=consumer_tag, destination=destination)

    async def publish(
        self,
        destination: str,
        body: bytes,
        options: Dict[str, Any],
    ) -> None:
        self._client.record("publish", destination, body, dict(options))
        delivery = Delivery(
            body=body,
            destination=destination,
            properties=dict(options),
            delivery_tag=next(self._client.delivery_tags),
        )
        self._client.queue(destination).put_nowait(delivery)

    async def close(self) -> None:
        self._client.record("close_channel")
        await self.shutdown()

    async def shutdown(self) -> None:
        """Stop consumers and mark the channel closed."""
        current = asyncio.current_task()
        for task in self._consumer_tasks.values():
            task.cancel()
        for task in self._consumer_tasks.values():
            # A handler may close the channel it is being delivered on
            if task is current:
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._consumer_tasks.clear()
        self.is_closed = True


class InMemoryConnection(ConnectionHandle):
    """Connection to an in-memory broker."""

    def __init__(self, client: "InMemoryBrokerClient", target: str):
        self.client = client
        self.target = target
        self._error_callbacks: List[ErrorCallback] = []
        self._channels: List[InMemoryChannel] = []
        self._closed = False

    def on_error(self, callback: ErrorCallback) -> None:
        self._error_callbacks.append(callback)

    def emit_error(self, exc: BaseException) -> None:
        """Simulate an asynchronous connection fault."""
        for callback in list(self._error_callbacks):
            callback(exc)

    async def create_channel(self) -> InMemoryChannel:
        self.client.record("create_channel")
        channel = InMemoryChannel(self)
        self._channels.append(channel)
        return channel

    async def close(self) -> None:
        self.client.record("close_connection")
        for channel in self._channels:
            # Closing a connection closes its channels without a channel close call
            if not channel.is_closed:
                await channel.shutdown()
        self._closed = True

    @property
    def is_closed(self) -> bool:
        return self._closed


class InMemoryBrokerClient(BrokerClient):
    """
    In-memory broker client for testing.

    Queues live on the client instance, so every worker sharing a client
    sees the same destinations.
    """

    def __init__(self):
        self.calls: List[Tuple[Any, ...]] = []
        self.connections: List[InMemoryConnection] = []
        self.delivery_tags = itertools.count(1)
        self._queues: Dict[str, asyncio.Queue] = {}

    def record(self, operation: str, *args: Any) -> None:
        self.calls.append((operation, *args))

    def calls_to(self, operation: str) -> List[Tuple[Any, ...]]:
        """Return the recorded calls for one operation."""
        return [call for call in self.calls if call[0] == operation]

    def queue(self, destination: str) -> asyncio.Queue:
        if destination not in self._queues:
            self._queues[destination] = asyncio.Queue()
        return self._queues[destination]

    async def connect(self, target: str) -> InMemoryConnection:
        self.record("connect", target)
        connection = InMemoryConnection(self, target)
        self.connections.append(connection)
        logger.info("In-memory broker connected")
        return connection
