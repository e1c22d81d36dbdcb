"""
RabbitMQ Client Module
======================
Broker client backed by aio-pika.
"""

import asyncio
from typing import Any, Dict, Optional

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractQueue, AbstractRobustConnection

from ..core.config import get_config
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


class AioPikaChannel(ChannelHandle):
    """Channel wrapper around an aio-pika channel."""
    
    def __init__(self, channel: AbstractChannel):
        self._channel = channel
        self._queues: Dict[str, AbstractQueue] = {}
    
    @property
    def raw(self) -> AbstractChannel:
        """The underlying aio-pika channel."""
        return self._channel
    
    async def declare(self, destination: str, options: Dict[str, Any]) -> None:
        queue = await self._channel.declare_queue(destination, **options)
        self._queues[destination] = queue
        logger.debug(f"Declared queue: {destination}")
    
    async def consume(
        self,
        destination: str,
        callback: DeliveryCallback,
        options: Dict[str, Any],
    ) -> ConsumerHandle:
        queue = self._queues.get(destination)
        if queue is None:
            queue = await self._channel.get_queue(destination, ensure=False)
            self._queues[destination] = queue
        
        consumer_tag = await queue.consume(callback, **options)
        return ConsumerHandle(tag=consumer_tag, destination=destination)
    
    async def publish(
        self,
        destination: str,
        body: bytes,
        options: Dict[str, Any],
    ) -> None:
        properties = dict(options)
        persistent = properties.pop("persistent", None)
        if persistent is not None:
            properties["delivery_mode"] = (
                aio_pika.DeliveryMode.PERSISTENT
                if persistent
                else aio_pika.DeliveryMode.NOT_PERSISTENT
            )
        
        await self._channel.default_exchange.publish(
            aio_pika.Message(body=body, **properties),
            routing_key=destination,
        )
    
    async def close(self) -> None:
        await self._channel.close()


class AioPikaConnection(ConnectionHandle):
    """Connection wrapper around a robust aio-pika connection."""
    
    def __init__(self, connection: AbstractRobustConnection):
        self._connection = connection
    
    def on_error(self, callback: ErrorCallback) -> None:
        def forward(sender: Any, exc: Optional[BaseException] = None) -> None:
            # Clean closes carry no exception or a cancellation
            if exc is None or isinstance(exc, asyncio.CancelledError):
                return
            callback(exc)
        
        self._connection.close_callbacks.add(forward)
    
    async def create_channel(self) -> AioPikaChannel:
        # Without publisher confirms, publish returns once the frame is written
        channel = await self._connection.channel(publisher_confirms=False)
        return AioPikaChannel(channel)
    
    async def close(self) -> None:
        await self._connection.close()
    
    @property
    def is_closed(self) -> bool:
        return self._connection.is_closed


class AioPikaClient(BrokerClient):
    """
    RabbitMQ broker client.
    
    Uses aio-pika for async RabbitMQ communication.
    """
    
    def __init__(self, timeout: Optional[float] = None):
        """
        Initialize the client.
        
        Args:
            timeout: Connection timeout in seconds (defaults to configuration)
        """
        if timeout is None:
            timeout = get_config().broker.connection_timeout
        self.timeout = timeout
    
    async def connect(self, target: str) -> AioPikaConnection:
        connection = await aio_pika.connect_robust(target, timeout=self.timeout)
        return AioPikaConnection(connection)
