"""
Broker Client Module
====================
Abstract capability surface a worker needs from a broker client.

Implementations:
- ``AioPikaClient`` for RabbitMQ (``amqp_worker.messaging.aiopika``)
- ``InMemoryBrokerClient`` for tests (``amqp_worker.messaging.memory``)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional


ErrorCallback = Callable[[BaseException], Any]
DeliveryCallback = Callable[[Any], Awaitable[None]]


@dataclass(frozen=True)
class ConsumerHandle:
    """Handle returned when a consumer is attached to a destination."""
    
    tag: str
    destination: str


class ChannelHandle(ABC):
    """A channel multiplexed over a broker connection."""
    
    @abstractmethod
    async def declare(self, destination: str, options: Dict[str, Any]) -> None:
        """
        Declare (assert) a queue.
        
        Args:
            destination: Queue name
            options: Declare options (durable, exclusive, ...)
        """
        pass
    
    @abstractmethod
    async def consume(
        self,
        destination: str,
        callback: DeliveryCallback,
        options: Dict[str, Any],
    ) -> ConsumerHandle:
        """
        Attach a consumer to a queue.
        
        Args:
            destination: Queue name
            callback: Coroutine function invoked once per delivered message
            options: Consume options (no_ack, exclusive, ...)
            
        Returns:
            ConsumerHandle: Handle carrying the consumer tag
        """
        pass
    
    @abstractmethod
    async def publish(
        self,
        destination: str,
        body: bytes,
        options: Dict[str, Any],
    ) -> None:
        """
        Send raw bytes to a queue.
        
        Args:
            destination: Queue name
            body: Serialized message body
            options: Publish options (persistent, headers, ...)
        """
        pass
    
    @abstractmethod
    async def close(self) -> None:
        pass


class ConnectionHandle(ABC):
    """An open broker connection."""
    
    @abstractmethod
    def on_error(self, callback: ErrorCallback) -> None:
        """
        Register a listener for asynchronous connection faults.
        
        The callback may fire at any time for the life of the connection.
        """
        pass
    
    @abstractmethod
    async def create_channel(self) -> ChannelHandle:
        pass
    
    @abstractmethod
    async def close(self) -> None:
        pass
    
    @property
    @abstractmethod
    def is_closed(self) -> bool:
        pass


class BrokerClient(ABC):
    """Factory for broker connections."""
    
    @abstractmethod
    async def connect(self, target: str) -> ConnectionHandle:
        """
        Open a connection to the broker.
        
        Args:
            target: Broker URL
            
        Returns:
            ConnectionHandle: Open connection
        """
        pass


def merge_options(
    defaults: Optional[Dict[str, Any]],
    overrides: Optional[Dict[str, Any]],
) -> Dict[str, Any]:
    """Merge call-site overrides over worker-level defaults."""
    merged = dict(defaults or {})
    merged.update(overrides or {})
    return merged
