"""
Messaging Module
================
Queue worker and the broker clients it runs on.

This module provides:
- QueueWorker, the connection/channel lifecycle manager
- Broker client interface with aio-pika and in-memory implementations
- Serialization hooks
"""

from .client import BrokerClient, ConnectionHandle, ChannelHandle, ConsumerHandle
from .memory import InMemoryBrokerClient, Delivery
from .serialization import identity, json_serializer, text_serializer
from .worker import QueueWorker

__all__ = [
    "BrokerClient",
    "ConnectionHandle",
    "ChannelHandle",
    "ConsumerHandle",
    "InMemoryBrokerClient",
    "Delivery",
    "identity",
    "json_serializer",
    "text_serializer",
    "QueueWorker",
]
