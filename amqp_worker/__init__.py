"""
amqp-worker
===========
Base abstraction for workers that publish to and consume from a broker queue.
"""

from .core import (
    Config,
    get_config,
    setup_logging,
    configure_logging,
    WorkerException,
    BrokerConnectionError,
    ChannelCreationError,
    MissingDestinationError,
    DuplicateListenerError,
    UnimplementedHandlerError,
    InvalidPayloadError,
)
from .messaging import QueueWorker, InMemoryBrokerClient

__version__ = "1.0.0"

__all__ = [
    "Config",
    "get_config",
    "setup_logging",
    "configure_logging",
    "WorkerException",
    "BrokerConnectionError",
    "ChannelCreationError",
    "MissingDestinationError",
    "DuplicateListenerError",
    "UnimplementedHandlerError",
    "InvalidPayloadError",
    "QueueWorker",
    "InMemoryBrokerClient",
]
