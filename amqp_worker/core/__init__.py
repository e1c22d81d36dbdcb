"""
Core Module
===========
Configuration, logging and exceptions shared by queue workers.
"""

from .config import Config, get_config, reload_config
from .logging_config import setup_logging, configure_logging, get_logger
from .exceptions import (
    WorkerException,
    AcquisitionError,
    BrokerConnectionError,
    ChannelCreationError,
    WorkerUsageError,
    MissingDestinationError,
    DuplicateListenerError,
    UnimplementedHandlerError,
    InvalidPayloadError,
    ChannelUnavailableError,
    PublishError,
    MessageHandlerError,
    TeardownError,
    WorkerDefunctError,
)

__all__ = [
    "Config",
    "get_config",
    "reload_config",
    "setup_logging",
    "configure_logging",
    "get_logger",
    "WorkerException",
    "AcquisitionError",
    "BrokerConnectionError",
    "ChannelCreationError",
    "WorkerUsageError",
    "MissingDestinationError",
    "DuplicateListenerError",
    "UnimplementedHandlerError",
    "InvalidPayloadError",
    "ChannelUnavailableError",
    "PublishError",
    "MessageHandlerError",
    "TeardownError",
    "WorkerDefunctError",
]
