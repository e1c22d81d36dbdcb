"""
Custom Exceptions Module
========================
Centralized exception definitions for queue workers.

This module defines a hierarchy of exceptions for:
- Broker resource acquisition errors (routed through the error sink)
- Caller usage errors (always raised to the caller)
- Publish and teardown failures
"""

import re
from typing import Optional, Dict, Any


class WorkerException(Exception):
    """
    Base exception for all queue worker errors.
    
    Provides structured error information including:
    - Error code for programmatic handling
    - Additional context data
    - Cause tracking for exception chaining
    """
    
    def __init__(
        self,
        message: str,
        code: str = "WORKER_ERROR",
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        """
        Initialize the exception.
        
        Args:
            message: Human-readable error message
            code: Machine-readable error code
            details: Additional context data
            cause: Original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}
        self.cause = cause
    
    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary for logging.
        
        Returns:
            Dict[str, Any]: Exception data as dictionary
        """
        result = {
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        if self.cause:
            result["cause"] = str(self.cause)
        return result
    
    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class AcquisitionError(WorkerException):
    """Failure to acquire a broker connection or channel."""


def mask_credentials(target: str) -> str:
    """Replace the password in an AMQP URL with ``***``."""
    return re.sub(r"(://[^:/@]*):[^@]*@", r"\1:***@", target)


class BrokerConnectionError(AcquisitionError):
    """Exception raised when the broker connection cannot be opened."""
    
    def __init__(
        self,
        message: str,
        target: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        details = details or {}
        if target:
            target = mask_credentials(target)
            details["target"] = target
        super().__init__(message, "CONNECTION_ERROR", details, cause)
        self.target = target


class ChannelCreationError(AcquisitionError):
    """Exception raised when a channel cannot be created on the connection."""
    
    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, "CHANNEL_ERROR", details, cause)


class WorkerUsageError(WorkerException):
    """
    Exception raised when a worker is used incorrectly.
    
    Usage errors are never routed through the error sink.
    """
    
    def __init__(
        self,
        message: str,
        destination: Optional[str] = None,
        code: str = "USAGE_ERROR",
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, code, details, cause)
        self.destination = destination
    
    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        if self.destination:
            result["destination"] = self.destination
        return result


class MissingDestinationError(WorkerUsageError):
    """Exception raised when no destination queue is configured."""
    
    def __init__(self, message: str = "You must specify a destination queue"):
        super().__init__(message, None, "MISSING_DESTINATION")


class DuplicateListenerError(WorkerUsageError):
    """Exception raised when a second consumer is attached to a worker."""
    
    def __init__(self, destination: str):
        super().__init__(
            f"A listener for {destination} has already been attached",
            destination,
            "DUPLICATE_LISTENER",
        )


class UnimplementedHandlerError(WorkerUsageError):
    """Exception raised when no message handler has been provided."""
    
    def __init__(
        self,
        message: str = "You must provide a message_handler or implement handle_message",
        destination: Optional[str] = None,
    ):
        super().__init__(message, destination, "UNIMPLEMENTED_HANDLER")


class InvalidPayloadError(WorkerUsageError):
    """Exception raised when a message does not serialize to bytes."""
    
    def __init__(
        self,
        message: str,
        destination: Optional[str] = None,
        payload_type: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        details = {}
        if payload_type:
            details["payload_type"] = payload_type
        super().__init__(message, destination, "INVALID_PAYLOAD", details, cause)


class ChannelUnavailableError(WorkerException):
    """
    Exception raised when an operation needs a channel but none could be acquired.
    
    The underlying acquisition failure has already been delivered to the
    worker's error sink.
    """
    
    def __init__(self, message: str, destination: Optional[str] = None):
        super().__init__(message, "CHANNEL_UNAVAILABLE", {"destination": destination})
        self.destination = destination


class PublishError(WorkerException):
    """Exception raised when the broker client rejects a publish call."""
    
    def __init__(
        self,
        message: str,
        destination: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, "PUBLISH_ERROR", {"destination": destination}, cause)
        self.destination = destination


class MessageHandlerError(WorkerException):
    """
    Exception delivered to the error sink when a message handler raises.
    
    Never raised to a caller; the consumer keeps running.
    """
    
    def __init__(
        self,
        message: str,
        destination: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, "HANDLER_ERROR", {"destination": destination}, cause)
        self.destination = destination


class TeardownError(WorkerException):
    """Exception raised when a teardown step fails."""
    
    def __init__(
        self,
        message: str,
        step: str,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, "TEARDOWN_ERROR", {"step": step}, cause)
        self.step = step


class WorkerDefunctError(WorkerException):
    """Exception raised when a defunct worker is asked for broker resources."""
    
    def __init__(self, worker_id: str):
        super().__init__(
            f"Worker {worker_id} is defunct after a failed teardown",
            "WORKER_DEFUNCT",
            {"worker_id": worker_id},
        )
        self.worker_id = worker_id
