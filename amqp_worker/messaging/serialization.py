"""
Serialization Hooks
===================
Ready-made serializers for ``QueueWorker(serializer=...)``.

A serializer turns an application message into the raw bytes sent to the
broker. Deliveries are never deserialized automatically.
"""

import json
from typing import Any


def identity(message: Any) -> Any:
    """Default hook: the message must already be bytes."""
    return message


def text_serializer(message: Any) -> Any:
    """Encode ``str`` messages as UTF-8, leaving anything else untouched."""
    if isinstance(message, str):
        return message.encode("utf-8")
    return message


def json_serializer(message: Any) -> bytes:
    """
    Encode a message as UTF-8 JSON.

    Values JSON cannot represent natively (datetimes, UUIDs) are
    converted with ``str``.
    """
    return json.dumps(message, default=str).encode("utf-8")
