"""
Transport layer for the update stream.

The ConnectionManager owns every transport; nothing else should open or
close one.
"""

from .base import (
    EventTransport,
    ProbeResult,
    StreamClient,
    StreamConnectionError,
)
from .sse import SSEMessage, SSEParser, SSEStreamClient, SSETransport, parse_retry_after

__all__ = [
    "EventTransport",
    "ProbeResult",
    "StreamClient",
    "StreamConnectionError",
    "SSEMessage",
    "SSEParser",
    "SSEStreamClient",
    "SSETransport",
    "parse_retry_after",
]
