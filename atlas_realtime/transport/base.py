"""
Transport interfaces for the update stream.

A StreamClient knows the endpoint; each EventTransport it creates is one
connection attempt. The ConnectionManager is the only caller.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

# Type aliases for transport callbacks
OpenCallback = Callable[[], None]
MessageCallback = Callable[[str], None]
ErrorCallback = Callable[[Exception], None]


class StreamConnectionError(Exception):
    """The update stream failed to open or was closed by the server."""

    def __init__(self, message: str = "Update stream connection failed", status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class ProbeResult:
    """Outcome of the rate-limit probe."""

    rate_limited: bool
    retry_after: Optional[float] = None  # Seconds, from Retry-After
    status_code: Optional[int] = None


class EventTransport(ABC):
    """
    A single server-push connection.

    Callbacks run on the event loop and must not block. Once close() has
    been called no further callbacks are delivered.
    """

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True between the open event and close/error."""
        pass

    @abstractmethod
    def open(
        self,
        on_open: OpenCallback,
        on_message: MessageCallback,
        on_error: ErrorCallback,
    ) -> None:
        """Start connecting. Returns immediately."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        pass


class StreamClient(ABC):
    """Factory for transports against one endpoint, plus the rate-limit probe."""

    @property
    @abstractmethod
    def url(self) -> str:
        pass

    @abstractmethod
    def create_transport(self) -> EventTransport:
        """Create a new, unopened transport."""
        pass

    @abstractmethod
    async def probe(self) -> ProbeResult:
        """
        Check whether the endpoint is rate limiting us.

        Raises on network failure; callers decide how to fall back.
        """
        pass

    async def aclose(self) -> None:
        """Release client resources."""
        pass
