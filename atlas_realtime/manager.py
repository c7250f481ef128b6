"""
Update stream connection manager.

Shares one server-push connection between every consumer in the process:
- Connects on the first subscriber, disconnects after the last
- Fans out every non-heartbeat event to all subscribers
- Reconnects with exponential backoff, or waits out a rate limit
- Connect / disconnect / error listeners for status displays
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable, Optional

from .core.config import StreamConfig
from .core.events import RealtimeEvent, decode_event
from .transport.base import EventTransport, StreamClient, StreamConnectionError

logger = logging.getLogger("atlas.realtime.manager")

# Type aliases for callbacks
UpdateCallback = Callable[[RealtimeEvent], None]
ConnectionListener = Callable[[], None]
ErrorListener = Callable[[Exception], None]


class ConnectionState(Enum):
    """Update stream connection state."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class ConnectionManager:
    """
    Multiplexes one update stream across many subscribers.

    All methods must be called from code running on the event loop;
    timers and the transport task are attached to it. Nothing raised
    by a subscriber, a listener or the transport escapes a public method;
    failures are logged and reported through the error listeners.
    """

    def __init__(
        self,
        client: StreamClient,
        min_connection_interval: float = 5.0,
        max_attempts: int = 5,
        base_delay: float = 1.0,
        max_backoff_delay: float = 60.0,
        rate_limit_delay: float = 120.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the connection manager.

        Args:
            client: Stream client that creates transports and probes rate limits
            min_connection_interval: Minimum seconds between connection attempts
            max_attempts: Reconnection attempts before giving up
            base_delay: First reconnection delay (seconds)
            max_backoff_delay: Maximum reconnection delay (seconds)
            rate_limit_delay: Wait when rate limited without Retry-After (seconds)
            clock: Monotonic clock used for the connection throttle
        """
        self._client = client
        self._min_connection_interval = min_connection_interval
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._max_backoff_delay = max_backoff_delay
        self._rate_limit_delay = rate_limit_delay
        self._clock = clock

        self._transport: Optional[EventTransport] = None
        self._state = ConnectionState.DISCONNECTED
        self._last_error: Optional[Exception] = None
        self._attempt_count = 0
        self._last_connection_time: Optional[float] = None

        # Pending reconnect / throttle timer and rate-limit probe
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._recovery_task: Optional[asyncio.Task] = None

        self._subscribers: dict[str, UpdateCallback] = {}

        # Insertion-ordered listener sets
        self._connect_listeners: dict[ConnectionListener, None] = {}
        self._disconnect_listeners: dict[ConnectionListener, None] = {}
        self._error_listeners: dict[ErrorListener, None] = {}

    @classmethod
    def from_config(cls, config: StreamConfig, client: StreamClient) -> "ConnectionManager":
        return cls(
            client=client,
            min_connection_interval=config.min_connection_interval,
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            max_backoff_delay=config.max_backoff_delay,
            rate_limit_delay=config.rate_limit_delay,
        )

    @property
    def client(self) -> StreamClient:
        return self._client

    @property
    def attempt_count(self) -> int:
        return self._attempt_count

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def has_pending_reconnect(self) -> bool:
        return self._reconnect_handle is not None or self._recovery_task is not None

    def get_connection_state(self) -> ConnectionState:
        return self._state

    def get_last_error(self) -> Optional[Exception]:
        return self._last_error

    # === Subscribers ===

    def subscribe(self, subscriber_id: str, callback: UpdateCallback) -> None:
        """
        Register a callback for every update.

        Registering an id again replaces its callback. The first subscriber
        opens the stream.
        """
        was_empty = not self._subscribers
        self._subscribers[subscriber_id] = callback

        if was_empty:
            self._connect()
        elif self._state == ConnectionState.ERROR and not self.has_pending_reconnect:
            # Retries were exhausted; new demand re-arms the cycle
            logger.info("New subscriber %s, restarting reconnection", subscriber_id)
            self._attempt_count = 0
            self._state = ConnectionState.DISCONNECTED
            self._connect()

        if self._state == ConnectionState.CONNECTED:
            self._notify(self._connect_listeners, "connect")

    def unsubscribe(self, subscriber_id: str) -> None:
        """Remove a subscriber. The last one out closes the stream."""
        if self._subscribers.pop(subscriber_id, None) is None:
            return

        if not self._subscribers:
            self._disconnect()

    # === Listeners ===

    def on_connect(self, listener: ConnectionListener) -> None:
        """Add a connect listener; called right away if already connected."""
        self._connect_listeners[listener] = None
        if self._state == ConnectionState.CONNECTED:
            self._invoke(listener, "connect")

    def on_disconnect(self, listener: ConnectionListener) -> None:
        self._disconnect_listeners[listener] = None

    def on_error(self, listener: ErrorListener) -> None:
        """Add an error listener; called right away with the current error, if any."""
        self._error_listeners[listener] = None
        if self._state == ConnectionState.ERROR and self._last_error is not None:
            self._invoke(listener, "error", self._last_error)

    def remove_connection_listener(self, listener: ConnectionListener) -> None:
        self._connect_listeners.pop(listener, None)

    def remove_disconnection_listener(self, listener: ConnectionListener) -> None:
        self._disconnect_listeners.pop(listener, None)

    def remove_error_listener(self, listener: ErrorListener) -> None:
        self._error_listeners.pop(listener, None)

    # === Lifecycle ===

    def cleanup(self) -> None:
        """Hard reset: close the stream and forget every subscriber and listener."""
        logger.info("Cleaning up update stream manager")

        self._subscribers.clear()
        self._connect_listeners.clear()
        self._disconnect_listeners.clear()
        self._error_listeners.clear()
        self._disconnect()
        self._last_error = None

    def _connect(self) -> None:
        """Open the stream, subject to the connection throttle."""
        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED) or (
            self._transport is not None and self._transport.is_open
        ):
            logger.debug("Connection already in progress or established")
            return

        now = self._clock()
        if self._last_connection_time is not None:
            elapsed = now - self._last_connection_time
            if elapsed < self._min_connection_interval:
                wait = self._min_connection_interval - elapsed
                logger.info("Too soon to reconnect, waiting %.1fs", wait)
                self._schedule(wait, self._throttled_connect)
                return

        self._cancel_reconnect()

        self._state = ConnectionState.CONNECTING
        self._last_connection_time = now

        logger.info("Connecting to update stream at %s", self._client.url)

        try:
            transport = self._client.create_transport()
            self._transport = transport
            transport.open(
                on_open=lambda: self._handle_open(transport),
                on_message=lambda raw: self._handle_message(transport, raw),
                on_error=lambda error: self._handle_error(transport, error),
            )
        except Exception as e:
            logger.error("Failed to create update stream: %s", e)
            error = StreamConnectionError(f"Failed to create update stream: {e}")
            error.__cause__ = e
            self._handle_error(self._transport, error)

    def _throttled_connect(self) -> None:
        self._reconnect_handle = None
        if self._subscribers and self._state in (ConnectionState.DISCONNECTED, ConnectionState.ERROR):
            self._connect()

    def _disconnect(self) -> None:
        """Close the stream and reset reconnection state. Listeners are kept."""
        logger.info("Disconnecting from update stream")

        self._cancel_reconnect()

        if self._transport is not None:
            self._transport.close()
            self._transport = None

        was_connected = self._state == ConnectionState.CONNECTED
        self._state = ConnectionState.DISCONNECTED
        self._attempt_count = 0

        if was_connected:
            self._notify(self._disconnect_listeners, "disconnect")

    def _reconnect(self) -> None:
        self._reconnect_handle = None

        if not self._subscribers:
            return
        if self._state == ConnectionState.CONNECTING:
            logger.debug("Already connecting, skipping reconnect")
            return

        if self._transport is not None:
            self._transport.close()
            self._transport = None

        self._state = ConnectionState.DISCONNECTED
        self._connect()

    # === Transport events ===

    def _handle_open(self, transport: EventTransport) -> None:
        if transport is not self._transport:
            return

        logger.info("Connected to update stream")
        self._state = ConnectionState.CONNECTED
        self._attempt_count = 0
        self._notify(self._connect_listeners, "connect")

    def _handle_message(self, transport: EventTransport, raw: str) -> None:
        if transport is not self._transport:
            return

        try:
            event = decode_event(raw)
        except ValueError as e:
            logger.error("Failed to parse update: %s (data: %r)", e, raw)
            return

        if event.is_heartbeat:
            return

        for subscriber_id, callback in list(self._subscribers.items()):
            # Skip anyone removed or replaced earlier in this fan-out
            if self._subscribers.get(subscriber_id) is not callback:
                continue
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Update subscriber %s failed on %s event",
                    subscriber_id,
                    event.type,
                )

    def _handle_error(self, transport: Optional[EventTransport], error: Exception) -> None:
        if transport is not self._transport:
            return

        self._last_error = error
        logger.error(
            "Update stream error: %s (state=%s, attempts=%d)",
            error,
            self._state.value,
            self._attempt_count,
        )

        self._state = ConnectionState.ERROR
        if self._transport is not None:
            self._transport.close()
            self._transport = None

        self._notify(self._error_listeners, "error", error)
        self._notify(self._disconnect_listeners, "disconnect")

        if not self._subscribers:
            logger.info("No active subscribers, skipping reconnection")
            return

        self._start_recovery()

    # === Reconnection ===

    def _start_recovery(self) -> None:
        if self._recovery_task is not None:
            self._recovery_task.cancel()
        self._recovery_task = asyncio.get_running_loop().create_task(self._recover())

    async def _recover(self) -> None:
        """Pick the reconnection path: rate-limit wait or exponential backoff."""
        try:
            try:
                probe = await self._client.probe()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Failed to check rate limit status: %s", e)
                probe = None

            # Unsubscribed, cleaned up or reconnected while probing
            if not self._subscribers or self._state != ConnectionState.ERROR:
                return

            if probe is not None and probe.rate_limited:
                delay = probe.retry_after if probe.retry_after is not None else self._rate_limit_delay
                logger.warning("Rate limited, waiting %.0fs before reconnecting", delay)
                self._attempt_count = 0
                self._schedule(delay, self._reconnect)
                return

            if self._attempt_count < self._max_attempts:
                self._attempt_count += 1
                delay = self.backoff_delay(self._attempt_count)
                logger.info(
                    "Reconnecting in %.1fs (attempt %d/%d)",
                    delay,
                    self._attempt_count,
                    self._max_attempts,
                )
                self._schedule(delay, self._reconnect)
            else:
                logger.error(
                    "Max reconnection attempts (%d) reached, giving up",
                    self._max_attempts,
                )
        finally:
            if self._recovery_task is asyncio.current_task():
                self._recovery_task = None

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnection attempt ``attempt`` (1-based)."""
        return min(
            self._base_delay * (2 ** (attempt - 1)),
            self._max_backoff_delay,
        )

    def _schedule(self, delay: float, callback: Callable[[], None]) -> None:
        """Replace any pending reconnect timer with a new one."""
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
        self._reconnect_handle = asyncio.get_running_loop().call_later(delay, callback)

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

        if self._recovery_task is not None:
            if self._recovery_task is not asyncio.current_task():
                self._recovery_task.cancel()
            self._recovery_task = None

    # === Listener dispatch ===

    def _notify(self, listeners: dict, kind: str, *args: Any) -> None:
        for listener in list(listeners):
            self._invoke(listener, kind, *args)

    @staticmethod
    def _invoke(listener: Callable[..., None], kind: str, *args: Any) -> bool:
        """Call one listener, logging instead of raising. Returns success."""
        try:
            listener(*args)
            return True
        except Exception:
            logger.exception("Error in %s listener", kind)
            return False


# Module-level manager instance
_manager: Optional[ConnectionManager] = None


def init_connection_manager(
    config: Optional[StreamConfig] = None,
    client: Optional[StreamClient] = None,
) -> ConnectionManager:
    """Create the process-wide connection manager. Call once at startup."""
    global _manager
    if _manager is not None:
        return _manager

    if config is None:
        from .core.config import settings

        config = settings.stream

    if client is None:
        from .transport.sse import SSEStreamClient

        client = SSEStreamClient.from_config(config)

    _manager = ConnectionManager.from_config(config, client)
    return _manager


def get_connection_manager() -> ConnectionManager:
    """Get the process-wide connection manager, creating it if needed."""
    if _manager is None:
        return init_connection_manager()
    return _manager


async def shutdown_connection_manager() -> None:
    """Tear down the process-wide connection manager."""
    global _manager
    if _manager:
        _manager.cleanup()
        await _manager.client.aclose()
        _manager = None
