"""
Per-consumer view onto the shared update stream.

Each inbox, phone panel or dashboard widget owns one RealtimeUpdates.
Callbacks may be swapped on every update() call without touching the
manager; only the enabled flag and close() subscribe or unsubscribe.
"""

import logging
import secrets
import string
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from .core.events import RealtimeEvent
from .manager import ConnectionManager, ConnectionState

logger = logging.getLogger("atlas.realtime.adapter")

T = TypeVar("T")

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_connection_id() -> str:
    """Random subscriber id for adapters that don't supply one."""
    return "hook-" + "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))


class CallbackCell(Generic[T]):
    """Mutable box holding the latest callback a consumer handed us."""

    def __init__(self, value: Optional[T] = None):
        self.value = value

    def __call__(self, *args: Any) -> None:
        if self.value is not None:
            self.value(*args)


@dataclass
class RealtimeUpdateOptions:
    """Options a consumer passes on every update() call."""

    enabled: bool = True
    connection_id: Optional[str] = None  # Stable subscriber id; generated if omitted
    on_update: Optional[Callable[[RealtimeEvent], None]] = None
    on_connect: Optional[Callable[[], None]] = None
    on_disconnect: Optional[Callable[[], None]] = None


@dataclass(frozen=True)
class RealtimeHandle:
    """Controls and status returned to the consumer."""

    reconnect: Callable[[], None]
    disconnect: Callable[[], None]
    is_connected: bool


class RealtimeUpdates:
    """
    Subscription adapter for one consumer.

    Usage:
        updates = RealtimeUpdates(manager)
        handle = updates.update(RealtimeUpdateOptions(on_update=refresh))
        ...
        updates.close()

    Or as a context manager, which closes on exit.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        options: Optional[RealtimeUpdateOptions] = None,
    ):
        self._manager = manager
        self._connection_id: Optional[str] = None
        self._subscribed = False
        self._closed = False

        self._on_update: CallbackCell[Callable[[RealtimeEvent], None]] = CallbackCell()
        self._on_connect: CallbackCell[Callable[[], None]] = CallbackCell()
        self._on_disconnect: CallbackCell[Callable[[], None]] = CallbackCell()

        if options is not None:
            self.update(options)

    @property
    def connection_id(self) -> str:
        if self._connection_id is None:
            self._connection_id = generate_connection_id()
        return self._connection_id

    @property
    def is_subscribed(self) -> bool:
        return self._subscribed

    @property
    def is_connected(self) -> bool:
        if self._closed:
            return False
        return self._manager.get_connection_state() == ConnectionState.CONNECTED

    def update(self, options: Optional[RealtimeUpdateOptions] = None) -> RealtimeHandle:
        """
        Apply the consumer's current options.

        Call on every render. New callback objects replace the old ones in
        place; the subscription only changes when ``enabled`` does.
        """
        options = options or RealtimeUpdateOptions()

        # The id is fixed by the first call that sees it
        if self._connection_id is None and options.connection_id:
            self._connection_id = options.connection_id

        self._on_update.value = options.on_update
        self._on_connect.value = options.on_connect
        self._on_disconnect.value = options.on_disconnect

        if not self._closed:
            if options.enabled:
                self._activate()
            else:
                self._deactivate()

        return self.handle()

    def handle(self) -> RealtimeHandle:
        return RealtimeHandle(
            reconnect=self.reconnect,
            disconnect=self.disconnect,
            is_connected=self.is_connected,
        )

    def reconnect(self) -> None:
        """Advisory only: the manager reconnects on its own."""
        logger.info("Manual reconnect requested (%s)", self.connection_id)

    def disconnect(self) -> None:
        """
        Drop this consumer's subscription. Other consumers are unaffected.

        A later ``update()`` with ``enabled`` set subscribes again.
        """
        self._deactivate()

    def close(self) -> None:
        """Tear down for good. Safe to call more than once."""
        self._deactivate()
        self._closed = True

    def __enter__(self) -> "RealtimeUpdates":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _activate(self) -> None:
        if self._subscribed:
            return

        self._subscribed = True
        self._manager.subscribe(self.connection_id, self._handle_update)
        self._manager.on_connect(self._handle_connect)
        self._manager.on_disconnect(self._handle_disconnect)

    def _deactivate(self) -> None:
        if not self._subscribed:
            return

        self._subscribed = False
        # Listeners go first so our own unsubscribe doesn't report back to us
        self._manager.remove_connection_listener(self._handle_connect)
        self._manager.remove_disconnection_listener(self._handle_disconnect)
        self._manager.unsubscribe(self.connection_id)

    def _handle_update(self, event: RealtimeEvent) -> None:
        self._on_update(event)

    def _handle_connect(self) -> None:
        logger.debug("Connected (%s)", self.connection_id)
        self._on_connect()

    def _handle_disconnect(self) -> None:
        logger.debug("Disconnected (%s)", self.connection_id)
        self._on_disconnect()


def use_realtime_updates(
    updates: RealtimeUpdates,
    enabled: bool = True,
    connection_id: Optional[str] = None,
    on_update: Optional[Callable[[RealtimeEvent], None]] = None,
    on_connect: Optional[Callable[[], None]] = None,
    on_disconnect: Optional[Callable[[], None]] = None,
) -> RealtimeHandle:
    """Keyword form of RealtimeUpdates.update()."""
    return updates.update(RealtimeUpdateOptions(
        enabled=enabled,
        connection_id=connection_id,
        on_update=on_update,
        on_connect=on_connect,
        on_disconnect=on_disconnect,
    ))
