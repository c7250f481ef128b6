"""
Server side of the update stream.

Sync jobs and webhooks publish updates here; every connected stream
client gets its own bounded queue. Recent updates are kept so a client
that reconnects can catch up.
"""

import asyncio
import itertools
import logging
import time
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Callable, Optional

from ..core.config import ServerConfig
from ..core.events import build_update, encode_event, heartbeat

logger = logging.getLogger("atlas.realtime.server.broadcaster")


def format_frame(update: dict[str, Any], event_id: Optional[int] = None) -> str:
    """Format an update as one SSE frame."""
    lines = []
    if event_id is not None:
        lines.append(f"id: {event_id}")
    lines.append(f"data: {encode_event(update)}")
    return "\n".join(lines) + "\n\n"


class UpdateBroadcaster:
    """
    In-process fan-out of communication updates to stream clients.

    Features:
    - Replay buffer of recent updates for reconnecting clients
    - Heartbeat frames while a client's stream is idle
    - Per-client sliding-window connection rate limit
    """

    def __init__(
        self,
        heartbeat_interval: float = 30.0,
        replay_limit: int = 50,
        replay_max_age: float = 3600.0,
        rate_limit_connections: int = 10,
        rate_limit_window: float = 60.0,
        client_queue_size: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._heartbeat_interval = heartbeat_interval
        self._replay_limit = replay_limit
        self._replay_max_age = replay_max_age
        self._rate_limit_connections = rate_limit_connections
        self._rate_limit_window = rate_limit_window
        self._client_queue_size = client_queue_size
        self._clock = clock

        self._ids = itertools.count(1)
        self._updates: list[tuple[int, datetime, dict[str, Any]]] = []
        self._clients: dict[str, asyncio.Queue] = {}
        self._connection_log: dict[str, deque[float]] = {}

    @classmethod
    def from_config(cls, config: ServerConfig) -> "UpdateBroadcaster":
        return cls(
            heartbeat_interval=config.heartbeat_interval,
            replay_limit=config.replay_limit,
            replay_max_age=config.replay_max_age,
            rate_limit_connections=config.rate_limit_connections,
            rate_limit_window=config.rate_limit_window,
            client_queue_size=config.client_queue_size,
        )

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def publish(self, event_type: str, data: Optional[Any] = None, **fields: Any) -> dict[str, Any]:
        """Store an update and push it to every connected client."""
        update = build_update(event_type, data, **fields)
        event_id = next(self._ids)
        self._updates.append((event_id, datetime.now(timezone.utc), update))

        frame = format_frame(update, event_id)
        dropped = []
        for client_id, queue in self._clients.items():
            try:
                queue.put_nowait(frame)
            except asyncio.QueueFull:
                dropped.append(client_id)

        for client_id in dropped:
            logger.warning("Stream client %s fell behind, disconnecting", client_id)
            self._drop_client(client_id)

        logger.debug(
            "Published %s update to %d clients",
            update["type"],
            len(self._clients),
        )
        return update

    def get_recent_updates(
        self,
        since: Optional[datetime] = None,
        after_id: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """
        Get buffered updates for a catching-up client.

        Args:
            since: Only updates published after this time (naive means UTC)
            after_id: Only updates with a larger event id (Last-Event-ID)

        Returns:
            Matching updates, or the most recent ones if no filter is given
        """
        return [update for _, update in self._recent(since, after_id)]

    def _recent(
        self,
        since: Optional[datetime],
        after_id: Optional[int],
    ) -> list[tuple[int, dict[str, Any]]]:
        if after_id is not None:
            return [(i, u) for i, _, u in self._updates if i > after_id]
        if since is not None:
            if since.tzinfo is None:
                since = since.replace(tzinfo=timezone.utc)
            return [(i, u) for i, ts, u in self._updates if ts > since]
        return [(i, u) for i, _, u in self._updates[-self._replay_limit:]]

    def clean_old_updates(self, max_age: Optional[float] = None) -> int:
        """Drop buffered updates older than max_age seconds. Returns count removed."""
        max_age = self._replay_max_age if max_age is None else max_age
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=max_age)

        before = len(self._updates)
        self._updates = [entry for entry in self._updates if entry[1] > cutoff]
        removed = before - len(self._updates)
        if removed:
            logger.info("Removed %d old updates from replay buffer", removed)
        return removed

    def check_rate_limit(self, client_key: str) -> Optional[float]:
        """
        Check a client's connection rate without recording an attempt.

        Returns:
            Seconds until the client may connect again, or None if allowed
        """
        now = self._clock()
        log = self._connection_log.get(client_key)
        if not log:
            return None

        while log and now - log[0] >= self._rate_limit_window:
            log.popleft()

        if not log:
            del self._connection_log[client_key]
            return None

        if len(log) < self._rate_limit_connections:
            return None

        return max(0.0, self._rate_limit_window - (now - log[0]))

    def record_connection(self, client_key: str) -> Optional[float]:
        """Record a connection attempt. Returns the wait if the client is limited."""
        retry_after = self.check_rate_limit(client_key)
        if retry_after is not None:
            logger.warning(
                "Rate limited stream client %s (retry after %.0fs)",
                client_key,
                retry_after,
            )
            return retry_after

        self._connection_log.setdefault(client_key, deque()).append(self._clock())
        return None

    async def stream(
        self,
        client_id: str,
        since: Optional[datetime] = None,
        after_id: Optional[int] = None,
    ) -> AsyncIterator[str]:
        """
        Yield SSE frames for one client until it disconnects.

        Replays buffered updates first, then live ones. Sends a heartbeat
        after heartbeat_interval seconds without traffic.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._client_queue_size)
        self._clients[client_id] = queue
        logger.info("Stream client connected: %s (%d total)", client_id, len(self._clients))

        try:
            yield ": connected\n\n"

            if since is not None or after_id is not None:
                for event_id, update in self._recent(since, after_id):
                    yield format_frame(update, event_id)

            while True:
                try:
                    frame = await asyncio.wait_for(queue.get(), timeout=self._heartbeat_interval)
                except asyncio.TimeoutError:
                    yield format_frame(heartbeat())
                    continue

                if frame is None:
                    break
                yield frame
        finally:
            if self._clients.get(client_id) is queue:
                del self._clients[client_id]
            logger.info("Stream client disconnected: %s", client_id)

    def _drop_client(self, client_id: str) -> None:
        queue = self._clients.pop(client_id, None)
        if queue is None:
            return

        # Make room for the sentinel so the stream ends promptly
        while not queue.empty():
            queue.get_nowait()
        queue.put_nowait(None)

    def shutdown(self) -> None:
        """End every client stream."""
        for client_id in list(self._clients):
            self._drop_client(client_id)
        logger.info("Update broadcaster shut down")
