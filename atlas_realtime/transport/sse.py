"""
Server-sent events transport over httpx.

Streams the updates endpoint with a long-lived GET, splits the body into
SSE frames, and hands each ``message`` frame's data to the manager.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

import httpx

from ..core.config import StreamConfig
from .base import (
    ErrorCallback,
    EventTransport,
    MessageCallback,
    OpenCallback,
    ProbeResult,
    StreamClient,
    StreamConnectionError,
)

logger = logging.getLogger("atlas.realtime.transport.sse")


@dataclass
class SSEMessage:
    """One dispatched SSE frame."""

    data: str
    event: str = "message"
    id: Optional[str] = None
    retry: Optional[int] = None


class SSEParser:
    """
    Incremental SSE line parser.

    Feed it lines with the line terminator already stripped; it returns a
    message whenever a blank line completes a frame that carried data.
    """

    def __init__(self):
        self._data: list[str] = []
        self._event = ""
        self._retry: Optional[int] = None
        self._first_line = True
        self.last_event_id: Optional[str] = None

    def feed(self, line: str) -> Optional[SSEMessage]:
        if self._first_line:
            self._first_line = False
            line = line.lstrip("\ufeff")

        if not line:
            return self._dispatch()

        if line.startswith(":"):
            return None  # Comment / keep-alive

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "data":
            self._data.append(value)
        elif name == "event":
            self._event = value
        elif name == "id":
            if "\x00" not in value:
                self.last_event_id = value
        elif name == "retry":
            if value.isascii() and value.isdigit():
                self._retry = int(value)
        # Unknown fields are ignored

        return None

    def _dispatch(self) -> Optional[SSEMessage]:
        if not self._data:
            self._event = ""
            return None

        message = SSEMessage(
            data="\n".join(self._data),
            event=self._event or "message",
            id=self.last_event_id,
            retry=self._retry,
        )
        self._data = []
        self._event = ""
        self._retry = None
        return message


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """
    Parse a Retry-After header into seconds.

    Accepts delta-seconds or an HTTP-date. Returns None if absent or invalid.
    """
    if not value:
        return None

    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())

    if seconds < 0:
        return None
    return seconds


class SSETransport(EventTransport):
    """One streaming GET against the updates endpoint."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        last_event_id: Optional[str] = None,
    ):
        self._client = client
        self._url = url
        self._last_event_id = last_event_id
        self._task: Optional[asyncio.Task] = None
        self._open = False
        self._closed = False

        self._on_open: Optional[OpenCallback] = None
        self._on_message: Optional[MessageCallback] = None
        self._on_error: Optional[ErrorCallback] = None

    @property
    def is_open(self) -> bool:
        return self._open and not self._closed

    @property
    def last_event_id(self) -> Optional[str]:
        return self._last_event_id

    def open(
        self,
        on_open: OpenCallback,
        on_message: MessageCallback,
        on_error: ErrorCallback,
    ) -> None:
        if self._task is not None:
            raise RuntimeError("Transport already opened")

        self._on_open = on_open
        self._on_message = on_message
        self._on_error = on_error
        self._task = asyncio.create_task(self._run())

    def close(self) -> None:
        if self._closed:
            return

        self._closed = True
        self._open = False

        # Closing from inside one of our own callbacks: the loop sees
        # _closed and unwinds on its own.
        if self._task and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()

    async def _run(self) -> None:
        headers = {
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
        }
        if self._last_event_id:
            headers["Last-Event-ID"] = self._last_event_id

        try:
            async with self._client.stream("GET", self._url, headers=headers) as response:
                if not response.is_success:
                    raise StreamConnectionError(
                        f"Update stream returned HTTP {response.status_code}",
                        status_code=response.status_code,
                    )

                content_type = response.headers.get("content-type", "")
                if not content_type.startswith("text/event-stream"):
                    raise StreamConnectionError(
                        f"Unexpected content type: {content_type or 'none'}",
                        status_code=response.status_code,
                    )

                if self._closed:
                    return
                self._open = True
                logger.debug("Update stream open: %s", self._url)
                self._on_open()

                parser = SSEParser()
                async for line in response.aiter_lines():
                    if self._closed:
                        return

                    message = parser.feed(line)
                    if parser.last_event_id is not None:
                        self._last_event_id = parser.last_event_id
                    if message is None:
                        continue

                    if message.event != "message":
                        logger.debug("Ignoring named SSE event: %s", message.event)
                        continue

                    self._on_message(message.data)

            raise StreamConnectionError("Update stream closed by server")

        except asyncio.CancelledError:
            raise

        except StreamConnectionError as e:
            self._fail(e)

        except Exception as e:
            error = StreamConnectionError(f"Update stream failed: {e}")
            error.__cause__ = e
            self._fail(error)

    def _fail(self, error: StreamConnectionError) -> None:
        if self._closed:
            return

        self._open = False
        self._closed = True
        self._on_error(error)


class SSEStreamClient(StreamClient):
    """
    httpx-backed client for the updates endpoint.

    Holds one AsyncClient shared by every transport it creates and by
    the HEAD probe.
    """

    def __init__(
        self,
        url: str,
        connect_timeout: float = 10.0,
        probe_timeout: float = 5.0,
        headers: Optional[dict[str, str]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._url = url
        self._connect_timeout = connect_timeout
        self._probe_timeout = probe_timeout
        self._headers = headers or {}
        self._client = http_client
        self._owns_client = http_client is None
        self._last_event_id: Optional[str] = None
        self._transport: Optional[SSETransport] = None

    @classmethod
    def from_config(cls, config: StreamConfig) -> "SSEStreamClient":
        return cls(
            url=config.url,
            connect_timeout=config.connect_timeout,
            probe_timeout=config.probe_timeout,
        )

    @property
    def url(self) -> str:
        return self._url

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=self._headers,
                timeout=httpx.Timeout(self._connect_timeout, read=None),
            )
        return self._client

    def create_transport(self) -> EventTransport:
        # Resume from the last id the previous connection saw
        if self._transport is not None and self._transport.last_event_id:
            self._last_event_id = self._transport.last_event_id

        self._transport = SSETransport(
            self._get_client(),
            self._url,
            last_event_id=self._last_event_id,
        )
        return self._transport

    async def probe(self) -> ProbeResult:
        response = await self._get_client().head(self._url, timeout=self._probe_timeout)

        if response.status_code == 429:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            logger.warning(
                "Update stream rate limited (Retry-After: %s)",
                response.headers.get("Retry-After"),
            )
            return ProbeResult(rate_limited=True, retry_after=retry_after, status_code=429)

        return ProbeResult(rate_limited=False, status_code=response.status_code)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
