"""
Pytest fixtures for the realtime update stream.

Provides:
- FakeStreamClient / FakeTransport driven directly by tests
- RecordingManager, which records reconnect timers instead of arming them
- A controllable monotonic clock
"""

import asyncio
import json
from typing import Any, Callable, Optional

import pytest

from atlas_realtime.manager import ConnectionManager
from atlas_realtime.transport.base import (
    EventTransport,
    ProbeResult,
    StreamClient,
    StreamConnectionError,
)


class FakeTransport(EventTransport):
    """Transport whose events are fired by the test."""

    def __init__(self):
        self.opened = False
        self.closed = False
        self._connected = False
        self._on_open = None
        self._on_message = None
        self._on_error = None

    @property
    def is_open(self) -> bool:
        return self._connected and not self.closed

    def open(self, on_open, on_message, on_error) -> None:
        self.opened = True
        self._on_open = on_open
        self._on_message = on_message
        self._on_error = on_error

    def close(self) -> None:
        self.closed = True
        self._connected = False

    def emit_open(self) -> None:
        self._connected = True
        self._on_open()

    def emit_message(self, payload: Any) -> None:
        raw = payload if isinstance(payload, str) else json.dumps(payload)
        self._on_message(raw)

    def emit_error(self, error: Optional[Exception] = None) -> None:
        self._connected = False
        self._on_error(error or StreamConnectionError())


class FakeStreamClient(StreamClient):
    """Stream client that hands out FakeTransports and a scripted probe."""

    def __init__(self):
        self.transports: list[FakeTransport] = []
        self.probe_result = ProbeResult(rate_limited=False, status_code=200)
        self.probe_error: Optional[Exception] = None
        self.probe_calls = 0
        self.create_error: Optional[Exception] = None
        self.closed = False

    @property
    def url(self) -> str:
        return "http://test/communications/updates"

    @property
    def latest(self) -> FakeTransport:
        return self.transports[-1]

    @property
    def open_transports(self) -> list[FakeTransport]:
        return [t for t in self.transports if t.opened and not t.closed]

    def create_transport(self) -> FakeTransport:
        if self.create_error is not None:
            raise self.create_error
        transport = FakeTransport()
        self.transports.append(transport)
        return transport

    async def probe(self) -> ProbeResult:
        self.probe_calls += 1
        if self.probe_error is not None:
            raise self.probe_error
        return self.probe_result

    async def aclose(self) -> None:
        self.closed = True


class FakeTimer:
    """Stands in for an asyncio.TimerHandle."""

    def __init__(self, delay: float, callback: Callable[[], None]):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class RecordingManager(ConnectionManager):
    """ConnectionManager whose timers are fired by the test."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.timers: list[FakeTimer] = []

    def _schedule(self, delay: float, callback: Callable[[], None]) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
        timer = FakeTimer(delay, callback)
        self._reconnect_handle = timer
        self.timers.append(timer)

    @property
    def pending_timer(self) -> Optional[FakeTimer]:
        return self._reconnect_handle

    def fire_timer(self) -> None:
        timer = self._reconnect_handle
        assert timer is not None and not timer.cancelled, "no pending timer"
        timer.callback()


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def _settle() -> None:
    """Let pending tasks (the rate-limit probe) run."""
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def settle():
    return _settle


@pytest.fixture
def fake_client() -> FakeStreamClient:
    return FakeStreamClient()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_manager(fake_client, clock):
    """Factory for managers wired to the fake client and clock."""

    def _make(**kwargs) -> RecordingManager:
        kwargs.setdefault("min_connection_interval", 0.0)
        kwargs.setdefault("base_delay", 1.0)
        kwargs.setdefault("max_backoff_delay", 60.0)
        kwargs.setdefault("max_attempts", 5)
        kwargs.setdefault("rate_limit_delay", 120.0)
        return RecordingManager(fake_client, clock=clock, **kwargs)

    return _make


@pytest.fixture
def manager(make_manager) -> RecordingManager:
    return make_manager()
