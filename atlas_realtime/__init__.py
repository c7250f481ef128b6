"""
Atlas Realtime - Live communication updates for the Atlas console.

Delivers new-email, call and SMS updates to every open view over a single
server-sent events stream per process.

Architecture:
- core/: Configuration and the update event envelope
- transport/: SSE stream client (httpx) and rate-limit probe
- manager.py: Shared connection with backoff and rate-limit handling
- adapter.py: Per-consumer subscription with stable identity
- server/, api/: Update broadcaster and its FastAPI endpoints
"""

__version__ = "0.1.0"

from .core import (
    RealtimeConfig,
    StreamConfig,
    ServerConfig,
    settings,
    EventType,
    RealtimeEvent,
    UnknownEvent,
    decode_event,
)
from .transport import (
    EventTransport,
    ProbeResult,
    StreamClient,
    StreamConnectionError,
    SSEStreamClient,
)
from .manager import (
    ConnectionManager,
    ConnectionState,
    get_connection_manager,
    init_connection_manager,
    shutdown_connection_manager,
)
from .adapter import (
    RealtimeHandle,
    RealtimeUpdateOptions,
    RealtimeUpdates,
    use_realtime_updates,
)

__all__ = [
    # Config
    "RealtimeConfig",
    "StreamConfig",
    "ServerConfig",
    "settings",
    # Events
    "EventType",
    "RealtimeEvent",
    "UnknownEvent",
    "decode_event",
    # Transport
    "EventTransport",
    "ProbeResult",
    "StreamClient",
    "StreamConnectionError",
    "SSEStreamClient",
    # Manager
    "ConnectionManager",
    "ConnectionState",
    "get_connection_manager",
    "init_connection_manager",
    "shutdown_connection_manager",
    # Adapter
    "RealtimeHandle",
    "RealtimeUpdateOptions",
    "RealtimeUpdates",
    "use_realtime_updates",
]
