"""
Core configuration and event types for atlas_realtime.
"""

from .config import (
    RealtimeConfig,
    StreamConfig,
    ServerConfig,
    get_settings,
    settings,
)
from .events import (
    EventType,
    RealtimeEvent,
    HeartbeatEvent,
    NewCommunicationEvent,
    CommunicationUpdateEvent,
    ClientUpdateEvent,
    TicketUpdateEvent,
    UnknownEvent,
    build_update,
    decode_event,
    encode_event,
)

__all__ = [
    # Config
    "RealtimeConfig",
    "StreamConfig",
    "ServerConfig",
    "get_settings",
    "settings",
    # Events
    "EventType",
    "RealtimeEvent",
    "HeartbeatEvent",
    "NewCommunicationEvent",
    "CommunicationUpdateEvent",
    "ClientUpdateEvent",
    "TicketUpdateEvent",
    "UnknownEvent",
    "build_update",
    "decode_event",
    "encode_event",
]
