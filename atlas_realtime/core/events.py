"""
Event envelope for communication updates.

Frames on the update stream are JSON objects with a ``type``
discriminator. Known types decode to their own variant; anything else,
including JSON that is not an object or has no string ``type``, decodes
to UnknownEvent so newer producers don't break older consumers.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class EventType(str, Enum):
    """Update types produced by sync jobs and webhooks."""
    HEARTBEAT = "heartbeat"
    NEW_COMMUNICATION = "new_communication"            # Inbound email, call, SMS
    COMMUNICATION_UPDATE = "communication_update"      # Status / read / thread change
    CLIENT_UPDATE = "client_update"
    TICKET_UPDATE = "ticket_update"


@dataclass(frozen=True)
class RealtimeEvent:
    """
    A decoded update frame.

    ``payload`` is the full JSON value as received, passed through untouched.
    It is usually an object, but any JSON value is kept as is.
    """
    type: str
    payload: Any = field(default_factory=dict)

    @property
    def is_heartbeat(self) -> bool:
        return self.type == EventType.HEARTBEAT.value

    @property
    def data(self) -> Any:
        """Nested ``data`` field, if the producer wrapped its fields."""
        return self.get("data")

    def get(self, key: str, default: Any = None) -> Any:
        if not isinstance(self.payload, dict):
            return default
        return self.payload.get(key, default)


@dataclass(frozen=True)
class HeartbeatEvent(RealtimeEvent):
    pass


@dataclass(frozen=True)
class NewCommunicationEvent(RealtimeEvent):
    pass


@dataclass(frozen=True)
class CommunicationUpdateEvent(RealtimeEvent):
    pass


@dataclass(frozen=True)
class ClientUpdateEvent(RealtimeEvent):
    pass


@dataclass(frozen=True)
class TicketUpdateEvent(RealtimeEvent):
    pass


@dataclass(frozen=True)
class UnknownEvent(RealtimeEvent):
    """Any ``type`` this package doesn't know about. ``type`` is empty when the frame has none."""
    pass


_VARIANTS: dict[str, type[RealtimeEvent]] = {
    EventType.HEARTBEAT.value: HeartbeatEvent,
    EventType.NEW_COMMUNICATION.value: NewCommunicationEvent,
    EventType.COMMUNICATION_UPDATE.value: CommunicationUpdateEvent,
    EventType.CLIENT_UPDATE.value: ClientUpdateEvent,
    EventType.TICKET_UPDATE.value: TicketUpdateEvent,
}


def decode_event(raw: str | bytes) -> RealtimeEvent:
    """
    Decode a frame into its event variant.

    Raises:
        ValueError: If the frame is not valid JSON.
    """
    payload = json.loads(raw)

    event_type = payload.get("type") if isinstance(payload, dict) else None
    if not isinstance(event_type, str):
        return UnknownEvent(type="", payload=payload)

    variant = _VARIANTS.get(event_type, UnknownEvent)
    return variant(type=event_type, payload=payload)


def build_update(
    event_type: str,
    data: Optional[Any] = None,
    timestamp: Optional[datetime] = None,
    **fields: Any,
) -> dict[str, Any]:
    """Build an outbound update object with a timestamp."""
    if isinstance(event_type, EventType):
        event_type = event_type.value

    update: dict[str, Any] = {"type": event_type}
    if data is not None:
        update["data"] = data
    update.update(fields)
    update["timestamp"] = (timestamp or datetime.now(timezone.utc)).isoformat()
    return update


def encode_event(update: dict[str, Any]) -> str:
    """Encode an update object as JSON text for a ``data:`` line."""
    return json.dumps(update, default=str, separators=(",", ":"))


def heartbeat() -> dict[str, Any]:
    return build_update(EventType.HEARTBEAT)
