"""
Communication update stream endpoints.
"""

import logging
import math
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from fastapi import APIRouter, Header, Query, Request, Response
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from ..server import get_broadcaster

logger = logging.getLogger("atlas.realtime.api.updates")
router = APIRouter()


class PublishRequest(BaseModel):
    """Update pushed by a sync job or webhook."""
    type: str = Field(..., min_length=1, description="Update type, e.g. new_communication")
    data: Optional[Any] = Field(None, description="Update payload")
    fields: dict[str, Any] = Field(
        default_factory=dict,
        description="Extra top-level fields merged into the update",
    )


class PublishResponse(BaseModel):
    """Stored update and how many stream clients it reached."""
    update: dict[str, Any]
    clients: int


def _client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _rate_limited(retry_after: float) -> Response:
    return Response(
        status_code=429,
        headers={"Retry-After": str(math.ceil(retry_after))},
    )


@router.get("/updates")
async def stream_updates(
    request: Request,
    since: Optional[datetime] = Query(None, description="Replay updates after this time"),
    last_event_id: Optional[str] = Header(None),
):
    """Open the server-sent events stream."""
    broadcaster = get_broadcaster()

    retry_after = broadcaster.record_connection(_client_key(request))
    if retry_after is not None:
        return _rate_limited(retry_after)

    after_id = None
    if last_event_id and last_event_id.isdigit():
        after_id = int(last_event_id)

    return StreamingResponse(
        broadcaster.stream(str(uuid4()), since=since, after_id=after_id),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


@router.head("/updates")
async def probe_updates(request: Request):
    """Rate-limit probe: 429 with Retry-After when the client must back off."""
    retry_after = get_broadcaster().check_rate_limit(_client_key(request))
    if retry_after is not None:
        return _rate_limited(retry_after)
    return Response(status_code=200)


@router.post("/events", response_model=PublishResponse, status_code=202)
async def publish_update(request: PublishRequest):
    """Publish an update to every connected stream client."""
    broadcaster = get_broadcaster()
    update = broadcaster.publish(request.type, request.data, **request.fields)

    logger.info("Published %s update", request.type)
    return PublishResponse(update=update, clients=broadcaster.client_count)
