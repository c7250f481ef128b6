"""
Health check endpoints for Atlas Realtime.
"""

from datetime import datetime, timezone

from fastapi import APIRouter
from pydantic import BaseModel

from .. import __version__
from ..core.config import settings
from ..server import get_broadcaster

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    service: str = "atlas_realtime"
    version: str = __version__
    timestamp: datetime
    stream_clients: int = 0


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Get service health status."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        stream_clients=get_broadcaster().client_count if settings.enabled else 0,
    )


@router.get("/ping")
async def ping():
    """Simple ping endpoint."""
    return {"pong": True}
