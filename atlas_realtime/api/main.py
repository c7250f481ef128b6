"""
FastAPI application for Atlas Realtime.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .. import __version__
from ..core.config import settings

logger = logging.getLogger("atlas.realtime.api")


async def _cleanup_loop(interval: float) -> None:
    """Periodically trim the replay buffer."""
    from ..server import get_broadcaster

    while True:
        await asyncio.sleep(interval)
        get_broadcaster().clean_old_updates()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info(
        "Atlas Realtime starting on %s:%d",
        settings.server.host,
        settings.server.port,
    )

    from ..server import get_broadcaster, shutdown_broadcaster

    cleanup_task = None
    if settings.enabled:
        get_broadcaster()
        cleanup_task = asyncio.create_task(_cleanup_loop(settings.server.cleanup_interval))
    else:
        logger.info("Realtime updates disabled, update stream not mounted")

    yield

    # Shutdown
    logger.info("Atlas Realtime shutting down")

    if cleanup_task:
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            pass

    shutdown_broadcaster()


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    application = FastAPI(
        title="Atlas Realtime",
        description="Communication update stream for Atlas",
        version=__version__,
        lifespan=lifespan,
    )

    # Include routers
    from .health import router as health_router
    from .updates import router as updates_router

    application.include_router(health_router, tags=["health"])
    if settings.enabled:
        application.include_router(updates_router, prefix="/communications", tags=["updates"])

    return application


# Create app instance
app = create_app()
