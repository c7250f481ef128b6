"""
Entry point for running the update stream server.

Usage:
    python -m atlas_realtime

Or with uvicorn:
    uvicorn atlas_realtime.api.main:app --host 0.0.0.0 --port 5004
"""

import logging

import uvicorn

from .core.config import settings


def main():
    """Run the atlas_realtime FastAPI server."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    uvicorn.run(
        "atlas_realtime.api.main:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
