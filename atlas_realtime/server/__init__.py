"""
Update stream server components.
"""

from typing import Optional

from .broadcaster import UpdateBroadcaster, format_frame

# Module-level broadcaster instance
_broadcaster: Optional[UpdateBroadcaster] = None


def get_broadcaster() -> UpdateBroadcaster:
    """Get or create the global update broadcaster."""
    global _broadcaster
    if _broadcaster is None:
        from ..core.config import settings

        _broadcaster = UpdateBroadcaster.from_config(settings.server)
    return _broadcaster


def shutdown_broadcaster() -> None:
    """End all client streams and drop the global broadcaster."""
    global _broadcaster
    if _broadcaster:
        _broadcaster.shutdown()
        _broadcaster = None


__all__ = [
    "UpdateBroadcaster",
    "format_frame",
    "get_broadcaster",
    "shutdown_broadcaster",
]
