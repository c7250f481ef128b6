"""
Configuration management for Atlas Realtime.

Uses Pydantic Settings for environment variable parsing.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StreamConfig(BaseSettings):
    """Update stream client configuration."""

    model_config = SettingsConfigDict(env_prefix="ATLAS_REALTIME_STREAM_")

    url: str = Field(
        default="http://localhost:5004/communications/updates",
        description="Server-sent events endpoint for communication updates",
    )
    min_connection_interval: float = Field(
        default=5.0,
        description="Minimum seconds between connection attempts",
    )
    max_attempts: int = Field(
        default=5,
        description="Reconnection attempts before giving up",
    )
    base_delay: float = Field(
        default=1.0,
        description="Base reconnection delay (seconds)",
    )
    max_backoff_delay: float = Field(
        default=60.0,
        description="Maximum reconnection delay (seconds)",
    )
    rate_limit_delay: float = Field(
        default=120.0,
        description="Fallback wait when rate limited without Retry-After",
    )
    connect_timeout: float = Field(
        default=10.0,
        description="Seconds to wait for the stream to open",
    )
    probe_timeout: float = Field(
        default=5.0,
        description="Seconds to wait for the rate-limit probe",
    )


class ServerConfig(BaseSettings):
    """Update server configuration."""

    model_config = SettingsConfigDict(env_prefix="ATLAS_REALTIME_SERVER_")

    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=5004, description="Bind port")
    heartbeat_interval: float = Field(
        default=30.0,
        description="Seconds of silence before a heartbeat frame is sent",
    )
    replay_limit: int = Field(
        default=50,
        description="Recent updates replayed to a reconnecting client",
    )
    replay_max_age: float = Field(
        default=3600.0,
        description="Seconds an update stays in the replay buffer",
    )
    cleanup_interval: float = Field(
        default=1800.0,
        description="Seconds between replay buffer cleanups",
    )
    rate_limit_connections: int = Field(
        default=10,
        description="Stream connections allowed per client per window",
    )
    rate_limit_window: float = Field(
        default=60.0,
        description="Rate limit window (seconds)",
    )
    client_queue_size: int = Field(
        default=100,
        description="Pending frames per client before it is dropped",
    )


class RealtimeConfig(BaseSettings):
    """Main realtime configuration."""

    model_config = SettingsConfigDict(
        env_prefix="ATLAS_REALTIME_",
        env_file=".env",
        extra="ignore",
    )

    enabled: bool = Field(
        default=True,
        description="Enable realtime updates",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level for the update server",
    )

    # Sub-configs
    stream: StreamConfig = Field(default_factory=StreamConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)


# Global settings instance
_settings: Optional[RealtimeConfig] = None


def get_settings() -> RealtimeConfig:
    """Get or create global settings instance."""
    global _settings
    if _settings is None:
        _settings = RealtimeConfig()
    return _settings


settings = get_settings()
