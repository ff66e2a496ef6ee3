"""Application configuration via environment variables.

Uses pydantic-settings to load config from env vars with PUSHALL_ prefix
(or a local .env file). No YAML files. The CLI options
only override host/port for `pushall serve`.
"""

from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """All relay configuration. Set via PUSHALL_* env vars."""

    # Server
    environment: str = "development"
    host: str = "0.0.0.0"
    port: int = 3000

    # Logging (empty log_file disables the file sink)
    log_file: str = "push-all-server.log"
    log_level: str = "INFO"

    # Broadcast channels
    channel_capacity: int = Field(100, ge=1)  # buffered messages per subscriber
    heartbeat_interval_seconds: float = Field(30.0, gt=0)
    # Empty binary frame every interval. With it off, liveness relies on
    # the protocol pings `pushall serve` configures in uvicorn.
    heartbeat_frames: bool = True

    # Idle channel eviction (None = channels live for the whole process)
    channel_idle_ttl_seconds: Optional[float] = None
    channel_sweep_interval_seconds: float = Field(60.0, gt=0)

    # CORS
    cors_origins: list[str] = ["*"]

    model_config = SettingsConfigDict(
        env_prefix="PUSHALL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_eviction_settings(self):
        """Reject a non-positive idle TTL instead of silently evicting everything."""
        if (
            self.channel_idle_ttl_seconds is not None
            and self.channel_idle_ttl_seconds <= 0
        ):
            raise ValueError(
                "PUSHALL_CHANNEL_IDLE_TTL_SECONDS must be positive "
                "(leave it unset to keep channels forever)"
            )
        return self


# Singleton, import this everywhere
settings = Settings()
