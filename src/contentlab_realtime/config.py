"""Client configuration via environment variables.

Uses pydantic-settings to load config from env vars with CONTENTLAB_ prefix.
Every knob of the realtime client (caps, backoff, timeouts) lives here so a
dashboard process and the CLI share the same defaults.

Learn: Backoff defaults mirror what the web dashboard shipped with:
1s base, doubling, capped at 30s, five attempts before giving up.
"""

from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All client configuration. Set via CONTENTLAB_* env vars."""

    # Runtime
    environment: str = "development"
    log_level: str = "INFO"
    log_json: bool = False

    # Transports
    redis_url: str = "redis://localhost:6379/0"
    api_url: str = "http://localhost:3000"
    api_token: str = ""
    poll_interval: float = Field(default=5.0, gt=0)

    # History caps
    history_cap: int = Field(default=50, ge=1)
    alert_cap: int = Field(default=20, ge=1)
    completed_analysis_cap: int = Field(default=10, ge=1)
    job_status_cap: Optional[int] = Field(default=None, ge=1)  # None = never evict

    # Reconnect backoff (seconds)
    reconnect_base_delay: float = Field(default=1.0, ge=0)
    reconnect_multiplier: float = 2.0
    reconnect_max_delay: float = Field(default=30.0, ge=0)
    reconnect_max_attempts: Optional[int] = Field(default=5, ge=1)  # None = retry forever

    # Timeouts (seconds)
    connect_timeout: Optional[float] = Field(default=10.0, gt=0)
    heartbeat_timeout: Optional[float] = Field(default=None, gt=0)

    model_config = {"env_prefix": "CONTENTLAB_"}

    @model_validator(mode="after")
    def validate_backoff(self):
        """Reject backoff settings that would shrink or invert the delay."""
        if self.reconnect_multiplier < 1:
            raise ValueError("CONTENTLAB_RECONNECT_MULTIPLIER must be >= 1")
        if self.reconnect_max_delay < self.reconnect_base_delay:
            raise ValueError(
                "CONTENTLAB_RECONNECT_MAX_DELAY must be >= CONTENTLAB_RECONNECT_BASE_DELAY"
            )
        return self


# Singleton, import this everywhere
settings = Settings()
