"""
Shared configuration management for the Morph view client.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MorphSettings(BaseSettings):
    """Client settings, read from ``MORPH_*`` environment variables or ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="MORPH_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Upstream
    endpoint: str = Field(default="http://localhost:8080")
    # Seconds the upstream may spend rendering; sent as ?timeout=
    timeout: int = Field(default=3, ge=0)
    http_timeout: float = Field(default=10.0, gt=0)

    # Polling on 202
    max_retries: int = Field(default=1, ge=0)
    retry_base_delay: float = Field(default=0.0, ge=0)
    retry_max_delay: float = Field(default=5.0, ge=0)
    retry_backoff: str = Field(default="fixed")
    retry_jitter: bool = Field(default=False)

    # "raise" or "return_none"
    error_mode: str = Field(default="raise")

    # Cache
    redis_url: Optional[str] = Field(default=None)
    cache_prefix: str = Field(default="morph")
    jitter_cap: int = Field(default=120, ge=0)
    # Preset name ("short", "normal", ...) or whole seconds
    default_ttl: str = Field(default="normal")
    null_ttl: str = Field(default="short")
    single_flight: bool = Field(default=True)

    # Observability
    enable_metrics: bool = Field(default=False)
    # Serve /metrics on this port when metrics are enabled
    metrics_port: Optional[int] = Field(default=None, gt=0)


def get_settings(**overrides) -> MorphSettings:
    """Load settings, applying keyword overrides on top of the environment."""
    return MorphSettings(**overrides)
