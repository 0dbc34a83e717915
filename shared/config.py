"""
Shared configuration management for the dashboard data-freshness layer.
"""

from typing import List

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.errors import ConfigurationError


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="FRESHNESS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Dashboard API
    api_base_url: str = Field(default="http://localhost:3000/api")
    timezone: str = Field(default="America/Los_Angeles")
    request_timeout_seconds: float = Field(default=10.0)

    # Observability
    enable_metrics: bool = Field(default=True)


class FreshnessConfig(BaseConfig):
    """Tunables for cache, persistence, prefetch and stream reconnection."""

    # In-memory cache
    max_entries: int = Field(default=100, ge=1)

    # Session persistence
    persist_prefix: str = Field(default="tp_cache:")
    persist_namespaces: List[str] = Field(default_factory=lambda: ["dashboard:"])
    max_persisted: int = Field(default=10, ge=0)

    # Prefetch governor
    prefetch_max_inflight: int = Field(default=3, ge=1)
    prefetch_cooldown_seconds: float = Field(default=30.0, ge=0)
    prefetch_debounce_seconds: float = Field(default=0.4, ge=0)
    prefetch_idle_timeout_seconds: float = Field(default=3.0, ge=0)
    prefetch_idle_fallback_seconds: float = Field(default=0.2, ge=0)
    prefetch_release_delay_seconds: float = Field(default=0.2, ge=0)

    # Push stream
    stream_enabled: bool = Field(default=True)
    stream_path: str = Field(default="/sse/events")
    stream_data_changed_event: str = Field(default="sync-completed")
    reconnect_base_delay_seconds: float = Field(default=1.0, gt=0)
    reconnect_max_delay_seconds: float = Field(default=30.0, gt=0)

    @model_validator(mode="after")
    def _check_reconnect_window(self) -> "FreshnessConfig":
        if self.reconnect_max_delay_seconds < self.reconnect_base_delay_seconds:
            raise ConfigurationError(
                "reconnect_max_delay_seconds must be >= reconnect_base_delay_seconds",
                details={
                    "base": self.reconnect_base_delay_seconds,
                    "max": self.reconnect_max_delay_seconds,
                },
            )
        return self

    @property
    def stream_url(self) -> str:
        return f"{self.api_base_url.rstrip('/')}{self.stream_path}"


def get_config(**overrides) -> FreshnessConfig:
    """Get configuration populated from the environment plus explicit overrides."""
    return FreshnessConfig(**overrides)
