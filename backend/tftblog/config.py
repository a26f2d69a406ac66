"""
Application configuration using Pydantic Settings.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FetchPolicySettings(BaseSettings):
    """Pacing and retry policy shared by every platform orchestrator."""

    model_config = SettingsConfigDict(env_prefix="FETCH_")

    # Inter-request pacing
    initial_interval_seconds: float = Field(
        default=15.0,
        description="Delay between consecutive target attempts in the first round",
    )
    interval_multiplier: float = Field(
        default=2.0,
        description="Growth factor applied to the delay between rounds",
    )
    max_interval_seconds: float = Field(default=60.0)
    jitter_seconds: float = Field(
        default=2.0,
        description="Uniform random offset (+/-) added to every sleep",
    )

    # Retry ceilings
    max_retries: int = Field(default=10, ge=1, description="Attempts per target before it fails")
    max_rounds: int = Field(default=10, ge=1)

    # Result shaping
    items_per_target: int = Field(default=5, ge=1)
    freshness_days: int = Field(default=30, ge=1)

    @field_validator("interval_multiplier")
    @classmethod
    def validate_multiplier(cls, v: float) -> float:
        if v < 1.0:
            raise ValueError("Interval multiplier must be >= 1")
        return v


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "TFT Blog Aggregator"
    app_version: str = "0.1.0"
    debug: bool = Field(default=False)
    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = Field(default="INFO")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./tftblog.db",
        description="Async database URL (SQLAlchemy format)",
    )

    # Admin gate (no key configured means nobody is admin)
    admin_api_key: str | None = Field(default=None)

    # Upstreams
    rsshub_instances: list[str] = Field(
        default=["http://localhost:1200"],
        description="RSS proxy base URLs, tried in order",
    )
    bilibili_cookie: str | None = Field(default=None)
    request_timeout_seconds: float = Field(default=30.0, gt=0)

    # Scheduler
    scheduler_enabled: bool = Field(default=False)
    fetch_cron_hour: int = Field(default=6, ge=0, le=23)
    fetch_cron_minute: int = Field(default=0, ge=0, le=59)

    # Caching
    cache_ttl_seconds: int = Field(default=3600, ge=0)

    # CORS
    cors_origins: list[str] = Field(
        default=["http://localhost:3000"],
    )

    # Pagination
    default_page_size: int = Field(default=20, ge=1, le=100)
    max_page_size: int = Field(default=100, ge=1, le=500)

    # Fetch policy (nested)
    fetch: FetchPolicySettings = Field(default_factory=FetchPolicySettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
