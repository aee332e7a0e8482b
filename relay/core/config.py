"""
Runtime Settings
=================

Environment-driven configuration for the orchestration layer.

All fields are read from ``RELAY_``-prefixed environment variables (or a
``.env`` file). Components take explicit constructor arguments;
``OrchestrationContext.from_settings`` is the only place that maps these
values onto them.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    APP_NAME: str = "relay"
    ENVIRONMENT: str = "development"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool | None = None  # None = JSON everywhere except development

    # Rate limiting (token bucket in front of the data-access client)
    RATE_LIMIT_TOKENS_PER_SECOND: float = Field(default=10.0, gt=0)
    RATE_LIMIT_BURST_SIZE: int = Field(default=20, ge=1)
    RATE_LIMIT_MAX_SLEEP_S: float = Field(default=1.0, gt=0)

    # Deduplication / debounce batching
    DEDUP_TTL_S: float = Field(default=30.0, gt=0)
    BATCH_DELAY_S: float = Field(default=0.3, ge=0)

    # Provider fallback retry wrapper
    FALLBACK_RETRY_MAX_ATTEMPTS: int = Field(default=2, ge=1)
    FALLBACK_RETRY_INITIAL_DELAY_S: float = Field(default=1.0, ge=0)
    FALLBACK_RETRY_MAX_DELAY_S: float = Field(default=3.0, ge=0)


settings = Settings()
