"""Configuration management for hookrelay."""

import logging
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class RetrySettings(BaseModel):
    """Backoff parameters for failed deliveries.

    The delay before attempt ``n + 1`` is::

        min(max_delay_seconds, base_delay_seconds * 2 ** (n - 1) * (1 + jitter))

    where ``jitter`` is drawn uniformly from ``[0, jitter_factor]``.

    Attributes:
        base_delay_seconds: Delay after the first failed attempt (1.0 default).
        max_delay_seconds: Upper bound for any single delay (300 default).
        jitter_factor: Maximum relative jitter (0.1 default).
        retry_on_429: Treat HTTP 429 as retryable (True default).
    """

    base_delay_seconds: float = Field(
        default=1.0,
        gt=0.0,
        description="Delay after the first failed attempt",
    )
    max_delay_seconds: float = Field(
        default=300.0,
        gt=0.0,
        description="Upper bound for a single backoff delay",
    )
    jitter_factor: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Maximum relative jitter added to each delay",
    )
    retry_on_429: bool = Field(
        default=True,
        description="Retry deliveries rejected with HTTP 429 Too Many Requests",
    )

    @model_validator(mode="after")
    def _check_delay_order(self) -> "RetrySettings":
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError(
                f"max_delay_seconds ({self.max_delay_seconds}) must be >= "
                f"base_delay_seconds ({self.base_delay_seconds})"
            )
        return self


class Settings(BaseSettings):
    """hookrelay configuration loaded from environment variables.

    All settings can be overridden via environment variables with
    the HOOKRELAY_ prefix. For example:
        HOOKRELAY_MAX_CONCURRENT_DELIVERIES=8
        HOOKRELAY_RETRY__MAX_DELAY_SECONDS=60
    """

    # Environment
    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Dispatcher
    max_concurrent_deliveries: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Worker pool size: maximum delivery attempts in flight",
    )
    drain_timeout_seconds: float = Field(
        default=30.0,
        ge=0.0,
        description="How long shutdown waits for in-flight attempts before abandoning",
    )
    queue_backlog_threshold: int = Field(
        default=100,
        ge=1,
        description="Queue depth above which the backlog health check fails",
    )

    # Retry
    retry: RetrySettings = Field(
        default_factory=RetrySettings,
        description="Backoff parameters for failed deliveries",
    )

    # Webhook defaults
    default_timeout_ms: int = Field(
        default=30000,
        ge=1,
        le=300000,
        description="Request timeout for webhooks that do not set one",
    )
    default_retry_attempts: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Attempt budget for webhooks that do not set one",
    )

    # Config provider
    config_refresh_interval_seconds: float = Field(
        default=300.0,
        ge=0.0,
        description="Interval for background config refresh (0 disables)",
    )

    # Circuit breaker
    circuit_breaker_enabled: bool = Field(
        default=True,
        description="Short-circuit deliveries to webhooks that keep failing",
    )
    circuit_failure_threshold: int = Field(
        default=5,
        ge=1,
        description="Consecutive failures that open a webhook's circuit",
    )
    circuit_reset_timeout_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="How long an open circuit rejects attempts before a trial",
    )

    # Tracking and metrics
    tracker_history_limit: int = Field(
        default=1000,
        ge=0,
        description="Attempt records returned by recent-delivery queries",
    )
    histogram_max_samples: int = Field(
        default=1000,
        ge=10,
        le=100000,
        description="Samples kept per histogram series for percentiles",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format",
    )

    model_config = {
        "env_prefix": "HOOKRELAY_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
    }

    @model_validator(mode="after")
    def _warn_on_production_defaults(self) -> "Settings":
        if self.env == "production" and self.drain_timeout_seconds == 0:
            logger.warning(
                "drain_timeout_seconds is 0 in production: in-flight deliveries "
                "will be abandoned immediately on shutdown"
            )
        return self


# Global settings instance
settings = Settings()
