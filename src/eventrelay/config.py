"""Configuration management for EventRelay."""

import logging
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class DeliveryDefaults(BaseModel):
    """Defaults applied to outbound webhook subscriptions and the dispatcher.

    Per-subscription values override the timeout and retry fields; the
    concurrency limits apply to the whole dispatcher.

    Attributes:
        timeout_ms: Per-attempt hard deadline.
        max_attempts: Attempts per logical delivery, including the first.
        initial_delay_ms: Delay before the second attempt.
        backoff_multiplier: Growth factor between consecutive delays.
        max_delay_ms: Cap on any single delay.
        max_concurrent: Attempts in flight across all subscriptions.
        max_in_flight_per_subscription: Attempts in flight per subscription.
        response_body_limit: Characters of response body kept for diagnostics.
        auto_disable_after_failures: Deactivate a subscription after this many
            consecutive terminal failures. 0 disables the behaviour.
    """

    timeout_ms: int = Field(default=10_000, ge=100, le=120_000)
    max_attempts: int = Field(default=3, ge=1, le=20)
    initial_delay_ms: int = Field(default=1_000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0, le=10.0)
    max_delay_ms: int = Field(default=3_600_000, ge=0)
    max_concurrent: int = Field(default=10, ge=1)
    max_in_flight_per_subscription: int = Field(default=4, ge=1)
    response_body_limit: int = Field(default=1000, ge=0)
    auto_disable_after_failures: int = Field(default=0, ge=0)


class InboundDefaults(BaseModel):
    """Settings for provider event ingestion.

    Attributes:
        signing_secret: Shared secret used to verify provider signatures.
        signature_tolerance_seconds: Maximum clock skew accepted on the
            signed timestamp (replay window).
        max_attempts: Processing attempts before an event is marked failed.
        initial_delay_ms: Delay before re-processing a failed attempt.
        backoff_multiplier: Growth factor between re-processing delays.
        max_delay_ms: Cap on any single re-processing delay.
        processing_lease_seconds: A claim older than this is considered
            abandoned and may be re-claimed.
        process_inline: Run the handler during ingestion instead of leaving
            the event for the background worker.
        result_cache_ttl_seconds: How long terminal outcomes stay in the
            in-process result cache. 0 disables the cache.
    """

    signing_secret: str | None = Field(default=None)
    signature_tolerance_seconds: int = Field(default=300, ge=0)
    max_attempts: int = Field(default=5, ge=1, le=50)
    initial_delay_ms: int = Field(default=1_000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0, le=10.0)
    max_delay_ms: int = Field(default=300_000, ge=0)
    processing_lease_seconds: int = Field(default=300, ge=1)
    process_inline: bool = Field(default=True)
    result_cache_ttl_seconds: int = Field(default=600, ge=0)


class Settings(BaseSettings):
    """EventRelay configuration loaded from environment variables.

    All settings can be overridden via environment variables with the
    EVENTRELAY_ prefix; nested groups use a double underscore:
        EVENTRELAY_DATABASE_URL=postgresql+asyncpg://...
        EVENTRELAY_DELIVERY__MAX_ATTEMPTS=5
        EVENTRELAY_INBOUND__SIGNING_SECRET=whsec_...

    Security Notes:
        - In production an inbound signing secret is required.
    """

    model_config = SettingsConfigDict(
        env_prefix="EVENTRELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Storage
    database_url: str = Field(
        default="sqlite+aiosqlite:///./eventrelay.db",
        description="SQLAlchemy async database URL",
    )
    database_echo: bool = Field(default=False, description="Echo SQL statements")
    storage_backend: Literal["sql", "memory"] = Field(
        default="sql",
        description="Persistence backend: 'sql' (durable) or 'memory' (process-local)",
    )

    delivery: DeliveryDefaults = Field(default_factory=DeliveryDefaults)
    inbound: InboundDefaults = Field(default_factory=InboundDefaults)

    # Background workers
    poll_interval_seconds: float = Field(
        default=1.0,
        gt=0.0,
        description="Seconds between scans for due retries",
    )
    poll_batch_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Maximum records claimed per scan",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format: json (production) or text (development)",
    )

    @model_validator(mode="after")
    def _require_secret_in_production(self) -> "Settings":
        """Refuse to run unauthenticated ingestion in production."""
        if self.env == "production" and not self.inbound.signing_secret:
            raise ConfigurationError(
                "EVENTRELAY_INBOUND__SIGNING_SECRET must be set when EVENTRELAY_ENV=production"
            )
        if not self.inbound.signing_secret:
            logger.info("No inbound signing secret configured; inbound events will be rejected")
        return self


settings = Settings()
