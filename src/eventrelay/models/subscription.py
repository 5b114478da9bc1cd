"""Webhook subscription model.

A subscription is owned and edited by the surrounding application (CRUD),
while its delivery counters are written only by the dispatcher through
atomic storage increments.
"""

from datetime import datetime
from typing import Literal
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator

from eventrelay.matching import matches_any, validate_pattern
from eventrelay.retry import RetryPolicy

from .base import generate_id, utcnow

HttpMethod = Literal["POST", "PUT"]

MAX_URL_LENGTH = 2000
MAX_EVENT_PATTERNS = 50
MAX_HEADERS = 50

# Header names the engine sets on every request; subscriptions may not override them
RESERVED_HEADERS = frozenset(
    {
        "content-type",
        "content-length",
        "host",
        "user-agent",
        "x-event-type",
        "x-event-id",
        "x-delivery-id",
        "x-event-timestamp",
        "x-signature",
    }
)

# Fields owned by the dispatcher; CRUD updates must not touch them
COUNTER_FIELDS = frozenset(
    {
        "total_deliveries",
        "successful_deliveries",
        "failed_deliveries",
        "consecutive_failures",
        "total_response_time_ms",
        "timed_responses",
        "last_triggered_at",
        "last_success_at",
        "last_failure_at",
    }
)


class SubscriptionFilters(BaseModel):
    """Optional per-subscription event filters.

    Attributes:
        sample_rate: Fraction of matching events delivered (0-1).
        condition: Boolean expression evaluated against the event payload.
    """

    model_config = ConfigDict(extra="forbid")

    sample_rate: float | None = Field(default=None, ge=0.0, le=1.0)
    condition: str | None = Field(default=None, max_length=1000)


class SubscriptionStats(BaseModel):
    """Delivery statistics for one subscription."""

    total_deliveries: int
    successful_deliveries: int
    failed_deliveries: int
    consecutive_failures: int
    success_rate: float | None
    average_response_time_ms: float | None
    last_success_at: datetime | None
    last_failure_at: datetime | None


class WebhookSubscription(BaseModel):
    """A registered outbound webhook endpoint.

    Attributes:
        id: Unique identifier.
        owner_id: Owner reference in the surrounding application.
        name: Human-readable name.
        description: Optional longer description.
        url: Target endpoint (http or https).
        secret: HMAC signing secret; unsigned requests when None.
        events: Ordered, de-duplicated event patterns.
        method: POST or PUT.
        headers: Static headers merged into every request.
        timeout_ms: Per-attempt hard deadline.
        retry_config: Retry and backoff settings.
        filters: Optional sampling rate and payload condition.
        is_active: Inactive subscriptions are never dispatched to.
        disabled_reason: Why the subscription was last deactivated.
        total_deliveries: Logical deliveries that reached a terminal state.
        successful_deliveries: Logical deliveries that ended delivered.
        failed_deliveries: Logical deliveries that ended failed.
        consecutive_failures: Terminal failures since the last success.
        total_response_time_ms: Sum of measured response times.
        timed_responses: Number of measured response times.
        last_triggered_at: When a delivery last succeeded.
        last_success_at: When a delivery last succeeded.
        last_failure_at: When a delivery last failed terminally.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    id: str = Field(default_factory=lambda: generate_id("whk"))
    owner_id: str = Field(min_length=1, description="Owner reference")
    name: str = Field(min_length=3, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    url: str = Field(max_length=MAX_URL_LENGTH)
    secret: str | None = Field(default=None, description="HMAC signing secret")
    events: list[str] = Field(min_length=1, max_length=MAX_EVENT_PATTERNS)
    method: HttpMethod = Field(default="POST")
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_ms: int = Field(default=10_000, ge=100, le=120_000)
    retry_config: RetryPolicy = Field(default_factory=RetryPolicy)
    filters: SubscriptionFilters | None = Field(default=None)

    is_active: bool = Field(default=True)
    disabled_reason: str | None = Field(default=None)

    total_deliveries: int = Field(default=0, ge=0)
    successful_deliveries: int = Field(default=0, ge=0)
    failed_deliveries: int = Field(default=0, ge=0)
    consecutive_failures: int = Field(default=0, ge=0)
    total_response_time_ms: int = Field(default=0, ge=0)
    timed_responses: int = Field(default=0, ge=0)
    last_triggered_at: datetime | None = Field(default=None)
    last_success_at: datetime | None = Field(default=None)
    last_failure_at: datetime | None = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    deleted_at: datetime | None = Field(default=None)

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        value = value.strip()
        parts = urlsplit(value)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError("url must be an absolute http(s) URL")
        return value

    @field_validator("events")
    @classmethod
    def _check_events(cls, value: list[str]) -> list[str]:
        seen: dict[str, None] = {}
        for pattern in value:
            seen.setdefault(validate_pattern(pattern), None)
        return list(seen)

    @field_validator("headers")
    @classmethod
    def _check_headers(cls, value: dict[str, str]) -> dict[str, str]:
        if len(value) > MAX_HEADERS:
            raise ValueError(f"at most {MAX_HEADERS} headers are allowed")
        reserved = sorted(k for k in value if k.lower() in RESERVED_HEADERS)
        if reserved:
            raise ValueError(f"reserved header(s) cannot be set: {', '.join(reserved)}")
        return value

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_deliverable(self) -> bool:
        return self.is_active and not self.is_deleted

    @property
    def average_response_time_ms(self) -> float | None:
        if not self.timed_responses:
            return None
        return self.total_response_time_ms / self.timed_responses

    def stats(self) -> SubscriptionStats:
        rate = None
        if self.total_deliveries:
            rate = self.successful_deliveries / self.total_deliveries
        return SubscriptionStats(
            total_deliveries=self.total_deliveries,
            successful_deliveries=self.successful_deliveries,
            failed_deliveries=self.failed_deliveries,
            consecutive_failures=self.consecutive_failures,
            success_rate=rate,
            average_response_time_ms=self.average_response_time_ms,
            last_success_at=self.last_success_at,
            last_failure_at=self.last_failure_at,
        )

    def selects(self, event_type: str) -> bool:
        """Whether this subscription should receive an event of this type."""
        return self.is_deliverable and matches_any(event_type, self.events)


__all__ = [
    "COUNTER_FIELDS",
    "HttpMethod",
    "MAX_EVENT_PATTERNS",
    "MAX_HEADERS",
    "MAX_URL_LENGTH",
    "RESERVED_HEADERS",
    "SubscriptionFilters",
    "SubscriptionStats",
    "WebhookSubscription",
]
