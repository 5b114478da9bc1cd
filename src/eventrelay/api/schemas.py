"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from eventrelay.models import (
    InboundEvent,
    SubscriptionStats,
    WebhookDelivery,
    WebhookSubscription,
)


class HealthResponse(BaseModel):
    """Service health.

    Attributes:
        status: "healthy" when the service is initialized.
        version: Package version.
        storage_connected: Whether the event store is available.
        workers_running: Names of background workers currently running.
    """

    status: Literal["healthy", "unhealthy"]
    version: str
    storage_connected: bool
    workers_running: list[str] = Field(default_factory=list)


class RetryConfigSchema(BaseModel):
    """Retry settings for a subscription. Omitted fields keep their defaults."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool | None = None
    max_attempts: int | None = Field(default=None, ge=1, le=20)
    initial_delay_ms: int | None = Field(default=None, ge=0)
    backoff_multiplier: float | None = Field(default=None, ge=1.0, le=10.0)
    max_delay_ms: int | None = Field(default=None, ge=0)


class FiltersSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    sample_rate: float | None = Field(default=None, ge=0.0, le=1.0)
    condition: str | None = Field(default=None, max_length=1000)


class SubscriptionCreateRequest(BaseModel):
    """Request body for registering a webhook subscription.

    Attributes:
        owner_id: Owner reference in the calling application.
        name: Human-readable name (3-100 characters).
        url: Target endpoint.
        events: Event-type patterns, e.g. ``["invoice.*", "customer.created"]``.
        secret: Signing secret. Generated when omitted and ``generate_secret``.
        generate_secret: Set False to send unsigned requests.
    """

    model_config = ConfigDict(extra="forbid")

    owner_id: str = Field(min_length=1)
    name: str = Field(min_length=3, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    url: str = Field(min_length=1, max_length=2000)
    events: list[str] = Field(min_length=1, max_length=50)
    secret: str | None = None
    generate_secret: bool = True
    method: Literal["POST", "PUT"] = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_ms: int | None = Field(default=None, ge=100, le=120_000)
    retry_config: RetryConfigSchema | None = None
    filters: FiltersSchema | None = None
    is_active: bool = True


class SubscriptionUpdateRequest(BaseModel):
    """Partial update. Only fields present in the body are changed."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=3, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    url: str | None = Field(default=None, max_length=2000)
    events: list[str] | None = Field(default=None, min_length=1, max_length=50)
    method: Literal["POST", "PUT"] | None = None
    headers: dict[str, str] | None = None
    timeout_ms: int | None = Field(default=None, ge=100, le=120_000)
    retry_config: RetryConfigSchema | None = None
    filters: FiltersSchema | None = None
    is_active: bool | None = None

    def changes(self) -> dict[str, Any]:
        data = self.model_dump(exclude_unset=True)
        for nested in ("retry_config", "filters"):
            if isinstance(data.get(nested), dict):
                data[nested] = {k: v for k, v in data[nested].items() if v is not None}
        return data


class SubscriptionResponse(BaseModel):
    """A subscription as returned by the API.

    The secret is only included when it was just created or rotated.
    """

    id: str
    owner_id: str
    name: str
    description: str | None
    url: str
    events: list[str]
    method: str
    headers: dict[str, str]
    timeout_ms: int
    retry_config: dict[str, Any]
    filters: dict[str, Any] | None
    is_active: bool
    disabled_reason: str | None
    signed: bool
    secret: str | None = None
    stats: SubscriptionStats
    last_triggered_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_subscription(
        cls, subscription: WebhookSubscription, include_secret: bool = False
    ) -> SubscriptionResponse:
        return cls(
            id=subscription.id,
            owner_id=subscription.owner_id,
            name=subscription.name,
            description=subscription.description,
            url=subscription.url,
            events=subscription.events,
            method=subscription.method,
            headers=subscription.headers,
            timeout_ms=subscription.timeout_ms,
            retry_config=subscription.retry_config.model_dump(),
            filters=subscription.filters.model_dump() if subscription.filters else None,
            is_active=subscription.is_active,
            disabled_reason=subscription.disabled_reason,
            signed=subscription.secret is not None,
            secret=subscription.secret if include_secret else None,
            stats=subscription.stats(),
            last_triggered_at=subscription.last_triggered_at,
            created_at=subscription.created_at,
            updated_at=subscription.updated_at,
        )


class SubscriptionListResponse(BaseModel):
    subscriptions: list[SubscriptionResponse]
    count: int


class DeliveryResponse(BaseModel):
    """One delivery attempt."""

    id: str
    chain_id: str
    subscription_id: str
    event_id: str
    event_type: str
    attempt_number: int
    max_attempts: int
    status: str
    http_status: int | None
    scheduled_at: datetime
    delivered_at: datetime | None
    next_retry_at: datetime | None
    completed_at: datetime | None
    response_time_ms: int | None
    response_body: str | None
    error_code: str | None
    error_message: str | None
    is_test: bool
    manual_retry: bool

    @classmethod
    def from_delivery(cls, delivery: WebhookDelivery) -> DeliveryResponse:
        return cls.model_validate(delivery.model_dump(include=set(cls.model_fields)))


class DeliveryListResponse(BaseModel):
    deliveries: list[DeliveryResponse]
    count: int


class PublishEventRequest(BaseModel):
    """A domain event to fan out.

    Attributes:
        type: Dot-segmented event type.
        data: JSON payload.
        id: Optional caller-supplied event id.
    """

    model_config = ConfigDict(extra="forbid")

    type: str = Field(min_length=1, max_length=200)
    data: Any = Field(default_factory=dict)
    id: str | None = Field(default=None, max_length=64)


class PublishEventResponse(BaseModel):
    event_id: str
    deliveries: list[DeliveryResponse]
    count: int


class InboundEventResponse(BaseModel):
    """Processing state of an inbound provider event."""

    id: str
    external_event_id: str
    event_type: str
    status: str
    duplicate: bool = False
    processing_attempts: int
    last_processing_attempt: datetime | None
    next_retry_at: datetime | None
    processed_at: datetime | None
    error_message: str | None
    livemode: bool
    account: str | None

    @classmethod
    def from_event(cls, event: InboundEvent, duplicate: bool = False) -> InboundEventResponse:
        data = event.model_dump(include=set(cls.model_fields) - {"duplicate"})
        return cls(duplicate=duplicate, **data)
