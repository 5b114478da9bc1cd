"""Outbound delivery attempt records.

Each row is one attempt. Attempts of the same logical delivery share a
``chain_id`` and are numbered from 1; attempt n+1 is only inserted after
attempt n has been marked ``retrying``.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from eventrelay.retry import DeliveryOutcome, FailureKind

from .base import generate_id, utcnow

DeliveryStatus = Literal["pending", "delivered", "failed", "retrying"]

TERMINAL_DELIVERY_STATUSES: frozenset[str] = frozenset({"delivered", "failed"})

DEFAULT_RESPONSE_BODY_LIMIT = 1000


def truncate(body: str | None, limit: int = DEFAULT_RESPONSE_BODY_LIMIT) -> str | None:
    if body is None:
        return None
    return body[:limit]


class WebhookDelivery(BaseModel):
    """Record of one delivery attempt.

    Attributes:
        id: Unique identifier, sent as ``X-Delivery-Id``.
        chain_id: Shared by every attempt of one logical delivery.
        subscription_id: Target subscription.
        event_id: Event being delivered.
        event_type: Type of that event.
        payload: Serialized event data, reused verbatim by later attempts.
        attempt_number: 1-based attempt counter within the chain.
        max_attempts: Attempt budget captured when the chain started.
        status: pending, delivered, failed or retrying.
        http_status: Response status, if a response was received.
        scheduled_at: Earliest time this attempt may run.
        claimed_at: When a worker took the attempt; guards double execution.
        delivered_at: When a 2xx response was observed.
        next_retry_at: When the follow-up attempt is scheduled.
        completed_at: When this attempt reached a final state.
        request_headers: Headers sent, without the signature.
        response_body: Truncated response body for diagnostics.
        response_time_ms: Time to the response, if one was received.
        error_code: Failure kind for failed or retrying attempts.
        error_message: Human-readable failure description.
        is_test: Diagnostic single-shot delivery; never retried or counted.
        manual_retry: Attempt reopened by an operator after the chain had failed.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("dlv"))
    chain_id: str = Field(default_factory=lambda: generate_id("chn"))
    subscription_id: str
    event_id: str
    event_type: str
    payload: str | None = Field(default=None, description="Serialized event data")
    attempt_number: int = Field(default=1, ge=1)
    max_attempts: int = Field(default=1, ge=1)
    status: DeliveryStatus = Field(default="pending")
    http_status: int | None = Field(default=None)

    scheduled_at: datetime = Field(default_factory=utcnow)
    claimed_at: datetime | None = Field(default=None)
    delivered_at: datetime | None = Field(default=None)
    next_retry_at: datetime | None = Field(default=None)
    completed_at: datetime | None = Field(default=None)

    method: str = Field(default="POST")
    url: str
    request_headers: dict[str, str] = Field(default_factory=dict)
    body: str | None = Field(default=None)
    response_body: str | None = Field(default=None)
    response_time_ms: int | None = Field(default=None, ge=0)
    error_code: str | None = Field(default=None)
    error_message: str | None = Field(default=None)

    is_test: bool = Field(default=False)
    manual_retry: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_DELIVERY_STATUSES

    @property
    def outcome(self) -> DeliveryOutcome | None:
        """Classified result of this attempt, or None if it has not run."""
        if self.status == "delivered":
            return DeliveryOutcome(status_code=self.http_status)
        if self.error_code is None:
            return None
        try:
            failure = FailureKind(self.error_code)
        except ValueError:
            failure = FailureKind.UNEXPECTED
        return DeliveryOutcome(
            status_code=self.http_status, failure=failure, message=self.error_message
        )

    def mark_delivered(
        self,
        at: datetime,
        http_status: int,
        response_body: str | None = None,
        response_time_ms: int | None = None,
        body_limit: int = DEFAULT_RESPONSE_BODY_LIMIT,
    ) -> "WebhookDelivery":
        """Mark the attempt as delivered (2xx observed)."""
        self.status = "delivered"
        self.http_status = http_status
        self.delivered_at = at
        self.completed_at = at
        self.next_retry_at = None
        self.response_body = truncate(response_body, body_limit)
        self.response_time_ms = response_time_ms
        self.error_code = None
        self.error_message = None
        return self

    def _record_failure(
        self,
        outcome: DeliveryOutcome,
        response_body: str | None,
        response_time_ms: int | None,
        body_limit: int,
    ) -> None:
        self.http_status = outcome.status_code
        self.error_code = (outcome.failure or FailureKind.UNEXPECTED).value
        self.error_message = outcome.message
        self.response_body = truncate(response_body, body_limit)
        self.response_time_ms = response_time_ms

    def mark_failed(
        self,
        at: datetime,
        outcome: DeliveryOutcome,
        response_body: str | None = None,
        response_time_ms: int | None = None,
        body_limit: int = DEFAULT_RESPONSE_BODY_LIMIT,
    ) -> "WebhookDelivery":
        """Mark the attempt, and so the chain, as failed (no more retries)."""
        self._record_failure(outcome, response_body, response_time_ms, body_limit)
        self.status = "failed"
        self.completed_at = at
        self.next_retry_at = None
        return self

    def mark_retrying(
        self,
        at: datetime,
        next_retry_at: datetime,
        outcome: DeliveryOutcome,
        response_body: str | None = None,
        response_time_ms: int | None = None,
        body_limit: int = DEFAULT_RESPONSE_BODY_LIMIT,
    ) -> "WebhookDelivery":
        """Mark the attempt as failed with a follow-up scheduled."""
        self._record_failure(outcome, response_body, response_time_ms, body_limit)
        self.status = "retrying"
        self.completed_at = at
        self.next_retry_at = next_retry_at
        return self

    def next_attempt(self, scheduled_at: datetime) -> "WebhookDelivery":
        """Build the pending record for the following attempt in this chain."""
        return WebhookDelivery(
            chain_id=self.chain_id,
            subscription_id=self.subscription_id,
            event_id=self.event_id,
            event_type=self.event_type,
            payload=self.payload,
            attempt_number=self.attempt_number + 1,
            max_attempts=max(self.max_attempts, self.attempt_number + 1),
            scheduled_at=scheduled_at,
            method=self.method,
            url=self.url,
            manual_retry=self.manual_retry,
            created_at=scheduled_at,
        )


__all__ = [
    "DEFAULT_RESPONSE_BODY_LIMIT",
    "DeliveryStatus",
    "TERMINAL_DELIVERY_STATUSES",
    "WebhookDelivery",
    "truncate",
]
