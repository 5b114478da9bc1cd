"""Inbound provider events and their processing state."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .base import generate_id, utcnow

InboundStatus = Literal["pending", "processing", "succeeded", "failed", "retrying"]

TERMINAL_INBOUND_STATUSES: frozenset[str] = frozenset({"succeeded", "failed"})


class InboundEnvelope(BaseModel):
    """An event as received from the provider, after signature verification.

    Attributes:
        external_event_id: The provider's idempotency key.
        event_type: Provider event type, e.g. ``invoice.paid``.
        payload: Opaque event body handed to the business handler.
        api_version: Provider API version the event was rendered with.
        livemode: False for provider test-mode events.
        account: Connected account the event belongs to, if any.
    """

    model_config = ConfigDict(extra="forbid")

    external_event_id: str = Field(min_length=1, max_length=255)
    event_type: str = Field(min_length=1, max_length=200)
    payload: Any = Field(default=None)
    api_version: str | None = Field(default=None)
    livemode: bool = Field(default=False)
    account: str | None = Field(default=None)


class InboundEvent(BaseModel):
    """Stored state of one provider event.

    Exactly one record exists per ``external_event_id``.

    Attributes:
        id: Internal identifier.
        status: pending, processing, succeeded, failed or retrying.
        processing_attempts: Claims so far; never reset.
        last_processing_attempt: When the latest claim happened.
        next_retry_at: When a retrying event becomes due again.
        processed_at: When the event reached succeeded.
        error_message: Latest handler failure.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("ine"))
    external_event_id: str
    event_type: str
    payload: Any = Field(default=None)
    api_version: str | None = Field(default=None)
    livemode: bool = Field(default=False)
    account: str | None = Field(default=None)

    status: InboundStatus = Field(default="pending")
    processing_attempts: int = Field(default=0, ge=0)
    last_processing_attempt: datetime | None = Field(default=None)
    next_retry_at: datetime | None = Field(default=None)
    processed_at: datetime | None = Field(default=None)
    error_message: str | None = Field(default=None)

    received_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_envelope(cls, envelope: InboundEnvelope, at: datetime) -> "InboundEvent":
        return cls(
            external_event_id=envelope.external_event_id,
            event_type=envelope.event_type,
            payload=envelope.payload,
            api_version=envelope.api_version,
            livemode=envelope.livemode,
            account=envelope.account,
            received_at=at,
            updated_at=at,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_INBOUND_STATUSES


class AdmitResult(BaseModel):
    """Outcome of the idempotency gate.

    Attributes:
        is_new: True for exactly one caller per external event id.
        record: The stored event (the winner's row for duplicates).
        existing_record_id: Id of the pre-existing row when not new.
    """

    is_new: bool
    record: InboundEvent
    existing_record_id: str | None = None


class ProcessingResult(BaseModel):
    """What the ingestion path reports back to the provider-facing caller.

    Attributes:
        event: Current stored state of the event.
        duplicate: The event had been seen before.
        handler_invoked: The business handler ran during this call.
    """

    event: InboundEvent
    duplicate: bool = False
    handler_invoked: bool = False

    @property
    def status(self) -> InboundStatus:
        return self.event.status


__all__ = [
    "AdmitResult",
    "InboundEnvelope",
    "InboundEvent",
    "InboundStatus",
    "ProcessingResult",
    "TERMINAL_INBOUND_STATUSES",
]
