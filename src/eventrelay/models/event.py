"""Domain events handed to the dispatcher by the surrounding application."""

import json
import re
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from eventrelay.exceptions import PermanentDeliveryError
from eventrelay.retry import FailureKind

from .base import generate_id, utcnow

EVENT_TYPE_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+(\.[A-Za-z0-9_\-]+)*$")

# Event type used by the diagnostic "send test delivery" operation
TEST_EVENT_TYPE = "test.webhook"


def _isoformat(when: datetime) -> str:
    return when.isoformat().replace("+00:00", "Z")


class DomainEvent(BaseModel):
    """An event to fan out to matching subscriptions.

    The payload is opaque to the engine: it is serialized as-is into the
    ``data`` member of the request body.

    Attributes:
        id: Unique identifier, sent as ``X-Event-Id``.
        type: Dot-segmented event type, e.g. ``invoice.paid``.
        data: JSON-serializable payload.
        occurred_at: When the event happened in the producing system.
        content_type: Media type of the serialized body.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("evt"))
    type: str = Field(min_length=1, max_length=200, description="Event type")
    data: Any = Field(default_factory=dict, description="Event payload")
    occurred_at: datetime = Field(default_factory=utcnow)
    content_type: str = Field(default="application/json")

    @field_validator("type")
    @classmethod
    def _check_type(cls, value: str) -> str:
        if not EVENT_TYPE_PATTERN.match(value):
            raise ValueError("event type must be dot-separated segments of [A-Za-z0-9_-]")
        return value

    @classmethod
    def for_test(cls, when: datetime) -> "DomainEvent":
        """Create the payload sent by a test delivery."""
        return cls(
            type=TEST_EVENT_TYPE,
            data={"test": True, "timestamp": _isoformat(when)},
            occurred_at=when,
        )

    def serialize_data(self) -> str:
        """Serialize the payload alone.

        Raises:
            PermanentDeliveryError: If the payload is not JSON-serializable.
        """
        try:
            return json.dumps(self.data, separators=(",", ":"), allow_nan=False)
        except (TypeError, ValueError) as e:
            raise PermanentDeliveryError(
                f"Event payload cannot be serialized: {e}",
                code=FailureKind.SERIALIZATION.value,
            ) from e


def build_body(event_type: str, data_json: str, delivered_at: datetime) -> str:
    """Wire body for one attempt: ``{"eventType", "data", "deliveredAt"}``.

    ``data_json`` is the already-serialized payload, spliced in verbatim so
    every attempt of a delivery carries byte-identical data.
    """
    return (
        '{"eventType":'
        + json.dumps(event_type)
        + ',"data":'
        + data_json
        + ',"deliveredAt":'
        + json.dumps(_isoformat(delivered_at))
        + "}"
    )


__all__ = ["DomainEvent", "EVENT_TYPE_PATTERN", "TEST_EVENT_TYPE", "build_body"]
