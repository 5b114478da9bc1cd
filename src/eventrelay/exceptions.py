"""EventRelay exception hierarchy.

Provides structured exceptions for error handling throughout the codebase.
All exceptions inherit from EventRelayError for easy catching.

Delivery and inbound-processing errors are recorded on their records and
never escape ``dispatch``/``admit``; only malformed input raises to callers.
"""

from __future__ import annotations


class EventRelayError(Exception):
    """Base exception for all EventRelay errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code for API responses.
    """

    code: str = "eventrelay_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class ValidationError(EventRelayError):
    """Invalid input provided.

    Raised for malformed subscription configuration or unparseable events.

    Attributes:
        field: The field that failed validation.
        message: Description of the validation failure.
    """

    code: str = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "field": self.field,
                "message": self.message,
            }
        }


class NotFoundError(EventRelayError):
    """Resource not found.

    Attributes:
        resource_type: Type of resource (e.g., "subscription", "delivery").
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "message": self.message,
            }
        }


class StorageError(EventRelayError):
    """Storage operation failed."""

    code: str = "storage_error"


class ConfigurationError(EventRelayError):
    """Required configuration is missing or invalid."""

    code: str = "configuration_error"


class SignatureInvalid(EventRelayError):
    """Signature verification failed.

    Raised for a bad HMAC, an unusable secret or signature encoding, or a
    timestamp outside the replay tolerance window. Inbound events failing
    verification are rejected before admission.
    """

    code: str = "signature_invalid"


class DuplicateEvent(EventRelayError):
    """An inbound event with this external id already exists.

    Not a failure: callers short-circuit to the stored record.

    Attributes:
        external_event_id: The provider's idempotency key.
        existing_id: Internal id of the stored record, when known.
    """

    code: str = "duplicate_event"

    def __init__(self, external_event_id: str, existing_id: str | None = None) -> None:
        self.external_event_id = external_event_id
        self.existing_id = existing_id
        super().__init__(f"Event already received: {external_event_id}")


class DeliveryError(EventRelayError):
    """Base class for outbound delivery failures.

    Attributes:
        status_code: HTTP status of the response, if one was received.
        response_body: Truncated response body, if one was received.
    """

    code: str = "delivery_error"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
        code: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.response_body = response_body
        if code is not None:
            self.code = code
        super().__init__(message)


class TransientDeliveryError(DeliveryError):
    """Timeout, connection failure, 429 or 5xx. Retryable."""

    code: str = "transient_delivery_error"


class PermanentDeliveryError(DeliveryError):
    """4xx other than 429, serialization failure, invalid URL or DNS failure."""

    code: str = "permanent_delivery_error"


class RetriesExhausted(DeliveryError):
    """The final allowed attempt failed."""

    code: str = "retries_exhausted"


class HandlerError(EventRelayError):
    """A business handler failed to process an inbound event.

    Handlers raise this to say whether a retry can help. Any other exception
    raised by a handler is treated as retryable.

    Attributes:
        retryable: Whether another processing attempt may succeed.
    """

    code: str = "handler_error"

    def __init__(self, message: str, retryable: bool = True) -> None:
        self.retryable = retryable
        super().__init__(message)
