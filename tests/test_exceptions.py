"""Tests for the EventRelay exception hierarchy."""

from eventrelay.exceptions import (
    ConfigurationError,
    DeliveryError,
    DuplicateEvent,
    EventRelayError,
    HandlerError,
    NotFoundError,
    PermanentDeliveryError,
    RetriesExhausted,
    SignatureInvalid,
    StorageError,
    TransientDeliveryError,
    ValidationError,
)


class TestEventRelayError:
    """Tests for the base EventRelayError class."""

    def test_error_message(self):
        error = EventRelayError("Something went wrong")
        assert error.message == "Something went wrong"
        assert str(error) == "Something went wrong"

    def test_to_dict(self):
        """Should convert to API-friendly dict."""
        assert EventRelayError("Something went wrong").to_dict() == {
            "error": {"code": "eventrelay_error", "message": "Something went wrong"}
        }

    def test_inheritance(self):
        """All custom exceptions should inherit from EventRelayError."""
        exceptions = [
            ValidationError("field", "invalid"),
            NotFoundError("subscription", "whk_1"),
            StorageError("failed"),
            ConfigurationError("missing"),
            SignatureInvalid("bad"),
            DuplicateEvent("evt_1"),
            TransientDeliveryError("timeout"),
            PermanentDeliveryError("404"),
            RetriesExhausted("done"),
            HandlerError("boom"),
        ]
        for exc in exceptions:
            assert isinstance(exc, EventRelayError)


class TestValidationError:
    def test_field_in_message_and_dict(self):
        error = ValidationError("url", "must be http(s)")
        assert error.field == "url"
        assert error.message == "url: must be http(s)"
        assert error.to_dict()["error"]["field"] == "url"
        assert error.code == "validation_error"


class TestNotFoundError:
    def test_to_dict(self):
        error = NotFoundError("delivery", "dlv_1")
        assert error.to_dict() == {
            "error": {
                "code": "not_found",
                "resource_type": "delivery",
                "resource_id": "dlv_1",
                "message": "delivery not found: dlv_1",
            }
        }


class TestDuplicateEvent:
    def test_attributes(self):
        error = DuplicateEvent("evt_1", existing_id="ine_abc")
        assert error.external_event_id == "evt_1"
        assert error.existing_id == "ine_abc"
        assert error.code == "duplicate_event"


class TestDeliveryErrors:
    def test_subclasses(self):
        for cls in (TransientDeliveryError, PermanentDeliveryError, RetriesExhausted):
            assert issubclass(cls, DeliveryError)

    def test_status_and_code_override(self):
        error = PermanentDeliveryError(
            "gone", status_code=410, response_body="bye", code="http_status"
        )
        assert error.status_code == 410
        assert error.response_body == "bye"
        assert error.code == "http_status"
        assert PermanentDeliveryError("x").code == "permanent_delivery_error"


class TestHandlerError:
    def test_retryable_default(self):
        assert HandlerError("boom").retryable is True
        assert HandlerError("bad payload", retryable=False).retryable is False
