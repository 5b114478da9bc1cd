"""Tests for EventRelay structured logging."""

import structlog

from eventrelay.logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    redact_sensitive,
    unbind_context,
)


class TestConfigureLogging:
    """Tests for logging configuration."""

    def test_configure_with_defaults(self):
        """Should configure with INFO level and JSON format by default."""
        configure_logging()
        logger = get_logger("test")
        logger.info("test message")

    def test_configure_with_text_format(self):
        configure_logging(level="DEBUG", format="text")
        logger = get_logger("test")
        logger.debug("text format message", subscription_id="whk_1")

    def test_configure_multiple_times(self):
        configure_logging(level="INFO")
        configure_logging(level="WARNING")
        get_logger("test").warning("after reconfigure")


class TestRedaction:
    """Secrets and signatures never reach the rendered event."""

    def test_masks_sensitive_keys(self):
        event = redact_sensitive(None, "info", {"event": "x", "secret": "whsec_abc"})
        assert event["secret"] == "***"
        assert event["event"] == "x"

    def test_masks_inside_header_dicts(self):
        event = redact_sensitive(
            None,
            "info",
            {"headers": {"X-Signature": "deadbeef", "X-Event-Type": "invoice.paid"}},
        )
        assert event["headers"]["X-Signature"] == "***"
        assert event["headers"]["X-Event-Type"] == "invoice.paid"

    def test_leaves_empty_values(self):
        event = redact_sensitive(None, "info", {"secret": None})
        assert event["secret"] is None


class TestContextBinding:
    """Tests for context variable binding."""

    def setup_method(self):
        clear_context()

    def teardown_method(self):
        clear_context()

    def test_bind_and_unbind(self):
        bind_context(request_id="req_1", external_event_id="evt_1")
        assert structlog.contextvars.get_contextvars() == {
            "request_id": "req_1",
            "external_event_id": "evt_1",
        }

        unbind_context("request_id")
        assert structlog.contextvars.get_contextvars() == {"external_event_id": "evt_1"}

    def test_clear(self):
        bind_context(request_id="req_1")
        clear_context()
        assert structlog.contextvars.get_contextvars() == {}
