"""Tests for HMAC signing and verification."""

import hashlib
import hmac

import pytest

from eventrelay.clock import ManualClock, unix_seconds
from eventrelay.exceptions import SignatureInvalid
from eventrelay.signing import (
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    SignatureCodec,
    generate_secret,
    sign,
    verify,
    verify_or_raise,
)

SECRET = "whsec_test_secret"
BODY = '{"eventType":"invoice.paid","data":{"id":"in_1"}}'
T = 1_700_000_000


class TestSign:
    """Tests for computing signatures."""

    def test_signs_timestamp_dot_payload(self):
        """Signature should be HMAC-SHA256 over '{timestamp}.{payload}'."""
        expected = hmac.new(
            SECRET.encode(), f"{T}.{BODY}".encode(), hashlib.sha256
        ).hexdigest()
        assert sign(SECRET, T, BODY) == expected

    def test_bytes_and_str_payloads_agree(self):
        assert sign(SECRET, T, BODY) == sign(SECRET, T, BODY.encode("utf-8"))

    def test_unicode_payload_signed_as_utf8(self):
        payload = '{"name":"Zoë"}'
        expected = hmac.new(
            SECRET.encode(), f"{T}.".encode() + payload.encode("utf-8"), hashlib.sha256
        ).hexdigest()
        assert sign(SECRET, T, payload) == expected

    def test_timestamp_changes_signature(self):
        assert sign(SECRET, T, BODY) != sign(SECRET, T + 1, BODY)

    def test_empty_secret_rejected(self):
        with pytest.raises(SignatureInvalid, match="must not be empty"):
            sign("", T, BODY)


class TestVerify:
    """Tests for signature verification."""

    def test_round_trip(self):
        """A signature verifies against the payload it was computed over."""
        signature = sign(SECRET, T, BODY)
        assert verify(SECRET, T, BODY, signature, now=T)

    def test_sha256_prefix_accepted(self):
        signature = "sha256=" + sign(SECRET, T, BODY)
        assert verify(SECRET, T, BODY, signature, now=T)

    def test_uppercase_hex_accepted(self):
        assert verify(SECRET, T, BODY, sign(SECRET, T, BODY).upper(), now=T)

    def test_any_changed_byte_fails(self):
        """Flipping any single byte of the payload breaks verification."""
        signature = sign(SECRET, T, BODY)
        for i in range(len(BODY)):
            tampered = BODY[:i] + chr(ord(BODY[i]) ^ 1) + BODY[i + 1 :]
            assert not verify(SECRET, T, tampered, signature, now=T)

    def test_wrong_secret_fails(self):
        signature = sign(SECRET, T, BODY)
        with pytest.raises(SignatureInvalid, match="Signature mismatch"):
            verify_or_raise("whsec_other", T, BODY, signature, now=T)

    def test_malformed_signature(self):
        with pytest.raises(SignatureInvalid, match="Malformed signature encoding"):
            verify_or_raise(SECRET, T, BODY, "not-hex", now=T)

    def test_missing_signature(self):
        with pytest.raises(SignatureInvalid, match="Missing signature"):
            verify_or_raise(SECRET, T, BODY, "", now=T)

    def test_empty_secret(self):
        with pytest.raises(SignatureInvalid, match="must not be empty"):
            verify_or_raise("", T, BODY, sign(SECRET, T, BODY), now=T)

    def test_timestamp_within_tolerance(self):
        signature = sign(SECRET, T, BODY)
        assert verify(SECRET, T, BODY, signature, tolerance_seconds=300, now=T + 300)
        assert verify(SECRET, T, BODY, signature, tolerance_seconds=300, now=T - 300)

    def test_timestamp_outside_tolerance(self):
        """A correctly signed but stale request is a replay and is rejected."""
        signature = sign(SECRET, T, BODY)
        with pytest.raises(SignatureInvalid, match="outside tolerance"):
            verify_or_raise(SECRET, T, BODY, signature, tolerance_seconds=300, now=T + 301)

    def test_verify_returns_false_instead_of_raising(self):
        assert verify(SECRET, T, BODY, "zz", now=T) is False


class TestSignatureCodec:
    """Tests for the clock-aware codec."""

    def test_uses_injected_clock(self):
        clock = ManualClock()
        codec = SignatureCodec(tolerance_seconds=60, clock=clock)
        assert codec.timestamp() == unix_seconds(clock.now())

    def test_replay_window_follows_clock(self):
        clock = ManualClock()
        codec = SignatureCodec(tolerance_seconds=60, clock=clock)
        ts = codec.timestamp()
        signature = codec.sign(SECRET, ts, BODY)

        assert codec.verify(SECRET, ts, BODY, signature)
        clock.advance(seconds=61)
        assert not codec.verify(SECRET, ts, BODY, signature)

    def test_signature_headers_with_secret(self):
        codec = SignatureCodec(clock=ManualClock())
        headers = codec.signature_headers(SECRET, BODY, timestamp=T)

        assert headers[TIMESTAMP_HEADER] == str(T)
        assert headers[SIGNATURE_HEADER] == sign(SECRET, T, BODY)

    def test_signature_headers_without_secret(self):
        """Unsigned subscriptions still get a timestamp but no signature."""
        codec = SignatureCodec(clock=ManualClock())
        headers = codec.signature_headers(None, BODY, timestamp=T)

        assert headers == {TIMESTAMP_HEADER: str(T)}


class TestGenerateSecret:
    def test_format(self):
        secret = generate_secret()
        assert secret.startswith("whsec_")
        assert len(secret) == len("whsec_") + 64

    def test_unique(self):
        assert generate_secret() != generate_secret()
