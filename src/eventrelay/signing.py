"""HMAC-SHA256 request signing and verification.

Both outbound deliveries and inbound provider events are signed over the
same canonical string:

    "{timestamp_seconds}.{raw_payload}"

The timestamp travels in its own header (``X-Event-Timestamp``) and the hex
digest in ``X-Signature``. Verification recomputes the digest, compares in
constant time, and separately rejects timestamps outside a tolerance window
so a captured request cannot be replayed later.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import secrets as _secrets

from .clock import Clock, SystemClock, unix_seconds
from .exceptions import SignatureInvalid

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Signature"
TIMESTAMP_HEADER = "X-Event-Timestamp"
EVENT_TYPE_HEADER = "X-Event-Type"
EVENT_ID_HEADER = "X-Event-Id"
DELIVERY_ID_HEADER = "X-Delivery-Id"

DEFAULT_TOLERANCE_SECONDS = 300

_SIGNATURE_PREFIX = "sha256="
_HEX_DIGEST = re.compile(r"^[0-9a-fA-F]{64}$")


def generate_secret() -> str:
    """Generate a new signing secret for a subscription."""
    return f"whsec_{_secrets.token_hex(32)}"


def _canonical(timestamp: int, payload: str | bytes) -> bytes:
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return str(int(timestamp)).encode("ascii") + b"." + payload


def sign(secret: str, timestamp: int, payload: str | bytes) -> str:
    """Compute the hex HMAC-SHA256 signature of a payload.

    Args:
        secret: Shared signing secret.
        timestamp: Unix seconds included in the signed string.
        payload: Raw request body exactly as sent.

    Returns:
        Lowercase hex digest.

    Raises:
        SignatureInvalid: If the secret is empty.
    """
    if not secret:
        raise SignatureInvalid("Signing secret must not be empty")

    return hmac.new(
        key=secret.encode("utf-8"),
        msg=_canonical(timestamp, payload),
        digestmod=hashlib.sha256,
    ).hexdigest()


def _normalize_signature(signature: str) -> str:
    sig = signature.strip()
    if sig.startswith(_SIGNATURE_PREFIX):
        sig = sig[len(_SIGNATURE_PREFIX) :]
    if not _HEX_DIGEST.match(sig):
        raise SignatureInvalid("Malformed signature encoding")
    return sig.lower()


def verify_or_raise(
    secret: str,
    timestamp: int,
    payload: str | bytes,
    signature: str,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: int | None = None,
) -> None:
    """Verify a signature, raising SignatureInvalid with the reason on failure.

    Args:
        secret: Shared signing secret.
        timestamp: Unix seconds claimed by the sender.
        payload: Raw request body exactly as received.
        signature: Hex digest, optionally prefixed with "sha256=".
        tolerance_seconds: Maximum accepted distance between ``timestamp``
            and ``now``.
        now: Current unix seconds. Defaults to the system clock.
    """
    if not secret:
        raise SignatureInvalid("Signing secret must not be empty")
    if not signature:
        raise SignatureInvalid("Missing signature")

    provided = _normalize_signature(signature)
    expected = sign(secret, timestamp, payload)
    if not hmac.compare_digest(expected, provided):
        raise SignatureInvalid("Signature mismatch")

    current = now if now is not None else unix_seconds(SystemClock().now())
    if abs(current - int(timestamp)) > tolerance_seconds:
        raise SignatureInvalid(
            f"Timestamp outside tolerance window ({tolerance_seconds}s)"
        )


def verify(
    secret: str,
    timestamp: int,
    payload: str | bytes,
    signature: str,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: int | None = None,
) -> bool:
    """Verify a signature. Returns False instead of raising."""
    try:
        verify_or_raise(secret, timestamp, payload, signature, tolerance_seconds, now)
    except SignatureInvalid as e:
        logger.debug("Signature rejected: %s", e.message)
        return False
    return True


class SignatureCodec:
    """Signs and verifies payloads against an injected clock.

    Example:
        ```python
        codec = SignatureCodec(tolerance_seconds=300)
        headers = codec.signature_headers(secret, body)
        codec.verify_or_raise(secret, int(headers[TIMESTAMP_HEADER]), body,
                              headers[SIGNATURE_HEADER])
        ```
    """

    def __init__(
        self,
        tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
        clock: Clock | None = None,
    ) -> None:
        self.tolerance_seconds = tolerance_seconds
        self._clock = clock or SystemClock()

    def timestamp(self) -> int:
        return unix_seconds(self._clock.now())

    def sign(self, secret: str, timestamp: int, payload: str | bytes) -> str:
        return sign(secret, timestamp, payload)

    def verify(self, secret: str, timestamp: int, payload: str | bytes, signature: str) -> bool:
        return verify(
            secret, timestamp, payload, signature, self.tolerance_seconds, self.timestamp()
        )

    def verify_or_raise(
        self, secret: str, timestamp: int, payload: str | bytes, signature: str
    ) -> None:
        verify_or_raise(
            secret, timestamp, payload, signature, self.tolerance_seconds, self.timestamp()
        )

    def signature_headers(
        self,
        secret: str | None,
        payload: str | bytes,
        timestamp: int | None = None,
    ) -> dict[str, str]:
        """Build the timestamp header, plus the signature header when a secret is set."""
        ts = timestamp if timestamp is not None else self.timestamp()
        headers = {TIMESTAMP_HEADER: str(ts)}
        if secret:
            headers[SIGNATURE_HEADER] = sign(secret, ts, payload)
        return headers
