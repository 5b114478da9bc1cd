"""Retry policy and failure classification.

One classification decides whether a failed attempt may be retried, and it
is shared by the dispatcher, the manual "retry this delivery" operation and
the inbound processor:

- Retryable (transient): timeouts, connection errors, HTTP 429, HTTP 5xx.
- Permanent: any other non-2xx status (4xx except 429, unfollowed 3xx),
  invalid URLs, DNS resolution failures, payloads that cannot be serialized,
  deliveries to inactive subscriptions, and unexpected client errors.

Backoff is exponential with a cap:

    delay(n) = min(initial * multiplier ** (n - 1), max_delay)
"""

from __future__ import annotations

import asyncio
import socket
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

import httpx
from pydantic import BaseModel, ConfigDict, Field

from .exceptions import DeliveryError, TransientDeliveryError


class FailureKind(str, Enum):
    """Why an attempt produced no usable 2xx response."""

    HTTP_STATUS = "http_status"
    TIMEOUT = "timeout"
    CONNECTION = "connection_error"
    DNS = "dns_error"
    INVALID_URL = "invalid_url"
    SERIALIZATION = "serialization_failed"
    SUBSCRIPTION_INACTIVE = "subscription_inactive"
    UNEXPECTED = "unexpected_error"


_RETRYABLE_KINDS = frozenset({FailureKind.TIMEOUT, FailureKind.CONNECTION})


@dataclass(frozen=True)
class DeliveryOutcome:
    """Classified result of one attempt.

    Attributes:
        status_code: HTTP status, if a response was received.
        failure: Failure kind, or None for a 2xx response.
        message: Diagnostic text for failures.
    """

    status_code: int | None = None
    failure: FailureKind | None = None
    message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.failure is None and self.status_code is not None and is_success(
            self.status_code
        )

    @property
    def retryable(self) -> bool:
        return is_retryable(self)

    @classmethod
    def from_status(cls, status_code: int, message: str | None = None) -> DeliveryOutcome:
        if is_success(status_code):
            return cls(status_code=status_code)
        return cls(
            status_code=status_code,
            failure=FailureKind.HTTP_STATUS,
            message=message or f"HTTP {status_code}",
        )


def is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


def is_retryable_status(status_code: int) -> bool:
    """429 and 5xx are retryable; every other non-2xx status is permanent."""
    return status_code == 429 or 500 <= status_code < 600


def is_retryable(outcome: DeliveryOutcome | int) -> bool:
    """Whether a failed outcome may succeed on a later attempt."""
    if isinstance(outcome, int):
        return not is_success(outcome) and is_retryable_status(outcome)
    if outcome.failure is None:
        return False
    if outcome.failure is FailureKind.HTTP_STATUS:
        return outcome.status_code is not None and is_retryable_status(outcome.status_code)
    return outcome.failure in _RETRYABLE_KINDS


def should_retry(
    attempt_number: int,
    max_attempts: int,
    last_outcome: DeliveryOutcome | int,
) -> bool:
    """Whether attempt ``attempt_number + 1`` should be scheduled.

    False once ``attempt_number >= max_attempts`` regardless of the outcome,
    and false for successes and permanent failures.
    """
    if attempt_number >= max_attempts:
        return False
    return is_retryable(last_outcome)


def next_delay(
    attempt_number: int,
    initial_delay_ms: int,
    backoff_multiplier: float,
    max_delay_ms: int,
) -> int:
    """Delay in milliseconds to wait after attempt ``attempt_number`` fails.

    Non-decreasing in ``attempt_number`` and never above ``max_delay_ms``.

    Raises:
        ValueError: For negative delays or a multiplier below 1.
    """
    if initial_delay_ms < 0 or max_delay_ms < 0:
        raise ValueError("delays must be non-negative")
    if backoff_multiplier < 1:
        raise ValueError("backoff_multiplier must be >= 1")

    exponent = max(attempt_number, 1) - 1
    try:
        delay = initial_delay_ms * (backoff_multiplier**exponent)
    except OverflowError:
        return max_delay_ms
    return int(min(delay, max_delay_ms))


class RetryPolicy(BaseModel):
    """Retry configuration for a subscription or the inbound processor.

    Attributes:
        enabled: When False, every delivery gets exactly one attempt.
        max_attempts: Total attempts including the first.
        initial_delay_ms: Delay before the second attempt.
        backoff_multiplier: Growth factor between delays.
        max_delay_ms: Cap on any single delay.
    """

    model_config = ConfigDict(extra="forbid")

    enabled: bool = Field(default=True)
    max_attempts: int = Field(default=3, ge=1, le=20)
    initial_delay_ms: int = Field(default=1_000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0, le=10.0)
    max_delay_ms: int = Field(default=3_600_000, ge=0)

    @property
    def effective_max_attempts(self) -> int:
        return self.max_attempts if self.enabled else 1

    def next_delay(self, attempt_number: int) -> int:
        return next_delay(
            attempt_number, self.initial_delay_ms, self.backoff_multiplier, self.max_delay_ms
        )

    def should_retry(self, attempt_number: int, last_outcome: DeliveryOutcome | int) -> bool:
        return should_retry(attempt_number, self.effective_max_attempts, last_outcome)

    def next_retry_at(self, now: datetime, attempt_number: int) -> datetime:
        return now + timedelta(milliseconds=self.next_delay(attempt_number))


def _caused_by_dns(exc: BaseException) -> socket.gaierror | None:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, socket.gaierror):
            return current
        current = current.__cause__ or current.__context__
    return None


def _delivery_error_kind(exc: DeliveryError) -> FailureKind:
    try:
        return FailureKind(exc.code)
    except ValueError:
        pass
    if exc.status_code is not None:
        return FailureKind.HTTP_STATUS
    if isinstance(exc, TransientDeliveryError):
        return FailureKind.CONNECTION
    return FailureKind.UNEXPECTED


def classify_exception(exc: BaseException) -> DeliveryOutcome:
    """Map an exception raised while sending a request to an outcome."""
    message = str(exc) or exc.__class__.__name__

    if isinstance(exc, DeliveryError):
        return DeliveryOutcome(
            status_code=exc.status_code,
            failure=_delivery_error_kind(exc),
            message=exc.message,
        )

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return DeliveryOutcome(failure=FailureKind.TIMEOUT, message=f"Request timed out: {message}")

    if isinstance(exc, (httpx.InvalidURL, httpx.UnsupportedProtocol)):
        return DeliveryOutcome(failure=FailureKind.INVALID_URL, message=message)

    if isinstance(exc, httpx.TransportError):
        dns_error = _caused_by_dns(exc)
        # EAI_AGAIN is a temporary resolver failure, not a missing host
        if dns_error is not None and dns_error.errno != socket.EAI_AGAIN:
            return DeliveryOutcome(failure=FailureKind.DNS, message=message)
        return DeliveryOutcome(failure=FailureKind.CONNECTION, message=message)

    return DeliveryOutcome(failure=FailureKind.UNEXPECTED, message=message)
