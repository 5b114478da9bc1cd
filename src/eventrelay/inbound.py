"""Inbound provider event processing.

State machine per event:

- pending -> processing when a worker claims it.
- processing -> succeeded when the handler reports success.
- processing -> retrying when the handler fails retryably and attempts remain.
- processing -> failed when the failure is permanent or attempts are exhausted.
- retrying -> processing when the retry comes due and is claimed again.

Every claim increments ``processing_attempts``. Redelivery of an event that
is already known never invokes the handler again; the caller gets the
stored state. Handler failures are recorded on the event and never raised
to the caller of ``receive``/``ingest``.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .clock import Clock, SystemClock
from .exceptions import HandlerError, NotFoundError, SignatureInvalid, ValidationError
from .handlers import Handler
from .idempotency import IdempotencyStore
from .models import InboundEnvelope, InboundEvent, ProcessingResult
from .retry import RetryPolicy
from .signing import SignatureCodec
from .storage import EventStore

logger = logging.getLogger(__name__)

MAX_ERROR_MESSAGE_LENGTH = 2000


class _ProviderEventBody(BaseModel):
    """JSON body posted by the provider."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(validation_alias=AliasChoices("id", "externalEventId", "external_event_id"))
    type: str = Field(validation_alias=AliasChoices("type", "eventType", "event_type"))
    data: Any = Field(default=None, validation_alias=AliasChoices("data", "payload"))
    api_version: str | None = Field(
        default=None, validation_alias=AliasChoices("api_version", "apiVersion")
    )
    livemode: bool = Field(default=False)
    account: str | None = Field(default=None)


def parse_envelope(raw_body: str | bytes) -> InboundEnvelope:
    """Parse a provider body into an envelope.

    Raises:
        ValidationError: If the body is not a JSON object with an id and type.
    """
    try:
        body = _ProviderEventBody.model_validate_json(raw_body)
        return InboundEnvelope(
            external_event_id=body.id,
            event_type=body.type,
            payload=body.data,
            api_version=body.api_version,
            livemode=body.livemode,
            account=body.account,
        )
    except PydanticValidationError as e:
        raise ValidationError("body", f"unparseable inbound event: {e.errors()[0]['msg']}") from e


class InboundEventProcessor:
    """Drives received provider events to a terminal outcome.

    Example:
        ```python
        processor = InboundEventProcessor(store, handlers, signing_secret=secret)
        result = await processor.receive(raw_body, timestamp, signature)
        result.status  # "succeeded", "retrying", ...
        ```
    """

    def __init__(
        self,
        store: EventStore,
        handler: Handler,
        retry_policy: RetryPolicy | None = None,
        signing_secret: str | None = None,
        codec: SignatureCodec | None = None,
        idempotency: IdempotencyStore | None = None,
        clock: Clock | None = None,
        lease_seconds: int = 300,
        process_inline: bool = True,
    ) -> None:
        self._store = store
        self._handler = handler
        self._clock = clock or SystemClock()
        self._policy = retry_policy or RetryPolicy(max_attempts=5, max_delay_ms=300_000)
        self._secret = signing_secret
        self._codec = codec or SignatureCodec(clock=self._clock)
        self._gate = idempotency or IdempotencyStore(store, clock=self._clock)
        self._lease = timedelta(seconds=lease_seconds)
        self._process_inline = process_inline

    @property
    def idempotency(self) -> IdempotencyStore:
        return self._gate

    def verify(
        self,
        raw_body: str | bytes,
        timestamp: str | int | None,
        signature: str | None,
    ) -> None:
        """Check the provider signature.

        Raises:
            SignatureInvalid: If no secret is configured or verification fails.
        """
        if not self._secret:
            raise SignatureInvalid("Inbound signing secret is not configured")
        if timestamp is None or signature is None:
            raise SignatureInvalid("Missing signature or timestamp header")
        try:
            ts = int(timestamp)
        except (TypeError, ValueError) as e:
            raise SignatureInvalid("Malformed timestamp") from e
        self._codec.verify_or_raise(self._secret, ts, raw_body, signature)

    async def receive(
        self,
        raw_body: str | bytes,
        timestamp: str | int | None,
        signature: str | None,
    ) -> ProcessingResult:
        """Verify, parse and ingest a provider request.

        Signature failures are raised before anything is stored.
        """
        try:
            self.verify(raw_body, timestamp, signature)
        except SignatureInvalid as e:
            logger.warning("Rejected inbound event: %s", e.message)
            raise
        return await self.ingest(parse_envelope(raw_body))

    async def ingest(self, envelope: InboundEnvelope) -> ProcessingResult:
        """Admit an event and, for first sightings, process it inline if enabled."""
        admitted = await self._gate.admit(envelope)
        if not admitted.is_new:
            return ProcessingResult(event=admitted.record, duplicate=True)
        if not self._process_inline:
            return ProcessingResult(event=admitted.record)
        return await self.process(admitted.record.id)

    async def process(self, event_id: str) -> ProcessingResult:
        """Claim one event and run its handler.

        If the event cannot be claimed (terminal, not yet due, or held by
        another worker) the stored state is returned unchanged.
        """
        now = self._clock.now()
        event = await self._store.claim_inbound(event_id, now, now - self._lease)
        if event is None:
            current = await self._store.get_inbound(event_id)
            if current is None:
                raise NotFoundError("inbound_event", event_id)
            return ProcessingResult(event=current)

        logger.info(
            "Processing inbound event %s (%s) attempt %d",
            event.external_event_id,
            event.event_type,
            event.processing_attempts,
        )
        succeeded, retryable, error = await self._run_handler(event)
        finished_at = self._clock.now()
        event.updated_at = finished_at

        if succeeded:
            event.status = "succeeded"
            event.processed_at = finished_at
            event.error_message = None
            event.next_retry_at = None
        elif retryable and event.processing_attempts < self._policy.effective_max_attempts:
            event.status = "retrying"
            event.error_message = error
            event.next_retry_at = self._policy.next_retry_at(
                finished_at, event.processing_attempts
            )
        else:
            event.status = "failed"
            event.error_message = error
            event.next_retry_at = None

        if await self._store.finish_inbound(event):
            logger.info(
                "Inbound event %s -> %s (attempt %d)",
                event.external_event_id,
                event.status,
                event.processing_attempts,
            )
            self._gate.remember(event)
        else:
            latest = await self._store.get_inbound(event.id)
            if latest is not None:
                event = latest
        return ProcessingResult(event=event, handler_invoked=True)

    async def _run_handler(self, event: InboundEvent) -> tuple[bool, bool, str | None]:
        """Returns (succeeded, retryable, error_message). Never raises."""
        try:
            result = await self._handler(event.event_type, event.payload)
        except HandlerError as e:
            logger.warning(
                "Handler failed for %s (retryable=%s): %s",
                event.external_event_id,
                e.retryable,
                e.message,
            )
            return False, e.retryable, e.message[:MAX_ERROR_MESSAGE_LENGTH]
        except Exception as e:
            logger.exception("Handler raised for %s", event.external_event_id)
            message = f"{type(e).__name__}: {e}"
            return False, True, message[:MAX_ERROR_MESSAGE_LENGTH]

        if result is False:
            return False, True, "Handler reported failure"
        return True, False, None

    async def process_due(self, limit: int = 100) -> int:
        """Claim and process pending, due retrying and stale processing events.

        Returns:
            Number of events whose handler ran.
        """
        now = self._clock.now()
        due = await self._store.due_inbound(now, now - self._lease, limit=limit)
        processed = 0
        for event in due:
            result = await self.process(event.id)
            if result.handler_invoked:
                processed += 1
        if processed:
            logger.info("Processed %d due inbound events", processed)
        return processed

    async def lookup(self, external_event_id: str) -> InboundEvent | None:
        return await self._gate.lookup(external_event_id)

