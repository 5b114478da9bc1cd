"""Outbound webhook delivery.

``dispatch`` fans an event out to matching subscriptions and stores one
pending attempt per subscription. ``process_due`` claims pending attempts
whose time has come and executes them concurrently, bounded globally and
per subscription.

The store is the delay queue. A failed retryable attempt is marked
``retrying`` and the next attempt is inserted as a new pending row with
``scheduled_at`` set by the backoff policy. Both rows are written in one
store call, so attempt n+1 exists exactly when attempt n is ``retrying``.
Deactivation is checked lazily, immediately before each send.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import httpx

from .clock import Clock, SystemClock, unix_seconds
from .config import DeliveryDefaults
from .exceptions import NotFoundError, PermanentDeliveryError, ValidationError
from .filters import ConditionEvaluator, SimpleConditionEvaluator, condition_admits, sample_admits
from .models import DomainEvent, WebhookDelivery, WebhookSubscription, build_body
from .retry import DeliveryOutcome, FailureKind, classify_exception, is_retryable, should_retry
from .signing import (
    DELIVERY_ID_HEADER,
    EVENT_ID_HEADER,
    EVENT_TYPE_HEADER,
    SIGNATURE_HEADER,
    SignatureCodec,
)
from .storage import EventStore

logger = logging.getLogger(__name__)

USER_AGENT = "EventRelay-Webhooks/1.0"
SUBSCRIPTION_INACTIVE_MESSAGE = "subscription inactive"


class DeliveryDispatcher:
    """Dispatches domain events to webhook subscriptions.

    Example:
        ```python
        async with DeliveryDispatcher(store) as dispatcher:
            # Enqueue attempt 1 for every matching subscription
            await dispatcher.dispatch(DomainEvent(type="invoice.paid", data={...}))

            # Execute whatever is due (normally done by a PollingWorker)
            await dispatcher.process_due()
        ```
    """

    def __init__(
        self,
        store: EventStore,
        client: httpx.AsyncClient | None = None,
        defaults: DeliveryDefaults | None = None,
        codec: SignatureCodec | None = None,
        condition_evaluator: ConditionEvaluator | None = None,
        clock: Clock | None = None,
        claim_lease_seconds: int = 300,
        on_enqueue: Callable[[], None] | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            store: Persistence for subscriptions and attempts.
            client: HTTP client. One is created (and owned) if not given.
            defaults: Concurrency limits and body truncation.
            codec: Signer. Defaults to one on the dispatcher's clock.
            condition_evaluator: Evaluates subscription payload conditions.
            clock: Time source for records and scheduling.
            claim_lease_seconds: A claimed attempt not finished within this
                window may be claimed again by another worker.
            on_enqueue: Called whenever new attempts are stored.
        """
        self._store = store
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(follow_redirects=False)
        self._defaults = defaults or DeliveryDefaults()
        self._clock = clock or SystemClock()
        self._codec = codec or SignatureCodec(clock=self._clock)
        self._conditions = condition_evaluator or SimpleConditionEvaluator()
        self._lease = timedelta(seconds=claim_lease_seconds)
        self._on_enqueue = on_enqueue
        self._semaphore = asyncio.Semaphore(self._defaults.max_concurrent)
        self._per_subscription: defaultdict[str, asyncio.Semaphore] = defaultdict(
            lambda: asyncio.Semaphore(self._defaults.max_in_flight_per_subscription)
        )
        # Holders plus waiters per subscription; a semaphore is dropped at zero.
        self._users: defaultdict[str, int] = defaultdict(int)

    async def __aenter__(self) -> DeliveryDispatcher:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def set_enqueue_callback(self, callback: Callable[[], None] | None) -> None:
        self._on_enqueue = callback

    def _notify(self) -> None:
        if self._on_enqueue is not None:
            self._on_enqueue()

    # Fan-out

    def _admits(self, subscription: WebhookSubscription, event: DomainEvent) -> bool:
        filters = subscription.filters
        if filters is None:
            return True
        if not sample_admits(filters.sample_rate, event.id, subscription.id):
            logger.debug("Event %s sampled out for %s", event.id, subscription.id)
            return False
        if not condition_admits(self._conditions, filters.condition, event.data):
            logger.debug("Event %s filtered out for %s", event.id, subscription.id)
            return False
        return True

    async def dispatch(self, event: DomainEvent) -> list[WebhookDelivery]:
        """Enqueue attempt 1 for every active subscription selecting the event.

        Delivery outcomes are recorded on the attempts, never raised here.
        A payload that cannot be serialized yields attempts that are
        already failed.

        Returns:
            The attempts created.
        """
        subscriptions = await self._store.list_active_subscriptions_for_event(event.type)
        if not subscriptions:
            logger.debug("No subscriptions for event %s (%s)", event.id, event.type)
            return []

        serialization_error: PermanentDeliveryError | None = None
        data_json: str | None = None
        try:
            data_json = event.serialize_data()
        except PermanentDeliveryError as e:
            serialization_error = e

        now = self._clock.now()
        created: list[WebhookDelivery] = []
        for subscription in subscriptions:
            if not self._admits(subscription, event):
                continue

            delivery = WebhookDelivery(
                subscription_id=subscription.id,
                event_id=event.id,
                event_type=event.type,
                payload=data_json,
                attempt_number=1,
                max_attempts=subscription.retry_config.effective_max_attempts,
                scheduled_at=now,
                method=subscription.method,
                url=subscription.url,
                created_at=now,
            )
            if serialization_error is not None:
                delivery.mark_failed(
                    now,
                    DeliveryOutcome(
                        failure=FailureKind.SERIALIZATION, message=serialization_error.message
                    ),
                )
                await self._store.insert_delivery(delivery)
                await self._finish_chain(subscription.id, delivered=False, at=now)
                logger.warning(
                    "Event %s payload not serializable; delivery %s failed",
                    event.id,
                    delivery.id,
                )
            else:
                await self._store.insert_delivery(delivery)
            created.append(delivery)

        logger.info(
            "Dispatched %s (%s) to %d of %d subscriptions",
            event.id,
            event.type,
            len(created),
            len(subscriptions),
        )
        if created:
            self._notify()
        return created

    # Execution

    async def process_due(self, limit: int = 100) -> int:
        """Execute pending attempts whose scheduled time has passed.

        Returns:
            Number of attempts executed.
        """
        now = self._clock.now()
        due = await self._store.due_deliveries(now, now - self._lease, limit=limit)
        if not due:
            return 0

        results = await asyncio.gather(*(self._run(d) for d in due), return_exceptions=True)
        executed = 0
        for delivery, result in zip(due, results, strict=True):
            if isinstance(result, BaseException):
                logger.error("Delivery %s crashed: %s", delivery.id, result, exc_info=result)
            elif result is not None:
                executed += 1
        return executed

    async def _run(self, delivery: WebhookDelivery) -> WebhookDelivery | None:
        key = delivery.subscription_id
        self._users[key] += 1
        try:
            async with self._per_subscription[key], self._semaphore:
                now = self._clock.now()
                claimed = await self._store.claim_delivery(delivery.id, now, now - self._lease)
                if claimed is None:
                    logger.debug("Delivery %s already claimed", delivery.id)
                    return None
                return await self._execute(claimed)
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                self._per_subscription.pop(key, None)

    async def _execute(self, delivery: WebhookDelivery) -> WebhookDelivery:
        subscription = await self._store.get_subscription(delivery.subscription_id)
        if subscription is None or not subscription.is_deliverable:
            now = self._clock.now()
            delivery.mark_failed(
                now,
                DeliveryOutcome(
                    failure=FailureKind.SUBSCRIPTION_INACTIVE,
                    message=SUBSCRIPTION_INACTIVE_MESSAGE,
                ),
            )
            await self._store.update_delivery(delivery)
            if subscription is not None:
                await self._finish_chain(
                    subscription.id, delivered=False, at=now, reopened=delivery.manual_retry
                )
            logger.info(
                "Skipped attempt %d of %s: subscription %s inactive",
                delivery.attempt_number,
                delivery.chain_id,
                delivery.subscription_id,
            )
            return delivery

        outcome, response_body, elapsed_ms = await self._send(subscription, delivery)
        return await self._record_outcome(
            subscription, delivery, outcome, response_body, elapsed_ms
        )

    def _build_headers(
        self,
        subscription: WebhookSubscription,
        delivery: WebhookDelivery,
        body: str,
        timestamp: int,
    ) -> dict[str, str]:
        headers = dict(subscription.headers)
        headers.update(
            {
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT,
                EVENT_TYPE_HEADER: delivery.event_type,
                EVENT_ID_HEADER: delivery.event_id,
                DELIVERY_ID_HEADER: delivery.id,
            }
        )
        headers.update(self._codec.signature_headers(subscription.secret, body, timestamp))
        return headers

    async def _send(
        self,
        subscription: WebhookSubscription,
        delivery: WebhookDelivery,
    ) -> tuple[DeliveryOutcome, str | None, int | None]:
        """Perform one HTTP request. Never raises.

        Returns:
            (outcome, response body, response time in ms)
        """
        sent_at = self._clock.now()
        body = build_body(delivery.event_type, delivery.payload or "null", sent_at)
        headers = self._build_headers(subscription, delivery, body, unix_seconds(sent_at))

        delivery.method = subscription.method
        delivery.url = subscription.url
        delivery.body = body
        delivery.request_headers = {k: v for k, v in headers.items() if k != SIGNATURE_HEADER}

        timeout = subscription.timeout_ms / 1000
        started = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.request(
                    subscription.method,
                    subscription.url,
                    content=body.encode("utf-8"),
                    headers=headers,
                    timeout=timeout,
                ),
                timeout=timeout,
            )
        except Exception as e:
            outcome = classify_exception(e)
            logger.warning(
                "Delivery %s to %s failed: %s (%s)",
                delivery.id,
                subscription.url,
                outcome.failure.value if outcome.failure else "unknown",
                outcome.message,
            )
            return outcome, None, None

        elapsed_ms = int((time.monotonic() - started) * 1000)
        return DeliveryOutcome.from_status(response.status_code), response.text, elapsed_ms

    async def _record_outcome(
        self,
        subscription: WebhookSubscription,
        delivery: WebhookDelivery,
        outcome: DeliveryOutcome,
        response_body: str | None,
        elapsed_ms: int | None,
    ) -> WebhookDelivery:
        now = self._clock.now()
        limit = self._defaults.response_body_limit

        if outcome.succeeded:
            delivery.mark_delivered(
                now, outcome.status_code or 200, response_body, elapsed_ms, limit
            )
            await self._store.update_delivery(delivery)
            await self._finish_chain(
                subscription.id, True, now, elapsed_ms, reopened=delivery.manual_retry
            )
            logger.info(
                "Delivered %s to %s (attempt %d, status %d)",
                delivery.event_type,
                subscription.url,
                delivery.attempt_number,
                delivery.http_status,
            )
            return delivery

        if subscription.retry_config.enabled and should_retry(
            delivery.attempt_number, delivery.max_attempts, outcome
        ):
            next_at = subscription.retry_config.next_retry_at(now, delivery.attempt_number)
            delivery.mark_retrying(now, next_at, outcome, response_body, elapsed_ms, limit)
            await self._store.schedule_retry(delivery, delivery.next_attempt(next_at))
            logger.info(
                "Delivery of %s to %s scheduled for retry (attempt %d at %s): %s",
                delivery.event_type,
                subscription.url,
                delivery.attempt_number + 1,
                next_at.isoformat(),
                outcome.message,
            )
            self._notify()
            return delivery

        if is_retryable(outcome):
            outcome = DeliveryOutcome(
                status_code=outcome.status_code,
                failure=outcome.failure,
                message=f"Retries exhausted after {delivery.attempt_number} attempts: "
                f"{outcome.message}",
            )
        delivery.mark_failed(now, outcome, response_body, elapsed_ms, limit)
        await self._store.update_delivery(delivery)
        await self._finish_chain(
            subscription.id, False, now, elapsed_ms, reopened=delivery.manual_retry
        )
        logger.warning(
            "Delivery of %s to %s failed (attempt %d): %s",
            delivery.event_type,
            subscription.url,
            delivery.attempt_number,
            outcome.message,
        )
        return delivery

    async def _finish_chain(
        self,
        subscription_id: str,
        delivered: bool,
        at: datetime,
        response_time_ms: int | None = None,
        reopened: bool = False,
    ) -> None:
        updated = await self._store.record_delivery_result(
            subscription_id, delivered, at, response_time_ms, reopened=reopened
        )
        threshold = self._defaults.auto_disable_after_failures
        if (
            updated is None
            or delivered
            or reopened
            or not threshold
            or not updated.is_active
            or updated.consecutive_failures < threshold
        ):
            return
        reason = f"Disabled after {updated.consecutive_failures} consecutive failed deliveries"
        await self._store.set_subscription_active(subscription_id, False, reason, at)
        logger.warning("Subscription %s auto-disabled: %s", subscription_id, reason)

    # Operator actions

    async def send_test(self, subscription_id: str) -> WebhookDelivery:
        """Send a single signed ``test.webhook`` event.

        Diagnostic only: one attempt, no retries, counters untouched.

        Raises:
            NotFoundError: If the subscription does not exist.
        """
        subscription = await self._store.get_subscription(subscription_id)
        if subscription is None or subscription.is_deleted:
            raise NotFoundError("subscription", subscription_id)

        now = self._clock.now()
        event = DomainEvent.for_test(now)
        delivery = WebhookDelivery(
            subscription_id=subscription.id,
            event_id=event.id,
            event_type=event.type,
            payload=event.serialize_data(),
            attempt_number=1,
            max_attempts=1,
            scheduled_at=now,
            claimed_at=now,
            method=subscription.method,
            url=subscription.url,
            is_test=True,
            created_at=now,
        )

        outcome, response_body, elapsed_ms = await self._send(subscription, delivery)
        finished = self._clock.now()
        limit = self._defaults.response_body_limit
        if outcome.succeeded:
            delivery.mark_delivered(
                finished, outcome.status_code or 200, response_body, elapsed_ms, limit
            )
        else:
            delivery.mark_failed(finished, outcome, response_body, elapsed_ms, limit)
        await self._store.insert_delivery(delivery)
        logger.info(
            "Test delivery to %s: %s (%s)",
            subscription.url,
            delivery.status,
            delivery.http_status,
        )
        return delivery

    async def retry_delivery(self, delivery_id: str) -> WebhookDelivery:
        """Schedule one more attempt for a failed delivery, due now.

        Uses the same retryable/permanent classification as automatic
        retries: permanent failures are refused.

        Raises:
            NotFoundError: If the delivery or its subscription is missing.
            ValidationError: If the delivery cannot be retried.
        """
        delivery = await self._store.get_delivery(delivery_id)
        if delivery is None:
            raise NotFoundError("delivery", delivery_id)
        if delivery.is_test:
            raise ValidationError("delivery_id", "test deliveries cannot be retried")
        if delivery.status != "failed":
            raise ValidationError(
                "delivery_id", f"only failed deliveries can be retried (status={delivery.status})"
            )

        chain = await self._store.list_chain(delivery.chain_id)
        if chain and chain[-1].id != delivery.id:
            raise ValidationError("delivery_id", "a later attempt of this delivery exists")

        outcome = delivery.outcome
        if outcome is None or not is_retryable(outcome):
            kind = outcome.failure.value if outcome and outcome.failure else "unknown"
            raise ValidationError("delivery_id", f"permanent failure ({kind}) cannot be retried")

        subscription = await self._store.get_subscription(delivery.subscription_id)
        if subscription is None or subscription.is_deleted:
            raise NotFoundError("subscription", delivery.subscription_id)
        if not subscription.is_active:
            raise ValidationError("subscription", SUBSCRIPTION_INACTIVE_MESSAGE)

        now = self._clock.now()
        next_attempt = delivery.next_attempt(now)
        next_attempt.max_attempts = next_attempt.attempt_number
        # The chain was already counted failed; its new outcome converts that count.
        next_attempt.manual_retry = True
        await self._store.insert_delivery(next_attempt)
        logger.info(
            "Manual retry of %s scheduled as attempt %d (%s)",
            delivery.chain_id,
            next_attempt.attempt_number,
            next_attempt.id,
        )
        self._notify()
        return next_attempt

    async def list_deliveries(
        self, subscription_id: str, status: str | None = None, limit: int = 50
    ) -> list[WebhookDelivery]:
        return await self._store.list_deliveries(subscription_id, status=status, limit=limit)
