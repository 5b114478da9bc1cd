"""Process-local event store.

Suitable for tests and single-process embedding. No operation awaits while
it mutates state, so each call is atomic with respect to other coroutines
on the same loop. Records are copied in and out so callers never share
mutable state with the store.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime

from eventrelay.exceptions import DuplicateEvent, StorageError
from eventrelay.matching import event_prefixes, matches_any, pattern_prefix
from eventrelay.models import InboundEvent, WebhookDelivery, WebhookSubscription

from .base import SUBSCRIPTION_CONFIG_FIELDS, EventStore

logger = logging.getLogger(__name__)


def _claimable_inbound(event: InboundEvent, at: datetime, stale_before: datetime) -> bool:
    if event.status == "pending":
        return True
    if event.status == "retrying":
        return event.next_retry_at is None or event.next_retry_at <= at
    if event.status == "processing":
        last = event.last_processing_attempt
        return last is None or last < stale_before
    return False


def _claimable_delivery(delivery: WebhookDelivery, stale_before: datetime) -> bool:
    if delivery.status != "pending":
        return False
    return delivery.claimed_at is None or delivery.claimed_at < stale_before


class InMemoryEventStore(EventStore):
    """Dictionary-backed EventStore."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, WebhookSubscription] = {}
        self._prefix_index: defaultdict[str, set[str]] = defaultdict(set)
        self._deliveries: dict[str, WebhookDelivery] = {}
        self._inbound: dict[str, InboundEvent] = {}
        self._inbound_by_external: dict[str, str] = {}

    def _index(self, subscription: WebhookSubscription) -> None:
        for ids in self._prefix_index.values():
            ids.discard(subscription.id)
        for pattern in subscription.events:
            self._prefix_index[pattern_prefix(pattern)].add(subscription.id)

    # Subscriptions

    async def insert_subscription(self, subscription: WebhookSubscription) -> None:
        self._subscriptions[subscription.id] = subscription.model_copy(deep=True)
        self._index(subscription)

    async def get_subscription(self, subscription_id: str) -> WebhookSubscription | None:
        found = self._subscriptions.get(subscription_id)
        return found.model_copy(deep=True) if found else None

    async def list_subscriptions(
        self,
        owner_id: str | None = None,
        include_inactive: bool = True,
        include_deleted: bool = False,
        limit: int = 100,
    ) -> list[WebhookSubscription]:
        results = []
        for sub in sorted(self._subscriptions.values(), key=lambda s: s.created_at):
            if owner_id is not None and sub.owner_id != owner_id:
                continue
            if not include_inactive and not sub.is_active:
                continue
            if not include_deleted and sub.is_deleted:
                continue
            results.append(sub.model_copy(deep=True))
            if len(results) >= limit:
                break
        return results

    async def save_subscription_config(self, subscription: WebhookSubscription) -> None:
        stored = self._subscriptions.get(subscription.id)
        if stored is None:
            return
        updates = {name: getattr(subscription, name) for name in SUBSCRIPTION_CONFIG_FIELDS}
        self._subscriptions[subscription.id] = stored.model_copy(update=updates, deep=True)
        self._index(subscription)

    async def set_subscription_active(
        self,
        subscription_id: str,
        active: bool,
        reason: str | None,
        at: datetime,
    ) -> bool:
        sub = self._subscriptions.get(subscription_id)
        if sub is None or sub.is_deleted:
            return False
        sub.is_active = active
        sub.disabled_reason = None if active else reason
        sub.updated_at = at
        if active:
            sub.consecutive_failures = 0
        return True

    async def list_active_subscriptions_for_event(
        self, event_type: str
    ) -> list[WebhookSubscription]:
        candidate_ids: set[str] = set()
        for prefix in event_prefixes(event_type):
            candidate_ids |= self._prefix_index.get(prefix, set())

        results = []
        for sub_id in candidate_ids:
            sub = self._subscriptions.get(sub_id)
            if sub and sub.is_deliverable and matches_any(event_type, sub.events):
                results.append(sub.model_copy(deep=True))
        return sorted(results, key=lambda s: s.created_at)

    async def record_delivery_result(
        self,
        subscription_id: str,
        delivered: bool,
        at: datetime,
        response_time_ms: int | None = None,
        reopened: bool = False,
    ) -> WebhookSubscription | None:
        sub = self._subscriptions.get(subscription_id)
        if sub is None:
            return None

        if not reopened:
            sub.total_deliveries += 1
        if delivered:
            if reopened:
                sub.failed_deliveries = max(sub.failed_deliveries - 1, 0)
            sub.successful_deliveries += 1
            sub.consecutive_failures = 0
            sub.last_success_at = at
            sub.last_triggered_at = at
        elif reopened:
            sub.last_failure_at = at
        else:
            sub.failed_deliveries += 1
            sub.consecutive_failures += 1
            sub.last_failure_at = at
        if response_time_ms is not None:
            sub.total_response_time_ms += response_time_ms
            sub.timed_responses += 1
        return sub.model_copy(deep=True)

    # Delivery attempts

    async def insert_delivery(self, delivery: WebhookDelivery) -> None:
        self._deliveries[delivery.id] = delivery.model_copy(deep=True)

    async def update_delivery(self, delivery: WebhookDelivery) -> None:
        if delivery.id in self._deliveries:
            self._deliveries[delivery.id] = delivery.model_copy(deep=True)

    async def schedule_retry(
        self, current: WebhookDelivery, next_attempt: WebhookDelivery
    ) -> None:
        if current.id not in self._deliveries:
            raise StorageError(f"Delivery {current.id} does not exist")
        if next_attempt.id in self._deliveries:
            raise StorageError(f"Delivery {next_attempt.id} already exists")
        self._deliveries[current.id] = current.model_copy(deep=True)
        self._deliveries[next_attempt.id] = next_attempt.model_copy(deep=True)

    async def get_delivery(self, delivery_id: str) -> WebhookDelivery | None:
        found = self._deliveries.get(delivery_id)
        return found.model_copy(deep=True) if found else None

    async def list_deliveries(
        self,
        subscription_id: str,
        status: str | None = None,
        limit: int = 50,
    ) -> list[WebhookDelivery]:
        matching = [
            d
            for d in self._deliveries.values()
            if d.subscription_id == subscription_id and (status is None or d.status == status)
        ]
        matching.sort(key=lambda d: (d.created_at, d.attempt_number), reverse=True)
        return [d.model_copy(deep=True) for d in matching[:limit]]

    async def list_chain(self, chain_id: str) -> list[WebhookDelivery]:
        chain = [d for d in self._deliveries.values() if d.chain_id == chain_id]
        chain.sort(key=lambda d: d.attempt_number)
        return [d.model_copy(deep=True) for d in chain]

    async def claim_delivery(
        self,
        delivery_id: str,
        at: datetime,
        stale_before: datetime,
    ) -> WebhookDelivery | None:
        delivery = self._deliveries.get(delivery_id)
        if delivery is None or not _claimable_delivery(delivery, stale_before):
            return None
        delivery.claimed_at = at
        return delivery.model_copy(deep=True)

    async def due_deliveries(
        self,
        now: datetime,
        stale_before: datetime,
        limit: int = 100,
    ) -> list[WebhookDelivery]:
        due = [
            d
            for d in self._deliveries.values()
            if d.scheduled_at <= now and _claimable_delivery(d, stale_before)
        ]
        due.sort(key=lambda d: d.scheduled_at)
        return [d.model_copy(deep=True) for d in due[:limit]]

    # Inbound events

    async def insert_inbound(self, event: InboundEvent) -> None:
        existing_id = self._inbound_by_external.get(event.external_event_id)
        if existing_id is not None:
            raise DuplicateEvent(event.external_event_id, existing_id)
        self._inbound[event.id] = event.model_copy(deep=True)
        self._inbound_by_external[event.external_event_id] = event.id

    async def get_inbound(self, event_id: str) -> InboundEvent | None:
        found = self._inbound.get(event_id)
        return found.model_copy(deep=True) if found else None

    async def get_inbound_by_external_id(self, external_event_id: str) -> InboundEvent | None:
        event_id = self._inbound_by_external.get(external_event_id)
        if event_id is None:
            return None
        return await self.get_inbound(event_id)

    async def claim_inbound(
        self,
        event_id: str,
        at: datetime,
        stale_before: datetime,
    ) -> InboundEvent | None:
        event = self._inbound.get(event_id)
        if event is None or not _claimable_inbound(event, at, stale_before):
            return None
        if event.status == "processing":
            logger.warning(
                "Reclaiming stale inbound event %s (attempt %d)",
                event.external_event_id,
                event.processing_attempts,
            )
        event.status = "processing"
        event.processing_attempts += 1
        event.last_processing_attempt = at
        event.next_retry_at = None
        event.updated_at = at
        return event.model_copy(deep=True)

    async def finish_inbound(self, event: InboundEvent) -> bool:
        stored = self._inbound.get(event.id)
        if (
            stored is None
            or stored.status != "processing"
            or stored.processing_attempts != event.processing_attempts
        ):
            logger.warning(
                "Discarded outcome for %s: claim superseded", event.external_event_id
            )
            return False
        stored.status = event.status
        stored.next_retry_at = event.next_retry_at
        stored.processed_at = event.processed_at
        stored.error_message = event.error_message
        stored.updated_at = event.updated_at
        return True

    async def due_inbound(
        self,
        now: datetime,
        stale_before: datetime,
        limit: int = 100,
    ) -> list[InboundEvent]:
        due = [e for e in self._inbound.values() if _claimable_inbound(e, now, stale_before)]
        due.sort(key=lambda e: e.received_at)
        return [e.model_copy(deep=True) for e in due[:limit]]
