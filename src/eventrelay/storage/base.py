"""Persistence contract for EventRelay.

The engine needs four things from storage:

- insert-if-absent by external event id (the inbound dedupe gate),
- atomic counter increments on subscriptions,
- active subscriptions looked up by event-type prefix,
- conditional claims so a pending record is executed by one worker.

Everything else is plain record reads and writes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from eventrelay.models import InboundEvent, WebhookDelivery, WebhookSubscription

# Columns a CRUD save may write; counters are left to record_delivery_result
SUBSCRIPTION_CONFIG_FIELDS: tuple[str, ...] = (
    "owner_id",
    "name",
    "description",
    "url",
    "secret",
    "events",
    "method",
    "headers",
    "timeout_ms",
    "retry_config",
    "filters",
    "is_active",
    "disabled_reason",
    "updated_at",
    "deleted_at",
)


class EventStore(ABC):
    """Abstract store for subscriptions, delivery attempts and inbound events."""

    async def initialize(self) -> None:  # noqa: B027
        """Create tables or connections. No-op by default."""

    async def close(self) -> None:  # noqa: B027
        """Release resources. No-op by default."""

    async def __aenter__(self) -> EventStore:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # Subscriptions

    @abstractmethod
    async def insert_subscription(self, subscription: WebhookSubscription) -> None:
        """Store a new subscription."""

    @abstractmethod
    async def get_subscription(self, subscription_id: str) -> WebhookSubscription | None:
        """Fetch a subscription by id, including soft-deleted ones."""

    @abstractmethod
    async def list_subscriptions(
        self,
        owner_id: str | None = None,
        include_inactive: bool = True,
        include_deleted: bool = False,
        limit: int = 100,
    ) -> list[WebhookSubscription]:
        """List subscriptions, oldest first."""

    @abstractmethod
    async def save_subscription_config(self, subscription: WebhookSubscription) -> None:
        """Write the configuration fields of an existing subscription.

        Counter fields are never written here.
        """

    @abstractmethod
    async def set_subscription_active(
        self,
        subscription_id: str,
        active: bool,
        reason: str | None,
        at: datetime,
    ) -> bool:
        """Flip the active flag. Activation also clears the failure streak.

        Returns:
            True if a non-deleted subscription was updated.
        """

    @abstractmethod
    async def list_active_subscriptions_for_event(
        self, event_type: str
    ) -> list[WebhookSubscription]:
        """Active, non-deleted subscriptions with a pattern selecting ``event_type``.

        Implementations narrow candidates with an index on the pattern's
        leading segment before applying the matcher.
        """

    @abstractmethod
    async def record_delivery_result(
        self,
        subscription_id: str,
        delivered: bool,
        at: datetime,
        response_time_ms: int | None = None,
        reopened: bool = False,
    ) -> WebhookSubscription | None:
        """Atomically bump counters for a logical delivery reaching a final state.

        A ``reopened`` delivery was already counted as failed. Its new outcome
        never moves ``total_deliveries``; success converts the earlier failure.

        Returns:
            The subscription after the update, or None if it no longer exists.
        """

    # Delivery attempts

    @abstractmethod
    async def insert_delivery(self, delivery: WebhookDelivery) -> None:
        """Store a new attempt record."""

    @abstractmethod
    async def update_delivery(self, delivery: WebhookDelivery) -> None:
        """Overwrite an attempt record."""

    @abstractmethod
    async def schedule_retry(
        self, current: WebhookDelivery, next_attempt: WebhookDelivery
    ) -> None:
        """Record a retrying attempt and insert its successor as one write.

        Raises:
            StorageError: If either write fails; neither is applied.
        """

    @abstractmethod
    async def get_delivery(self, delivery_id: str) -> WebhookDelivery | None:
        """Fetch an attempt by id."""

    @abstractmethod
    async def list_deliveries(
        self,
        subscription_id: str,
        status: str | None = None,
        limit: int = 50,
    ) -> list[WebhookDelivery]:
        """Attempts for a subscription, newest first."""

    @abstractmethod
    async def list_chain(self, chain_id: str) -> list[WebhookDelivery]:
        """Every attempt of one logical delivery, in attempt order."""

    @abstractmethod
    async def claim_delivery(
        self,
        delivery_id: str,
        at: datetime,
        stale_before: datetime,
    ) -> WebhookDelivery | None:
        """Take a pending attempt for execution.

        Succeeds only if the attempt is still pending and either unclaimed or
        claimed before ``stale_before``.

        Returns:
            The claimed attempt, or None if another worker holds it.
        """

    @abstractmethod
    async def due_deliveries(
        self,
        now: datetime,
        stale_before: datetime,
        limit: int = 100,
    ) -> list[WebhookDelivery]:
        """Pending attempts scheduled at or before ``now`` that are claimable."""

    # Inbound events

    @abstractmethod
    async def insert_inbound(self, event: InboundEvent) -> None:
        """Insert a new inbound event.

        Raises:
            DuplicateEvent: If a row with the same external id already exists.
        """

    @abstractmethod
    async def get_inbound(self, event_id: str) -> InboundEvent | None:
        """Fetch an inbound event by internal id."""

    @abstractmethod
    async def get_inbound_by_external_id(self, external_event_id: str) -> InboundEvent | None:
        """Fetch an inbound event by the provider's idempotency key."""

    @abstractmethod
    async def claim_inbound(
        self,
        event_id: str,
        at: datetime,
        stale_before: datetime,
    ) -> InboundEvent | None:
        """Move an event to processing and count the attempt.

        Claimable states: pending, retrying with ``next_retry_at <= at``, and
        processing with ``last_processing_attempt < stale_before``.

        Returns:
            The claimed event, or None if it is not claimable.
        """

    @abstractmethod
    async def finish_inbound(self, event: InboundEvent) -> bool:
        """Write the outcome of a processing attempt.

        Only applies while the stored row is still processing under the same
        attempt number, so a worker whose claim went stale cannot overwrite
        a newer attempt.

        Returns:
            True if the outcome was written.
        """

    @abstractmethod
    async def due_inbound(
        self,
        now: datetime,
        stale_before: datetime,
        limit: int = 100,
    ) -> list[InboundEvent]:
        """Events that ``claim_inbound`` would accept at ``now``."""
