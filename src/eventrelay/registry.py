"""Webhook subscription registry.

CRUD over subscriptions for the surrounding application, plus the read
contract the dispatcher depends on (``active_for_event``). Configuration
edits never touch delivery counters; those belong to the dispatcher.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .clock import Clock, SystemClock
from .config import DeliveryDefaults
from .exceptions import NotFoundError, ValidationError
from .filters import ConditionEvaluator, SimpleConditionEvaluator
from .models import COUNTER_FIELDS, WebhookSubscription
from .retry import RetryPolicy
from .signing import generate_secret
from .storage import EventStore

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset(
    {
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
    }
)

_NESTED_FIELDS = ("retry_config", "filters")


def _as_validation_error(error: PydanticValidationError) -> ValidationError:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first["loc"]) or "subscription"
    return ValidationError(field, first["msg"])


class WebhookSubscriptionRegistry:
    """Create, read, update and soft-delete webhook subscriptions.

    Example:
        ```python
        registry = WebhookSubscriptionRegistry(store)
        sub = await registry.create(
            owner_id="org_1",
            name="Billing hooks",
            url="https://example.com/hooks",
            events=["invoice.*"],
        )
        await registry.deactivate(sub.id, reason="endpoint retired")
        ```
    """

    def __init__(
        self,
        store: EventStore,
        defaults: DeliveryDefaults | None = None,
        condition_evaluator: ConditionEvaluator | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._defaults = defaults or DeliveryDefaults()
        self._conditions = condition_evaluator or SimpleConditionEvaluator()
        self._clock = clock or SystemClock()

    def _default_retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self._defaults.max_attempts,
            initial_delay_ms=self._defaults.initial_delay_ms,
            backoff_multiplier=self._defaults.backoff_multiplier,
            max_delay_ms=self._defaults.max_delay_ms,
        )

    def _build(self, data: dict[str, Any]) -> WebhookSubscription:
        try:
            subscription = WebhookSubscription.model_validate(data)
        except PydanticValidationError as e:
            raise _as_validation_error(e) from e
        if subscription.filters and subscription.filters.condition:
            self._conditions.validate(subscription.filters.condition)
        return subscription

    async def create(
        self,
        owner_id: str,
        name: str,
        url: str,
        events: list[str],
        secret: str | None = None,
        generate_secret_if_missing: bool = True,
        description: str | None = None,
        method: str = "POST",
        headers: dict[str, str] | None = None,
        timeout_ms: int | None = None,
        retry_config: RetryPolicy | dict[str, Any] | None = None,
        filters: dict[str, Any] | None = None,
        is_active: bool = True,
    ) -> WebhookSubscription:
        """Register a subscription.

        A signing secret is generated unless one is given or
        ``generate_secret_if_missing`` is False (unsigned deliveries).

        Raises:
            ValidationError: If any field is invalid.
        """
        if secret is None and generate_secret_if_missing:
            secret = generate_secret()
        if retry_config is None:
            retry_config = self._default_retry_policy()
        elif isinstance(retry_config, dict):
            retry_config = {**self._default_retry_policy().model_dump(), **retry_config}
        now = self._clock.now()

        subscription = self._build(
            {
                "owner_id": owner_id,
                "name": name,
                "description": description,
                "url": url,
                "secret": secret,
                "events": events,
                "method": method,
                "headers": headers or {},
                "timeout_ms": timeout_ms if timeout_ms is not None else self._defaults.timeout_ms,
                "retry_config": retry_config,
                "filters": filters,
                "is_active": is_active,
                "created_at": now,
                "updated_at": now,
            }
        )
        await self._store.insert_subscription(subscription)
        logger.info(
            "Created subscription %s for %s (events=%s)",
            subscription.id,
            subscription.owner_id,
            subscription.events,
        )
        return subscription

    async def get(
        self, subscription_id: str, include_deleted: bool = False
    ) -> WebhookSubscription:
        """Fetch a subscription.

        Raises:
            NotFoundError: If it does not exist or was deleted.
        """
        subscription = await self._store.get_subscription(subscription_id)
        if subscription is None or (subscription.is_deleted and not include_deleted):
            raise NotFoundError("subscription", subscription_id)
        return subscription

    async def list(
        self,
        owner_id: str | None = None,
        include_inactive: bool = True,
        limit: int = 100,
    ) -> list[WebhookSubscription]:
        return await self._store.list_subscriptions(
            owner_id=owner_id, include_inactive=include_inactive, limit=limit
        )

    async def update(self, subscription_id: str, changes: dict[str, Any]) -> WebhookSubscription:
        """Apply configuration changes.

        ``retry_config`` and ``filters`` may be given partially; they are
        merged onto the current values.

        Raises:
            ValidationError: For unknown, counter or otherwise invalid fields.
            NotFoundError: If the subscription does not exist.
        """
        owned = sorted(set(changes) & COUNTER_FIELDS)
        if owned:
            raise ValidationError(owned[0], "delivery counters cannot be updated directly")
        unknown = sorted(set(changes) - UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(unknown[0], "field cannot be updated")

        current = await self.get(subscription_id)
        changed = ", ".join(sorted(changes))
        changes = dict(changes)
        activation = changes.pop("is_active", None)

        data = current.model_dump()
        for name in _NESTED_FIELDS:
            if name not in changes:
                continue
            value = changes.pop(name)
            if isinstance(value, BaseModel):
                value = value.model_dump()
            if isinstance(value, dict) and data[name]:
                data[name] = {**data[name], **value}
            else:
                data[name] = value
        data.update(changes)
        data["updated_at"] = self._clock.now()

        updated = self._build(data)
        await self._store.save_subscription_config(updated)
        logger.info("Updated subscription %s (%s)", subscription_id, changed)

        if activation is True and not current.is_active:
            return await self.activate(subscription_id)
        if activation is False and current.is_active:
            return await self.deactivate(subscription_id, reason="deactivated by owner")
        return updated

    async def activate(self, subscription_id: str) -> WebhookSubscription:
        """Re-enable deliveries and clear the consecutive failure streak."""
        await self.get(subscription_id)
        await self._store.set_subscription_active(subscription_id, True, None, self._clock.now())
        logger.info("Activated subscription %s", subscription_id)
        return await self.get(subscription_id)

    async def deactivate(
        self, subscription_id: str, reason: str | None = None
    ) -> WebhookSubscription:
        """Stop deliveries. Pending retries are failed when they come due."""
        await self.get(subscription_id)
        await self._store.set_subscription_active(
            subscription_id, False, reason, self._clock.now()
        )
        logger.info("Deactivated subscription %s: %s", subscription_id, reason)
        return await self.get(subscription_id)

    async def rotate_secret(self, subscription_id: str) -> WebhookSubscription:
        """Replace the signing secret. Returns the subscription with the new secret."""
        current = await self.get(subscription_id)
        updated = current.model_copy(
            update={"secret": generate_secret(), "updated_at": self._clock.now()}
        )
        await self._store.save_subscription_config(updated)
        logger.info("Rotated secret for subscription %s", subscription_id)
        return updated

    async def delete(self, subscription_id: str) -> None:
        """Soft delete. The subscription is deactivated and hidden from listings."""
        current = await self.get(subscription_id)
        now = self._clock.now()
        deleted = current.model_copy(
            update={
                "is_active": False,
                "disabled_reason": "deleted",
                "deleted_at": now,
                "updated_at": now,
            }
        )
        await self._store.save_subscription_config(deleted)
        logger.info("Deleted subscription %s", subscription_id)

    async def active_for_event(self, event_type: str) -> list[WebhookSubscription]:
        """Active subscriptions with a pattern that selects ``event_type``."""
        return await self._store.list_active_subscriptions_for_event(event_type)
