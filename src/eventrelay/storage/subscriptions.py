"""Subscription storage operations for the SQL event store."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import case, delete, insert, select, update

from eventrelay.matching import event_prefixes, matches_any, pattern_prefix
from eventrelay.models import WebhookSubscription

from .base import SUBSCRIPTION_CONFIG_FIELDS
from .retry import db_retry
from .tables import SubscriptionPatternRow, SubscriptionRow


def _pattern_rows(subscription: WebhookSubscription) -> list[dict[str, str]]:
    return [
        {"subscription_id": subscription.id, "pattern": p, "prefix": pattern_prefix(p)}
        for p in subscription.events
    ]


class SubscriptionMixin:
    """Mixin providing subscription operations for SQLEventStore.

    This mixin expects the following from the base class:
    - _session() -> AsyncSession
    - _row_to_model(row, model_class)
    - _model_to_values(model, fields)
    """

    _session: Any
    _row_to_model: Any
    _model_to_values: Any

    @db_retry
    async def insert_subscription(self, subscription: WebhookSubscription) -> None:
        async with self._session() as session, session.begin():
            session.add(SubscriptionRow(**self._model_to_values(subscription)))
            await session.flush()
            await session.execute(insert(SubscriptionPatternRow), _pattern_rows(subscription))

    @db_retry
    async def get_subscription(self, subscription_id: str) -> WebhookSubscription | None:
        async with self._session() as session:
            row = await session.get(SubscriptionRow, subscription_id)
            return self._row_to_model(row, WebhookSubscription) if row else None

    @db_retry
    async def list_subscriptions(
        self,
        owner_id: str | None = None,
        include_inactive: bool = True,
        include_deleted: bool = False,
        limit: int = 100,
    ) -> list[WebhookSubscription]:
        stmt = select(SubscriptionRow).order_by(SubscriptionRow.created_at).limit(limit)
        if owner_id is not None:
            stmt = stmt.where(SubscriptionRow.owner_id == owner_id)
        if not include_inactive:
            stmt = stmt.where(SubscriptionRow.is_active.is_(True))
        if not include_deleted:
            stmt = stmt.where(SubscriptionRow.deleted_at.is_(None))

        async with self._session() as session:
            rows = (await session.scalars(stmt)).all()
            return [self._row_to_model(r, WebhookSubscription) for r in rows]

    @db_retry
    async def save_subscription_config(self, subscription: WebhookSubscription) -> None:
        values = self._model_to_values(subscription, SUBSCRIPTION_CONFIG_FIELDS)
        async with self._session() as session, session.begin():
            result = await session.execute(
                update(SubscriptionRow)
                .where(SubscriptionRow.id == subscription.id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return
            await session.execute(
                delete(SubscriptionPatternRow).where(
                    SubscriptionPatternRow.subscription_id == subscription.id
                )
            )
            await session.execute(insert(SubscriptionPatternRow), _pattern_rows(subscription))

    @db_retry
    async def set_subscription_active(
        self,
        subscription_id: str,
        active: bool,
        reason: str | None,
        at: datetime,
    ) -> bool:
        values: dict[str, Any] = {
            "is_active": active,
            "disabled_reason": None if active else reason,
            "updated_at": at,
        }
        if active:
            values["consecutive_failures"] = 0

        async with self._session() as session, session.begin():
            result = await session.execute(
                update(SubscriptionRow)
                .where(
                    SubscriptionRow.id == subscription_id,
                    SubscriptionRow.deleted_at.is_(None),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    @db_retry
    async def list_active_subscriptions_for_event(
        self, event_type: str
    ) -> list[WebhookSubscription]:
        stmt = (
            select(SubscriptionRow)
            .join(
                SubscriptionPatternRow,
                SubscriptionPatternRow.subscription_id == SubscriptionRow.id,
            )
            .where(
                SubscriptionPatternRow.prefix.in_(event_prefixes(event_type)),
                SubscriptionRow.is_active.is_(True),
                SubscriptionRow.deleted_at.is_(None),
            )
            .distinct()
            .order_by(SubscriptionRow.created_at)
        )
        async with self._session() as session:
            rows = (await session.scalars(stmt)).all()
            candidates = [self._row_to_model(r, WebhookSubscription) for r in rows]
        return [s for s in candidates if matches_any(event_type, s.events)]

    @db_retry
    async def record_delivery_result(
        self,
        subscription_id: str,
        delivered: bool,
        at: datetime,
        response_time_ms: int | None = None,
        reopened: bool = False,
    ) -> WebhookSubscription | None:
        row = SubscriptionRow
        values: dict[str, Any] = {}
        if not reopened:
            values["total_deliveries"] = row.total_deliveries + 1
        if delivered:
            values.update(
                successful_deliveries=row.successful_deliveries + 1,
                consecutive_failures=0,
                last_success_at=at,
                last_triggered_at=at,
            )
            if reopened:
                values["failed_deliveries"] = case(
                    (row.failed_deliveries > 0, row.failed_deliveries - 1), else_=0
                )
        elif reopened:
            values["last_failure_at"] = at
        else:
            values.update(
                failed_deliveries=row.failed_deliveries + 1,
                consecutive_failures=row.consecutive_failures + 1,
                last_failure_at=at,
            )
        if response_time_ms is not None:
            values.update(
                total_response_time_ms=row.total_response_time_ms + response_time_ms,
                timed_responses=row.timed_responses + 1,
            )

        async with self._session() as session, session.begin():
            result = await session.execute(
                update(row)
                .where(row.id == subscription_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return None
            updated = await session.get(row, subscription_id, populate_existing=True)
            return self._row_to_model(updated, WebhookSubscription)
