"""Delivery attempt storage operations for the SQL event store."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError

from eventrelay.exceptions import StorageError
from eventrelay.models import WebhookDelivery

from .retry import db_retry
from .tables import DeliveryRow


def _claimable(stale_before: datetime) -> Any:
    return (DeliveryRow.status == "pending") & or_(
        DeliveryRow.claimed_at.is_(None),
        DeliveryRow.claimed_at < stale_before,
    )


class DeliveryMixin:
    """Mixin providing delivery attempt operations for SQLEventStore."""

    _session: Any
    _row_to_model: Any
    _model_to_values: Any

    @db_retry
    async def insert_delivery(self, delivery: WebhookDelivery) -> None:
        async with self._session() as session, session.begin():
            session.add(DeliveryRow(**self._model_to_values(delivery)))

    @db_retry
    async def update_delivery(self, delivery: WebhookDelivery) -> None:
        values = self._model_to_values(delivery)
        values.pop("id")
        async with self._session() as session, session.begin():
            await session.execute(
                update(DeliveryRow).where(DeliveryRow.id == delivery.id).values(**values)
            )

    @db_retry
    async def schedule_retry(
        self, current: WebhookDelivery, next_attempt: WebhookDelivery
    ) -> None:
        values = self._model_to_values(current)
        values.pop("id")
        try:
            async with self._session() as session, session.begin():
                result = await session.execute(
                    update(DeliveryRow)
                    .where(DeliveryRow.id == current.id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise StorageError(f"Delivery {current.id} does not exist")
                session.add(DeliveryRow(**self._model_to_values(next_attempt)))
        except IntegrityError as e:
            raise StorageError(f"Failed to schedule retry of {current.id}: {e}") from e

    @db_retry
    async def get_delivery(self, delivery_id: str) -> WebhookDelivery | None:
        async with self._session() as session:
            row = await session.get(DeliveryRow, delivery_id)
            return self._row_to_model(row, WebhookDelivery) if row else None

    @db_retry
    async def list_deliveries(
        self,
        subscription_id: str,
        status: str | None = None,
        limit: int = 50,
    ) -> list[WebhookDelivery]:
        stmt = (
            select(DeliveryRow)
            .where(DeliveryRow.subscription_id == subscription_id)
            .order_by(DeliveryRow.created_at.desc(), DeliveryRow.attempt_number.desc())
            .limit(limit)
        )
        if status is not None:
            stmt = stmt.where(DeliveryRow.status == status)

        async with self._session() as session:
            rows = (await session.scalars(stmt)).all()
            return [self._row_to_model(r, WebhookDelivery) for r in rows]

    @db_retry
    async def list_chain(self, chain_id: str) -> list[WebhookDelivery]:
        stmt = (
            select(DeliveryRow)
            .where(DeliveryRow.chain_id == chain_id)
            .order_by(DeliveryRow.attempt_number)
        )
        async with self._session() as session:
            rows = (await session.scalars(stmt)).all()
            return [self._row_to_model(r, WebhookDelivery) for r in rows]

    @db_retry
    async def claim_delivery(
        self,
        delivery_id: str,
        at: datetime,
        stale_before: datetime,
    ) -> WebhookDelivery | None:
        async with self._session() as session, session.begin():
            result = await session.execute(
                update(DeliveryRow)
                .where(DeliveryRow.id == delivery_id, _claimable(stale_before))
                .values(claimed_at=at)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None
            row = await session.get(DeliveryRow, delivery_id, populate_existing=True)
            return self._row_to_model(row, WebhookDelivery)

    @db_retry
    async def due_deliveries(
        self,
        now: datetime,
        stale_before: datetime,
        limit: int = 100,
    ) -> list[WebhookDelivery]:
        stmt = (
            select(DeliveryRow)
            .where(DeliveryRow.scheduled_at <= now, _claimable(stale_before))
            .order_by(DeliveryRow.scheduled_at)
            .limit(limit)
        )
        async with self._session() as session:
            rows = (await session.scalars(stmt)).all()
            return [self._row_to_model(r, WebhookDelivery) for r in rows]
