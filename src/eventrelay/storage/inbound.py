"""Inbound event storage operations for the SQL event store.

The unique constraint on ``external_event_id`` is the only synchronization
the inbound path relies on: concurrent inserts of the same id race in the
database and exactly one commits.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError

from eventrelay.exceptions import DuplicateEvent, StorageError
from eventrelay.models import InboundEvent

from .retry import db_retry
from .tables import InboundEventRow

logger = logging.getLogger(__name__)


def _claimable(at: datetime, stale_before: datetime) -> Any:
    row = InboundEventRow
    return or_(
        row.status == "pending",
        and_(
            row.status == "retrying",
            or_(row.next_retry_at.is_(None), row.next_retry_at <= at),
        ),
        and_(
            row.status == "processing",
            or_(
                row.last_processing_attempt.is_(None),
                row.last_processing_attempt < stale_before,
            ),
        ),
    )


class InboundMixin:
    """Mixin providing inbound event operations for SQLEventStore."""

    _session: Any
    _row_to_model: Any
    _model_to_values: Any

    async def insert_inbound(self, event: InboundEvent) -> None:
        try:
            await self._insert_inbound_row(event)
        except IntegrityError as e:
            existing = await self.get_inbound_by_external_id(event.external_event_id)
            if existing is None:
                raise StorageError(f"Failed to insert inbound event: {e}") from e
            raise DuplicateEvent(event.external_event_id, existing.id) from e

    @db_retry
    async def _insert_inbound_row(self, event: InboundEvent) -> None:
        async with self._session() as session, session.begin():
            session.add(InboundEventRow(**self._model_to_values(event)))

    @db_retry
    async def get_inbound(self, event_id: str) -> InboundEvent | None:
        async with self._session() as session:
            row = await session.get(InboundEventRow, event_id)
            return self._row_to_model(row, InboundEvent) if row else None

    @db_retry
    async def get_inbound_by_external_id(self, external_event_id: str) -> InboundEvent | None:
        stmt = select(InboundEventRow).where(
            InboundEventRow.external_event_id == external_event_id
        )
        async with self._session() as session:
            row = (await session.scalars(stmt)).first()
            return self._row_to_model(row, InboundEvent) if row else None

    @db_retry
    async def claim_inbound(
        self,
        event_id: str,
        at: datetime,
        stale_before: datetime,
    ) -> InboundEvent | None:
        async with self._session() as session, session.begin():
            result = await session.execute(
                update(InboundEventRow)
                .where(InboundEventRow.id == event_id, _claimable(at, stale_before))
                .values(
                    status="processing",
                    processing_attempts=InboundEventRow.processing_attempts + 1,
                    last_processing_attempt=at,
                    next_retry_at=None,
                    updated_at=at,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None
            row = await session.get(InboundEventRow, event_id, populate_existing=True)
            return self._row_to_model(row, InboundEvent)

    @db_retry
    async def finish_inbound(self, event: InboundEvent) -> bool:
        async with self._session() as session, session.begin():
            result = await session.execute(
                update(InboundEventRow)
                .where(
                    InboundEventRow.id == event.id,
                    InboundEventRow.status == "processing",
                    InboundEventRow.processing_attempts == event.processing_attempts,
                )
                .values(
                    status=event.status,
                    next_retry_at=event.next_retry_at,
                    processed_at=event.processed_at,
                    error_message=event.error_message,
                    updated_at=event.updated_at,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                logger.warning(
                    "Discarded outcome for %s: claim superseded", event.external_event_id
                )
                return False
            return True

    @db_retry
    async def due_inbound(
        self,
        now: datetime,
        stale_before: datetime,
        limit: int = 100,
    ) -> list[InboundEvent]:
        stmt = (
            select(InboundEventRow)
            .where(_claimable(now, stale_before))
            .order_by(InboundEventRow.received_at)
            .limit(limit)
        )
        async with self._session() as session:
            rows = (await session.scalars(stmt)).all()
            return [self._row_to_model(r, InboundEvent) for r in rows]
