"""The inbound dedupe gate.

``admit`` is an insert-if-absent against the store's unique constraint on
the external event id. Losing the insert race is not an error: the loser
re-reads and returns the winner's row.

A TTL cache of terminal records sits in front of the store. It only ever
answers "already seen", so a cache miss or expiry can never let a duplicate
through; it just saves a round-trip for providers that redeliver eagerly.
"""

from __future__ import annotations

import logging

from .cache import TTLCache
from .clock import Clock, SystemClock
from .exceptions import DuplicateEvent, StorageError
from .models import AdmitResult, InboundEnvelope, InboundEvent
from .storage import EventStore

logger = logging.getLogger(__name__)


class IdempotencyStore:
    """Maps external event ids to their single stored record.

    Example:
        ```python
        gate = IdempotencyStore(store)
        result = await gate.admit(envelope)
        if result.is_new:
            ...  # process it
        else:
            ...  # short-circuit to result.record
        ```
    """

    def __init__(
        self,
        store: EventStore,
        cache: TTLCache[InboundEvent] | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._clock = clock or SystemClock()
        self._cache: TTLCache[InboundEvent] = (
            cache if cache is not None else TTLCache(ttl_seconds=0, clock=self._clock)
        )

    @property
    def cache(self) -> TTLCache[InboundEvent]:
        return self._cache

    async def admit(self, envelope: InboundEnvelope) -> AdmitResult:
        """Record the first sighting of an event, or return the existing record.

        Exactly one concurrent caller per external id observes ``is_new``.

        Raises:
            StorageError: If the store reports a duplicate it cannot produce.
        """
        external_id = envelope.external_event_id

        cached = self._cache.get(external_id)
        if cached is not None:
            logger.debug("Duplicate inbound event %s (cached)", external_id)
            return AdmitResult(is_new=False, record=cached, existing_record_id=cached.id)

        record = InboundEvent.from_envelope(envelope, self._clock.now())
        try:
            await self._store.insert_inbound(record)
        except DuplicateEvent as e:
            existing = await self._store.get_inbound_by_external_id(external_id)
            if existing is None:
                raise StorageError(
                    f"Inbound event {external_id} reported as duplicate but not found"
                ) from e
            logger.info("Duplicate inbound event %s (status=%s)", external_id, existing.status)
            self.remember(existing)
            return AdmitResult(is_new=False, record=existing, existing_record_id=existing.id)

        logger.info("Admitted inbound event %s (%s)", external_id, envelope.event_type)
        return AdmitResult(is_new=True, record=record)

    async def lookup(self, external_event_id: str) -> InboundEvent | None:
        """Return the stored record for an external id, if any."""
        cached = self._cache.get(external_event_id)
        if cached is not None:
            return cached
        record = await self._store.get_inbound_by_external_id(external_event_id)
        if record is not None:
            self.remember(record)
        return record

    def remember(self, record: InboundEvent) -> None:
        """Cache a record once it has reached a terminal status."""
        if record.is_terminal:
            self._cache.set(record.external_event_id, record)

    def forget(self, external_event_id: str) -> None:
        self._cache.invalidate(external_event_id)
