"""Tests for the inbound dedupe gate."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from eventrelay.cache import TTLCache
from eventrelay.exceptions import DuplicateEvent, StorageError
from eventrelay.idempotency import IdempotencyStore
from eventrelay.models import InboundEnvelope


def envelope(external_event_id: str = "evt_1") -> InboundEnvelope:
    return InboundEnvelope(
        external_event_id=external_event_id,
        event_type="invoice.paid",
        payload={"id": "in_1"},
    )


class TestAdmit:
    """Tests for IdempotencyStore.admit."""

    @pytest.mark.asyncio
    async def test_first_sighting_is_new(self, store, clock):
        gate = IdempotencyStore(store, clock=clock)

        result = await gate.admit(envelope())

        assert result.is_new
        assert result.existing_record_id is None
        assert result.record.status == "pending"
        assert result.record.received_at == clock.now()
        assert await store.get_inbound_by_external_id("evt_1") is not None

    @pytest.mark.asyncio
    async def test_second_sighting_returns_existing(self, store, clock):
        gate = IdempotencyStore(store, clock=clock)
        first = await gate.admit(envelope())

        second = await gate.admit(envelope())

        assert not second.is_new
        assert second.existing_record_id == first.record.id
        assert second.record.id == first.record.id

    @pytest.mark.asyncio
    async def test_concurrent_admits_have_one_winner(self, event_store, clock):
        """Exactly one concurrent caller sees is_new; all see the same record."""
        gate = IdempotencyStore(event_store, clock=clock)

        results = await asyncio.gather(*(gate.admit(envelope()) for _ in range(8)))

        assert sum(r.is_new for r in results) == 1
        assert len({r.record.id for r in results}) == 1

    @pytest.mark.asyncio
    async def test_distinct_ids_are_independent(self, store, clock):
        gate = IdempotencyStore(store, clock=clock)
        a = await gate.admit(envelope("evt_a"))
        b = await gate.admit(envelope("evt_b"))
        assert a.is_new and b.is_new
        assert a.record.id != b.record.id

    @pytest.mark.asyncio
    async def test_duplicate_without_row_is_storage_error(self, clock):
        """A store that reports a duplicate it cannot produce is broken."""
        broken = AsyncMock()
        broken.insert_inbound.side_effect = DuplicateEvent("evt_1")
        broken.get_inbound_by_external_id.return_value = None
        gate = IdempotencyStore(broken, clock=clock)

        with pytest.raises(StorageError):
            await gate.admit(envelope())


class TestResultCache:
    """Tests for the terminal-result cache in front of the store."""

    @pytest.mark.asyncio
    async def test_terminal_records_cached(self, store, clock):
        cache = TTLCache(ttl_seconds=60, clock=clock)
        gate = IdempotencyStore(store, cache=cache, clock=clock)
        record = (await gate.admit(envelope())).record

        record.status = "succeeded"
        gate.remember(record)

        store.get_inbound_by_external_id = AsyncMock()
        result = await gate.admit(envelope())
        assert not result.is_new
        assert result.record.status == "succeeded"
        store.get_inbound_by_external_id.assert_not_called()

    @pytest.mark.asyncio
    async def test_non_terminal_records_not_cached(self, store, clock):
        cache = TTLCache(ttl_seconds=60, clock=clock)
        gate = IdempotencyStore(store, cache=cache, clock=clock)
        record = (await gate.admit(envelope())).record

        gate.remember(record)
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_cache_expiry_falls_back_to_store(self, store, clock):
        """An expired cache entry never lets a duplicate through."""
        cache = TTLCache(ttl_seconds=60, clock=clock)
        gate = IdempotencyStore(store, cache=cache, clock=clock)
        record = (await gate.admit(envelope())).record
        record.status = "succeeded"
        gate.remember(record)

        clock.advance(seconds=120)
        result = await gate.admit(envelope())

        assert not result.is_new
        assert result.existing_record_id == record.id

    @pytest.mark.asyncio
    async def test_lookup_and_forget(self, store, clock):
        cache = TTLCache(ttl_seconds=60, clock=clock)
        gate = IdempotencyStore(store, cache=cache, clock=clock)
        assert await gate.lookup("evt_1") is None

        await gate.admit(envelope())
        found = await gate.lookup("evt_1")
        assert found.external_event_id == "evt_1"

        gate.forget("evt_1")
        assert cache.get("evt_1") is None
