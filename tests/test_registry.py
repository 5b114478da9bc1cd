"""Tests for WebhookSubscriptionRegistry."""

import pytest

from eventrelay.config import DeliveryDefaults
from eventrelay.exceptions import NotFoundError, ValidationError
from eventrelay.registry import WebhookSubscriptionRegistry


async def create(registry, **overrides):
    fields = {
        "owner_id": "org_1",
        "name": "Billing hooks",
        "url": "https://example.com/hooks",
        "events": ["invoice.*"],
    }
    fields.update(overrides)
    return await registry.create(**fields)


class TestCreate:
    """Tests for registering subscriptions."""

    @pytest.mark.asyncio
    async def test_generates_secret(self, registry, clock):
        sub = await create(registry)

        assert sub.secret.startswith("whsec_")
        assert sub.is_active
        assert sub.created_at == clock.now()
        assert (await registry.get(sub.id)).secret == sub.secret

    @pytest.mark.asyncio
    async def test_explicit_secret_kept(self, registry):
        sub = await create(registry, secret="whsec_mine")
        assert sub.secret == "whsec_mine"

    @pytest.mark.asyncio
    async def test_unsigned_subscription(self, registry):
        sub = await create(registry, generate_secret_if_missing=False)
        assert sub.secret is None

    @pytest.mark.asyncio
    async def test_defaults_applied(self, store, clock):
        defaults = DeliveryDefaults(timeout_ms=5000, max_attempts=6, initial_delay_ms=250)
        registry = WebhookSubscriptionRegistry(store, defaults=defaults, clock=clock)

        sub = await create(registry)

        assert sub.timeout_ms == 5000
        assert sub.retry_config.max_attempts == 6
        assert sub.retry_config.initial_delay_ms == 250

    @pytest.mark.asyncio
    async def test_partial_retry_config_uses_configured_defaults(self, store, clock):
        defaults = DeliveryDefaults(initial_delay_ms=250, max_delay_ms=60_000)
        registry = WebhookSubscriptionRegistry(store, defaults=defaults, clock=clock)

        sub = await create(registry, retry_config={"max_attempts": 6})

        assert sub.retry_config.max_attempts == 6
        assert sub.retry_config.initial_delay_ms == 250
        assert sub.retry_config.max_delay_ms == 60_000

    @pytest.mark.asyncio
    async def test_explicit_retry_config(self, registry):
        sub = await create(registry, retry_config={"max_attempts": 1, "enabled": False})
        assert sub.retry_config.effective_max_attempts == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("overrides", "field"),
        [
            ({"url": "ftp://example.com"}, "url"),
            ({"name": "ab"}, "name"),
            ({"events": []}, "events"),
            ({"timeout_ms": 10}, "timeout_ms"),
            ({"headers": {"X-Signature": "x"}}, "headers"),
            ({"method": "DELETE"}, "method"),
        ],
    )
    async def test_invalid_fields(self, registry, overrides, field):
        with pytest.raises(ValidationError) as exc_info:
            await create(registry, **overrides)
        assert exc_info.value.field == field

    @pytest.mark.asyncio
    async def test_invalid_event_pattern(self, registry):
        with pytest.raises(ValidationError):
            await create(registry, events=["invoice..paid"])

    @pytest.mark.asyncio
    async def test_invalid_condition(self, registry):
        with pytest.raises(ValidationError) as exc_info:
            await create(registry, filters={"condition": "amount >>> 5"})
        assert exc_info.value.field == "filters.condition"

    @pytest.mark.asyncio
    async def test_nothing_stored_on_failure(self, registry, store):
        with pytest.raises(ValidationError):
            await create(registry, url="not a url")
        assert await store.list_subscriptions() == []


class TestRead:
    """Tests for get, list and the dispatcher lookup."""

    @pytest.mark.asyncio
    async def test_get_unknown(self, registry):
        with pytest.raises(NotFoundError) as exc_info:
            await registry.get("whk_missing")
        assert exc_info.value.resource_type == "subscription"

    @pytest.mark.asyncio
    async def test_list_by_owner(self, registry):
        await create(registry, owner_id="org_1")
        await create(registry, owner_id="org_2")
        inactive = await create(registry, owner_id="org_1", is_active=False)

        assert len(await registry.list()) == 3
        assert len(await registry.list(owner_id="org_1")) == 2
        active = await registry.list(owner_id="org_1", include_inactive=False)
        assert inactive.id not in [s.id for s in active]

    @pytest.mark.asyncio
    async def test_active_for_event(self, registry):
        invoices = await create(registry, events=["invoice.*"])
        everything = await create(registry, events=["*"])
        await create(registry, events=["customer.created"])
        await create(registry, events=["invoice.paid"], is_active=False)

        found = {s.id for s in await registry.active_for_event("invoice.paid")}

        assert found == {invoices.id, everything.id}


class TestUpdate:
    """Tests for configuration edits."""

    @pytest.mark.asyncio
    async def test_update_fields(self, registry, clock):
        sub = await create(registry)
        clock.advance(seconds=10)

        updated = await registry.update(
            sub.id, {"url": "https://example.org/new", "events": ["customer.*"]}
        )

        assert updated.url == "https://example.org/new"
        assert updated.events == ["customer.*"]
        assert updated.updated_at == clock.now()
        assert updated.created_at == sub.created_at
        assert (await registry.get(sub.id)).url == "https://example.org/new"

    @pytest.mark.asyncio
    async def test_counters_rejected(self, registry):
        sub = await create(registry)
        with pytest.raises(ValidationError) as exc_info:
            await registry.update(sub.id, {"total_deliveries": 0})
        assert exc_info.value.field == "total_deliveries"

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, registry):
        sub = await create(registry)
        with pytest.raises(ValidationError) as exc_info:
            await registry.update(sub.id, {"owner_id": "org_2"})
        assert exc_info.value.field == "owner_id"

    @pytest.mark.asyncio
    async def test_invalid_value_leaves_record_unchanged(self, registry):
        sub = await create(registry)
        with pytest.raises(ValidationError):
            await registry.update(sub.id, {"url": "nope"})
        assert (await registry.get(sub.id)).url == sub.url

    @pytest.mark.asyncio
    async def test_partial_retry_config_merged(self, registry):
        sub = await create(registry, retry_config={"max_attempts": 5, "initial_delay_ms": 200})

        updated = await registry.update(sub.id, {"retry_config": {"max_attempts": 2}})

        assert updated.retry_config.max_attempts == 2
        assert updated.retry_config.initial_delay_ms == 200

    @pytest.mark.asyncio
    async def test_filters_set_then_merged(self, registry):
        sub = await create(registry)
        first = await registry.update(sub.id, {"filters": {"sample_rate": 0.5}})
        assert first.filters.sample_rate == 0.5

        second = await registry.update(sub.id, {"filters": {"condition": "amount > 10"}})
        assert second.filters.sample_rate == 0.5
        assert second.filters.condition == "amount > 10"

    @pytest.mark.asyncio
    async def test_counters_survive_update(self, registry, store, clock):
        sub = await create(registry)
        await store.record_delivery_result(sub.id, True, clock.now(), 40)

        updated = await registry.update(sub.id, {"name": "Renamed hooks"})

        stored = await registry.get(sub.id)
        assert updated.name == "Renamed hooks"
        assert stored.total_deliveries == 1
        assert stored.successful_deliveries == 1

    @pytest.mark.asyncio
    async def test_is_active_routes_to_deactivate(self, registry):
        sub = await create(registry)
        updated = await registry.update(sub.id, {"is_active": False})
        assert not updated.is_active
        assert updated.disabled_reason == "deactivated by owner"


class TestLifecycle:
    """Tests for activation, secret rotation and deletion."""

    @pytest.mark.asyncio
    async def test_deactivate_and_activate(self, registry, store, clock):
        sub = await create(registry)
        await store.record_delivery_result(sub.id, False, clock.now())

        off = await registry.deactivate(sub.id, reason="endpoint retired")
        assert not off.is_active
        assert off.disabled_reason == "endpoint retired"
        assert await registry.active_for_event("invoice.paid") == []

        on = await registry.activate(sub.id)
        assert on.is_active
        assert on.disabled_reason is None
        assert on.consecutive_failures == 0
        assert on.failed_deliveries == 1

    @pytest.mark.asyncio
    async def test_rotate_secret(self, registry):
        sub = await create(registry)

        rotated = await registry.rotate_secret(sub.id)

        assert rotated.secret != sub.secret
        assert rotated.secret.startswith("whsec_")
        assert (await registry.get(sub.id)).secret == rotated.secret

    @pytest.mark.asyncio
    async def test_soft_delete(self, registry, store):
        sub = await create(registry)

        await registry.delete(sub.id)

        with pytest.raises(NotFoundError):
            await registry.get(sub.id)
        deleted = await registry.get(sub.id, include_deleted=True)
        assert deleted.deleted_at is not None
        assert not deleted.is_active
        assert await registry.list() == []
        assert await store.get_subscription(sub.id) is not None

    @pytest.mark.asyncio
    async def test_deleted_cannot_be_updated(self, registry):
        sub = await create(registry)
        await registry.delete(sub.id)
        with pytest.raises(NotFoundError):
            await registry.update(sub.id, {"name": "Again hooks"})
