"""Tests for the composed EventRelay service."""

import asyncio
import json

import pytest
import pytest_asyncio

from eventrelay.clock import unix_seconds
from eventrelay.handlers import HandlerRegistry
from eventrelay.models import DomainEvent
from eventrelay.service import EventRelayService
from eventrelay.signing import sign
from eventrelay.storage import InMemoryEventStore


@pytest_asyncio.fixture
async def service(test_settings, endpoint, clock):
    relay = EventRelayService.create(
        test_settings, store=InMemoryEventStore(), client=endpoint.client(), clock=clock
    )
    async with relay:
        yield relay


def signed_inbound(service, clock, external_event_id="evt_1", event_type="invoice.paid"):
    body = json.dumps({"id": external_event_id, "type": event_type, "data": {"id": "in_1"}})
    timestamp = unix_seconds(clock.now())
    signature = sign(service.settings.inbound.signing_secret, timestamp, body)
    return body, str(timestamp), signature


class TestCreate:
    def test_defaults_to_handler_registry(self, test_settings):
        relay = EventRelayService.create(test_settings, store=InMemoryEventStore())
        assert isinstance(relay.handlers, HandlerRegistry)
        assert [w.name for w in relay.workers] == ["deliveries", "inbound"]

    def test_custom_handler(self, test_settings):
        async def handler(event_type, payload):
            return None

        relay = EventRelayService.create(test_settings, handler=handler, store=InMemoryEventStore())
        assert relay.handlers is None

    def test_settings_flow_through(self, test_settings):
        test_settings.delivery.timeout_ms = 2500
        relay = EventRelayService.create(test_settings, store=InMemoryEventStore())
        assert relay.registry._defaults.timeout_ms == 2500


class TestOutbound:
    """Publishing through the service."""

    @pytest.mark.asyncio
    async def test_publish_then_worker_delivers(self, service, endpoint):
        sub = await service.registry.create(
            owner_id="org_1",
            name="Billing hooks",
            url="https://example.com/hooks",
            events=["invoice.*"],
        )

        [delivery] = await service.publish(DomainEvent(type="invoice.paid", data={"id": "in_1"}))
        deliveries_worker = service.workers[0]
        assert await deliveries_worker.run_once() == 1

        assert len(endpoint.requests) == 1
        stored = await service.store.get_delivery(delivery.id)
        assert stored.status == "delivered"
        assert stored.subscription_id == sub.id

    @pytest.mark.asyncio
    async def test_running_workers_deliver_on_publish(self, service, endpoint):
        await service.registry.create(
            owner_id="org_1",
            name="Billing hooks",
            url="https://example.com/hooks",
            events=["*"],
        )
        service.start()
        assert all(w.running for w in service.workers)

        await service.publish(DomainEvent(type="invoice.paid"))
        for _ in range(200):
            if endpoint.requests:
                break
            await asyncio.sleep(0.005)

        assert len(endpoint.requests) == 1
        await service.stop()
        assert not any(w.running for w in service.workers)


class TestInbound:
    """Receiving provider events through the service."""

    @pytest.mark.asyncio
    async def test_registered_handler_runs_once(self, service, clock):
        seen = []

        @service.handlers.on("invoice.*")
        async def on_invoice(event_type, payload):
            seen.append(payload)

        body, timestamp, signature = signed_inbound(service, clock)
        first = await service.processor.receive(body, timestamp, signature)
        second = await service.processor.receive(body, timestamp, signature)

        assert seen == [{"id": "in_1"}]
        assert first.status == "succeeded"
        assert second.duplicate

        status = await service.inbound_status("evt_1")
        assert status.status == "succeeded"
        assert await service.inbound_status("evt_unknown") is None

    @pytest.mark.asyncio
    async def test_inbound_worker_retries(self, service, clock):
        results = [False, None]

        @service.handlers.on("*")
        async def flaky(event_type, payload):
            return results.pop(0)

        body, timestamp, signature = signed_inbound(service, clock)
        first = await service.processor.receive(body, timestamp, signature)
        assert first.status == "retrying"

        clock.advance(seconds=1)
        assert await service.workers[1].run_once() == 1
        assert (await service.inbound_status("evt_1")).status == "succeeded"
