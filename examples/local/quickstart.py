#!/usr/bin/env python3
"""In-process EventRelay demonstration.

Runs the outbound and inbound engines against an in-memory store, with a
fake receiver plugged into httpx so nothing leaves the process:

1. Register a subscription and publish an event that fails twice
2. Watch the retry chain drive it to delivery
3. Receive the same provider event twice; the handler runs once

Usage:
    python examples/local/quickstart.py
"""

import asyncio
import json

import httpx

from eventrelay import DomainEvent, EventRelayService, Settings
from eventrelay.clock import ManualClock, unix_seconds
from eventrelay.signing import sign
from eventrelay.storage import InMemoryEventStore

INBOUND_SECRET = "whsec_local_demo"


def flaky_receiver() -> httpx.MockTransport:
    """Answers 503 twice, then 200."""
    replies = iter([503, 503])

    def handle(request: httpx.Request) -> httpx.Response:
        status = next(replies, 200)
        print(f"    receiver got {request.headers['X-Event-Type']} -> {status}")
        return httpx.Response(status)

    return httpx.MockTransport(handle)


async def main() -> None:
    """Run the local demo."""
    print("=" * 60)
    print("EventRelay Local Demo")
    print("=" * 60)

    clock = ManualClock()
    settings = Settings(
        _env_file=None,
        storage_backend="memory",
        inbound={"signing_secret": INBOUND_SECRET},
    )
    relay = EventRelayService.create(
        settings,
        store=InMemoryEventStore(),
        client=httpx.AsyncClient(transport=flaky_receiver()),
        clock=clock,
    )

    async with relay:
        sub = await relay.registry.create(
            owner_id="org_demo",
            name="Billing receiver",
            url="https://billing.example.com/hooks",
            events=["invoice.*"],
        )
        print(f"\nSubscription {sub.id} listens for {sub.events}")

        [first] = await relay.publish(DomainEvent(type="invoice.paid", data={"id": "in_1"}))
        print("\nDelivering with backoff:")
        for _ in range(3):
            await relay.dispatcher.process_due()
            clock.advance(seconds=10)

        for attempt in await relay.store.list_chain(first.chain_id):
            print(f"  attempt {attempt.attempt_number}: {attempt.status}")
        stats = (await relay.registry.get(sub.id)).stats()
        print(f"  success rate: {stats.success_rate:.0%}")

        calls = []

        @relay.handlers.on("customer.*")
        async def on_customer(event_type: str, payload: dict) -> None:
            calls.append(payload)

        print("\nReceiving a provider event twice:")
        body = json.dumps({"id": "evt_1", "type": "customer.created", "data": {"id": "c1"}})
        timestamp = unix_seconds(clock.now())
        signature = sign(INBOUND_SECRET, timestamp, body)
        for _ in range(2):
            result = await relay.processor.receive(body, timestamp, signature)
            print(f"  status={result.status} duplicate={result.duplicate}")
        print(f"  handler calls: {len(calls)}")

    print(f"\n{'=' * 60}")
    print("Demo complete!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
