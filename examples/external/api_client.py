#!/usr/bin/env python3
"""REST API client demonstration.

This example shows how to use the EventRelay REST API with httpx.
First, start the server in another terminal:

    EVENTRELAY_INBOUND__SIGNING_SECRET=whsec_demo uvicorn eventrelay.api:app --reload

Then run this script:

    python examples/external/api_client.py

The API provides:
    POST /api/v1/webhooks              - Register a subscription
    POST /api/v1/webhooks/{id}/test    - Send a signed test event
    POST /api/v1/events                - Publish a domain event
    POST /api/v1/inbound               - Receive a signed provider event
    GET  /api/v1/health                - Health check
"""

import asyncio
import json
import time

import httpx

from eventrelay.signing import SIGNATURE_HEADER, TIMESTAMP_HEADER, sign

BASE_URL = "http://localhost:8000/api/v1"
INBOUND_SECRET = "whsec_demo"


async def main() -> None:
    """Run the API client demo."""
    print("=" * 60)
    print("EventRelay REST API Demo")
    print("=" * 60)
    print(f"\nConnecting to {BASE_URL}...")

    async with httpx.AsyncClient(timeout=30.0) as client:
        print("\nChecking API health...")
        try:
            resp = await client.get(f"{BASE_URL}/health")
            resp.raise_for_status()
            health = resp.json()
            print(f"  Status: {health['status']}")
            print(f"  Version: {health['version']}")
            print(f"  Workers: {', '.join(health['workers_running']) or 'none'}")
        except httpx.ConnectError:
            print("\nCould not connect to API server!")
            print("   Start the server with: uvicorn eventrelay.api:app --reload")
            return

        # Outbound: subscribe, test, publish
        print("\nRegistering a subscription...")
        resp = await client.post(
            f"{BASE_URL}/webhooks",
            json={
                "owner_id": "org_demo",
                "name": "Demo receiver",
                "url": "https://httpbin.org/post",
                "events": ["invoice.*"],
                "retry_config": {"max_attempts": 4},
            },
        )
        resp.raise_for_status()
        subscription = resp.json()
        print(f"  ID: {subscription['id']}")
        print(f"  Secret (shown once): {subscription['secret'][:14]}...")

        resp = await client.post(f"{BASE_URL}/webhooks/{subscription['id']}/test")
        resp.raise_for_status()
        test = resp.json()
        print(f"\n  Test delivery: {test['status']} (HTTP {test['http_status']})")

        resp = await client.post(
            f"{BASE_URL}/events",
            json={"type": "invoice.paid", "data": {"id": "in_demo", "amount_paid": 4200}},
        )
        resp.raise_for_status()
        published = resp.json()
        print(f"\n  Published {published['event_id']} to {published['count']} subscription(s)")

        await asyncio.sleep(2)
        resp = await client.get(f"{BASE_URL}/webhooks/{subscription['id']}/deliveries")
        for delivery in resp.json()["deliveries"]:
            print(
                f"    {delivery['event_type']:14} attempt {delivery['attempt_number']}"
                f" -> {delivery['status']}"
            )

        # Inbound: the same provider event twice
        print("\nSending a signed provider event twice...")
        body = json.dumps({"id": "evt_demo_1", "type": "customer.created", "data": {"id": "c1"}})
        timestamp = int(time.time())
        headers = {
            "Content-Type": "application/json",
            TIMESTAMP_HEADER: str(timestamp),
            SIGNATURE_HEADER: sign(INBOUND_SECRET, timestamp, body),
        }
        for _ in range(2):
            resp = await client.post(f"{BASE_URL}/inbound", content=body, headers=headers)
            resp.raise_for_status()
            result = resp.json()
            print(f"  status={result['status']} duplicate={result['duplicate']}")

        await client.delete(f"{BASE_URL}/webhooks/{subscription['id']}")

    print(f"\n{'=' * 60}")
    print("API demo complete!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
