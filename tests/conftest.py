"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
import pytest
import pytest_asyncio

from eventrelay.clock import ManualClock
from eventrelay.config import Settings
from eventrelay.dispatcher import DeliveryDispatcher
from eventrelay.registry import WebhookSubscriptionRegistry
from eventrelay.storage import EventStore, InMemoryEventStore, SQLEventStore

Reply = int | httpx.Response | Exception


class ScriptedEndpoint:
    """Fake webhook receiver plugged into httpx.MockTransport.

    Replies are consumed in order and the last one repeats. An int is a
    status code, an exception is raised as if the network failed.
    """

    def __init__(self, *replies: Reply) -> None:
        self.replies: list[Reply] = list(replies) or [200]
        self.requests: list[httpx.Request] = []

    def script(self, *replies: Reply) -> None:
        """Replace the remaining replies."""
        self.replies = list(replies)
        self.requests.clear()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        reply = self.replies[min(len(self.requests), len(self.replies)) - 1]
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, httpx.Response):
            return reply
        return httpx.Response(reply, text="ok" if reply < 300 else f"error {reply}")

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def clock() -> ManualClock:
    """A clock that only moves when the test advances it."""
    return ManualClock()


@pytest.fixture
def store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest_asyncio.fixture
async def sql_store(tmp_path) -> AsyncIterator[SQLEventStore]:
    """A SQLite-backed store in a fresh file per test."""
    sql = SQLEventStore(f"sqlite+aiosqlite:///{tmp_path / 'events.db'}")
    await sql.initialize()
    yield sql
    await sql.close()


@pytest_asyncio.fixture(params=["memory", "sql"])
async def event_store(request, tmp_path) -> AsyncIterator[EventStore]:
    """Each EventStore implementation in turn."""
    if request.param == "memory":
        yield InMemoryEventStore()
        return
    sql = SQLEventStore(f"sqlite+aiosqlite:///{tmp_path / 'events.db'}")
    await sql.initialize()
    yield sql
    await sql.close()


@pytest.fixture
def endpoint() -> ScriptedEndpoint:
    """A webhook receiver that answers 200 until scripted otherwise."""
    return ScriptedEndpoint()


@pytest.fixture
def registry(store: InMemoryEventStore, clock: ManualClock) -> WebhookSubscriptionRegistry:
    return WebhookSubscriptionRegistry(store, clock=clock)


@pytest.fixture
def dispatcher(
    store: InMemoryEventStore, endpoint: ScriptedEndpoint, clock: ManualClock
) -> DeliveryDispatcher:
    return DeliveryDispatcher(store, client=endpoint.client(), clock=clock)


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        env="test",
        storage_backend="memory",
        inbound={"signing_secret": "whsec_inbound_test"},
    )
