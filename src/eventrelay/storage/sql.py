"""SQLAlchemy-backed event store.

Combines the subscription, delivery and inbound mixins over a shared async
engine. Works with any SQLAlchemy async driver; SQLite via aiosqlite is the
default.

Example:
    ```python
    from eventrelay.storage import SQLEventStore

    async with SQLEventStore("sqlite+aiosqlite:///./eventrelay.db") as store:
        await store.insert_subscription(subscription)
        matches = await store.list_active_subscriptions_for_event("invoice.paid")
    ```
"""

from __future__ import annotations

from .base import EventStore
from .deliveries import DeliveryMixin
from .engine import SQLStorageBase
from .inbound import InboundMixin
from .subscriptions import SubscriptionMixin


class SQLEventStore(SubscriptionMixin, DeliveryMixin, InboundMixin, SQLStorageBase, EventStore):
    """Durable EventStore on a relational database.

    This class combines functionality from multiple mixins:
    - SubscriptionMixin: subscription config, prefix lookup, atomic counters
    - DeliveryMixin: attempt records and conditional claims
    - InboundMixin: unique-constrained admission and processing claims
    """

    def __init__(self, database_url: str, echo: bool = False) -> None:
        SQLStorageBase.__init__(self, database_url, echo=echo)

    async def initialize(self) -> None:
        await SQLStorageBase.initialize(self)

    async def close(self) -> None:
        await SQLStorageBase.close(self)
