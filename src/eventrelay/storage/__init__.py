"""Persistence for subscriptions, delivery attempts and inbound events."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import SUBSCRIPTION_CONFIG_FIELDS, EventStore
from .memory import InMemoryEventStore
from .sql import SQLEventStore

if TYPE_CHECKING:
    from eventrelay.config import Settings


def create_store(settings: Settings) -> EventStore:
    """Build the store selected by ``settings.storage_backend``."""
    if settings.storage_backend == "memory":
        return InMemoryEventStore()
    return SQLEventStore(settings.database_url, echo=settings.database_echo)


__all__ = [
    "EventStore",
    "InMemoryEventStore",
    "SQLEventStore",
    "SUBSCRIPTION_CONFIG_FIELDS",
    "create_store",
]
