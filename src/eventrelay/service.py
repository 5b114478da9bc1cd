"""EventRelay service: the composed outbound and inbound engine.

Example:
    ```python
    from eventrelay import DomainEvent, EventRelayService

    async with EventRelayService.create() as relay:
        sub = await relay.registry.create(
            owner_id="org_1",
            name="Billing",
            url="https://example.com/hooks",
            events=["invoice.*"],
        )
        relay.start()
        await relay.publish(DomainEvent(type="invoice.paid", data={"id": "in_1"}))
    ```
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx

from .cache import TTLCache
from .clock import Clock, SystemClock
from .config import Settings
from .dispatcher import DeliveryDispatcher
from .handlers import Handler, HandlerRegistry
from .idempotency import IdempotencyStore
from .inbound import InboundEventProcessor
from .models import DomainEvent, InboundEvent, WebhookDelivery
from .registry import WebhookSubscriptionRegistry
from .retry import RetryPolicy
from .signing import SignatureCodec
from .storage import EventStore, create_store
from .workers import PollingWorker


@dataclass
class EventRelayService:
    """Wires storage, registry, dispatcher, inbound processor and workers.

    Attributes:
        settings: Configuration.
        store: Persistence backend.
        registry: Subscription CRUD.
        dispatcher: Outbound delivery engine.
        processor: Inbound event processor.
        handlers: Business handlers for inbound events, by event type.
    """

    settings: Settings
    store: EventStore
    registry: WebhookSubscriptionRegistry
    dispatcher: DeliveryDispatcher
    processor: InboundEventProcessor
    handlers: HandlerRegistry | None = None

    _workers: list[PollingWorker] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self) -> None:
        interval = self.settings.poll_interval_seconds
        batch = self.settings.poll_batch_size
        self._workers = [
            PollingWorker("deliveries", lambda: self.dispatcher.process_due(batch), interval),
            PollingWorker("inbound", lambda: self.processor.process_due(batch), interval),
        ]
        self.dispatcher.set_enqueue_callback(self._workers[0].wake)

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        handler: Handler | None = None,
        store: EventStore | None = None,
        client: httpx.AsyncClient | None = None,
        clock: Clock | None = None,
    ) -> EventRelayService:
        """Create a service with default dependencies.

        Args:
            settings: Optional settings. Uses defaults if None.
            handler: Business handler for inbound events. Defaults to an
                empty HandlerRegistry that acknowledges everything.
            store: Persistence override. Defaults to ``create_store(settings)``.
            client: HTTP client override for outbound deliveries.
            clock: Time source override.
        """
        if settings is None:
            settings = Settings()
        clock = clock or SystemClock()
        store = store or create_store(settings)
        handlers = handler if isinstance(handler, HandlerRegistry) else None
        if handler is None:
            handlers = HandlerRegistry()
            handler = handlers

        inbound = settings.inbound
        codec = SignatureCodec(inbound.signature_tolerance_seconds, clock=clock)
        gate = IdempotencyStore(
            store,
            cache=TTLCache(ttl_seconds=inbound.result_cache_ttl_seconds, clock=clock),
            clock=clock,
        )

        return cls(
            settings=settings,
            store=store,
            registry=WebhookSubscriptionRegistry(store, defaults=settings.delivery, clock=clock),
            dispatcher=DeliveryDispatcher(
                store,
                client=client,
                defaults=settings.delivery,
                codec=SignatureCodec(clock=clock),
                clock=clock,
            ),
            processor=InboundEventProcessor(
                store,
                handler,
                retry_policy=RetryPolicy(
                    max_attempts=inbound.max_attempts,
                    initial_delay_ms=inbound.initial_delay_ms,
                    backoff_multiplier=inbound.backoff_multiplier,
                    max_delay_ms=inbound.max_delay_ms,
                ),
                signing_secret=inbound.signing_secret,
                codec=codec,
                idempotency=gate,
                clock=clock,
                lease_seconds=inbound.processing_lease_seconds,
                process_inline=inbound.process_inline,
            ),
            handlers=handlers,
        )

    async def initialize(self) -> None:
        """Initialize the service (storage tables, etc.)."""
        await self.store.initialize()

    def start(self) -> None:
        """Start the background delivery and inbound workers."""
        for worker in self._workers:
            worker.start()

    async def stop(self) -> None:
        for worker in self._workers:
            await worker.stop()

    async def close(self) -> None:
        """Stop workers and release resources."""
        await self.stop()
        await self.dispatcher.close()
        await self.store.close()

    async def __aenter__(self) -> EventRelayService:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @property
    def workers(self) -> list[PollingWorker]:
        return list(self._workers)

    async def publish(self, event: DomainEvent) -> list[WebhookDelivery]:
        """Fan an event out to subscribers. Delivery happens in the background."""
        return await self.dispatcher.dispatch(event)

    async def inbound_status(self, external_event_id: str) -> InboundEvent | None:
        return await self.processor.lookup(external_event_id)


__all__ = ["EventRelayService"]
