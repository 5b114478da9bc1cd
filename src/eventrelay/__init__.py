"""EventRelay: signed webhook delivery and idempotent inbound events.

Outbound, domain events fan out to webhook subscriptions whose patterns
match the event type. Each delivery is signed with the subscription's
secret and retried with exponential backoff on transient failures.

Inbound, signed provider events are verified, admitted exactly once by
their external id, and handed to business handlers with bounded retries.

Quick Start:
    from eventrelay import DomainEvent, EventRelayService

    async with EventRelayService.create() as relay:
        @relay.handlers.on("invoice.paid")
        async def on_paid(event_type, payload):
            ...

        relay.start()
        await relay.registry.create(
            owner_id="org_1",
            name="Billing hooks",
            url="https://example.com/hooks",
            events=["invoice.*"],
        )
        await relay.publish(DomainEvent(type="invoice.paid", data={"id": "in_1"}))
"""

__version__ = "0.1.0"

# Configuration
from .config import DeliveryDefaults, InboundDefaults, Settings, settings

# Engine
from .dispatcher import DeliveryDispatcher

# Exceptions
from .exceptions import (
    ConfigurationError,
    DeliveryError,
    DuplicateEvent,
    EventRelayError,
    HandlerError,
    NotFoundError,
    PermanentDeliveryError,
    RetriesExhausted,
    SignatureInvalid,
    StorageError,
    TransientDeliveryError,
    ValidationError,
)
from .handlers import HandlerRegistry
from .idempotency import IdempotencyStore
from .inbound import InboundEventProcessor

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
)
from .matching import matches, matches_any

# Models
from .models import (
    DeliveryStatus,
    DomainEvent,
    InboundEnvelope,
    InboundEvent,
    InboundStatus,
    WebhookDelivery,
    WebhookSubscription,
)
from .registry import WebhookSubscriptionRegistry
from .retry import DeliveryOutcome, FailureKind, RetryPolicy
from .service import EventRelayService
from .signing import SignatureCodec

__all__ = [
    "__version__",
    # Configuration
    "DeliveryDefaults",
    "InboundDefaults",
    "Settings",
    "settings",
    # Engine
    "DeliveryDispatcher",
    "EventRelayService",
    "HandlerRegistry",
    "IdempotencyStore",
    "InboundEventProcessor",
    "WebhookSubscriptionRegistry",
    # Primitives
    "DeliveryOutcome",
    "FailureKind",
    "RetryPolicy",
    "SignatureCodec",
    "matches",
    "matches_any",
    # Exceptions
    "ConfigurationError",
    "DeliveryError",
    "DuplicateEvent",
    "EventRelayError",
    "HandlerError",
    "NotFoundError",
    "PermanentDeliveryError",
    "RetriesExhausted",
    "SignatureInvalid",
    "StorageError",
    "TransientDeliveryError",
    "ValidationError",
    # Logging
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    # Models
    "DeliveryStatus",
    "DomainEvent",
    "InboundEnvelope",
    "InboundEvent",
    "InboundStatus",
    "WebhookDelivery",
    "WebhookSubscription",
]
