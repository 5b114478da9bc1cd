"""EventRelay data models."""

from .base import generate_id, utcnow
from .delivery import (
    TERMINAL_DELIVERY_STATUSES,
    DeliveryStatus,
    WebhookDelivery,
)
from .event import TEST_EVENT_TYPE, DomainEvent, build_body
from .inbound import (
    TERMINAL_INBOUND_STATUSES,
    AdmitResult,
    InboundEnvelope,
    InboundEvent,
    InboundStatus,
    ProcessingResult,
)
from .subscription import (
    COUNTER_FIELDS,
    RESERVED_HEADERS,
    HttpMethod,
    SubscriptionFilters,
    SubscriptionStats,
    WebhookSubscription,
)

__all__ = [
    "AdmitResult",
    "COUNTER_FIELDS",
    "DeliveryStatus",
    "DomainEvent",
    "HttpMethod",
    "InboundEnvelope",
    "InboundEvent",
    "InboundStatus",
    "ProcessingResult",
    "RESERVED_HEADERS",
    "SubscriptionFilters",
    "SubscriptionStats",
    "TERMINAL_DELIVERY_STATUSES",
    "TERMINAL_INBOUND_STATUSES",
    "TEST_EVENT_TYPE",
    "WebhookDelivery",
    "WebhookSubscription",
    "build_body",
    "generate_id",
    "utcnow",
]
