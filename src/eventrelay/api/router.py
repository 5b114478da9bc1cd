"""FastAPI router for EventRelay API endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from pydantic import ValidationError as PydanticValidationError

from eventrelay.exceptions import ValidationError
from eventrelay.models import DomainEvent
from eventrelay.service import EventRelayService
from eventrelay.signing import SIGNATURE_HEADER, TIMESTAMP_HEADER

from .schemas import (
    DeliveryListResponse,
    DeliveryResponse,
    HealthResponse,
    InboundEventResponse,
    PublishEventRequest,
    PublishEventResponse,
    SubscriptionCreateRequest,
    SubscriptionListResponse,
    SubscriptionResponse,
    SubscriptionUpdateRequest,
)

logger = logging.getLogger(__name__)

VERSION = "0.1.0"

router = APIRouter()

# Service instance (set by app lifespan)
_service: EventRelayService | None = None


def set_service(service: EventRelayService | None) -> None:
    """Set the global service instance."""
    global _service
    _service = service


async def get_service() -> EventRelayService:
    """Dependency to get the EventRelayService instance."""
    if _service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return _service


ServiceDep = Annotated[EventRelayService, Depends(get_service)]


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check() -> HealthResponse:
    """Check service health."""
    if _service is None:
        return HealthResponse(status="unhealthy", version=VERSION, storage_connected=False)
    return HealthResponse(
        status="healthy",
        version=VERSION,
        storage_connected=True,
        workers_running=[w.name for w in _service.workers if w.running],
    )


# Subscriptions


@router.post(
    "/webhooks",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["webhooks"],
)
async def create_webhook(
    request: SubscriptionCreateRequest,
    service: ServiceDep,
) -> SubscriptionResponse:
    """Register a webhook subscription.

    The response carries the signing secret; it is not returned again
    except by secret rotation.
    """
    subscription = await service.registry.create(
        owner_id=request.owner_id,
        name=request.name,
        description=request.description,
        url=request.url,
        events=request.events,
        secret=request.secret,
        generate_secret_if_missing=request.generate_secret,
        method=request.method,
        headers=request.headers,
        timeout_ms=request.timeout_ms,
        retry_config=(
            request.retry_config.model_dump(exclude_none=True) if request.retry_config else None
        ),
        filters=request.filters.model_dump() if request.filters else None,
        is_active=request.is_active,
    )
    return SubscriptionResponse.from_subscription(subscription, include_secret=True)


@router.get("/webhooks", response_model=SubscriptionListResponse, tags=["webhooks"])
async def list_webhooks(
    service: ServiceDep,
    owner_id: str | None = None,
    include_inactive: bool = True,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> SubscriptionListResponse:
    subscriptions = await service.registry.list(
        owner_id=owner_id, include_inactive=include_inactive, limit=limit
    )
    return SubscriptionListResponse(
        subscriptions=[SubscriptionResponse.from_subscription(s) for s in subscriptions],
        count=len(subscriptions),
    )


@router.get("/webhooks/{subscription_id}", response_model=SubscriptionResponse, tags=["webhooks"])
async def get_webhook(subscription_id: str, service: ServiceDep) -> SubscriptionResponse:
    subscription = await service.registry.get(subscription_id)
    return SubscriptionResponse.from_subscription(subscription)


@router.patch(
    "/webhooks/{subscription_id}", response_model=SubscriptionResponse, tags=["webhooks"]
)
async def update_webhook(
    subscription_id: str,
    request: SubscriptionUpdateRequest,
    service: ServiceDep,
) -> SubscriptionResponse:
    """Change subscription configuration. Counters cannot be changed here."""
    subscription = await service.registry.update(subscription_id, request.changes())
    return SubscriptionResponse.from_subscription(subscription)


@router.delete(
    "/webhooks/{subscription_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["webhooks"],
)
async def delete_webhook(subscription_id: str, service: ServiceDep) -> None:
    await service.registry.delete(subscription_id)


@router.post(
    "/webhooks/{subscription_id}/rotate-secret",
    response_model=SubscriptionResponse,
    tags=["webhooks"],
)
async def rotate_webhook_secret(subscription_id: str, service: ServiceDep) -> SubscriptionResponse:
    subscription = await service.registry.rotate_secret(subscription_id)
    return SubscriptionResponse.from_subscription(subscription, include_secret=True)


@router.post(
    "/webhooks/{subscription_id}/test",
    response_model=DeliveryResponse,
    tags=["webhooks"],
)
async def test_webhook(subscription_id: str, service: ServiceDep) -> DeliveryResponse:
    """Send a single signed test event and report the outcome."""
    delivery = await service.dispatcher.send_test(subscription_id)
    return DeliveryResponse.from_delivery(delivery)


@router.get(
    "/webhooks/{subscription_id}/deliveries",
    response_model=DeliveryListResponse,
    tags=["deliveries"],
)
async def list_webhook_deliveries(
    subscription_id: str,
    service: ServiceDep,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
) -> DeliveryListResponse:
    """Delivery attempts for a subscription, newest first."""
    await service.registry.get(subscription_id)
    deliveries = await service.dispatcher.list_deliveries(
        subscription_id, status=status_filter, limit=limit
    )
    return DeliveryListResponse(
        deliveries=[DeliveryResponse.from_delivery(d) for d in deliveries],
        count=len(deliveries),
    )


@router.post(
    "/deliveries/{delivery_id}/retry",
    response_model=DeliveryResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["deliveries"],
)
async def retry_delivery(delivery_id: str, service: ServiceDep) -> DeliveryResponse:
    """Schedule another attempt for a failed delivery with a retryable outcome."""
    attempt = await service.dispatcher.retry_delivery(delivery_id)
    return DeliveryResponse.from_delivery(attempt)


# Events


@router.post(
    "/events",
    response_model=PublishEventResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["events"],
)
async def publish_event(request: PublishEventRequest, service: ServiceDep) -> PublishEventResponse:
    """Fan a domain event out to matching subscriptions."""
    fields = request.model_dump(exclude_none=True)
    try:
        event = DomainEvent(**fields)
    except PydanticValidationError as e:
        raise ValidationError("type", e.errors()[0]["msg"]) from e

    deliveries = await service.publish(event)
    return PublishEventResponse(
        event_id=event.id,
        deliveries=[DeliveryResponse.from_delivery(d) for d in deliveries],
        count=len(deliveries),
    )


@router.post("/inbound", response_model=InboundEventResponse, tags=["inbound"])
async def receive_inbound(
    request: Request,
    service: ServiceDep,
    timestamp: Annotated[str | None, Header(alias=TIMESTAMP_HEADER)] = None,
    signature: Annotated[str | None, Header(alias=SIGNATURE_HEADER)] = None,
) -> InboundEventResponse:
    """Receive a signed provider event.

    Returns 200 for first sightings and duplicates alike; the body reports
    the stored processing status.
    """
    raw_body = await request.body()
    result = await service.processor.receive(raw_body, timestamp, signature)
    return InboundEventResponse.from_event(result.event, duplicate=result.duplicate)


@router.get(
    "/inbound/{external_event_id}", response_model=InboundEventResponse, tags=["inbound"]
)
async def get_inbound_event(external_event_id: str, service: ServiceDep) -> InboundEventResponse:
    event = await service.inbound_status(external_event_id)
    if event is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Inbound event not found: {external_event_id}",
        )
    return InboundEventResponse.from_event(event)
