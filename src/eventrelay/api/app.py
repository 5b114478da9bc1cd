"""FastAPI application for EventRelay."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from eventrelay.config import Settings
from eventrelay.exceptions import (
    DuplicateEvent,
    EventRelayError,
    NotFoundError,
    SignatureInvalid,
    ValidationError,
)
from eventrelay.logging import configure_logging, get_logger
from eventrelay.service import EventRelayService

from .router import VERSION, router, set_service

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build, start and finally close the EventRelayService."""
    settings: Settings = app.state.settings

    configure_logging(level=settings.log_level, format=settings.log_format)
    logger.info(
        "Starting EventRelay API",
        env=settings.env,
        storage_backend=settings.storage_backend,
        log_level=settings.log_level,
    )

    service = EventRelayService.create(settings)
    await service.initialize()
    service.start()
    set_service(service)

    yield

    await service.close()
    set_service(None)
    logger.info("EventRelay API stopped")


def register_exception_handlers(app: FastAPI) -> None:
    """Map the EventRelay exception hierarchy to HTTP responses."""

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        """Handle validation errors with 400 status."""
        logger.warning(
            "Validation error", field=exc.field, error=exc.message, path=str(request.url)
        )
        return JSONResponse(status_code=400, content=exc.to_dict())

    @app.exception_handler(SignatureInvalid)
    async def signature_error_handler(request: Request, exc: SignatureInvalid) -> JSONResponse:
        """Reject unverifiable inbound requests with 400 status."""
        logger.warning("Signature rejected", error=exc.message, path=str(request.url))
        return JSONResponse(status_code=400, content=exc.to_dict())

    @app.exception_handler(NotFoundError)
    async def not_found_error_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        """Handle not found errors with 404 status."""
        logger.info(
            "Resource not found",
            resource_type=exc.resource_type,
            resource_id=exc.resource_id,
            path=str(request.url),
        )
        return JSONResponse(status_code=404, content=exc.to_dict())

    @app.exception_handler(DuplicateEvent)
    async def duplicate_event_handler(request: Request, exc: DuplicateEvent) -> JSONResponse:
        """Handle duplicate events with 409 status."""
        logger.info("Duplicate event", external_event_id=exc.external_event_id)
        return JSONResponse(status_code=409, content=exc.to_dict())

    @app.exception_handler(EventRelayError)
    async def eventrelay_error_handler(request: Request, exc: EventRelayError) -> JSONResponse:
        """Handle all other EventRelay errors with 500 status."""
        logger.error("EventRelay error", error=exc.message, code=exc.code, path=str(request.url))
        return JSONResponse(status_code=500, content=exc.to_dict())


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create a FastAPI application.

    Args:
        settings: Optional settings. Uses environment if None.

    Returns:
        Configured FastAPI application.

    Example:
        ```python
        from eventrelay.api import create_app

        app = create_app()
        # Run with: uvicorn eventrelay.api:app
        ```
    """
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="EventRelay",
        description="Signed webhook delivery and idempotent inbound event processing.",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings

    register_exception_handlers(app)
    app.include_router(router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
