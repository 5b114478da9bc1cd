"""Routing inbound events to business handlers.

A handler is an async callable ``(event_type, payload) -> bool | None``.
Returning ``False`` reports a retryable failure; raising ``HandlerError``
lets the handler say whether a retry can help. Any other exception is
treated as retryable.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .matching import matches, validate_pattern

logger = logging.getLogger(__name__)

Handler = Callable[[str, Any], Awaitable[bool | None]]


class HandlerRegistry:
    """Maps event-type patterns to handlers. The first registered match wins.

    Example:
        ```python
        handlers = HandlerRegistry()

        @handlers.on("invoice.*")
        async def handle_invoice(event_type: str, payload: dict) -> None:
            ...

        processor = InboundEventProcessor(store, handlers)
        ```
    """

    def __init__(self) -> None:
        self._routes: list[tuple[str, Handler]] = []

    def register(self, pattern: str, handler: Handler) -> None:
        self._routes.append((validate_pattern(pattern), handler))

    def on(self, pattern: str) -> Callable[[Handler], Handler]:
        """Decorator form of ``register``."""

        def decorator(handler: Handler) -> Handler:
            self.register(pattern, handler)
            return handler

        return decorator

    def resolve(self, event_type: str) -> Handler | None:
        for pattern, handler in self._routes:
            if matches(event_type, pattern):
                return handler
        return None

    async def __call__(self, event_type: str, payload: Any) -> bool | None:
        handler = self.resolve(event_type)
        if handler is None:
            logger.info("No handler for inbound event type %s; acknowledging", event_type)
            return True
        return await handler(event_type, payload)

    def __len__(self) -> int:
        return len(self._routes)
