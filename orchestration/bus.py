"""Event bus - EventBusProtocol and InMemoryEventBus."""

import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

from .events import Event

EventHandler = Callable[[Event], Awaitable[None]]

logger = logging.getLogger(__name__)


class EventBusProtocol(Protocol):
    """Protocol for event bus implementations."""

    async def publish(self, event: Event) -> None:
        """Publish an event.

        Args:
            event: Event to publish
        """
        ...

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        """Subscribe a handler to an event name.

        Args:
            event_name: Event name to subscribe to
            handler: Async handler function
        """
        ...


class InMemoryEventBus(EventBusProtocol):
    """In-memory event bus. Handler failures are logged and never reach the publisher."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event_name, []).append(handler)

    async def publish(self, event: Event) -> None:
        """Publish an event to all subscribed handlers.

        Args:
            event: Event to publish
        """
        handlers = self._handlers.get(event.name, [])
        if not handlers:
            return

        logger.debug(
            f"[BUS] {event.name} for run {event.metadata.execution_id} "
            f"-> {len(handlers)} handler(s)"
        )

        for handler in handlers:
            try:
                await handler(event)
            except Exception as exc:
                logger.error(
                    f"❌ [BUS] Handler {handler!r} failed on {event.name}: {exc}",
                    exc_info=True,
                )
