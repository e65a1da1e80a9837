from __future__ import annotations

from typing import Awaitable, Callable, Dict, Optional

from wasession.core.EventTypes import EventKind, IncomingMessage, InboundEvent
from wasession.shared.log import get_logger

logger = get_logger(__name__)

# Type alias for handler functions
EventHandler = Callable[[InboundEvent], Awaitable[None]]


async def log_incoming_message(event: IncomingMessage) -> None:
    """Default message handler: nothing consumes chat messages, so log them."""
    logger.info(f"Received a message! {event.text}", extra={"jid": event.sender})


class EventDispatcher:
    """
    Routes inbound events from one connection to the handler registered for
    their kind.

    Events are awaited one at a time in arrival order; a slow handler stalls
    the ones behind it. A failing handler is logged and the next event is
    still delivered.
    """

    def __init__(self, message_handler: Optional[EventHandler] = None) -> None:
        self.handlers: Dict[EventKind, EventHandler] = {
            EventKind.MESSAGE: message_handler or log_incoming_message,
        }

    def on(self, kind: EventKind, handler: EventHandler) -> None:
        self.handlers[kind] = handler

    async def dispatch(self, event: InboundEvent) -> None:
        handler = self.handlers.get(event.kind)
        if handler is None:
            logger.warning(f"No handler registered for {event.kind.value} event {type(event).__name__}")
            return
        try:
            await handler(event)
        except Exception as e:
            logger.error(f"Handler for {type(event).__name__} failed: {e}")
