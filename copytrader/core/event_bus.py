"""Core event bus module for pub-sub notifications.

The engine publishes lifecycle notifications (position closed, partial
exit, cycle skipped, trading halted) here so that reporting layers can
follow engine activity without reaching into engine state.
"""
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable, Coroutine

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Coroutine[Any, Any, None]]

# Event names published by the engine
EVENT_POSITION_OPENED = "position_opened"
EVENT_POSITION_PARTIAL_EXIT = "position_partial_exit"
EVENT_POSITION_CLOSED = "position_closed"
EVENT_SIGNAL_REJECTED = "signal_rejected"
EVENT_CYCLE_SKIPPED = "cycle_skipped"
EVENT_TRADING_HALTED = "trading_halted"


class EventBus:
    """Simple async event bus implementing pub-sub pattern.

    A failing subscriber never affects the publisher or the other
    subscribers: handler exceptions are logged and dropped.

    Example:
        >>> bus = EventBus()
        >>> async def on_close(event):
        ...     print(event.reason)
        >>> bus.subscribe(EVENT_POSITION_CLOSED, on_close)
        >>> await bus.emit(EVENT_POSITION_CLOSED, close_event)
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, event: str, handler: Handler) -> None:
        """Subscribe a handler to an event.

        Args:
            event: Event name to subscribe to.
            handler: Async callable that receives event data.

        Raises:
            TypeError: If handler is not callable.
        """
        if not callable(handler):
            raise TypeError(f"Handler must be callable, got {type(handler)}")

        self._handlers[event].append(handler)

    def unsubscribe(self, event: str, handler: Handler) -> None:
        """Unsubscribe a handler from an event; unknown handlers are ignored."""
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def subscriber_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))

    async def emit(self, event: str, data: Any = None) -> None:
        """Emit an event to all subscribed handlers concurrently.

        Args:
            event: Event name to emit.
            data: Data to pass to handlers.
        """
        handlers = list(self._handlers.get(event, []))
        if not handlers:
            return
        await asyncio.gather(
            *(self._safe_call_handler(h, event, data) for h in handlers),
        )

    async def _safe_call_handler(self, handler: Handler, event: str, data: Any) -> None:
        try:
            await handler(data)
        except Exception:
            logger.exception(
                "Handler %s failed for event '%s'",
                getattr(handler, "__name__", repr(handler)), event,
            )
