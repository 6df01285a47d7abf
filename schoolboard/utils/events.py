from typing import Dict, List, Callable, Any
import asyncio
import logging

logger = logging.getLogger(__name__)

# Backend row changes, payload is a ChangeNotification dump
CHANGE_EVENT = "realtime.change"


class EventBus:
    """In-process fan out for async handlers."""

    def __init__(self):
        self._handlers: Dict[str, List[Callable]] = {}

    def subscribe(self, event_type: str, handler: Callable):
        if not asyncio.iscoroutinefunction(handler):
            raise TypeError(f"Event handler {getattr(handler, '__name__', handler)!r} must be a coroutine function")
        handlers = self._handlers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)

    def unsubscribe(self, event_type: str, handler: Callable):
        if handler in self._handlers.get(event_type, []):
            self._handlers[event_type].remove(handler)

    async def publish(self, event_type: str, data: Dict[str, Any]) -> int:
        handlers = list(self._handlers.get(event_type, []))
        if not handlers:
            return 0

        results = await asyncio.gather(*(handler(data) for handler in handlers), return_exceptions=True)
        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                logger.error(f"Error in event handler {handler.__name__}: {result}")
        return len(handlers)

event_bus = EventBus()
