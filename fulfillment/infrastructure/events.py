import asyncio
import inspect
from collections import defaultdict

from fulfillment.application.ports import EventHandler
from fulfillment.domain.events import ALL_EVENTS
from fulfillment.domain.models import utcnow
from shared.core.logging_config import get_logger

logger = get_logger(__name__)


class InProcessEventBus:
    """At-most-once, fire-and-forget dispatch of named domain events.

    Handlers receive ``(event_name, payload)`` and may be plain functions or
    coroutines. Each handler runs in its own task; a failing handler is
    logged and does not affect the emitter or the other handlers.
    """

    def __init__(self):
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._once: dict[str, list[EventHandler]] = defaultdict(list)
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        self._handlers[event_name].append(handler)

    def once(self, event_name: str, handler: EventHandler) -> None:
        self._once[event_name].append(handler)

    def unsubscribe(self, event_name: str, handler: EventHandler) -> None:
        for registry in (self._handlers, self._once):
            if handler in registry.get(event_name, []):
                registry[event_name].remove(handler)

    def emit(self, event_name: str, payload: dict) -> None:
        handlers = [
            *self._handlers.get(event_name, []),
            *self._once.pop(event_name, []),
            *self._handlers.get(ALL_EVENTS, []),
        ]
        if not handlers:
            return
        payload = dict(payload)
        payload.setdefault("timestamp", utcnow())
        logger.debug(f"Dispatching {event_name} to {len(handlers)} handler(s)")

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            for handler in handlers:
                self._call_sync(event_name, handler, payload)
            return

        for handler in handlers:
            task = asyncio.create_task(self._call(event_name, handler, payload))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for every handler task started so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _call(self, event_name: str, handler: EventHandler, payload: dict) -> None:
        try:
            result = handler(event_name, payload)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"Handler for {event_name} failed")

    def _call_sync(self, event_name: str, handler: EventHandler, payload: dict) -> None:
        try:
            result = handler(event_name, payload)
            if inspect.iscoroutine(result):
                # No loop to await on
                result.close()
                logger.warning(f"Async handler for {event_name} skipped outside an event loop")
        except Exception:
            logger.exception(f"Handler for {event_name} failed")
