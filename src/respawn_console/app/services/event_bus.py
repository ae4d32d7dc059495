"""In-process lifecycle event bus.

Every respawn lifecycle event goes through here. Listeners registered with
``on()`` are called synchronously; SSE clients subscribe a queue and drain it.
"""

import asyncio
from typing import Any, Callable

from respawn_console.app.services.logging_service import get_logger

logger = get_logger(__name__)

EventListener = Callable[[str, dict[str, Any]], None]


class EventBus:
    """Fan-out of ``(event, payload)`` pairs to listeners and subscriber queues."""

    def __init__(self) -> None:
        self._listeners: list[EventListener] = []
        self._queues: list[asyncio.Queue] = []

    def on(self, listener: EventListener) -> Callable[[], None]:
        """Register a listener. Returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def subscribe(self) -> asyncio.Queue:
        """Subscribe to all events. Returns queue to consume."""
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        try:
            self._queues.remove(queue)
        except ValueError:
            pass

    def emit(self, event: str, session_id: str, **fields: Any) -> None:
        """Publish an event. Payload is ``{"sessionId": ..., **fields}``."""
        payload = {"sessionId": session_id, **fields}
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception as e:
                logger.warning(f"Event listener failed for {event}: {e}")
        for queue in self._queues:
            queue.put_nowait((event, payload))


event_bus = EventBus()
