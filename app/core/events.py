"""In-process change notifications, published by write paths and consumed by live maps."""
from collections import defaultdict
from typing import Any, Callable, Literal

from app.utils import get_logger

log = get_logger(__name__)

EventName = Literal[
    "saved_location_insert",
    "saved_location_delete",
    "saved_place_insert",
    "saved_place_delete",
]
Handler = Callable[[EventName, Any], None]


class EventBus:
    def __init__(self):
        self._handlers: dict[EventName, list[Handler]] = defaultdict(list)

    def subscribe(self, event: EventName, handler: Handler) -> Callable[[], None]:
        """Register a handler for the event, returning a function that unregisters it."""
        self._handlers[event].append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers[event]:
                self._handlers[event].remove(handler)

        return unsubscribe

    def publish(self, event: EventName, payload: Any = None) -> None:
        for handler in list(self._handlers[event]):
            try:
                handler(event, payload)
            except Exception:
                # Subscriber errors never reach the publishing write
                log.exception("Event handler failed for %s", event)

    def subscriber_count(self, event: EventName) -> int:
        return len(self._handlers[event])


event_bus = EventBus()


def get_event_bus() -> EventBus:
    return event_bus
