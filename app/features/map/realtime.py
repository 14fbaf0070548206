import asyncio
from typing import Any, Callable

from app.core.events import EventBus, EventName
from app.utils import get_logger

log = get_logger(__name__)

# Any save/unsave anywhere refreshes every live map, fresh cache entries still absorb the refresh
REFRESH_EVENTS: tuple[EventName, ...] = (
    "saved_location_insert",
    "saved_location_delete",
    "saved_place_insert",
    "saved_place_delete",
)


class DebouncedRefresh:
    """
    Calls `on_refresh` once things have been quiet for `delay` seconds after a save/unsave event.

    Holds at most one pending timer: every event re-arms it, close() cancels it and unsubscribes.
    Must be used from within a running event loop.
    """

    def __init__(self, bus: EventBus, on_refresh: Callable[[], None], delay: float):
        self.on_refresh = on_refresh
        self.delay = delay
        self._timer: asyncio.TimerHandle | None = None
        self._unsubscribers = [bus.subscribe(event, self._on_event) for event in REFRESH_EVENTS]

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def arm(self) -> None:
        self.cancel()
        self._timer = asyncio.get_running_loop().call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def close(self) -> None:
        self.cancel()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def _on_event(self, event: EventName, _payload: Any) -> None:
        log.debug("Got %s, refreshing in %ss", event, self.delay)
        self.arm()

    def _fire(self) -> None:
        self._timer = None
        self.on_refresh()
