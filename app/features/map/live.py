import asyncio
from typing import Any, Callable

from app.core import config
from app.core.events import EventBus
from app.core.types import UserId
from app.features.map.entities import MapLocationsState, MapParams
from app.features.map.map_store import MapFetchError, MapStore
from app.features.map.realtime import DebouncedRefresh
from app.utils import get_logger

log = get_logger(__name__)


class LiveMap:
    """
    Keeps one client's map up to date.

    Every parameter change, refetch() or debounced realtime event starts a load tagged with a new token. Only the
    load holding the latest token may touch the state, so a slow, superseded load can never overwrite newer pins.
    A failed load sets `error` and keeps the pins that were already showing.
    """

    def __init__(
        self,
        map_store: MapStore,
        user_id: UserId,
        bus: EventBus,
        on_change: Callable[[MapLocationsState], Any],
        debounce: float = config.MAP_REALTIME_DEBOUNCE_SECONDS,
        trigger_delay: float = 0.0,
    ):
        self.map_store = map_store
        self.user_id = user_id
        self.on_change = on_change
        self.trigger_delay = trigger_delay
        self.params: MapParams | None = None
        self.state = MapLocationsState(locations=[], loading=False, error=None)
        self._token = 0
        self._trigger: asyncio.TimerHandle | None = None
        self._loads: set[asyncio.Task] = set()
        self._closed = False
        self._refresh = DebouncedRefresh(bus, self.refetch, delay=debounce)

    def update(self, params: MapParams) -> None:
        if params == self.params:
            return
        self.params = params
        self._schedule()

    def refetch(self) -> None:
        if self.params is not None and not self._closed:
            self._schedule()

    def close(self) -> None:
        """Stop listening. Loads already running finish but their results are dropped."""
        self._closed = True
        if self._trigger is not None:
            self._trigger.cancel()
            self._trigger = None
        self._refresh.close()

    async def join(self) -> None:
        """Wait until the scheduled and running loads are done."""
        while self._trigger is not None or self._loads:
            if self._loads:
                await asyncio.gather(*self._loads, return_exceptions=True)
            else:
                await asyncio.sleep(self.trigger_delay or 0)

    def _schedule(self) -> None:
        if self._trigger is not None:
            self._trigger.cancel()
        self._trigger = asyncio.get_running_loop().call_later(self.trigger_delay, self._start)

    def _start(self) -> None:
        self._trigger = None
        if self.params is None:
            return
        self._token += 1
        load = asyncio.ensure_future(self._load(self._token, self.params))
        self._loads.add(load)
        load.add_done_callback(self._loads.discard)

    async def _load(self, token: int, params: MapParams) -> None:
        cached = self.map_store.get_cached_map(self.user_id, params)
        if cached is not None:
            # No loading state for cache hits
            self._apply(token, locations=cached, loading=False, error=None)
            return
        self._apply(token, loading=True, error=None)
        try:
            pins = await self.map_store.get_map(self.user_id, params)
        except MapFetchError as e:
            self._apply(token, loading=False, error=str(e))
            return
        self._apply(token, locations=pins, loading=False, error=None)

    def _apply(self, token: int, **changes: Any) -> None:
        if self._closed or token != self._token:
            log.debug("Dropping superseded map load %d", token)
            return
        self.state = self.state.model_copy(update=changes)
        self.on_change(self.state)
