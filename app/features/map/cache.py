import asyncio
import time
from typing import Awaitable, Callable, TypeVar

from cachetools import TTLCache

from app.core.types import UserId
from app.features.map.entities import MapParams, MapPin
from app.utils import get_logger

log = get_logger(__name__)
T = TypeVar("T")

Clock = Callable[[], float]


def map_signature(params: MapParams) -> str:
    """The filter signature of a map: mode, categories, city, followed users, save tags and (rounded) bounds."""
    parts = [
        params.filter_mode,
        ",".join(sorted(params.selected_categories)),
        params.current_city or "",
        ",".join(str(user_id) for user_id in params.selected_followed_user_ids),
        ",".join(params.selected_save_tags),
    ]
    bounds = params.map_bounds
    if bounds is not None:
        parts.append(f"{bounds.north:.4f},{bounds.south:.4f},{bounds.east:.4f},{bounds.west:.4f}")
    return "|".join(parts)


def map_cache_key(user_id: UserId, params: MapParams) -> str:
    # Saved/following maps depend on who is asking, so the caller is part of every key
    return f"{user_id}:{map_signature(params)}"


class MapCache:
    """Aggregated maps by cache key. An entry is served while it is younger than `ttl` seconds."""

    def __init__(self, ttl: float, max_entries: int = 1024, clock: Clock = time.monotonic):
        self._entries: TTLCache[str, list[MapPin]] = TTLCache(maxsize=max_entries, ttl=ttl, timer=clock)

    def get(self, key: str) -> list[MapPin] | None:
        return self._entries.get(key)

    def set(self, key: str, pins: list[MapPin]) -> None:
        self._entries[key] = pins

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RequestCoalescer:
    """
    Shares one in-flight fetch between identical concurrent requests.

    A request joins the running fetch with the same key for as long as that fetch is running, however long it takes.
    The entry is dropped as soon as the fetch finishes, successful or not, so later requests start fresh (and are
    answered by the map cache when the fetch succeeded).
    """

    def __init__(self):
        self._in_flight: dict[str, asyncio.Task] = {}

    async def run(self, key: str, fetch: Callable[[], Awaitable[T]]) -> T:
        in_flight = self._in_flight.get(key)
        if in_flight is not None and not in_flight.done():
            log.debug("Joining in-flight fetch for %s", key)
            return await asyncio.shield(in_flight)

        task: asyncio.Task[T] = asyncio.ensure_future(fetch())
        self._in_flight[key] = task

        def forget(_task: asyncio.Task) -> None:
            if self._in_flight.get(key) is task:
                del self._in_flight[key]

        task.add_done_callback(forget)
        return await asyncio.shield(task)

    def in_flight(self, key: str) -> bool:
        return key in self._in_flight
