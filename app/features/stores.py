from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db, get_session_factory
from app.core.database.helpers import SessionFactory
from app.core.events import EventBus, get_event_bus
from app.features.map.cache import MapCache, RequestCoalescer
from app.features.map.map_store import MapStore
from app.features.places.place_store import PlaceStore

# One cache and one coalescer per process, shared by every request
map_cache = MapCache(ttl=config.MAP_CACHE_TTL_SECONDS, max_entries=config.MAP_CACHE_MAX_ENTRIES)
request_coalescer = RequestCoalescer()


def get_map_cache() -> MapCache:
    return map_cache


def get_request_coalescer() -> RequestCoalescer:
    return request_coalescer


def get_map_store(
    session_factory: SessionFactory = Depends(get_session_factory),
    cache: MapCache = Depends(get_map_cache),
    coalescer: RequestCoalescer = Depends(get_request_coalescer),
):
    return MapStore(session_factory=session_factory, cache=cache, coalescer=coalescer)


def get_place_store(db: AsyncSession = Depends(get_db), bus: EventBus = Depends(get_event_bus)):
    return PlaceStore(db=db, bus=bus)
