from app.core import config
from app.core.database.helpers import SessionFactory
from app.core.types import UserId
from app.features.map.cache import MapCache, RequestCoalescer, map_cache_key
from app.features.map.enrichment import PinEnricher
from app.features.map.entities import MapParams, MapPin
from app.features.map.merge import has_valid_coordinates, merge_candidates
from app.features.map.ranking import rank_by_score
from app.features.map.sources import FetchContext, get_source
from app.features.places.categories import normalize_categories
from app.utils import get_logger, utc_now

log = get_logger(__name__)


class MapFetchError(Exception):
    """Loading a map failed as a whole. Failures of single sub-queries never raise this."""


class MapStore:
    def __init__(
        self,
        session_factory: SessionFactory,
        cache: MapCache,
        coalescer: RequestCoalescer,
        popular_limit: int = config.MAP_POPULAR_LIMIT,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self.coalescer = coalescer
        self.popular_limit = popular_limit

    def get_cached_map(self, user_id: UserId, params: MapParams) -> list[MapPin] | None:
        return self.cache.get(map_cache_key(user_id, params))

    async def get_map(self, user_id: UserId, params: MapParams) -> list[MapPin]:
        """
        Get the de-duplicated list of pins for the given filters.

        Served from the cache while fresh; identical concurrent requests share one load. Raises MapFetchError if the
        load fails, in which case nothing is cached.
        """
        key = map_cache_key(user_id, params)
        cached = self.cache.get(key)
        if cached is not None:
            log.debug("Cache hit for %s", key)
            return cached
        return await self.coalescer.run(key, lambda: self._load(key, user_id, params))

    async def _load(self, key: str, user_id: UserId, params: MapParams) -> list[MapPin]:
        try:
            pins = await self._build_map(user_id, params)
        except Exception as e:
            log.exception("Failed to load %s map for %s", params.filter_mode, user_id)
            raise MapFetchError(str(e) or type(e).__name__) from e
        self.cache.set(key, pins)
        return pins

    async def _build_map(self, user_id: UserId, params: MapParams) -> list[MapPin]:
        ctx = FetchContext(user_id=user_id, params=params, now=utc_now())
        source = get_source(params.filter_mode, self.session_factory)
        batches = await source.fetch(ctx)
        candidates = merge_candidates(batches, accept=lambda pin: source.accepts(ctx, pin))

        if params.filter_mode == "popular":
            # Rank and cut first, then filter categories (the cut is over all categories)
            candidates = rank_by_score(candidates, self.popular_limit)
        categories = normalize_categories(params.selected_categories)
        if categories:
            candidates = [candidate for candidate in candidates if candidate.pin.category in categories]

        pins = [candidate.pin for candidate in candidates]
        await PinEnricher(self.session_factory).enrich(pins, params.filter_mode)
        pins = [pin for pin in pins if has_valid_coordinates(pin)]
        log.info("Loaded %d %s pins for %s", len(pins), params.filter_mode, user_id)
        return pins
