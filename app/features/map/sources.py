"""
Per-mode query fan-out for the map.

Each filter mode has its own MapSource that knows which tables to read and how to turn rows into pin candidates.
Reads within a mode run concurrently; a failed read only loses its own rows.
"""
import asyncio
import math
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import sqlalchemy as sa

from app.core.database.helpers import SessionFactory, read, try_read, within_bounds
from app.core.database.models import (
    FollowRow,
    LocationRow,
    PostRow,
    ProfileRow,
    SavedPlaceRow,
    UserLocationShareRow,
    UserSavedLocationRow,
)
from app.core.types import UserId
from app.features.map.entities import Coordinates, FilterMode, MapParams, MapPin
from app.features.map.merge import PinCandidate, SourceBatches, SourceTag, collapse_saved_places
from app.features.map.ranking import popularity_score
from app.features.places.categories import normalize_category
from app.features.places.cities import cities_equal, cities_match, normalize_city, resolve_city
from app.utils import as_utc, get_logger

log = get_logger(__name__)

NEW_PIN_AGE = timedelta(days=7)


@dataclass
class FetchContext:
    user_id: UserId
    params: MapParams
    now: datetime

    @property
    def city(self) -> str | None:
        """The city filter, only used when there are no map bounds."""
        if self.params.map_bounds is not None:
            return None
        return normalize_city(self.params.current_city)

    def is_new(self, created_at: datetime | None) -> bool:
        return created_at is not None and self.now - created_at < NEW_PIN_AGE


class MapSource(ABC):
    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    @abstractmethod
    async def fetch(self, ctx: FetchContext) -> SourceBatches:
        pass

    def accepts(self, ctx: FetchContext, pin: MapPin) -> bool:
        """Bounds/city check applied again at merge time."""
        bounds = ctx.params.map_bounds
        if bounds is not None:
            return bounds.contains(pin.coordinates.lat, pin.coordinates.lng)
        return True


class SharedSource(MapSource):
    """Live location shares. Only the newest share per sharing user is kept."""

    async def fetch(self, ctx: FetchContext) -> SourceBatches:
        query = (
            sa.select(UserLocationShareRow, LocationRow)
            .select_from(UserLocationShareRow)
            .join(ProfileRow, ProfileRow.id == UserLocationShareRow.user_id)
            .join(LocationRow, LocationRow.id == UserLocationShareRow.location_id, isouter=True)
            .where(UserLocationShareRow.expires_at > ctx.now)
            .order_by(UserLocationShareRow.created_at.desc())
        )
        bounds = ctx.params.map_bounds
        if bounds is not None:
            query = within_bounds(query, UserLocationShareRow.latitude, UserLocationShareRow.longitude, bounds)
        rows = await try_read(self.session_factory, "user_location_shares", query)
        if rows is None:
            return {}

        latest: dict[UserId, tuple[UserLocationShareRow, LocationRow | None]] = {}
        for share, location in rows:
            current = latest.get(share.user_id)
            if current is None or as_utc(share.created_at) > as_utc(current[0].created_at):
                latest[share.user_id] = (share, location)
        return {SourceTag.shares: [PinCandidate(SourceTag.shares, share_pin(ctx, *row)) for row in latest.values()]}


class FollowingSource(MapSource):
    """Places the followed users authored or saved."""

    async def followed_user_ids(self, ctx: FetchContext) -> list[UserId]:
        if ctx.params.selected_followed_user_ids:
            return ctx.params.selected_followed_user_ids
        query = sa.select(FollowRow.following_id).where(FollowRow.follower_id == ctx.user_id)
        rows = await read(self.session_factory, "follows", query)
        return [following_id for (following_id,) in rows]

    async def fetch(self, ctx: FetchContext) -> SourceBatches:
        user_ids = await self.followed_user_ids(ctx)
        if not user_ids:
            log.info("User %s follows nobody, empty following map", ctx.user_id)
            return {}

        authored_query = sa.select(LocationRow).where(LocationRow.created_by.in_(user_ids))
        saves_query = (
            sa.select(UserSavedLocationRow.user_id, UserSavedLocationRow.created_at, LocationRow)
            .select_from(UserSavedLocationRow)
            .join(LocationRow, LocationRow.id == UserSavedLocationRow.location_id)
            .where(UserSavedLocationRow.user_id.in_(user_ids))
        )
        places_query = sa.select(SavedPlaceRow).where(SavedPlaceRow.user_id.in_(user_ids))
        bounds = ctx.params.map_bounds
        if bounds is not None:
            authored_query = within_bounds(authored_query, LocationRow.latitude, LocationRow.longitude, bounds)
            saves_query = within_bounds(saves_query, LocationRow.latitude, LocationRow.longitude, bounds)

        authored, saves, places = await asyncio.gather(
            read(self.session_factory, "followed users' locations", authored_query),
            read(self.session_factory, "followed users' saved locations", saves_query),
            read(self.session_factory, "followed users' saved places", places_query),
        )

        authored_pins = [location_pin(location) for (location,) in authored]
        saved_pins = [
            location_pin(location, owner_user_id=user_id, created_at=as_utc(created_at))
            for user_id, created_at, location in saves
        ]
        place_pins = [saved_place_pin(place) for (place,) in places]
        for pin in authored_pins + saved_pins + place_pins:
            pin.is_following = True
            pin.is_new = ctx.is_new(pin.created_at)
        return {
            SourceTag.locations: [PinCandidate(SourceTag.locations, pin) for pin in authored_pins],
            SourceTag.saved_locations: [PinCandidate(SourceTag.saved_locations, pin) for pin in saved_pins],
            SourceTag.saved_places: [PinCandidate(SourceTag.saved_places, pin) for pin in place_pins],
        }

    def accepts(self, ctx: FetchContext, pin: MapPin) -> bool:
        if ctx.params.map_bounds is None and ctx.city:
            return cities_match(pin.city, ctx.city)
        return super().accepts(ctx, pin)


class PopularSource(MapSource):
    """Everyone's places, scored by saves and posts."""

    async def fetch(self, ctx: FetchContext) -> SourceBatches:
        locations_query = sa.select(LocationRow).where(LocationRow.latitude.isnot(None), LocationRow.longitude.isnot(None))
        bounds = ctx.params.map_bounds
        if bounds is not None:
            locations_query = within_bounds(locations_query, LocationRow.latitude, LocationRow.longitude, bounds)
        location_ids = locations_query.with_only_columns(LocationRow.id).scalar_subquery()
        saves_query = sa.select(UserSavedLocationRow.location_id, UserSavedLocationRow.user_id).where(
            UserSavedLocationRow.location_id.in_(location_ids)
        )
        posts_query = sa.select(PostRow.location_id).where(PostRow.location_id.in_(location_ids))
        places_query = sa.select(SavedPlaceRow)

        locations, saves, posts, places = await asyncio.gather(
            read(self.session_factory, "locations", locations_query),
            read(self.session_factory, "location save counts", saves_query),
            read(self.session_factory, "location posts", posts_query),
            read(self.session_factory, "saved places", places_query),
        )
        save_counts = Counter(location_id for location_id, _user_id in saves)
        post_counts = Counter(location_id for (location_id,) in posts)
        saved_by_me = {location_id for location_id, user_id in saves if user_id == ctx.user_id}

        location_candidates = []
        for (location,) in locations:
            pin = location_pin(location, is_recommended=True, is_saved=location.id in saved_by_me)
            score = popularity_score(save_counts[location.id], post_counts[location.id])
            location_candidates.append(PinCandidate(SourceTag.locations, pin, score=score))
        claimed = {location.google_place_id for (location,) in locations if location.google_place_id}

        place_candidates = [
            PinCandidate(
                SourceTag.saved_places,
                saved_place_pin(place, is_recommended=True, is_saved=place.user_id == ctx.user_id),
                score=1,
            )
            for (place,) in places
        ]
        return {
            SourceTag.locations: location_candidates,
            SourceTag.saved_places: collapse_saved_places(place_candidates, claimed),
        }

    def accepts(self, ctx: FetchContext, pin: MapPin) -> bool:
        # Exact city match here, unlike the following map's containment match
        if ctx.params.map_bounds is None and ctx.city:
            return cities_equal(pin.city, ctx.city)
        return super().accepts(ctx, pin)


class SavedSource(MapSource):
    """The caller's own saved locations and saved places, optionally narrowed to some save tags."""

    async def fetch(self, ctx: FetchContext) -> SourceBatches:
        saves_query = (
            sa.select(UserSavedLocationRow.created_at, LocationRow)
            .select_from(UserSavedLocationRow)
            .join(LocationRow, LocationRow.id == UserSavedLocationRow.location_id)
            .where(UserSavedLocationRow.user_id == ctx.user_id)
        )
        places_query = sa.select(SavedPlaceRow).where(SavedPlaceRow.user_id == ctx.user_id)
        tags = ctx.params.selected_save_tags
        if tags:
            saves_query = saves_query.where(UserSavedLocationRow.save_tag.in_(tags))
            places_query = places_query.where(SavedPlaceRow.save_tag.in_(tags))

        saves, places = await asyncio.gather(
            read(self.session_factory, "saved locations", saves_query),
            read(self.session_factory, "saved places", places_query),
        )
        return {
            SourceTag.saved_locations: [
                PinCandidate(
                    SourceTag.saved_locations,
                    location_pin(location, owner_user_id=ctx.user_id, created_at=as_utc(created_at), is_saved=True),
                )
                for created_at, location in saves
            ],
            SourceTag.saved_places: [
                PinCandidate(SourceTag.saved_places, saved_place_pin(place, is_saved=True)) for (place,) in places
            ],
        }

    def accepts(self, ctx: FetchContext, pin: MapPin) -> bool:
        return True


SOURCES: dict[FilterMode, type[MapSource]] = {
    "shared": SharedSource,
    "following": FollowingSource,
    "popular": PopularSource,
    "saved": SavedSource,
}


def get_source(filter_mode: FilterMode, session_factory: SessionFactory) -> MapSource:
    return SOURCES[filter_mode](session_factory)


# region Row -> pin conversion


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def location_pin(location: LocationRow, **overrides: Any) -> MapPin:
    fields: dict[str, Any] = dict(
        id=str(location.id),
        name=location.name,
        category=normalize_category(location.category),
        address=location.address,
        city=resolve_city(location.city, location.address, location.name),
        google_place_id=location.google_place_id or None,
        coordinates=Coordinates(lat=_to_float(location.latitude), lng=_to_float(location.longitude)),
        opening_hours_data=location.opening_hours_data,
        photos=location.photos,
        owner_user_id=location.created_by,
        created_at=as_utc(location.created_at),
    )
    fields.update(overrides)
    return MapPin(**fields)


def saved_place_pin(place: SavedPlaceRow, **overrides: Any) -> MapPin:
    coordinates = place.coordinates if isinstance(place.coordinates, dict) else {}
    fields: dict[str, Any] = dict(
        id=place.place_id,
        name=place.place_name,
        category=normalize_category(place.place_category),
        city=resolve_city(place.city),
        google_place_id=place.place_id,
        coordinates=Coordinates(lat=_to_float(coordinates.get("lat")), lng=_to_float(coordinates.get("lng"))),
        owner_user_id=place.user_id,
        created_at=as_utc(place.created_at),
    )
    fields.update(overrides)
    return MapPin(**fields)


def share_pin(ctx: FetchContext, share: UserLocationShareRow, location: LocationRow | None) -> MapPin:
    created_at = as_utc(share.created_at)
    overrides: dict[str, Any] = dict(
        coordinates=Coordinates(lat=_to_float(share.latitude), lng=_to_float(share.longitude)),
        owner_user_id=share.user_id,
        created_at=created_at,
        is_new=ctx.is_new(created_at),
    )
    if location is not None:
        return location_pin(location, **overrides)
    return MapPin(
        id=str(share.id),
        name=share.location_name or "Shared location",
        category="",
        address=share.location_address,
        city=resolve_city(None, share.location_address, share.location_name),
        **overrides,
    )


# endregion
