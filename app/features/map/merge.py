"""
Identity resolution for map pins.

The same place can reach the map through several tables: as a location someone authored, as a saved link to that
location, or as a saved place that only knows the external place id. Pins are keyed by the external place id when we
have one (else the internal id) and, separately, by their coordinate rounded to 6 decimals.
"""
import enum
import math
import uuid
from dataclasses import dataclass
from typing import Callable

from app.features.map.entities import MapPin
from app.features.places.categories import category_priority

# Place ids from the external provider all start with this prefix; internal ids are UUIDs
EXTERNAL_PLACE_ID_PREFIX = "ChIJ"


class SourceTag(enum.Enum):
    locations = "locations"
    saved_locations = "saved_locations"
    saved_places = "saved_places"
    shares = "shares"


# Earlier sources win when two candidates resolve to the same place or coordinate
MERGE_ORDER: tuple[SourceTag, ...] = (
    SourceTag.locations,
    SourceTag.saved_locations,
    SourceTag.saved_places,
    SourceTag.shares,
)

# Sources backed by an internal location row. Their external ids claim the place over any saved place.
INTERNAL_SOURCES = {SourceTag.locations, SourceTag.saved_locations, SourceTag.shares}


@dataclass
class PinCandidate:
    source: SourceTag
    pin: MapPin
    score: float = 0.0


SourceBatches = dict[SourceTag, list[PinCandidate]]


def is_external_place_id(place_id: str) -> bool:
    return place_id.startswith(EXTERNAL_PLACE_ID_PREFIX)


def is_internal_location_id(place_id: str) -> bool:
    if is_external_place_id(place_id):
        return False
    try:
        uuid.UUID(place_id)
    except ValueError:
        return False
    return True


def has_valid_coordinates(pin: MapPin) -> bool:
    lat, lng = pin.coordinates.lat, pin.coordinates.lng
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return False
    return not (lat == 0 and lng == 0)


def coordinate_key(lat: float, lng: float) -> str:
    # + 0.0 folds -0.0 into 0.0 so both land in the same bucket
    return f"{round(lat, 6) + 0.0:.6f},{round(lng, 6) + 0.0:.6f}"


def pin_coordinate_key(pin: MapPin) -> str:
    return coordinate_key(pin.coordinates.lat, pin.coordinates.lng)


def dedup_key(pin: MapPin) -> str:
    return pin.google_place_id or pin.id


def claimed_place_ids(batches: SourceBatches) -> set[str]:
    """External place ids already represented by an internal location."""
    return {
        candidate.pin.google_place_id
        for source in INTERNAL_SOURCES
        for candidate in batches.get(source, [])
        if candidate.pin.google_place_id
    }


def merge_candidates(batches: SourceBatches, accept: Callable[[MapPin], bool] | None = None) -> list[PinCandidate]:
    """
    Merge candidates from every source into one list with at most one pin per place and per coordinate.

    Sources are applied in MERGE_ORDER no matter in which order their reads completed. accept() re-checks the
    bounds/city filter for sources that can only be filtered after loading.
    """
    claimed = claimed_place_ids(batches)
    merged: dict[str, PinCandidate] = {}
    used_coordinates: set[str] = set()
    for source in MERGE_ORDER:
        for candidate in batches.get(source, []):
            pin = candidate.pin
            if not has_valid_coordinates(pin):
                continue
            if accept is not None and not accept(pin):
                continue
            if source == SourceTag.saved_places and pin.google_place_id in claimed:
                continue
            coordinates = pin_coordinate_key(pin)
            if coordinates in used_coordinates:
                continue
            key = dedup_key(pin)
            if key in merged:
                continue
            merged[key] = candidate
            used_coordinates.add(coordinates)
    return list(merged.values())


def collapse_saved_places(candidates: list[PinCandidate], claimed: set[str]) -> list[PinCandidate]:
    """
    Collapse saved place rows into one scored candidate per coordinate.

    Every row counts as one save for its place. When two different places sit on the same coordinate the one with
    the higher category priority is kept and inherits the other's saves. Rows whose place id is claimed by an
    internal location are dropped, that location already represents the place.
    """
    by_coordinate: dict[str, PinCandidate] = {}
    counted_under: dict[str, str] = {}  # place id -> coordinate key of the entry holding its saves
    for candidate in candidates:
        place_id = dedup_key(candidate.pin)
        if place_id in claimed or not has_valid_coordinates(candidate.pin):
            continue
        if place_id in counted_under:
            entry = by_coordinate[counted_under[place_id]]
            entry.score += candidate.score
            if dedup_key(entry.pin) == place_id and candidate.pin.is_saved:
                entry.pin.is_saved = True
            continue

        coordinates = pin_coordinate_key(candidate.pin)
        counted_under[place_id] = coordinates
        existing = by_coordinate.get(coordinates)
        if existing is None:
            by_coordinate[coordinates] = candidate
        elif category_priority(candidate.pin.category) > category_priority(existing.pin.category):
            candidate.score += existing.score
            by_coordinate[coordinates] = candidate
        else:
            existing.score += candidate.score
    return list(by_coordinate.values())
