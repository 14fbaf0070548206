from datetime import datetime
from typing import Any, Literal

from pydantic import field_validator, model_validator

from app.core.types import Base, UserId

FilterMode = Literal["following", "popular", "saved", "shared"]
UserAction = Literal["saved", "liked", "faved", "posted"]
ActivityType = Literal["review", "photo"]


class Coordinates(Base):
    lat: float
    lng: float


class MapBounds(Base):
    north: float
    south: float
    east: float
    west: float

    @field_validator("north", "south")
    @classmethod
    def validate_latitude(cls, latitude):
        if latitude < -90 or latitude > 90:
            raise ValueError("Invalid latitude")
        return latitude

    @field_validator("east", "west")
    @classmethod
    def validate_longitude(cls, longitude):
        if longitude < -180 or longitude > 180:
            raise ValueError("Invalid longitude")
        return longitude

    @model_validator(mode="after")
    def validate_order(self):
        if self.south > self.north:
            raise ValueError("south must not be above north")
        # Bounds never wrap the antimeridian on the client
        if self.west > self.east:
            raise ValueError("west must not be greater than east")
        return self

    def contains(self, lat: float, lng: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lng <= self.east


class UserAttribution(Base):
    id: UserId
    username: str
    avatar_url: str | None = None
    action: UserAction | None = None


class LatestActivity(Base):
    type: ActivityType
    snippet: str | None = None
    created_at: datetime


class MapPin(Base):
    id: str  # Internal location id, or the external place id when only a saved place exists
    name: str
    category: str
    address: str | None = None
    city: str | None = None
    google_place_id: str | None = None
    coordinates: Coordinates
    opening_hours_data: Any | None = None
    photos: Any | None = None
    is_following: bool | None = None
    is_saved: bool | None = None
    is_new: bool | None = None
    is_recommended: bool | None = None
    recommendation_score: float | None = None
    owner_user_id: UserId | None = None
    created_at: datetime | None = None
    shared_by_user: UserAttribution | None = None
    saved_by_user: UserAttribution | None = None
    latest_activity: LatestActivity | None = None


class MapParams(Base):
    """Everything that determines the contents of a map. Two equal MapParams always produce the same pins."""

    filter_mode: FilterMode
    selected_categories: list[str] = []
    current_city: str | None = None
    selected_followed_user_ids: list[UserId] = []
    selected_save_tags: list[str] = []
    map_bounds: MapBounds | None = None

    @field_validator("selected_followed_user_ids")
    @classmethod
    def validate_user_ids(cls, user_ids):
        if len(user_ids) > 100:
            raise ValueError("User list too long, max length is 100")
        return user_ids


class MapLocationsState(Base):
    locations: list[MapPin]
    loading: bool
    error: str | None = None
