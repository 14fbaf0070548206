from datetime import datetime
from uuid import UUID

from pydantic import field_validator

from app.core.types import Base, GooglePlaceId, LocationId
from app.features.map.entities import Coordinates


class SavedLocation(Base):
    id: UUID
    location_id: LocationId
    save_tag: str | None
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def validate_created_at(cls, created_at):
        # Needed so Swift can automatically decode
        return created_at.replace(microsecond=0)


class SavedPlace(Base):
    id: UUID
    place_id: GooglePlaceId
    place_name: str
    place_category: str | None
    city: str | None
    coordinates: Coordinates | None
    save_tag: str | None
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def validate_created_at(cls, created_at):
        # Needed so Swift can automatically decode
        return created_at.replace(microsecond=0)
