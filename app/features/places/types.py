from pydantic import field_validator

from app.core.types import Base, GooglePlaceId
from app.features.map.entities import Coordinates
from app.features.places.entities import SavedLocation, SavedPlace


def clean_save_tag(save_tag: str | None) -> str | None:
    if save_tag is None:
        return None
    save_tag = save_tag.strip()
    if len(save_tag) > 50:
        raise ValueError("Save tag too long (max length 50 chars)")
    return save_tag or None


class SaveLocationRequest(Base):
    save_tag: str | None = None

    @field_validator("save_tag")
    @classmethod
    def validate_save_tag(cls, save_tag):
        return clean_save_tag(save_tag)


class SaveLocationResponse(Base):
    save: SavedLocation


class SavePlaceRequest(Base):
    place_id: GooglePlaceId
    place_name: str
    place_category: str | None = None
    city: str | None = None
    coordinates: Coordinates
    save_tag: str | None = None

    @field_validator("place_id", "place_name")
    @classmethod
    def validate_not_blank(cls, value):
        value = value.strip()
        if not value:
            raise ValueError("Must not be blank")
        return value

    @field_validator("save_tag")
    @classmethod
    def validate_save_tag(cls, save_tag):
        return clean_save_tag(save_tag)


class SavePlaceResponse(Base):
    save: SavedPlace
