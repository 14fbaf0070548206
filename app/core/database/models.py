from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship

from app.core.database.defaults import gen_ulid

Base: Any = declarative_base()

# JSONB on Postgres, plain JSON everywhere else (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")


# region Users
class ProfileRow(Base):
    __tablename__ = "profiles"

    id = mapped_column(Uuid, primary_key=True, default=gen_ulid)
    username = mapped_column(Text, unique=True, nullable=False)
    avatar_url = mapped_column(Text, nullable=True)
    created_at = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class FollowRow(Base):
    __tablename__ = "follows"

    id = mapped_column(Uuid, primary_key=True, default=gen_ulid)
    follower_id = mapped_column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    following_id = mapped_column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    created_at = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("follower_id", "following_id", name="_follower_following_uc"),
        Index("follows_follower_id_idx", follower_id),
    )


# endregion Users

# region Locations
class LocationRow(Base):
    """
    Places authored by users of the app.

    google_place_id links the row to the external places provider when the location was picked from search.
    """

    __tablename__ = "locations"

    id = mapped_column(Uuid, primary_key=True, default=gen_ulid)
    name = mapped_column(Text, nullable=False)
    category = mapped_column(Text, nullable=True)
    address = mapped_column(Text, nullable=True)
    city = mapped_column(Text, nullable=True)

    # Nullable because older rows were imported without coordinates; those never make it onto the map
    latitude = mapped_column(Float, nullable=True)
    longitude = mapped_column(Float, nullable=True)

    google_place_id = mapped_column(Text, nullable=True)
    opening_hours_data = mapped_column(JSONType, nullable=True)
    photos = mapped_column(JSONType, nullable=True)
    created_by = mapped_column(Uuid, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    created_at = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("locations_created_by_idx", created_by),
        Index("locations_google_place_id_idx", google_place_id),
        Index("locations_lat_lng_idx", latitude, longitude),
    )


class UserSavedLocationRow(Base):
    __tablename__ = "user_saved_locations"

    id = mapped_column(Uuid, primary_key=True, default=gen_ulid)
    user_id = mapped_column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    location_id = mapped_column(Uuid, ForeignKey("locations.id", ondelete="CASCADE"), nullable=False)
    save_tag = mapped_column(Text, nullable=True)
    created_at = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    location: Mapped[LocationRow] = relationship("LocationRow")

    __table_args__ = (
        UniqueConstraint("user_id", "location_id", name="_user_saved_location_uc"),
        Index("user_saved_locations_location_id_idx", location_id),
    )


class SavedPlaceRow(Base):
    """
    Places saved straight from the external places provider, without an internal location row.

    coordinates is a JSON object: {"lat": float, "lng": float}.
    """

    __tablename__ = "saved_places"

    id = mapped_column(Uuid, primary_key=True, default=gen_ulid)
    user_id = mapped_column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    place_id = mapped_column(Text, nullable=False)
    place_name = mapped_column(Text, nullable=False)
    place_category = mapped_column(Text, nullable=True)
    city = mapped_column(Text, nullable=True)
    coordinates = mapped_column(JSONType, nullable=True)
    save_tag = mapped_column(Text, nullable=True)
    created_at = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "place_id", name="_saved_place_user_place_uc"),
        Index("saved_places_place_id_idx", place_id),
    )


class UserLocationShareRow(Base):
    """Short-lived "I'm here" shares. location_id is optional, the share carries its own name and coordinates."""

    __tablename__ = "user_location_shares"

    id = mapped_column(Uuid, primary_key=True, default=gen_ulid)
    user_id = mapped_column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    location_id = mapped_column(Uuid, ForeignKey("locations.id", ondelete="SET NULL"), nullable=True)
    location_name = mapped_column(Text, nullable=True)
    location_address = mapped_column(Text, nullable=True)
    latitude = mapped_column(Float, nullable=False)
    longitude = mapped_column(Float, nullable=False)
    expires_at = mapped_column(DateTime(timezone=True), nullable=False)
    created_at = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    location: "Mapped[LocationRow | None]" = relationship("LocationRow")

    __table_args__ = (Index("user_location_shares_expires_at_idx", expires_at),)


# endregion Locations


# region Posts
class PostRow(Base):
    __tablename__ = "posts"

    id = mapped_column(Uuid, primary_key=True, default=gen_ulid)
    user_id = mapped_column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    location_id = mapped_column(Uuid, ForeignKey("locations.id", ondelete="CASCADE"), nullable=True)
    caption = mapped_column(Text, nullable=True)
    rating = mapped_column(Integer, nullable=True)
    created_at = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (Index("posts_location_id_created_at_idx", location_id, created_at),)


# endregion Posts
