import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.models import LocationRow, SavedPlaceRow, UserSavedLocationRow
from app.core.events import EventBus
from app.core.types import GooglePlaceId, LocationId, UserId
from app.features.places.entities import SavedLocation, SavedPlace
from app.features.places.types import SavePlaceRequest


class PlaceStore:
    """Saves and unsaves, publishing a change event after each successful write."""

    def __init__(self, db: AsyncSession, bus: EventBus):
        self.db = db
        self.bus = bus

    async def location_exists(self, location_id: LocationId) -> bool:
        query = sa.select(LocationRow.id).where(LocationRow.id == location_id)
        result = await self.db.execute(query.exists().select())
        exists: bool = result.scalar()  # type: ignore
        return exists

    async def get_location_save(self, user_id: UserId, location_id: LocationId) -> SavedLocation | None:
        query = sa.select(UserSavedLocationRow).where(
            UserSavedLocationRow.user_id == user_id, UserSavedLocationRow.location_id == location_id
        )
        save = (await self.db.execute(query)).scalars().first()
        return SavedLocation.model_validate(save) if save else None

    async def save_location(self, user_id: UserId, location_id: LocationId, save_tag: str | None) -> SavedLocation:
        self.db.add(UserSavedLocationRow(user_id=user_id, location_id=location_id, save_tag=save_tag))
        try:
            await self.db.commit()
        except IntegrityError:
            # Already saved, update the tag
            await self.db.rollback()
            await self.db.execute(
                sa.update(UserSavedLocationRow)
                .where(UserSavedLocationRow.user_id == user_id, UserSavedLocationRow.location_id == location_id)
                .values(save_tag=save_tag)
            )
            await self.db.commit()
        save = await self.get_location_save(user_id, location_id)
        if save is None:
            raise ValueError("Could not save location")
        self.bus.publish("saved_location_insert", save)
        return save

    async def unsave_location(self, user_id: UserId, location_id: LocationId) -> bool:
        """Remove the save, returning whether there was one."""
        query = sa.delete(UserSavedLocationRow).where(
            UserSavedLocationRow.user_id == user_id, UserSavedLocationRow.location_id == location_id
        )
        result = await self.db.execute(query)
        await self.db.commit()
        if not result.rowcount:
            return False
        self.bus.publish("saved_location_delete", dict(user_id=user_id, location_id=location_id))
        return True

    async def get_place_save(self, user_id: UserId, place_id: GooglePlaceId) -> SavedPlace | None:
        query = sa.select(SavedPlaceRow).where(SavedPlaceRow.user_id == user_id, SavedPlaceRow.place_id == place_id)
        save = (await self.db.execute(query)).scalars().first()
        return SavedPlace.model_validate(save) if save else None

    async def save_place(self, user_id: UserId, request: SavePlaceRequest) -> SavedPlace:
        values = dict(
            place_name=request.place_name,
            place_category=request.place_category,
            city=request.city,
            coordinates=request.coordinates.model_dump(),
            save_tag=request.save_tag,
        )
        self.db.add(SavedPlaceRow(user_id=user_id, place_id=request.place_id, **values))
        try:
            await self.db.commit()
        except IntegrityError:
            # Already saved, refresh what we know about the place
            await self.db.rollback()
            await self.db.execute(
                sa.update(SavedPlaceRow)
                .where(SavedPlaceRow.user_id == user_id, SavedPlaceRow.place_id == request.place_id)
                .values(**values)
            )
            await self.db.commit()
        save = await self.get_place_save(user_id, request.place_id)
        if save is None:
            raise ValueError("Could not save place")
        self.bus.publish("saved_place_insert", save)
        return save

    async def unsave_place(self, user_id: UserId, place_id: GooglePlaceId) -> bool:
        query = sa.delete(SavedPlaceRow).where(SavedPlaceRow.user_id == user_id, SavedPlaceRow.place_id == place_id)
        result = await self.db.execute(query)
        await self.db.commit()
        if not result.rowcount:
            return False
        self.bus.publish("saved_place_delete", dict(user_id=user_id, place_id=place_id))
        return True
