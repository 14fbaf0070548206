from fastapi import APIRouter, Depends, HTTPException

from app.core.types import GooglePlaceId, LocationId, SimpleResponse, UserId
from app.features.places.place_store import PlaceStore
from app.features.places.types import (
    SaveLocationRequest,
    SaveLocationResponse,
    SavePlaceRequest,
    SavePlaceResponse,
)
from app.features.stores import get_place_store
from app.features.users.dependencies import get_caller_id

router = APIRouter()


@router.post("/locations/{location_id}/save", response_model=SaveLocationResponse)
async def save_location(
    location_id: LocationId,
    request: SaveLocationRequest,
    place_store: PlaceStore = Depends(get_place_store),
    user_id: UserId = Depends(get_caller_id),
):
    if not await place_store.location_exists(location_id):
        raise HTTPException(404, detail="Location not found")
    save = await place_store.save_location(user_id, location_id, save_tag=request.save_tag)
    return SaveLocationResponse(save=save)


@router.delete("/locations/{location_id}/save", response_model=SimpleResponse)
async def unsave_location(
    location_id: LocationId,
    place_store: PlaceStore = Depends(get_place_store),
    user_id: UserId = Depends(get_caller_id),
):
    await place_store.unsave_location(user_id, location_id)
    return SimpleResponse(success=True)


@router.post("/saved-places", response_model=SavePlaceResponse)
async def save_place(
    request: SavePlaceRequest,
    place_store: PlaceStore = Depends(get_place_store),
    user_id: UserId = Depends(get_caller_id),
):
    """Save a place straight from the places provider, without creating a location for it."""
    save = await place_store.save_place(user_id, request)
    return SavePlaceResponse(save=save)


@router.delete("/saved-places/{place_id}", response_model=SimpleResponse)
async def unsave_place(
    place_id: GooglePlaceId,
    place_store: PlaceStore = Depends(get_place_store),
    user_id: UserId = Depends(get_caller_id),
):
    await place_store.unsave_place(user_id, place_id)
    return SimpleResponse(success=True)
