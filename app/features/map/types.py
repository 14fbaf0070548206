from typing import Literal

from app.core.types import Base
from app.features.map.entities import MapParams, MapPin


class GetMapRequest(MapParams):
    pass


class GetMapResponse(Base):
    locations: list[MapPin]
    loading: bool = False
    error: str | None = None


class LiveMapCommand(Base):
    action: Literal["refetch"]
