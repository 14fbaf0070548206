import asyncio

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError
from starlette.requests import Request

from app.core.events import EventBus, get_event_bus
from app.core.limiter import limiter
from app.core.types import UserId
from app.features.map.entities import MapLocationsState
from app.features.map.live import LiveMap
from app.features.map.map_store import MapStore
from app.features.map.types import GetMapRequest, GetMapResponse, LiveMapCommand
from app.features.stores import get_map_store
from app.features.users.dependencies import USER_ID_HEADER, get_caller_id, parse_user_id
from app.utils import get_logger

router = APIRouter()
log = get_logger(__name__)


@router.post("/load", response_model=GetMapResponse)
@limiter.limit("30/minute")
async def load_map(
    request: Request,  # This needs to be here for limiter
    req: GetMapRequest,
    map_store: MapStore = Depends(get_map_store),
    user_id: UserId = Depends(get_caller_id),
):
    """Get the de-duplicated map pins for the given filters. MapFetchError is turned into a 503 by the app."""
    pins = await map_store.get_map(user_id, req)
    return GetMapResponse(locations=pins)


@router.websocket("/live")
async def live_map(
    websocket: WebSocket,
    map_store: MapStore = Depends(get_map_store),
    bus: EventBus = Depends(get_event_bus),
):
    """
    Live map over a WebSocket.

    The client sends a GetMapRequest whenever its filters change (or {"action": "refetch"}), the server answers with
    the full map state every time it changes, including when save/unsave events elsewhere refresh the map.
    """
    user_id = parse_user_id(websocket.headers.get(USER_ID_HEADER))
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await websocket.accept()

    updates: asyncio.Queue[MapLocationsState] = asyncio.Queue()
    live = LiveMap(map_store, user_id, bus, on_change=updates.put_nowait)

    async def send_updates():
        while True:
            state = await updates.get()
            await websocket.send_json(state.model_dump(mode="json", by_alias=True))

    sender = asyncio.create_task(send_updates())
    try:
        while True:
            try:
                message = await websocket.receive_json()
                if isinstance(message, dict) and "action" in message:
                    LiveMapCommand.model_validate(message)
                    live.refetch()
                else:
                    live.update(GetMapRequest.model_validate(message))
            except ValidationError as e:
                errors = e.errors(include_url=False, include_context=False)
                await websocket.send_json({"error": "Invalid request", "details": errors})
            except ValueError:
                # Not JSON
                await websocket.send_json({"error": "Invalid request"})
    except WebSocketDisconnect:
        log.debug("Live map closed for %s", user_id)
    finally:
        live.close()
        sender.cancel()
