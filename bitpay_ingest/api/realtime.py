"""
Realtime WebSocket endpoint.

Clients connect to ``/ws`` and may pre-join rooms with query params
(``?user=SP...&stream=7&marketplace=1``). Afterwards they send
``{"action": "join" | "leave", "room": "..."}`` messages.
"""
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from bitpay_ingest.core.logging import get_logger
from bitpay_ingest.domain.services.realtime import (
    MARKETPLACE_ROOM,
    RealtimeHub,
    get_realtime_hub,
    stream_room,
    user_room,
)

logger = get_logger(__name__)

router = APIRouter()


def initial_rooms(user: str | None, stream: str | None, marketplace: bool) -> list[str]:
    rooms = []
    if user:
        rooms.append(user_room(user))
    if stream:
        rooms.append(stream_room(stream))
    if marketplace:
        rooms.append(MARKETPLACE_ROOM)
    return rooms


@router.websocket("/ws")
async def realtime_socket(
    websocket: WebSocket,
    user: str | None = None,
    stream: str | None = None,
    marketplace: bool = False,
    hub: RealtimeHub = Depends(get_realtime_hub),
):
    connection = await hub.connect(websocket, initial_rooms(user, stream, marketplace))
    try:
        while True:
            message = await websocket.receive_json()
            if not isinstance(message, dict):
                continue
            action, room = message.get("action"), message.get("room")
            if not isinstance(room, str):
                continue
            if action == "join":
                hub.join(connection.client_id, room)
            elif action == "leave":
                hub.leave(connection.client_id, room)
            else:
                continue
            await connection.send({
                "event": f"room:{action}",
                "data": {"room": room, "rooms": sorted(connection.rooms)},
            })
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(connection.client_id)
