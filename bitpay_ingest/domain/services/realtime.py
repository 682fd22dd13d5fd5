"""
Realtime Hub - in-process WebSocket rooms.

Rooms are plain strings: ``user:{principal}``, ``stream:{id}``,
``marketplace`` and ``global``. Every connection is in ``global``.
"""
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket

from bitpay_ingest.core.logging import get_logger

logger = get_logger(__name__)

GLOBAL_ROOM = "global"
MARKETPLACE_ROOM = "marketplace"


def user_room(principal: str) -> str:
    return f"user:{principal}"


def stream_room(stream_id: int | str) -> str:
    return f"stream:{stream_id}"


class RealtimeConnection:
    """One WebSocket client and the rooms it joined"""

    def __init__(self, websocket: WebSocket, client_id: str):
        self.websocket = websocket
        self.client_id = client_id
        self.connected_at = datetime.now(timezone.utc)
        self.rooms: set[str] = set()

    async def send(self, message: dict[str, Any]) -> bool:
        try:
            await self.websocket.send_json(message)
            return True
        except Exception as e:
            logger.warning(
                "Failed to send realtime message",
                extra_data={"client_id": self.client_id, "error": str(e)},
            )
            return False


class RealtimeHub:
    """Tracks connections by room and emits JSON messages to a room."""

    def __init__(self) -> None:
        self.connections: dict[str, RealtimeConnection] = {}
        self.rooms: dict[str, set[str]] = defaultdict(set)

    async def connect(self, websocket: WebSocket, rooms: list[str] | None = None) -> RealtimeConnection:
        await websocket.accept()
        connection = RealtimeConnection(websocket, uuid.uuid4().hex[:12])
        self.connections[connection.client_id] = connection
        for room in [GLOBAL_ROOM, *(rooms or [])]:
            self.join(connection.client_id, room)

        logger.info(
            "Realtime client connected",
            extra_data={
                "client_id": connection.client_id,
                "rooms": sorted(connection.rooms),
                "total_connections": len(self.connections),
            },
        )
        await connection.send({
            "event": "connection:status",
            "data": {"status": "connected", "clientId": connection.client_id, "rooms": sorted(connection.rooms)},
        })
        return connection

    def join(self, client_id: str, room: str) -> None:
        connection = self.connections.get(client_id)
        if connection is None or not room:
            return
        connection.rooms.add(room)
        self.rooms[room].add(client_id)

    def leave(self, client_id: str, room: str) -> None:
        connection = self.connections.get(client_id)
        if connection is None or room == GLOBAL_ROOM:
            return
        connection.rooms.discard(room)
        members = self.rooms.get(room)
        if members is not None:
            members.discard(client_id)
            if not members:
                del self.rooms[room]

    def disconnect(self, client_id: str) -> None:
        connection = self.connections.pop(client_id, None)
        if connection is None:
            return
        for room in list(connection.rooms):
            members = self.rooms.get(room)
            if members is not None:
                members.discard(client_id)
                if not members:
                    del self.rooms[room]
        logger.info(
            "Realtime client disconnected",
            extra_data={"client_id": client_id, "remaining_connections": len(self.connections)},
        )

    async def emit(self, room: str, event: str, data: dict[str, Any]) -> int:
        """Send ``{event, data}`` to every member of a room; returns deliveries."""
        client_ids = list(self.rooms.get(room, ()))
        message = {
            "event": event,
            "room": room,
            "data": data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        sent = 0
        for client_id in client_ids:
            connection = self.connections.get(client_id)
            if connection is None:
                continue
            if await connection.send(message):
                sent += 1
            else:
                self.disconnect(client_id)
        return sent

    def stats(self) -> dict[str, Any]:
        return {
            "connections": len(self.connections),
            "rooms": {room: len(members) for room, members in self.rooms.items()},
        }


realtime_hub = RealtimeHub()


def get_realtime_hub() -> RealtimeHub:
    """Dependency for the process-wide hub"""
    return realtime_hub
