# driveflow/core/notifications.py
import asyncio
from typing import Any, Dict, Set

from fastapi import WebSocket
from loguru import logger


def booking_room(booking_id: str) -> str:
    return f"booking_{booking_id}"


def user_room(user_id: str) -> str:
    return f"user_{user_id}"


ADMIN_ROOM = "admin"


class BookingEventHub:
    """In-process WebSocket rooms. Delivery is best-effort: failures are logged, never raised."""

    def __init__(self):
        self._rooms: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def join(self, room: str, websocket: WebSocket) -> None:
        async with self._lock:
            self._rooms.setdefault(room, set()).add(websocket)
        logger.debug(f"Socket joined room '{room}'")

    async def leave(self, room: str, websocket: WebSocket) -> None:
        async with self._lock:
            members = self._rooms.get(room)
            if members is None:
                return
            members.discard(websocket)
            if not members:
                del self._rooms[room]

    async def publish(self, room: str, event: str, payload: Dict[str, Any]) -> int:
        """Send ``{"event", "data"}`` to every socket in ``room``. Returns the number delivered."""
        async with self._lock:
            targets = list(self._rooms.get(room, ()))
        delivered = 0
        for websocket in targets:
            try:
                await websocket.send_json({"event": event, "data": payload})
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping socket from '{room}' after send failure: {e}")
                await self.leave(room, websocket)
        return delivered


# Satu hub per proses, sama seperti limiter
event_hub = BookingEventHub()


def get_event_hub() -> BookingEventHub:
    return event_hub
