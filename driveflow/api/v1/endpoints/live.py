# driveflow/api/v1/endpoints/live.py
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from jose import JWTError
from loguru import logger

from driveflow.core.context import RequestContext
from driveflow.core.exceptions import PermissionDeniedError
from driveflow.core.notifications import ADMIN_ROOM, booking_room, event_hub, user_room
from driveflow.core.security import decode_access_token
from driveflow.db.stores import BeanieBookingStore
from driveflow.models.user import User
from driveflow.services.workflow import ensure_booking_access

router = APIRouter(tags=["Live"])


@router.websocket("/ws/bookings/{booking_id}")
async def booking_events(websocket: WebSocket, booking_id: str, token: str = Query(...)):
    """
    Live booking events (status changes, approvals, driver location).
    Browsers cannot set headers on a WebSocket, so the bearer token comes as ``?token=``.
    """
    try:
        username = decode_access_token(token).username
    except JWTError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    user = await User.find_one(User.username == username)
    if user is None or user.disabled or not user.is_approved:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    ctx = RequestContext(user_id=str(user.id), username=user.username, role=user.role, sub_role=user.sub_role)
    booking = await BeanieBookingStore().get(booking_id)
    try:
        if booking is None:
            raise PermissionDeniedError("Booking not found")
        ensure_booking_access(ctx, booking)
    except PermissionDeniedError as e:
        logger.warning(f"WS refused for '{username}' on booking {booking_id}: {e.message}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    rooms = [booking_room(booking_id), user_room(ctx.user_id)]
    if ctx.is_admin:
        rooms.append(ADMIN_ROOM)
    for room in rooms:
        await event_hub.join(room, websocket)
    logger.info(f"WS '{username}' joined {rooms}")
    try:
        while True:
            # Client cuma kirim ping; isinya diabaikan
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info(f"WS '{username}' left booking {booking_id}")
    finally:
        for room in rooms:
            await event_hub.leave(room, websocket)
