# driveflow/api/v1/endpoints/tracking.py
from datetime import datetime, timezone
from typing import List, Optional

from bson import ObjectId
from fastapi import APIRouter, Body, Depends, HTTPException, Request
from loguru import logger
from pydantic import BaseModel, Field
from pymongo.errors import PyMongoError

from driveflow.api.deps import get_booking_store
from driveflow.api.responses import validate_document_response
from driveflow.core.context import RequestContext
from driveflow.core.notifications import BookingEventHub, booking_room, get_event_hub
from driveflow.core.rate_limiter import limiter
from driveflow.core.security import require_admin, require_roles
from driveflow.core.status_flow import TERMINAL
from driveflow.db.stores import BookingStore
from driveflow.models.enum import UserRole
from driveflow.models.user import User, UserLocation

router = APIRouter(tags=["Tracking"])

require_staff = require_roles([UserRole.STAFF])


class LocationUpdate(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    address: Optional[str] = None


@router.put("/me", response_model=User.Response)
@limiter.limit("120/minute")
async def update_my_location(
    request: Request,
    location_in: LocationUpdate = Body(...),
    ctx: RequestContext = Depends(require_staff),
    bookings: BookingStore = Depends(get_booking_store),
    notifier: BookingEventHub = Depends(get_event_hub),
):
    """Driver position update, forwarded live to every open booking the driver is on."""
    now = datetime.now(timezone.utc)
    location = UserLocation(**location_in.model_dump(), updated_at=now)
    user = await User.find_one({"_id": ObjectId(ctx.user_id)})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    try:
        await user.update({"$set": {"location": location.model_dump(), "updated_at": now}})
    except PyMongoError as e:
        raise HTTPException(status_code=500, detail="Failed to save location.") from e

    payload = {"driver_id": ctx.user_id, **location.model_dump(mode="json")}
    for booking in await bookings.list(staff_id=ctx.user_id, limit=50):
        if booking.status in TERMINAL or str(booking.pickup_driver_id) != ctx.user_id:
            continue
        await notifier.publish(booking_room(str(booking.id)), "driver_location", payload)
    logger.debug(f"Location of '{ctx.username}' updated to {location.lat},{location.lng}")
    return validate_document_response(await User.find_one({"_id": ObjectId(ctx.user_id)}), User.Response)


@router.get("/", response_model=List[User.Response], dependencies=[Depends(require_admin)])
@limiter.limit("60/minute")
async def read_staff_locations(request: Request):
    """Last known position of every staff member that has reported one."""
    staff = await User.find({"role": UserRole.STAFF.value, "location": {"$ne": None}}).to_list()
    return [validate_document_response(u, User.Response) for u in staff]
