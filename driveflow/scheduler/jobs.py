# driveflow/scheduler/jobs.py
import logging
from datetime import datetime, timezone
from typing import Optional

from pymongo.errors import PyMongoError

from driveflow.core.status_flow import BookingStatus
from driveflow.models.booking import Booking

logger = logging.getLogger("scheduler_jobs")


async def expire_stale_delivery_otps(now: Optional[datetime] = None) -> int:
    """
    Clear delivery codes that expired without being verified, so the driver
    has to request a fresh one. Runs inside the app process; Beanie is
    already initialised by the lifespan handler.
    """
    now = now or datetime.now(timezone.utc)
    logger.info(f"Running expire_stale_delivery_otps job at {now}")
    query = {
        "status": BookingStatus.OUT_FOR_DELIVERY.value,
        "delivery_otp.verified_at": None,
        "delivery_otp.expires_at": {"$lt": now},
    }
    try:
        result = await Booking.find(query).update({"$set": {"delivery_otp": None, "updated_at": now}})
    except PyMongoError as e:
        logger.error(f"expire_stale_delivery_otps failed: {e}")
        return 0
    cleared = getattr(result, "modified_count", 0) or 0
    if cleared:
        logger.info(f"Cleared {cleared} expired delivery code(s).")
    return cleared
