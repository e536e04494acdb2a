"""Tests for the background delivery-code cleanup job."""
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

from pymongo.errors import ServerSelectionTimeoutError

from driveflow.scheduler.jobs import expire_stale_delivery_otps

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


async def test_clears_expired_unverified_codes():
    with patch("driveflow.scheduler.jobs.Booking") as booking_model:
        booking_model.find = MagicMock()
        booking_model.find.return_value.update = AsyncMock(return_value=SimpleNamespace(modified_count=2))

        cleared = await expire_stale_delivery_otps(now=NOW)

    assert cleared == 2
    query = booking_model.find.call_args.args[0]
    assert query["status"] == "OUT_FOR_DELIVERY"
    assert query["delivery_otp.verified_at"] is None
    assert query["delivery_otp.expires_at"] == {"$lt": NOW}
    update = booking_model.find.return_value.update.call_args.args[0]
    assert update == {"$set": {"delivery_otp": None, "updated_at": NOW}}


async def test_database_failure_is_logged_and_reported_as_zero():
    with patch("driveflow.scheduler.jobs.Booking") as booking_model:
        booking_model.find = MagicMock()
        booking_model.find.return_value.update = AsyncMock(side_effect=ServerSelectionTimeoutError("no primary"))

        assert await expire_stale_delivery_otps(now=NOW) == 0
