"""Tests for the pure transition rules in driveflow.core.workflow."""
from datetime import datetime, timedelta, timezone

import pytest
from beanie import PydanticObjectId

from driveflow.core import workflow as rules
from driveflow.core.exceptions import (
    InvalidTransitionError,
    OtpRejectedError,
    PreconditionFailedError,
    TooManyAttemptsError,
)
from driveflow.core.status_flow import BookingStatus
from driveflow.models.booking import Billing, BookingBase, DeliveryOtp, QualityCheck
from driveflow.models.enum import DelayReason

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def make_booking(status=BookingStatus.CREATED, pickup_required=False, **fields) -> BookingBase:
    return BookingBase(user_id=PydanticObjectId(), status=status, pickup_required=pickup_required, **fields)


def billed(**fields) -> Billing:
    return Billing(labour_cost=500, gst=90, file_url="/uploads/invoice.pdf", submitted_at=NOW, **fields)


def passed_qc() -> QualityCheck:
    return QualityCheck(test_ride=True, safety_checks=True, no_leaks=True, no_error_lights=True, completed_at=NOW)


def test_advance_one_step_builds_single_patch():
    booking = make_booking(BookingStatus.ACCEPTED)
    result = rules.transition(booking, BookingStatus.VEHICLE_AT_MERCHANT, now=NOW)
    assert result.patch == {"status": BookingStatus.VEHICLE_AT_MERCHANT, "updated_at": NOW}
    assert result.booking.status == BookingStatus.VEHICLE_AT_MERCHANT
    assert result.from_status == BookingStatus.ACCEPTED
    # booking asli tidak berubah
    assert booking.status == BookingStatus.ACCEPTED


def test_skipping_states_is_rejected():
    with pytest.raises(InvalidTransitionError):
        rules.transition(make_booking(BookingStatus.CREATED), BookingStatus.SERVICE_STARTED)


def test_moving_backwards_is_rejected():
    with pytest.raises(InvalidTransitionError):
        rules.transition(make_booking(BookingStatus.SERVICE_STARTED), BookingStatus.ACCEPTED)


def test_admin_override_may_skip_and_stamps_job_start():
    result = rules.transition(make_booking(BookingStatus.CREATED), BookingStatus.SERVICE_STARTED, override=True, now=NOW)
    assert result.to_status == BookingStatus.SERVICE_STARTED
    assert result.patch["service_execution"].job_start_time == NOW


def test_admin_override_does_not_skip_the_bill():
    booking = make_booking(BookingStatus.SERVICE_STARTED)
    with pytest.raises(PreconditionFailedError):
        rules.transition(booking, BookingStatus.DELIVERED, override=True)


def test_same_status_and_hold_target_are_invalid():
    booking = make_booking(BookingStatus.ASSIGNED)
    with pytest.raises(InvalidTransitionError):
        rules.transition(booking, BookingStatus.ASSIGNED)
    with pytest.raises(InvalidTransitionError):
        rules.transition(booking, BookingStatus.ON_HOLD, override=True)
    with pytest.raises(InvalidTransitionError):
        rules.transition(booking, BookingStatus.COMPLETED, override=True)


def test_service_completed_requires_uploaded_bill():
    booking = make_booking(BookingStatus.SERVICE_STARTED)
    with pytest.raises(PreconditionFailedError) as exc_info:
        rules.transition(booking, BookingStatus.SERVICE_COMPLETED)
    assert exc_info.value.details["missing"] == "billing.file_url"


def test_missing_qc_is_only_a_warning():
    booking = make_booking(BookingStatus.SERVICE_STARTED, billing=billed())
    result = rules.transition(booking, BookingStatus.SERVICE_COMPLETED, now=NOW)
    assert result.warnings == [rules.QC_WARNING]
    assert result.patch["service_execution"].job_end_time == NOW


def test_completed_qc_clears_the_warning():
    booking = make_booking(BookingStatus.SERVICE_STARTED, billing=billed(), qc=passed_qc())
    assert rules.transition(booking, BookingStatus.SERVICE_COMPLETED).warnings == []


def test_vehicle_picked_needs_four_photos():
    photos = [f"/uploads/p{i}.jpg" for i in range(3)]
    booking = make_booking(BookingStatus.REACHED_CUSTOMER, pickup_required=True, pre_pickup_photos=photos)
    with pytest.raises(PreconditionFailedError):
        rules.transition(booking, BookingStatus.VEHICLE_PICKED)

    booking = booking.model_copy(update={"pre_pickup_photos": photos + ["/uploads/p3.jpg"]})
    assert rules.transition(booking, BookingStatus.VEHICLE_PICKED).to_status == BookingStatus.VEHICLE_PICKED


def test_out_for_delivery_issues_a_delivery_code():
    booking = make_booking(BookingStatus.SERVICE_COMPLETED, pickup_required=True, billing=billed())
    result = rules.transition(booking, BookingStatus.OUT_FOR_DELIVERY, now=NOW)
    otp = result.patch["delivery_otp"]
    assert len(otp.code) == 4 and otp.code.isdigit()
    assert otp.expires_at == NOW + timedelta(minutes=20)
    assert otp.attempts == 0 and otp.verified_at is None


def test_delivery_from_out_for_delivery_requires_verified_code():
    otp = DeliveryOtp(code="4821", expires_at=NOW + timedelta(minutes=5))
    booking = make_booking(BookingStatus.OUT_FOR_DELIVERY, pickup_required=True, billing=billed(), delivery_otp=otp)
    with pytest.raises(PreconditionFailedError):
        rules.transition(booking, BookingStatus.DELIVERED)

    verified = otp.model_copy(update={"verified_at": NOW})
    booking = booking.model_copy(update={"delivery_otp": verified})
    assert rules.transition(booking, BookingStatus.DELIVERED).to_status == BookingStatus.DELIVERED


def test_cancel_is_allowed_from_any_open_state():
    for status in (BookingStatus.CREATED, BookingStatus.SERVICE_STARTED, BookingStatus.SERVICE_COMPLETED):
        result = rules.transition(make_booking(status), BookingStatus.CANCELLED)
        assert result.to_status == BookingStatus.CANCELLED


def test_nothing_leaves_a_terminal_state():
    with pytest.raises(InvalidTransitionError):
        rules.transition(make_booking(BookingStatus.CANCELLED), BookingStatus.CREATED)
    with pytest.raises(InvalidTransitionError):
        rules.transition(make_booking(BookingStatus.DELIVERED), BookingStatus.CANCELLED)


def test_hold_then_resume_returns_to_previous_status():
    booking = make_booking(BookingStatus.SERVICE_STARTED, pickup_required=True)
    held = rules.mark_delayed(booking, DelayReason.WAITING_FOR_PARTS, "Brake pads on order", now=NOW)
    assert held.to_status == BookingStatus.ON_HOLD
    assert held.booking.delay.previous_status == BookingStatus.SERVICE_STARTED
    assert held.booking.delay.is_delayed is True

    later = NOW + timedelta(hours=3)
    resumed = rules.resume(held.booking, now=later)
    assert resumed.to_status == BookingStatus.SERVICE_STARTED
    assert resumed.booking.delay.is_delayed is False
    assert resumed.booking.delay.end_time == later
    assert resumed.booking.delay.reason == DelayReason.WAITING_FOR_PARTS


def test_hold_is_refused_for_terminal_and_held_bookings():
    with pytest.raises(InvalidTransitionError):
        rules.mark_delayed(make_booking(BookingStatus.DELIVERED), DelayReason.OTHER)
    held = rules.mark_delayed(make_booking(BookingStatus.ACCEPTED), DelayReason.OTHER).booking
    with pytest.raises(InvalidTransitionError):
        rules.mark_delayed(held, DelayReason.OTHER)


def test_resume_requires_hold():
    with pytest.raises(InvalidTransitionError):
        rules.resume(make_booking(BookingStatus.ACCEPTED))


def test_cancel_from_hold_closes_the_delay():
    held = rules.mark_delayed(make_booking(BookingStatus.ACCEPTED), DelayReason.OTHER, now=NOW).booking
    result = rules.transition(held, BookingStatus.CANCELLED, now=NOW)
    assert result.patch["delay"].is_delayed is False
    assert result.patch["delay"].end_time == NOW


class TestDeliveryOtp:

    def otp(self, **fields) -> DeliveryOtp:
        data = {"code": "4821", "expires_at": NOW + timedelta(minutes=10)}
        data.update(fields)
        return DeliveryOtp(**data)

    def test_correct_code_verifies(self):
        result = rules.verify_delivery_otp(self.otp(), "4821", now=NOW)
        assert result.verified_at == NOW

    def test_wrong_code_counts_an_attempt(self):
        result = rules.verify_delivery_otp(self.otp(attempts=1), "0000", now=NOW)
        assert result.verified_at is None
        assert result.attempts == 2

    def test_expired_code_is_rejected(self):
        with pytest.raises(OtpRejectedError):
            rules.verify_delivery_otp(self.otp(expires_at=NOW - timedelta(seconds=1)), "4821", now=NOW)

    def test_attempt_limit_locks_the_code(self):
        with pytest.raises(TooManyAttemptsError):
            rules.verify_delivery_otp(self.otp(attempts=5), "4821", now=NOW)

    def test_missing_code(self):
        with pytest.raises(PreconditionFailedError):
            rules.verify_delivery_otp(None, "4821", now=NOW)

    def test_already_verified_is_returned_unchanged(self):
        otp = self.otp(verified_at=NOW)
        assert rules.verify_delivery_otp(otp, "9999", now=NOW) is otp
