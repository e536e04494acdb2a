# driveflow/core/workflow.py
"""
Pure booking workflow rules.

Nothing here touches storage. Each operation validates against the booking
as read, then returns a ``TransitionResult`` carrying the updated booking and
the ``$set`` patch the caller writes in a single update.
"""
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from driveflow.core.config import (
    PICKUP_PHOTOS_REQUIRED,
    DELIVERY_OTP_TTL_MINUTES,
    DELIVERY_OTP_MAX_ATTEMPTS,
)
from driveflow.core.exceptions import (
    InvalidTransitionError,
    PreconditionFailedError,
    OtpRejectedError,
    TooManyAttemptsError,
)
from driveflow.core.status_flow import (
    BookingStatus,
    FlowEvent,
    TERMINAL,
    allowed_events,
    can_resume_to,
    event_for,
    flow_for,
    progress_index,
)
from driveflow.core.utils import as_utc
from driveflow.models.booking import Delay, DeliveryOtp

QC_WARNING = "Quality check has not been completed"


@dataclass
class TransitionResult:
    booking: Any
    patch: Dict[str, Any]
    from_status: BookingStatus
    to_status: BookingStatus
    warnings: List[str] = field(default_factory=list)


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def compute_next_state(current, pickup_required: bool) -> Optional[BookingStatus]:
    """Status following ``current`` in its flow. None for terminal or unknown states."""
    try:
        current = BookingStatus(current)
    except ValueError:
        return None
    return allowed_events(current, pickup_required).get(FlowEvent.ADVANCE)


def can_advance_to_completed(booking) -> bool:
    billing = booking.billing
    return bool(billing is not None and billing.file_url)


def _requires_bill(target: BookingStatus, pickup_required: bool) -> bool:
    target_idx = progress_index(target, pickup_required)
    completed_idx = progress_index(BookingStatus.SERVICE_COMPLETED, pickup_required)
    return target_idx is not None and target_idx >= completed_idx


def _check_preconditions(booking, target: BookingStatus) -> List[str]:
    warnings: List[str] = []
    if _requires_bill(target, booking.pickup_required):
        if not can_advance_to_completed(booking):
            raise PreconditionFailedError(
                "Upload the bill before completing the service",
                details={"missing": "billing.file_url", "target": target.value},
            )
        if booking.qc.completed_at is None:
            warnings.append(QC_WARNING)

    if target == BookingStatus.VEHICLE_PICKED and len(booking.pre_pickup_photos) < PICKUP_PHOTOS_REQUIRED:
        raise PreconditionFailedError(
            f"At least {PICKUP_PHOTOS_REQUIRED} pre-pickup photos are required",
            details={"missing": "pre_pickup_photos", "have": len(booking.pre_pickup_photos)},
        )

    if target == BookingStatus.DELIVERED and booking.status == BookingStatus.OUT_FOR_DELIVERY:
        otp = booking.delivery_otp
        if otp is None or otp.verified_at is None:
            raise PreconditionFailedError(
                "Delivery OTP must be verified before marking the booking delivered",
                details={"missing": "delivery_otp.verified_at"},
            )
    return warnings


def _check_reachable(booking, target: BookingStatus, override: bool) -> None:
    current = booking.status
    if target == current:
        raise InvalidTransitionError(f"Booking is already {target.value}")
    if target in (BookingStatus.ON_HOLD, BookingStatus.COMPLETED):
        raise InvalidTransitionError(f"{target.value} cannot be set directly")

    event = event_for(current, target, booking.pickup_required)
    if event in (FlowEvent.ADVANCE, FlowEvent.CANCEL):
        return
    if override and (target == BookingStatus.CANCELLED or target in flow_for(booking.pickup_required)):
        return
    raise InvalidTransitionError(
        f"Cannot move booking from {current.value} to {target.value}",
        details={"from": current.value, "to": target.value},
    )


def issue_delivery_otp(now: Optional[datetime] = None) -> DeliveryOtp:
    now = _now(now)
    return DeliveryOtp(
        code=f"{secrets.randbelow(9000) + 1000}",
        expires_at=now + timedelta(minutes=DELIVERY_OTP_TTL_MINUTES),
    )


def transition(booking, target, *, override: bool = False, now: Optional[datetime] = None) -> TransitionResult:
    """Validate and plan a status change.

    ``override`` (admin) skips the reachability check only. Preconditions
    always apply. Raises InvalidTransitionError or PreconditionFailedError.
    """
    now = _now(now)
    target = BookingStatus(target)
    _check_reachable(booking, target, override)
    warnings = _check_preconditions(booking, target)

    patch: Dict[str, Any] = {"status": target, "updated_at": now}

    execution = booking.service_execution
    if target == BookingStatus.SERVICE_STARTED and execution.job_start_time is None:
        patch["service_execution"] = execution.model_copy(update={"job_start_time": now})
    elif target == BookingStatus.SERVICE_COMPLETED and execution.job_end_time is None:
        patch["service_execution"] = execution.model_copy(update={"job_end_time": now})

    if target == BookingStatus.OUT_FOR_DELIVERY:
        patch["delivery_otp"] = issue_delivery_otp(now)

    if booking.status == BookingStatus.ON_HOLD:
        patch["delay"] = booking.delay.model_copy(update={"is_delayed": False, "end_time": now})

    return TransitionResult(
        booking=booking.model_copy(update=patch),
        patch=patch,
        from_status=booking.status,
        to_status=target,
        warnings=warnings,
    )


def mark_delayed(booking, reason, note: Optional[str] = None, *, now: Optional[datetime] = None) -> TransitionResult:
    """Put a booking on hold, remembering where to resume."""
    now = _now(now)
    if event_for(booking.status, BookingStatus.ON_HOLD, booking.pickup_required) != FlowEvent.HOLD:
        raise InvalidTransitionError(f"Booking in {booking.status.value} cannot be put on hold")

    delay = Delay(
        is_delayed=True,
        reason=reason,
        note=note,
        start_time=now,
        previous_status=booking.status,
    )
    patch = {"status": BookingStatus.ON_HOLD, "delay": delay, "updated_at": now}
    return TransitionResult(
        booking=booking.model_copy(update=patch),
        patch=patch,
        from_status=booking.status,
        to_status=BookingStatus.ON_HOLD,
    )


def resume(booking, *, now: Optional[datetime] = None) -> TransitionResult:
    """Leave ON_HOLD back to the status recorded when the hold started."""
    now = _now(now)
    if booking.status != BookingStatus.ON_HOLD:
        raise InvalidTransitionError(f"Booking is not on hold (status {booking.status.value})")
    previous = booking.delay.previous_status
    if previous is None or not can_resume_to(previous, booking.pickup_required):
        raise InvalidTransitionError("Hold has no resumable previous status")

    delay = booking.delay.model_copy(update={"is_delayed": False, "end_time": now})
    patch = {"status": previous, "delay": delay, "updated_at": now}
    return TransitionResult(
        booking=booking.model_copy(update=patch),
        patch=patch,
        from_status=BookingStatus.ON_HOLD,
        to_status=previous,
    )


def verify_delivery_otp(otp: Optional[DeliveryOtp], code: str, *, now: Optional[datetime] = None) -> DeliveryOtp:
    """Check a delivery code and return the OTP record to store.

    A wrong code comes back unverified with one more attempt counted; the
    caller persists it and then rejects the request.
    """
    now = _now(now)
    if otp is None:
        raise PreconditionFailedError("No delivery OTP has been issued for this booking")
    if otp.verified_at is not None:
        return otp
    if otp.attempts >= DELIVERY_OTP_MAX_ATTEMPTS:
        raise TooManyAttemptsError("Too many incorrect OTP attempts. Request a new code.")
    if as_utc(otp.expires_at) < now:
        raise OtpRejectedError("Delivery OTP has expired")
    if not secrets.compare_digest(otp.code, code.strip()):
        return otp.model_copy(update={"attempts": otp.attempts + 1})
    return otp.model_copy(update={"verified_at": now})


def is_terminal(status: BookingStatus) -> bool:
    return status in TERMINAL
