"""Workflow service scenarios against in-memory stores."""
from datetime import datetime, timedelta, timezone

import pytest
from beanie import PydanticObjectId

from driveflow.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    OtpRejectedError,
    PermissionDeniedError,
    PreconditionFailedError,
    ValidationFailedError,
)
from driveflow.core.notifications import ADMIN_ROOM, booking_room, user_room
from driveflow.core.status_flow import BookingStatus
from driveflow.core.workflow import QC_WARNING
from driveflow.models.booking import Booking, BookingBase, DeliveryOtp, PartLine
from driveflow.models.enum import DelayReason


async def test_direct_drop_booking_end_to_end(workflow_service, booking_store, audit_store, hub, actors):
    new = BookingBase(
        user_id=PydanticObjectId(actors.customer.user_id),
        vehicle_id=PydanticObjectId(),
        date=datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc),
        services_total=1500,
    )
    created = await workflow_service.create_booking(actors.customer, new)
    booking_id = str(created.id)
    assert created.status == BookingStatus.CREATED
    assert created.order_number == 1000
    assert created.total_amount == 1500
    assert "booking_created" in hub.events(ADMIN_ROOM)

    assigned = await workflow_service.assign(actors.admin, booking_id, Booking.Assign(merchant_id=actors.merchant.user_id))
    assert assigned.status == BookingStatus.ASSIGNED

    for target in ("ACCEPTED", "VEHICLE_AT_MERCHANT", "SERVICE_STARTED"):
        booking, warnings = await workflow_service.transition(actors.merchant, booking_id, target)
        assert booking.status == BookingStatus(target)
        assert warnings == []
    started_at = booking.service_execution.job_start_time
    assert started_at is not None
    assert booking.service_execution.job_end_time is None

    with pytest.raises(PreconditionFailedError):
        await workflow_service.transition(actors.merchant, booking_id, "SERVICE_COMPLETED")

    billed = await workflow_service.submit_billing(
        actors.merchant, booking_id,
        Booking.BillingUpdate(labour_cost=500, gst=90, file_url="/uploads/inv-1000.pdf"),
    )
    assert billed.billing.total == 590.0
    assert billed.billing.invoice_number == "INV-1000"
    assert billed.billing.submitted_at is not None
    assert billed.total_amount == 590.0

    booking, warnings = await workflow_service.transition(actors.merchant, booking_id, "SERVICE_COMPLETED")
    assert booking.status == BookingStatus.SERVICE_COMPLETED
    assert warnings == [QC_WARNING]
    assert booking.service_execution.job_start_time == started_at
    assert booking.service_execution.job_end_time is not None

    booking, _ = await workflow_service.transition(actors.customer, booking_id, "DELIVERED")
    assert booking.status == BookingStatus.DELIVERED

    changes = [e.details for e in audit_store.entries if e.action == "status_change"]
    assert changes[-1] == {"from": "SERVICE_COMPLETED", "to": "DELIVERED"}
    assert len(changes) == 5
    assert "status_updated" in hub.events(booking_room(booking_id))
    assert "status_updated" in hub.events(user_room(actors.customer.user_id))


async def test_each_transition_is_one_write(workflow_service, booking_store, seed_booking, actors):
    booking = seed_booking(status=BookingStatus.ACCEPTED)
    await workflow_service.transition(actors.merchant, str(booking.id), "VEHICLE_AT_MERCHANT")
    assert len(booking_store.writes) == 1
    assert set(booking_store.writes[0]) == {"status", "updated_at"}


async def test_rejected_transition_writes_nothing(workflow_service, booking_store, audit_store, seed_booking, actors):
    booking = seed_booking(status=BookingStatus.ASSIGNED)
    with pytest.raises(InvalidTransitionError):
        await workflow_service.transition(actors.merchant, str(booking.id), "SERVICE_STARTED")
    assert booking_store.writes == []
    assert audit_store.entries == []


async def test_unknown_status_is_a_validation_error(workflow_service, seed_booking, actors):
    booking = seed_booking()
    with pytest.raises(ValidationFailedError):
        await workflow_service.transition(actors.admin, str(booking.id), "TELEPORTED")


async def test_customer_can_only_confirm_delivery(workflow_service, seed_booking, actors):
    booking = seed_booking(status=BookingStatus.ASSIGNED)
    with pytest.raises(PermissionDeniedError):
        await workflow_service.transition(actors.customer, str(booking.id), "ACCEPTED")


async def test_unrelated_users_cannot_touch_booking(workflow_service, seed_booking, actors):
    booking = seed_booking(status=BookingStatus.ASSIGNED)
    with pytest.raises(PermissionDeniedError):
        await workflow_service.transition(actors.other_merchant, str(booking.id), "ACCEPTED")
    with pytest.raises(PermissionDeniedError):
        await workflow_service.get(actors.other_customer, str(booking.id))


async def test_missing_booking_is_not_found(workflow_service, actors):
    with pytest.raises(NotFoundError):
        await workflow_service.get(actors.admin, str(PydanticObjectId()))


async def test_pickup_booking_needs_driver_before_assigned(workflow_service, seed_booking, actors):
    booking = seed_booking(pickup_required=True, merchant_id=None)
    booking_id = str(booking.id)
    updated = await workflow_service.assign(actors.admin, booking_id, Booking.Assign(merchant_id=actors.merchant.user_id))
    assert updated.status == BookingStatus.CREATED

    updated = await workflow_service.assign(actors.admin, booking_id, Booking.Assign(pickup_driver_id=actors.driver.user_id))
    assert updated.status == BookingStatus.ASSIGNED
    assert str(updated.pickup_driver_id) == actors.driver.user_id


async def test_merchant_may_only_assign_technician(workflow_service, seed_booking, actors):
    booking = seed_booking(status=BookingStatus.VEHICLE_AT_MERCHANT)
    booking_id = str(booking.id)
    updated = await workflow_service.assign(actors.merchant, booking_id, Booking.Assign(technician_id=actors.technician.user_id))
    assert str(updated.technician_id) == actors.technician.user_id

    with pytest.raises(PermissionDeniedError):
        await workflow_service.assign(actors.merchant, booking_id, Booking.Assign(pickup_driver_id=actors.driver.user_id))


async def test_hold_and_resume_are_audited(workflow_service, audit_store, hub, seed_booking, actors):
    booking = seed_booking(status=BookingStatus.SERVICE_STARTED)
    booking_id = str(booking.id)
    held = await workflow_service.mark_delayed(actors.merchant, booking_id, DelayReason.WAITING_FOR_PARTS, "Pads on order")
    assert held.status == BookingStatus.ON_HOLD
    assert held.delay.previous_status == BookingStatus.SERVICE_STARTED
    assert "booking_delayed" in hub.events(ADMIN_ROOM)

    resumed = await workflow_service.resume(actors.merchant, booking_id)
    assert resumed.status == BookingStatus.SERVICE_STARTED
    assert resumed.delay.is_delayed is False
    assert audit_store.actions() == ["booking_delayed", "booking_resumed"]


async def test_customer_cannot_hold(workflow_service, seed_booking, actors):
    booking = seed_booking(status=BookingStatus.SERVICE_STARTED)
    with pytest.raises(PermissionDeniedError):
        await workflow_service.mark_delayed(actors.customer, str(booking.id), DelayReason.OTHER)


async def test_delivery_code_flow(workflow_service, booking_store, hub, seed_booking, actors):
    otp = DeliveryOtp(code="4821", expires_at=datetime.now(timezone.utc) + timedelta(minutes=10))
    booking = seed_booking(
        status=BookingStatus.OUT_FOR_DELIVERY,
        pickup_required=True,
        pickup_driver_id=PydanticObjectId(actors.driver.user_id),
        delivery_otp=otp,
        billing={"file_url": "/uploads/inv.pdf"},
    )
    booking_id = str(booking.id)

    with pytest.raises(OtpRejectedError) as exc_info:
        await workflow_service.verify_delivery_otp(actors.driver, booking_id, "1111")
    assert exc_info.value.details == {"attempts_left": 4}
    assert booking_store.items[booking_id].delivery_otp.attempts == 1

    with pytest.raises(PreconditionFailedError):
        await workflow_service.transition(actors.driver, booking_id, "DELIVERED")

    verified = await workflow_service.verify_delivery_otp(actors.driver, booking_id, "4821")
    assert verified.delivery_otp.verified_at is not None

    delivered, _ = await workflow_service.transition(actors.driver, booking_id, "DELIVERED")
    assert delivered.status == BookingStatus.DELIVERED


async def test_generate_code_pushes_only_to_customer(workflow_service, hub, seed_booking, actors):
    booking = seed_booking(status=BookingStatus.OUT_FOR_DELIVERY, pickup_required=True)
    updated = await workflow_service.generate_delivery_otp(actors.admin, str(booking.id))
    pushes = [(room, payload) for room, event, payload in hub.published if event == "delivery_otp"]
    assert pushes == [(user_room(actors.customer.user_id), {
        "booking_id": str(booking.id),
        "code": updated.delivery_otp.code,
        "expires_at": updated.delivery_otp.expires_at.isoformat(),
    })]


async def test_generate_code_outside_delivery_is_refused(workflow_service, seed_booking, actors):
    booking = seed_booking(status=BookingStatus.SERVICE_STARTED)
    with pytest.raises(PreconditionFailedError):
        await workflow_service.generate_delivery_otp(actors.merchant, str(booking.id))


async def test_customer_cannot_edit_parts(workflow_service, seed_booking, actors):
    booking = seed_booking()
    with pytest.raises(PermissionDeniedError):
        await workflow_service.update_details(
            actors.customer, str(booking.id), Booking.DetailsUpdate(parts=[PartLine(name="Horn", price=1)])
        )
    updated = await workflow_service.update_details(actors.customer, str(booking.id), Booking.DetailsUpdate(notes="Gate 2"))
    assert updated.notes == "Gate 2"


async def test_merchant_part_edit_reprices_booking(workflow_service, seed_booking, actors):
    booking = seed_booking(status=BookingStatus.SERVICE_STARTED)
    updated = await workflow_service.update_details(
        actors.merchant, str(booking.id),
        Booking.DetailsUpdate(parts=[PartLine(name="Air Filter", price=450, quantity=2)]),
    )
    assert updated.billing.parts_total == 900.0
    assert updated.total_amount == 2400.0


async def test_second_bill_submission_needs_admin(workflow_service, seed_booking, actors):
    booking = seed_booking(status=BookingStatus.SERVICE_STARTED)
    booking_id = str(booking.id)
    await workflow_service.submit_billing(actors.merchant, booking_id, Booking.BillingUpdate(labour_cost=300, file_url="/uploads/a.pdf"))
    with pytest.raises(PreconditionFailedError):
        await workflow_service.submit_billing(actors.merchant, booking_id, Booking.BillingUpdate(labour_cost=100))

    corrected = await workflow_service.submit_billing(actors.admin, booking_id, Booking.BillingUpdate(labour_cost=100))
    assert corrected.billing.total == 100.0


async def test_staff_cannot_submit_bill(workflow_service, seed_booking, actors):
    booking = seed_booking(technician_id=PydanticObjectId(actors.technician.user_id))
    with pytest.raises(PermissionDeniedError):
        await workflow_service.submit_billing(actors.technician, str(booking.id), Booking.BillingUpdate(labour_cost=1))


async def test_qc_completion_requires_every_check(workflow_service, seed_booking, actors):
    booking = seed_booking(status=BookingStatus.SERVICE_STARTED)
    booking_id = str(booking.id)
    with pytest.raises(ValidationFailedError):
        await workflow_service.update_qc(actors.merchant, booking_id, Booking.QCUpdate(test_ride=True, completed=True))

    updated = await workflow_service.update_qc(
        actors.merchant, booking_id,
        Booking.QCUpdate(test_ride=True, safety_checks=True, no_leaks=True, no_error_lights=True, completed=True),
    )
    assert updated.qc.completed_at is not None
    assert updated.qc.completed_by == actors.merchant.user_id


async def test_execution_photos_append(workflow_service, seed_booking, actors):
    booking = seed_booking(status=BookingStatus.SERVICE_STARTED)
    booking_id = str(booking.id)
    await workflow_service.record_execution(actors.merchant, booking_id, Booking.ExecutionUpdate(before_photos=["/uploads/b1.jpg"]))
    updated = await workflow_service.record_execution(
        actors.merchant, booking_id, Booking.ExecutionUpdate(before_photos=["/uploads/b2.jpg"], after_photos=["/uploads/a1.jpg"])
    )
    assert updated.service_execution.before_photos == ["/uploads/b1.jpg", "/uploads/b2.jpg"]
    assert updated.service_execution.after_photos == ["/uploads/a1.jpg"]


async def test_listing_is_scoped_by_role(workflow_service, seed_booking, actors):
    mine = seed_booking()
    seed_booking(user_id=PydanticObjectId(actors.other_customer.user_id), merchant_id=PydanticObjectId(actors.other_merchant.user_id))

    assert [b.id for b in await workflow_service.list_for(actors.customer)] == [mine.id]
    assert [b.id for b in await workflow_service.list_for(actors.merchant)] == [mine.id]
    assert len(await workflow_service.list_for(actors.admin)) == 2
