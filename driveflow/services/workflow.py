# driveflow/services/workflow.py
"""
Booking workflow orchestration.

Every operation follows the same order: load the booking, check who is
acting, validate with the pure rules in ``driveflow.core.workflow``, write
one ``$set`` patch, then record audit and push events. Audit and push are
best-effort and never undo a committed write.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from beanie import PydanticObjectId
from bson import ObjectId
from loguru import logger

from driveflow.core import workflow as rules
from driveflow.core.billing import booking_total, parts_total, reprice_parts
from driveflow.core.config import DELIVERY_OTP_MAX_ATTEMPTS
from driveflow.core.context import RequestContext
from driveflow.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    OtpRejectedError,
    PermissionDeniedError,
    PreconditionFailedError,
    ValidationFailedError,
)
from driveflow.core.notifications import ADMIN_ROOM, BookingEventHub, booking_room, user_room
from driveflow.core.status_flow import BookingStatus, STATUS_LABELS, normalize_status
from driveflow.db.stores import BookingStore
from driveflow.models.booking import Booking, BookingBase, Billing, QualityCheck
from driveflow.models.enum import ApprovalStatus, ApprovalType, UserRole
from driveflow.services.audit import AuditRecorder

OPERATOR_ROLES = {UserRole.ADMIN, UserRole.MERCHANT, UserRole.STAFF}
BILLING_ROLES = {UserRole.ADMIN, UserRole.MERCHANT}


def ensure_booking_access(ctx: RequestContext, booking: BookingBase) -> None:
    """Owner, admin, assigned merchant or assigned staff (driver / technician)."""
    if ctx.is_admin:
        return
    uid = ctx.user_id
    if ctx.role == UserRole.CUSTOMER and str(booking.user_id) == uid:
        return
    if ctx.role == UserRole.MERCHANT and booking.merchant_id is not None and str(booking.merchant_id) == uid:
        return
    if ctx.role == UserRole.STAFF and uid in {str(booking.pickup_driver_id), str(booking.technician_id)}:
        return
    raise PermissionDeniedError("You do not have access to this booking")


def ensure_role(ctx: RequestContext, roles, action: str) -> None:
    if ctx.role not in roles:
        raise PermissionDeniedError(f"Role '{ctx.role.value}' cannot {action}")


def _object_id(value: str, field: str) -> PydanticObjectId:
    if not ObjectId.is_valid(value):
        raise ValidationFailedError(f"Invalid {field} format.")
    return PydanticObjectId(value)


class WorkflowService:

    def __init__(self, bookings: BookingStore, audit: AuditRecorder, notifier: BookingEventHub, approvals=None):
        self.bookings = bookings
        self.audit = audit
        self.notifier = notifier
        self.approvals = approvals

    # --- Helpers ---
    async def _load(self, booking_id: str) -> BookingBase:
        booking = await self.bookings.get(booking_id)
        if booking is None:
            raise NotFoundError(f"Booking with ID '{booking_id}' not found")
        return booking

    async def _save(self, booking_id: str, patch: Dict[str, Any]) -> BookingBase:
        updated = await self.bookings.update(booking_id, patch)
        if updated is None:
            raise NotFoundError(f"Booking with ID '{booking_id}' not found")
        return updated

    async def _push(self, booking: BookingBase, booking_id: str, event: str, payload: Dict[str, Any]) -> None:
        payload = {"booking_id": booking_id, **payload}
        await self.notifier.publish(booking_room(booking_id), event, payload)
        await self.notifier.publish(user_room(str(booking.user_id)), event, payload)

    async def _push_otp(self, booking: BookingBase, booking_id: str, otp) -> None:
        # Kode hanya dikirim ke customer, driver harus memintanya saat serah terima
        await self.notifier.publish(user_room(str(booking.user_id)), "delivery_otp", {
            "booking_id": booking_id,
            "code": otp.code,
            "expires_at": otp.expires_at.isoformat(),
        })

    async def _commit(
        self, ctx: RequestContext, booking_id: str, result: rules.TransitionResult, action: str
    ) -> Tuple[BookingBase, List[str]]:
        updated = await self._save(booking_id, result.patch)
        logger.info(
            f"Booking {booking_id}: {result.from_status.value} -> {result.to_status.value} by '{ctx.username}'"
        )
        for warning in result.warnings:
            logger.warning(f"Booking {booking_id}: {warning}")
        await self.audit.record(
            ctx, action, "Booking", booking_id,
            {"from": result.from_status.value, "to": result.to_status.value},
        )
        await self._push(updated, booking_id, "status_updated", {
            "status": result.to_status.value,
            "label": STATUS_LABELS[result.to_status],
            "warnings": result.warnings,
        })
        return updated, result.warnings

    # --- Queries ---
    async def get(self, ctx: RequestContext, booking_id: str) -> BookingBase:
        booking = await self._load(booking_id)
        ensure_booking_access(ctx, booking)
        return booking

    async def list_for(
        self, ctx: RequestContext, statuses=None, skip: int = 0, limit: int = 50, own_only: bool = False
    ) -> List[BookingBase]:
        scope: Dict[str, Any] = {}
        if own_only or ctx.role == UserRole.CUSTOMER:
            scope["user_id"] = ctx.user_id
        elif ctx.role == UserRole.MERCHANT:
            scope["merchant_id"] = ctx.user_id
        elif ctx.role == UserRole.STAFF:
            scope["staff_id"] = ctx.user_id
        return await self.bookings.list(statuses=statuses, skip=skip, limit=limit, **scope)

    # --- Creation & assignment ---
    async def create_booking(self, ctx: RequestContext, booking: BookingBase) -> BookingBase:
        ensure_role(ctx, {UserRole.CUSTOMER, UserRole.ADMIN}, "create bookings")
        booking = booking.model_copy(update={
            "status": BookingStatus.CREATED,
            "total_amount": booking_total(booking),
        })
        created = await self.bookings.create(booking)
        booking_id = str(created.id)
        await self.audit.record(ctx, "booking_created", "Booking", booking_id, {
            "order_number": created.order_number,
            "pickup_required": created.pickup_required,
        })
        await self.notifier.publish(ADMIN_ROOM, "booking_created", {
            "booking_id": booking_id,
            "order_number": created.order_number,
        })
        return created

    async def assign(self, ctx: RequestContext, booking_id: str, data: Booking.Assign) -> BookingBase:
        booking = await self._load(booking_id)
        if not ctx.is_admin:
            # Merchant hanya boleh set teknisi untuk booking miliknya
            only_technician = data.technician_id and not any(
                (data.merchant_id, data.pickup_driver_id, data.date, data.slot)
            )
            if ctx.role != UserRole.MERCHANT or not only_technician:
                raise PermissionDeniedError("Only admins can assign merchants, drivers or slots")
            ensure_booking_access(ctx, booking)
        if rules.is_terminal(booking.status):
            raise InvalidTransitionError(f"Cannot assign a booking in {booking.status.value}")

        now = datetime.now(timezone.utc)
        patch: Dict[str, Any] = {}
        for field in ("merchant_id", "pickup_driver_id", "technician_id"):
            value = getattr(data, field)
            if value is not None:
                patch[field] = _object_id(value, field)
        if data.date is not None:
            patch["date"] = data.date
        if data.slot is not None:
            patch["slot"] = data.slot
        if not patch:
            raise ValidationFailedError("Nothing to assign")

        from_status = booking.status
        merged = booking.model_copy(update=patch)
        ready = merged.merchant_id is not None and (not merged.pickup_required or merged.pickup_driver_id is not None)
        if booking.status == BookingStatus.CREATED and ready:
            result = rules.transition(merged, BookingStatus.ASSIGNED, now=now)
            patch.update(result.patch)
        patch["updated_at"] = now

        updated = await self._save(booking_id, patch)
        await self.audit.record(ctx, "booking_assigned", "Booking", booking_id, {
            **{k: str(v) for k, v in patch.items() if k.endswith("_id")},
            "from": from_status.value,
            "to": updated.status.value,
        })
        await self._push(updated, booking_id, "booking_assigned", {"status": updated.status.value})
        for field in ("merchant_id", "pickup_driver_id", "technician_id"):
            if field in patch:
                await self.notifier.publish(user_room(str(patch[field])), "booking_assigned", {"booking_id": booking_id})
        return updated

    # --- Status ---
    async def transition(self, ctx: RequestContext, booking_id: str, target) -> Tuple[BookingBase, List[str]]:
        try:
            target = normalize_status(target)
        except ValueError as e:
            raise ValidationFailedError(str(e)) from e
        booking = await self._load(booking_id)
        ensure_booking_access(ctx, booking)
        if ctx.is_customer and target != BookingStatus.DELIVERED:
            raise PermissionDeniedError("Customers can only confirm delivery")
        result = rules.transition(booking, target, override=ctx.is_admin)
        updated, warnings = await self._commit(ctx, booking_id, result, "status_change")
        if "delivery_otp" in result.patch:
            await self._push_otp(booking, booking_id, result.patch["delivery_otp"])
        return updated, warnings

    async def mark_delayed(self, ctx: RequestContext, booking_id: str, reason, note: Optional[str] = None) -> BookingBase:
        ensure_role(ctx, OPERATOR_ROLES, "put bookings on hold")
        booking = await self._load(booking_id)
        ensure_booking_access(ctx, booking)
        result = rules.mark_delayed(booking, reason, note)
        updated, _ = await self._commit(ctx, booking_id, result, "booking_delayed")
        await self.notifier.publish(ADMIN_ROOM, "booking_delayed", {
            "booking_id": booking_id,
            "reason": getattr(reason, "value", reason),
            "note": note,
        })
        return updated

    async def resume(self, ctx: RequestContext, booking_id: str) -> BookingBase:
        ensure_role(ctx, OPERATOR_ROLES, "resume bookings")
        booking = await self._load(booking_id)
        ensure_booking_access(ctx, booking)
        result = rules.resume(booking)
        updated, _ = await self._commit(ctx, booking_id, result, "booking_resumed")
        return updated

    # --- Sub-record updates ---
    async def update_details(self, ctx: RequestContext, booking_id: str, data: Booking.DetailsUpdate) -> BookingBase:
        booking = await self._load(booking_id)
        ensure_booking_access(ctx, booking)
        if ctx.is_customer and (data.parts is not None or data.pre_pickup_photos is not None):
            raise PermissionDeniedError("Customers cannot change parts or pickup photos")

        patch: Dict[str, Any] = {}
        for field in ("notes", "media", "pre_pickup_photos", "location"):
            value = getattr(data, field)
            if value is not None:
                patch[field] = value
        if data.parts is not None:
            patch.update(reprice_parts(booking, data.parts))
        if not patch:
            raise ValidationFailedError("No booking fields supplied")
        patch["updated_at"] = datetime.now(timezone.utc)

        updated = await self._save(booking_id, patch)
        await self.audit.record(ctx, "booking_details_updated", "Booking", booking_id, {
            "fields": sorted(k for k in patch if k != "updated_at"),
        })
        await self._push(updated, booking_id, "booking_updated", {"fields": sorted(patch)})
        return updated

    async def update_inspection(self, ctx: RequestContext, booking_id: str, data: Booking.InspectionUpdate) -> BookingBase:
        ensure_role(ctx, OPERATOR_ROLES, "record inspections")
        booking = await self._load(booking_id)
        ensure_booking_access(ctx, booking)
        now = datetime.now(timezone.utc)
        inspection = booking.inspection
        changes: Dict[str, Any] = {}
        if data.damage_report is not None:
            changes["damage_report"] = data.damage_report
        if data.photos is not None:
            changes["photos"] = data.photos

        merged = []
        if data.additional_parts is not None:
            known = {p.approval_id: p for p in inspection.additional_parts if p.approval_id}
            for part in data.additional_parts:
                existing = known.get(part.approval_id) if part.approval_id else None
                if existing is not None:
                    # Part yang sudah diajukan tidak bisa diubah dari client
                    merged.append(existing)
                    continue
                fresh = part.model_copy(update={
                    "approval_id": None, "approved": False, "approval_status": ApprovalStatus.PENDING,
                })
                if fresh.name and fresh.price > 0 and self.approvals is not None:
                    # Id dipesan dulu, request baru dibuat setelah inspection tersimpan
                    fresh = fresh.model_copy(update={"approval_id": str(PydanticObjectId())})
                merged.append(fresh)
            changes["additional_parts"] = merged

        if data.completed and inspection.completed_at is None:
            changes["completed_at"] = now
        if not changes:
            raise ValidationFailedError("No inspection fields supplied")

        patch = {"inspection": inspection.model_copy(update=changes), "updated_at": now}
        updated = await self._save(booking_id, patch)

        requested = 0
        if self.approvals is not None:
            for part in merged:
                if part.approval_status == ApprovalStatus.PENDING and await self.approvals.ensure_part_request(ctx, booking_id, part):
                    requested += 1
        await self.audit.record(ctx, "inspection_updated", "Booking", booking_id, {"approvals_requested": requested})
        await self._push(updated, booking_id, "inspection_updated", {"approvals_requested": requested})
        return updated

    async def update_qc(self, ctx: RequestContext, booking_id: str, data: Booking.QCUpdate) -> BookingBase:
        ensure_role(ctx, OPERATOR_ROLES, "record quality checks")
        booking = await self._load(booking_id)
        ensure_booking_access(ctx, booking)
        values = booking.qc.model_dump()
        for field in ("test_ride", "safety_checks", "no_leaks", "no_error_lights", "notes"):
            value = getattr(data, field)
            if value is not None:
                values[field] = value

        all_passed = all(values[f] for f in ("test_ride", "safety_checks", "no_leaks", "no_error_lights"))
        if data.completed and not all_passed:
            raise ValidationFailedError("All four QC checks must pass before QC can be completed")
        if data.completed and values["completed_at"] is None:
            values["completed_at"] = datetime.now(timezone.utc)
            values["completed_by"] = ctx.user_id
        elif not all_passed:
            values["completed_at"] = None
            values["completed_by"] = None

        qc = QualityCheck.model_validate(values)
        updated = await self._save(booking_id, {"qc": qc, "updated_at": datetime.now(timezone.utc)})
        await self.audit.record(ctx, "qc_updated", "Booking", booking_id, {"completed": qc.completed_at is not None})
        await self._push(updated, booking_id, "qc_updated", {"completed": qc.completed_at is not None})
        return updated

    async def submit_billing(self, ctx: RequestContext, booking_id: str, data: Booking.BillingUpdate) -> BookingBase:
        ensure_role(ctx, BILLING_ROLES, "submit bills")
        booking = await self._load(booking_id)
        ensure_booking_access(ctx, booking)
        if booking.billing.submitted_at is not None and not ctx.is_admin:
            raise PreconditionFailedError(
                "Bill already submitted. Request a BillEdit approval to change it.",
                details={"approval_type": ApprovalType.BILL_EDIT.value},
            )
        now = datetime.now(timezone.utc)
        values = booking.billing.model_dump()
        for field in ("invoice_number", "invoice_date", "parts_total", "labour_cost", "gst", "file_url"):
            value = getattr(data, field)
            if value is not None:
                values[field] = value
        if data.parts_total is None and not values.get("parts_total"):
            values["parts_total"] = parts_total(booking.parts)
        if values.get("file_url") and values.get("submitted_at") is None:
            values["submitted_at"] = now
        if values.get("invoice_number") is None and booking.order_number is not None:
            values["invoice_number"] = f"INV-{booking.order_number}"

        billing = Billing.model_validate(values)
        patch = {
            "billing": billing,
            "total_amount": booking_total(booking.model_copy(update={"billing": billing})),
            "updated_at": now,
        }
        updated = await self._save(booking_id, patch)
        await self.audit.record(ctx, "billing_submitted", "Booking", booking_id, {
            "total": billing.total,
            "file_url": billing.file_url,
        })
        await self._push(updated, booking_id, "billing_updated", {"total": billing.total})
        return updated

    async def record_execution(self, ctx: RequestContext, booking_id: str, data: Booking.ExecutionUpdate) -> BookingBase:
        ensure_role(ctx, OPERATOR_ROLES, "record service execution")
        booking = await self._load(booking_id)
        ensure_booking_access(ctx, booking)
        execution = booking.service_execution
        if not (data.before_photos or data.during_photos or data.after_photos):
            raise ValidationFailedError("No photos supplied")
        execution = execution.model_copy(update={
            "before_photos": execution.before_photos + data.before_photos,
            "during_photos": execution.during_photos + data.during_photos,
            "after_photos": execution.after_photos + data.after_photos,
        })
        updated = await self._save(booking_id, {"service_execution": execution, "updated_at": datetime.now(timezone.utc)})
        await self.audit.record(ctx, "execution_photos_added", "Booking", booking_id, {
            "before": len(data.before_photos),
            "during": len(data.during_photos),
            "after": len(data.after_photos),
        })
        return updated

    # --- Delivery OTP ---
    async def generate_delivery_otp(self, ctx: RequestContext, booking_id: str) -> BookingBase:
        ensure_role(ctx, OPERATOR_ROLES, "issue delivery codes")
        booking = await self._load(booking_id)
        ensure_booking_access(ctx, booking)
        if booking.status != BookingStatus.OUT_FOR_DELIVERY:
            raise PreconditionFailedError("Delivery OTP can only be issued while the booking is out for delivery")
        otp = rules.issue_delivery_otp()
        updated = await self._save(booking_id, {"delivery_otp": otp, "updated_at": datetime.now(timezone.utc)})
        await self.audit.record(ctx, "delivery_otp_issued", "Booking", booking_id)
        await self._push_otp(booking, booking_id, otp)
        return updated

    async def verify_delivery_otp(self, ctx: RequestContext, booking_id: str, code: str) -> BookingBase:
        ensure_role(ctx, OPERATOR_ROLES, "verify delivery codes")
        booking = await self._load(booking_id)
        ensure_booking_access(ctx, booking)
        otp = rules.verify_delivery_otp(booking.delivery_otp, code)
        if otp == booking.delivery_otp:
            return booking

        updated = await self._save(booking_id, {"delivery_otp": otp, "updated_at": datetime.now(timezone.utc)})
        if otp.verified_at is None:
            remaining = max(DELIVERY_OTP_MAX_ATTEMPTS - otp.attempts, 0)
            raise OtpRejectedError("Invalid delivery OTP", details={"attempts_left": remaining})
        await self.audit.record(ctx, "delivery_otp_verified", "Booking", booking_id)
        return updated
