# driveflow/services/approvals.py
"""
Approval sub-workflow.

Requests are created Pending and resolved exactly once. Resolution is a
status-conditional update in the store, so when two reviewers race only one
call wins and only that call applies side effects to the booking or user.
The request is flagged ``effects_applied`` once those writes land; if they
fail, repeating the same decision finishes them.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from beanie import PydanticObjectId
from bson import ObjectId
from loguru import logger
from pydantic import BaseModel

from driveflow.core.billing import reprice_parts
from driveflow.core.context import RequestContext
from driveflow.core.exceptions import (
    AlreadyResolvedError,
    NotFoundError,
    PermissionDeniedError,
    ValidationFailedError,
)
from driveflow.core.notifications import ADMIN_ROOM, BookingEventHub, booking_room, user_room
from driveflow.db.stores import ApprovalStore, BookingStore, UserStore
from driveflow.models.approval import ApprovalRequestBase, PartReplacementData, RELATED_MODELS
from driveflow.models.booking import BookingBase, PartLine
from driveflow.models.enum import ApprovalStatus, ApprovalType, RelatedModel, UserRole
from driveflow.services.audit import AuditRecorder
from driveflow.services.workflow import ensure_booking_access

# Tipe yang boleh diputuskan customer pemilik booking
CUSTOMER_RESOLVABLE = {ApprovalType.PART_REPLACEMENT, ApprovalType.EXTRA_COST}
BOOKING_REQUESTERS = {UserRole.ADMIN, UserRole.MERCHANT, UserRole.STAFF}


# --- Efek approval ke booking (pure) ---
def part_replacement_effect(booking: BookingBase, approval: ApprovalRequestBase, approval_id: str) -> Dict[str, Any]:
    approved = approval.status == ApprovalStatus.APPROVED
    payload = approval.payload()
    parts = []
    matched = False
    for part in booking.inspection.additional_parts:
        if part.approval_id == approval_id:
            matched = True
            part = part.model_copy(update={"approved": approved, "approval_status": approval.status})
        parts.append(part)
    patch: Dict[str, Any] = {}
    if matched:
        patch["inspection"] = booking.inspection.model_copy(update={"additional_parts": parts})
    if approved and not any(line.approval_id == approval_id for line in booking.parts):
        line = PartLine(
            name=payload.part_name,
            price=payload.price,
            quantity=payload.quantity,
            image=payload.image,
            approval_id=approval_id,
        )
        patch.update(reprice_parts(booking, booking.parts + [line]))
    return patch


def extra_cost_effect(booking: BookingBase, approval: ApprovalRequestBase, approval_id: str) -> Dict[str, Any]:
    if approval.status != ApprovalStatus.APPROVED:
        return {}
    if any(line.approval_id == approval_id for line in booking.parts):
        return {}
    payload = approval.payload()
    line = PartLine(name=f"Extra: {payload.reason}", price=payload.amount, quantity=1, approval_id=approval_id)
    return reprice_parts(booking, booking.parts + [line])


def bill_edit_effect(booking: BookingBase, approval: ApprovalRequestBase, approval_id: str) -> Dict[str, Any]:
    if approval.status != ApprovalStatus.APPROVED:
        return {}
    return {"total_amount": approval.payload().new_amount}


BOOKING_EFFECTS = {
    ApprovalType.PART_REPLACEMENT: part_replacement_effect,
    ApprovalType.EXTRA_COST: extra_cost_effect,
    ApprovalType.BILL_EDIT: bill_edit_effect,
}


class ApprovalService:

    def __init__(
        self,
        approvals: ApprovalStore,
        bookings: BookingStore,
        users: UserStore,
        audit: AuditRecorder,
        notifier: BookingEventHub,
    ):
        self.approvals = approvals
        self.bookings = bookings
        self.users = users
        self.audit = audit
        self.notifier = notifier

    async def _load(self, approval_id: str) -> ApprovalRequestBase:
        approval = await self.approvals.get(approval_id)
        if approval is None:
            raise NotFoundError(f"Approval request '{approval_id}' not found")
        return approval

    async def _load_booking(self, booking_id: str) -> BookingBase:
        booking = await self.bookings.get(booking_id)
        if booking is None:
            raise NotFoundError(f"Booking with ID '{booking_id}' not found")
        return booking

    async def request_approval(
        self,
        approval_type: ApprovalType,
        related_id: str,
        related_model: RelatedModel,
        payload: BaseModel,
        requester: Optional[RequestContext],
        approval_id: Optional[str] = None,
    ) -> ApprovalRequestBase:
        """Create a Pending request. No deduplication against other pending requests.

        ``approval_id`` is used when the caller already linked that id to a record.
        """
        approval_type = ApprovalType(approval_type)
        related_model = RelatedModel(related_model)
        if RELATED_MODELS[approval_type] != related_model:
            raise ValidationFailedError(f"{approval_type.value} requests must reference a {RELATED_MODELS[approval_type].value}")
        if not ObjectId.is_valid(str(related_id)):
            raise ValidationFailedError("Invalid related_id format.")

        approval = ApprovalRequestBase(
            type=approval_type,
            related_id=PydanticObjectId(str(related_id)),
            related_model=related_model,
            data=payload.model_dump(mode="json"),
            requested_by=PydanticObjectId(requester.user_id) if requester else None,
        )
        created = await self.approvals.create(approval, approval_id)
        approval_id = str(created.id)
        logger.info(f"Approval {approval_id} ({approval_type.value}) requested for {related_model.value}:{related_id}")
        await self.audit.record(requester, "approval_requested", "ApprovalRequest", approval_id, {
            "type": approval_type.value,
            "related_id": str(related_id),
        })
        await self.notifier.publish(ADMIN_ROOM, "approval_requested", {
            "approval_id": approval_id,
            "type": approval_type.value,
            "related_id": str(related_id),
        })
        if related_model == RelatedModel.BOOKING:
            await self.notifier.publish(booking_room(str(related_id)), "approval_requested", {
                "approval_id": approval_id,
                "type": approval_type.value,
            })
        return created

    async def submit(self, ctx: RequestContext, body) -> ApprovalRequestBase:
        """Booking-scoped request from the API (PartReplacement, ExtraCost, BillEdit)."""
        if ctx.role not in BOOKING_REQUESTERS:
            raise PermissionDeniedError("Only merchants, staff or admins can raise approval requests")
        booking = await self._load_booking(body.related_id)
        ensure_booking_access(ctx, booking)
        return await self.request_approval(
            ApprovalType(body.type), body.related_id, RelatedModel.BOOKING, body.data, ctx
        )

    async def ensure_part_request(self, ctx: RequestContext, booking_id: str, part) -> bool:
        """Create the PartReplacement request an inspection part already points to, unless it exists."""
        if not part.approval_id or await self.approvals.get(part.approval_id) is not None:
            return False
        await self.request_approval(
            ApprovalType.PART_REPLACEMENT,
            booking_id,
            RelatedModel.BOOKING,
            PartReplacementData(
                part_name=part.name, price=part.price, quantity=part.quantity,
                image=part.image, old_image=part.old_image,
            ),
            ctx,
            approval_id=part.approval_id,
        )
        return True

    async def _ensure_can_resolve(self, ctx: RequestContext, approval: ApprovalRequestBase) -> Optional[BookingBase]:
        booking = None
        if approval.related_model == RelatedModel.BOOKING:
            booking = await self._load_booking(str(approval.related_id))
        if ctx.is_admin:
            return booking
        if (
            ctx.role == UserRole.CUSTOMER
            and approval.type in CUSTOMER_RESOLVABLE
            and booking is not None
            and str(booking.user_id) == ctx.user_id
        ):
            return booking
        raise PermissionDeniedError("You cannot resolve this approval request")

    async def resolve_approval(
        self, ctx: RequestContext, approval_id: str, decision, comment: Optional[str] = None
    ) -> ApprovalRequestBase:
        decision = ApprovalStatus(decision)
        if decision == ApprovalStatus.PENDING:
            raise ValidationFailedError("Decision must be Approved or Rejected")
        approval = await self._load(approval_id)
        if approval.status != ApprovalStatus.PENDING:
            if approval.effects_applied or approval.status != decision:
                raise AlreadyResolvedError(f"Approval request already {approval.status.value}")
            # Keputusan sudah tersimpan tapi efeknya gagal ditulis, ulangi efeknya saja
            await self._ensure_can_resolve(ctx, approval)
            logger.warning(f"Approval {approval_id}: finishing effects of earlier {decision.value} decision")
            return await self._finish(ctx, approval, approval_id)
        await self._ensure_can_resolve(ctx, approval)

        now = datetime.now(timezone.utc)
        resolved = await self.approvals.resolve(approval_id, decision, ctx.user_id, comment, now)
        if resolved is None:
            raise AlreadyResolvedError("Approval request was resolved by another reviewer")
        return await self._finish(ctx, resolved, approval_id)

    async def _finish(self, ctx: RequestContext, resolved: ApprovalRequestBase, approval_id: str) -> ApprovalRequestBase:
        """Apply the decision's effects, then mark them applied. Safe to repeat."""
        decision = resolved.status
        await self._apply_effects(resolved, approval_id)
        resolved = await self.approvals.mark_effects_applied(approval_id) or resolved
        await self.audit.record(ctx, "approval_resolved", "ApprovalRequest", approval_id, {
            "type": resolved.type.value,
            "status": decision.value,
            "related_id": str(resolved.related_id),
        })
        if resolved.related_model == RelatedModel.BOOKING:
            await self.notifier.publish(booking_room(str(resolved.related_id)), "approval_resolved", {
                "approval_id": approval_id,
                "type": resolved.type.value,
                "status": decision.value,
            })
        if resolved.requested_by is not None:
            await self.notifier.publish(user_room(str(resolved.requested_by)), "approval_resolved", {
                "approval_id": approval_id,
                "status": decision.value,
            })
        return resolved

    async def _apply_effects(self, approval: ApprovalRequestBase, approval_id: str) -> None:
        related_id = str(approval.related_id)
        if approval.type == ApprovalType.USER_REGISTRATION:
            approved = approval.status == ApprovalStatus.APPROVED
            user = await self.users.set_approval(related_id, approved, approval.admin_comment)
            if user is None:
                logger.warning(f"Approval {approval_id}: user {related_id} no longer exists")
            return

        # Booking dibaca ulang setelah resolve supaya patch memakai data terbaru
        booking = await self._load_booking(related_id)
        patch = BOOKING_EFFECTS[approval.type](booking, approval, approval_id)
        if not patch:
            return
        patch["updated_at"] = datetime.now(timezone.utc)
        await self.bookings.update(related_id, patch)
        logger.info(f"Approval {approval_id} applied to booking {related_id}: {sorted(patch)}")

    async def update_comment(self, ctx: RequestContext, approval_id: str, comment: str) -> ApprovalRequestBase:
        if not ctx.is_admin:
            raise PermissionDeniedError("Only admins can comment on approval requests")
        await self._load(approval_id)
        updated = await self.approvals.update_comment(approval_id, comment)
        if updated is None:
            raise NotFoundError(f"Approval request '{approval_id}' not found")
        await self.audit.record(ctx, "approval_commented", "ApprovalRequest", approval_id)
        return updated

    async def get(self, ctx: RequestContext, approval_id: str) -> ApprovalRequestBase:
        approval = await self._load(approval_id)
        if ctx.is_admin:
            return approval
        if approval.requested_by is not None and str(approval.requested_by) == ctx.user_id:
            return approval
        if approval.related_model == RelatedModel.BOOKING:
            ensure_booking_access(ctx, await self._load_booking(str(approval.related_id)))
            return approval
        raise PermissionDeniedError("You cannot view this approval request")

    async def list_all(self, ctx: RequestContext, status=None, type=None, skip: int = 0, limit: int = 50) -> List[ApprovalRequestBase]:
        if not ctx.is_admin:
            raise PermissionDeniedError("Only admins can list all approval requests")
        return await self.approvals.list(status=status, type=type, skip=skip, limit=limit)

    async def list_mine(self, ctx: RequestContext, status=None, skip: int = 0, limit: int = 50) -> List[ApprovalRequestBase]:
        """Customers see requests on their bookings; everyone else sees what they raised."""
        if ctx.role == UserRole.CUSTOMER:
            bookings = await self.bookings.list(user_id=ctx.user_id, limit=500)
            return await self.approvals.list(
                status=status, related_ids=[str(b.id) for b in bookings], skip=skip, limit=limit
            )
        return await self.approvals.list(status=status, requested_by=ctx.user_id, skip=skip, limit=limit)
