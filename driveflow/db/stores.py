# driveflow/db/stores.py
"""
Persistence ports used by the services, with their Beanie bindings.

Booking writes are always ``$set`` on whole top-level fields or
sub-documents, never a full document replace, so concurrent writers that
touch different sub-records (inspection vs billing vs QC) do not clobber
each other.
"""
import re
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from beanie import PydanticObjectId, UpdateResponse
from beanie.odm.operators.update.general import Set
from bson import ObjectId
from pymongo import DESCENDING
from pymongo.errors import PyMongoError

from driveflow.core.config import ORDER_NUMBER_START
from driveflow.core.exceptions import UpstreamError
from driveflow.core.utils import get_next_sequence_value
from driveflow.models.approval import ApprovalRequest, ApprovalRequestBase
from driveflow.models.audit_log import AuditEntry, AuditLog
from driveflow.models.booking import Booking, BookingBase
from driveflow.models.enum import ApprovalStatus
from driveflow.models.user import User

logger = logging.getLogger(__name__)

ORDER_SEQUENCE = "booking"


def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if value is None or not ObjectId.is_valid(str(value)):
        return None
    return ObjectId(str(value))


# --- Ports ---
class BookingStore(ABC):

    @abstractmethod
    async def get(self, booking_id: str) -> Optional[BookingBase]: ...

    @abstractmethod
    async def create(self, booking: BookingBase) -> BookingBase: ...

    @abstractmethod
    async def update(self, booking_id: str, patch: Dict[str, Any]) -> Optional[BookingBase]:
        """Apply ``patch`` as one ``$set`` and return the stored booking, or None if missing."""

    @abstractmethod
    async def list(
        self,
        *,
        user_id: Optional[str] = None,
        merchant_id: Optional[str] = None,
        staff_id: Optional[str] = None,
        statuses: Optional[Sequence[str]] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[BookingBase]: ...


class ApprovalStore(ABC):

    @abstractmethod
    async def create(self, approval: ApprovalRequestBase, approval_id: Optional[str] = None) -> ApprovalRequestBase:
        """Insert a Pending request. ``approval_id`` lets the caller reserve the id up front."""

    @abstractmethod
    async def get(self, approval_id: str) -> Optional[ApprovalRequestBase]: ...

    @abstractmethod
    async def list(
        self,
        *,
        status: Optional[str] = None,
        type: Optional[str] = None,
        related_ids: Optional[Sequence[str]] = None,
        requested_by: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[ApprovalRequestBase]: ...

    @abstractmethod
    async def resolve(
        self, approval_id: str, status: ApprovalStatus, reviewer_id: str, comment: Optional[str], now: datetime
    ) -> Optional[ApprovalRequestBase]:
        """Set the decision only if the request is still Pending. None means someone else resolved it."""

    @abstractmethod
    async def update_comment(self, approval_id: str, comment: str) -> Optional[ApprovalRequestBase]: ...

    @abstractmethod
    async def mark_effects_applied(self, approval_id: str) -> Optional[ApprovalRequestBase]: ...


class AuditStore(ABC):

    @abstractmethod
    async def append(self, entry: AuditEntry) -> None: ...

    @abstractmethod
    async def list(
        self,
        *,
        user_id: Optional[str] = None,
        action: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEntry]: ...


class UserStore(ABC):

    @abstractmethod
    async def get(self, user_id: str): ...

    @abstractmethod
    async def set_approval(self, user_id: str, approved: bool, reason: Optional[str] = None): ...


# --- Beanie bindings ---
class BeanieBookingStore(BookingStore):

    async def get(self, booking_id: str) -> Optional[Booking]:
        oid = to_object_id(booking_id)
        if oid is None:
            return None
        try:
            return await Booking.find_one({"_id": oid})
        except PyMongoError as e:
            logger.error(f"Error reading booking {booking_id}: {e}")
            raise UpstreamError("Booking storage is unavailable") from e

    async def create(self, booking: BookingBase) -> Booking:
        doc = Booking.model_validate(booking.model_dump())
        try:
            if doc.order_number is None:
                doc.order_number = await get_next_sequence_value(ORDER_SEQUENCE, start=ORDER_NUMBER_START)
            await doc.insert()
        except PyMongoError as e:
            logger.error(f"Error inserting booking: {e}")
            raise UpstreamError("Booking storage is unavailable") from e
        logger.info(f"Booking #{doc.order_number} stored with id {doc.id}")
        return doc

    async def update(self, booking_id: str, patch: Dict[str, Any]) -> Optional[Booking]:
        oid = to_object_id(booking_id)
        if oid is None:
            return None
        try:
            return await Booking.find_one({"_id": oid}).update(
                Set(patch), response_type=UpdateResponse.NEW_DOCUMENT
            )
        except PyMongoError as e:
            logger.error(f"Error updating booking {booking_id} fields {list(patch)}: {e}")
            raise UpstreamError("Booking storage is unavailable") from e

    async def list(self, *, user_id=None, merchant_id=None, staff_id=None, statuses=None, skip=0, limit=50) -> List[Booking]:
        query: Dict[str, Any] = {}
        if user_id:
            query["user_id"] = to_object_id(user_id)
        if merchant_id:
            query["merchant_id"] = to_object_id(merchant_id)
        if staff_id:
            staff_oid = to_object_id(staff_id)
            query["$or"] = [{"pickup_driver_id": staff_oid}, {"technician_id": staff_oid}]
        if statuses:
            query["status"] = {"$in": [str(getattr(s, "value", s)) for s in statuses]}
        try:
            return await Booking.find(query, skip=skip, limit=limit, sort=[("created_at", DESCENDING)]).to_list()
        except PyMongoError as e:
            raise UpstreamError("Booking storage is unavailable") from e


class BeanieApprovalStore(ApprovalStore):

    async def create(self, approval: ApprovalRequestBase, approval_id: Optional[str] = None) -> ApprovalRequest:
        doc = ApprovalRequest.model_validate(approval.model_dump())
        if approval_id is not None:
            doc.id = PydanticObjectId(approval_id)
        try:
            await doc.insert()
        except PyMongoError as e:
            raise UpstreamError("Approval storage is unavailable") from e
        return doc

    async def get(self, approval_id: str) -> Optional[ApprovalRequest]:
        oid = to_object_id(approval_id)
        if oid is None:
            return None
        try:
            return await ApprovalRequest.find_one({"_id": oid})
        except PyMongoError as e:
            raise UpstreamError("Approval storage is unavailable") from e

    async def list(self, *, status=None, type=None, related_ids=None, requested_by=None, skip=0, limit=50) -> List[ApprovalRequest]:
        query: Dict[str, Any] = {}
        if status:
            query["status"] = str(getattr(status, "value", status))
        if type:
            query["type"] = str(getattr(type, "value", type))
        if related_ids is not None:
            query["related_id"] = {"$in": [to_object_id(r) for r in related_ids]}
        if requested_by:
            query["requested_by"] = to_object_id(requested_by)
        try:
            return await ApprovalRequest.find(query, skip=skip, limit=limit, sort=[("created_at", DESCENDING)]).to_list()
        except PyMongoError as e:
            raise UpstreamError("Approval storage is unavailable") from e

    async def resolve(self, approval_id, status, reviewer_id, comment, now) -> Optional[ApprovalRequest]:
        oid = to_object_id(approval_id)
        if oid is None:
            return None
        changes: Dict[str, Any] = {
            "status": status,
            "resolved_at": now,
            "resolved_by": to_object_id(reviewer_id),
            "updated_at": now,
        }
        if comment is not None:
            changes["admin_comment"] = comment
        try:
            # Filter status Pending = resolve hanya sekali walau ada request paralel
            return await ApprovalRequest.find_one(
                {"_id": oid, "status": ApprovalStatus.PENDING.value}
            ).update(Set(changes), response_type=UpdateResponse.NEW_DOCUMENT)
        except PyMongoError as e:
            raise UpstreamError("Approval storage is unavailable") from e

    async def update_comment(self, approval_id, comment) -> Optional[ApprovalRequest]:
        oid = to_object_id(approval_id)
        if oid is None:
            return None
        try:
            return await ApprovalRequest.find_one({"_id": oid}).update(
                Set({"admin_comment": comment, "updated_at": datetime.now(timezone.utc)}),
                response_type=UpdateResponse.NEW_DOCUMENT,
            )
        except PyMongoError as e:
            raise UpstreamError("Approval storage is unavailable") from e

    async def mark_effects_applied(self, approval_id) -> Optional[ApprovalRequest]:
        oid = to_object_id(approval_id)
        if oid is None:
            return None
        try:
            return await ApprovalRequest.find_one({"_id": oid}).update(
                Set({"effects_applied": True, "updated_at": datetime.now(timezone.utc)}),
                response_type=UpdateResponse.NEW_DOCUMENT,
            )
        except PyMongoError as e:
            raise UpstreamError("Approval storage is unavailable") from e


class BeanieAuditStore(AuditStore):

    async def append(self, entry: AuditEntry) -> None:
        await AuditLog.model_validate(entry.model_dump()).insert()

    async def list(self, *, user_id=None, action=None, start=None, end=None, limit=100) -> List[AuditLog]:
        query: Dict[str, Any] = {}
        if user_id:
            query["user_id"] = user_id
        if action:
            query["action"] = {"$regex": re.escape(action), "$options": "i"}
        if start or end:
            query["created_at"] = {}
            if start:
                query["created_at"]["$gte"] = start
            if end:
                query["created_at"]["$lte"] = end
        try:
            return await AuditLog.find(query, limit=limit, sort=[("created_at", DESCENDING)]).to_list()
        except PyMongoError as e:
            raise UpstreamError("Audit storage is unavailable") from e


class BeanieUserStore(UserStore):

    async def get(self, user_id: str) -> Optional[User]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        try:
            return await User.find_one({"_id": oid})
        except PyMongoError as e:
            raise UpstreamError("User storage is unavailable") from e

    async def set_approval(self, user_id: str, approved: bool, reason: Optional[str] = None) -> Optional[User]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        try:
            return await User.find_one({"_id": oid}).update(
                Set({
                    "is_approved": approved,
                    "rejection_reason": None if approved else reason,
                    "updated_at": datetime.now(timezone.utc),
                }),
                response_type=UpdateResponse.NEW_DOCUMENT,
            )
        except PyMongoError as e:
            raise UpstreamError("User storage is unavailable") from e
