"""
Pytest configuration and shared fixtures.

Services are exercised against in-memory stores so no MongoDB is needed;
Beanie documents are never instantiated here.
"""
import os
import tempfile

# Config membaca env saat import, jadi harus diset sebelum import driveflow
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("MONGODB_URL", "mongodb://localhost:27017")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="driveflow-uploads-"))

from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from beanie import PydanticObjectId
from pydantic import Field

from driveflow.core.config import ORDER_NUMBER_START
from driveflow.core.context import RequestContext
from driveflow.core.notifications import BookingEventHub
from driveflow.db.stores import ApprovalStore, AuditStore, BookingStore, UserStore
from driveflow.models.approval import ApprovalRequestBase
from driveflow.models.audit_log import AuditEntry
from driveflow.models.booking import BookingBase
from driveflow.models.enum import ApprovalStatus, StaffSubRole, UserRole
from driveflow.services.approvals import ApprovalService
from driveflow.services.audit import AuditRecorder
from driveflow.services.workflow import WorkflowService


class StoredBooking(BookingBase):
    id: PydanticObjectId = Field(default_factory=PydanticObjectId)


class StoredApproval(ApprovalRequestBase):
    id: PydanticObjectId = Field(default_factory=PydanticObjectId)


class StoredAudit(AuditEntry):
    id: PydanticObjectId = Field(default_factory=PydanticObjectId)


class InMemoryBookingStore(BookingStore):

    def __init__(self):
        self.items: Dict[str, StoredBooking] = {}
        self.writes: List[Dict[str, Any]] = []

    def add(self, booking: BookingBase) -> StoredBooking:
        stored = StoredBooking.model_validate(booking.model_dump())
        self.items[str(stored.id)] = stored
        return stored

    async def get(self, booking_id):
        return self.items.get(str(booking_id))

    async def create(self, booking):
        data = booking.model_dump()
        data["order_number"] = data.get("order_number") or ORDER_NUMBER_START + len(self.items)
        return self.add(StoredBooking.model_validate(data))

    async def update(self, booking_id, patch):
        current = self.items.get(str(booking_id))
        if current is None:
            return None
        self.writes.append(dict(patch))
        updated = current.model_copy(update=patch)
        self.items[str(booking_id)] = updated
        return updated

    async def list(self, *, user_id=None, merchant_id=None, staff_id=None, statuses=None, skip=0, limit=50):
        result = []
        for booking in self.items.values():
            if user_id and str(booking.user_id) != str(user_id):
                continue
            if merchant_id and str(booking.merchant_id) != str(merchant_id):
                continue
            if staff_id and str(staff_id) not in {str(booking.pickup_driver_id), str(booking.technician_id)}:
                continue
            if statuses and booking.status not in statuses:
                continue
            result.append(booking)
        return result[skip:skip + limit]


class InMemoryApprovalStore(ApprovalStore):

    def __init__(self):
        self.items: Dict[str, StoredApproval] = {}

    async def create(self, approval, approval_id=None):
        data = approval.model_dump()
        if approval_id is not None:
            data["id"] = PydanticObjectId(approval_id)
        stored = StoredApproval.model_validate(data)
        self.items[str(stored.id)] = stored
        return stored

    async def mark_effects_applied(self, approval_id):
        current = self.items.get(str(approval_id))
        if current is None:
            return None
        marked = current.model_copy(update={"effects_applied": True})
        self.items[str(approval_id)] = marked
        return marked

    async def get(self, approval_id):
        return self.items.get(str(approval_id))

    async def list(self, *, status=None, type=None, related_ids=None, requested_by=None, skip=0, limit=50):
        result = []
        for approval in self.items.values():
            if status and approval.status != status:
                continue
            if type and approval.type != type:
                continue
            if related_ids is not None and str(approval.related_id) not in {str(r) for r in related_ids}:
                continue
            if requested_by and str(approval.requested_by) != str(requested_by):
                continue
            result.append(approval)
        return result[skip:skip + limit]

    async def resolve(self, approval_id, status, reviewer_id, comment, now):
        current = self.items.get(str(approval_id))
        if current is None or current.status != ApprovalStatus.PENDING:
            return None
        changes = {
            "status": status,
            "resolved_at": now,
            "resolved_by": PydanticObjectId(reviewer_id),
            "updated_at": now,
        }
        if comment is not None:
            changes["admin_comment"] = comment
        resolved = current.model_copy(update=changes)
        self.items[str(approval_id)] = resolved
        return resolved

    async def update_comment(self, approval_id, comment):
        current = self.items.get(str(approval_id))
        if current is None:
            return None
        updated = current.model_copy(update={"admin_comment": comment})
        self.items[str(approval_id)] = updated
        return updated


class InMemoryAuditStore(AuditStore):

    def __init__(self):
        self.entries: List[StoredAudit] = []
        self.fail = False

    async def append(self, entry):
        if self.fail:
            raise ConnectionError("audit collection unreachable")
        self.entries.append(StoredAudit.model_validate(entry.model_dump()))

    async def list(self, *, user_id=None, action=None, start=None, end=None, limit=100):
        result = [
            e for e in self.entries
            if (not user_id or e.user_id == user_id)
            and (not action or action.lower() in e.action.lower())
            and (not start or e.created_at >= start)
            and (not end or e.created_at <= end)
        ]
        return sorted(result, key=lambda e: e.created_at, reverse=True)[:limit]

    def actions(self) -> List[str]:
        return [e.action for e in self.entries]


class InMemoryUserStore(UserStore):

    def __init__(self):
        self.approvals: List[tuple] = []

    async def get(self, user_id):
        return None

    async def set_approval(self, user_id, approved, reason=None):
        self.approvals.append((str(user_id), approved, reason))
        return SimpleNamespace(id=user_id, is_approved=approved, rejection_reason=reason)


class RecordingHub(BookingEventHub):
    """Event hub that remembers what was published instead of sending it."""

    def __init__(self):
        super().__init__()
        self.published: List[tuple] = []

    async def publish(self, room, event, payload):
        self.published.append((room, event, payload))
        return 1

    def events(self, room: Optional[str] = None) -> List[str]:
        return [e for r, e, _ in self.published if room is None or r == room]


def _ctx(role: UserRole, username: str, sub_role: Optional[StaffSubRole] = None) -> RequestContext:
    return RequestContext(
        user_id=str(PydanticObjectId()),
        username=username,
        role=role,
        sub_role=sub_role,
        ip_address="127.0.0.1",
    )


@pytest.fixture
def actors():
    return SimpleNamespace(
        customer=_ctx(UserRole.CUSTOMER, "rahul"),
        other_customer=_ctx(UserRole.CUSTOMER, "meera"),
        merchant=_ctx(UserRole.MERCHANT, "speedy-motors"),
        other_merchant=_ctx(UserRole.MERCHANT, "city-garage"),
        driver=_ctx(UserRole.STAFF, "driver-ravi", StaffSubRole.DRIVER),
        technician=_ctx(UserRole.STAFF, "tech-anil", StaffSubRole.TECHNICIAN),
        admin=_ctx(UserRole.ADMIN, "admin"),
    )


@pytest.fixture
def booking_store():
    return InMemoryBookingStore()


@pytest.fixture
def approval_store():
    return InMemoryApprovalStore()


@pytest.fixture
def audit_store():
    return InMemoryAuditStore()


@pytest.fixture
def user_store():
    return InMemoryUserStore()


@pytest.fixture
def hub():
    return RecordingHub()


@pytest.fixture
def approval_service(approval_store, booking_store, user_store, audit_store, hub):
    return ApprovalService(approval_store, booking_store, user_store, AuditRecorder(audit_store), hub)


@pytest.fixture
def workflow_service(booking_store, audit_store, hub, approval_service):
    return WorkflowService(booking_store, AuditRecorder(audit_store), hub, approval_service)


@pytest.fixture
def seed_booking(booking_store, actors):
    """Insert a booking owned by ``actors.customer`` and assigned to ``actors.merchant``."""
    def _seed(**overrides) -> StoredBooking:
        data = dict(
            user_id=PydanticObjectId(actors.customer.user_id),
            merchant_id=PydanticObjectId(actors.merchant.user_id),
            date=datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc),
            services_total=1500.0,
            total_amount=1500.0,
            order_number=ORDER_NUMBER_START + len(booking_store.items),
        )
        data.update(overrides)
        return booking_store.add(BookingBase(**data))
    return _seed
