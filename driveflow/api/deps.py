# driveflow/api/deps.py
from fastapi import Depends

from driveflow.core.notifications import BookingEventHub, get_event_hub
from driveflow.db.stores import (
    ApprovalStore,
    AuditStore,
    BookingStore,
    UserStore,
    BeanieApprovalStore,
    BeanieAuditStore,
    BeanieBookingStore,
    BeanieUserStore,
)
from driveflow.services.approvals import ApprovalService
from driveflow.services.audit import AuditRecorder
from driveflow.services.workflow import WorkflowService


def get_booking_store() -> BookingStore:
    return BeanieBookingStore()


def get_approval_store() -> ApprovalStore:
    return BeanieApprovalStore()


def get_audit_store() -> AuditStore:
    return BeanieAuditStore()


def get_user_store() -> UserStore:
    return BeanieUserStore()


def get_audit_recorder(store: AuditStore = Depends(get_audit_store)) -> AuditRecorder:
    return AuditRecorder(store)


def get_approval_service(
    approvals: ApprovalStore = Depends(get_approval_store),
    bookings: BookingStore = Depends(get_booking_store),
    users: UserStore = Depends(get_user_store),
    audit: AuditRecorder = Depends(get_audit_recorder),
    notifier: BookingEventHub = Depends(get_event_hub),
) -> ApprovalService:
    return ApprovalService(approvals, bookings, users, audit, notifier)


def get_workflow_service(
    bookings: BookingStore = Depends(get_booking_store),
    audit: AuditRecorder = Depends(get_audit_recorder),
    notifier: BookingEventHub = Depends(get_event_hub),
    approvals: ApprovalService = Depends(get_approval_service),
) -> WorkflowService:
    return WorkflowService(bookings, audit, notifier, approvals)
