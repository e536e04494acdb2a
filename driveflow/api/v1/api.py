# driveflow/api/v1/api.py
from fastapi import APIRouter

from driveflow.api.v1.endpoints import (
    approvals,
    audit,
    auth,
    bookings,
    services,
    tracking,
    uploads,
    users,
    vehicles,
)

api_router_v1 = APIRouter(prefix="/api/v1")

api_router_v1.include_router(auth.router, prefix="/auth")
api_router_v1.include_router(users.router, prefix="/users")
api_router_v1.include_router(services.router, prefix="/services")
api_router_v1.include_router(vehicles.router, prefix="/vehicles")
api_router_v1.include_router(bookings.router, prefix="/bookings")
api_router_v1.include_router(approvals.router, prefix="/approvals")
api_router_v1.include_router(audit.router, prefix="/audit")
api_router_v1.include_router(uploads.router, prefix="/uploads")
api_router_v1.include_router(tracking.router, prefix="/tracking")
