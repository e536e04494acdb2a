# driveflow/core/context.py
from typing import Optional

from pydantic import BaseModel

from driveflow.models.enum import UserRole, StaffSubRole


class RequestContext(BaseModel):
    """Who is acting on this request. Built per request and passed into services."""
    user_id: str
    username: str
    role: UserRole
    sub_role: Optional[StaffSubRole] = None
    ip_address: Optional[str] = None
    request_id: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_customer(self) -> bool:
        return self.role == UserRole.CUSTOMER
