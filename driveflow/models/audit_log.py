# driveflow/models/audit_log.py
from typing import Optional, Any, Dict
from datetime import datetime, timezone

from beanie import Document
from pydantic import BaseModel, Field, ConfigDict
from pymongo import IndexModel, ASCENDING, DESCENDING


class AuditEntry(BaseModel):
    """One append-only record of a privileged action."""
    user_id: Optional[str] = None
    action: str
    target_model: Optional[str] = None
    target_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AuditLog(Document, AuditEntry):

    class Settings:
        name = "audit_logs"
        indexes = [
            IndexModel([("user_id", ASCENDING)], name="audit_user_index"),
            IndexModel([("action", ASCENDING)], name="audit_action_index"),
            IndexModel([("target_id", ASCENDING)], name="audit_target_index", sparse=True),
            IndexModel([("created_at", DESCENDING)], name="audit_created_at_index"),
        ]

    class Response(AuditEntry):
        model_config = ConfigDict(from_attributes=True, populate_by_name=True)

        id: str = Field(..., alias="_id")
