# driveflow/services/audit.py
from typing import Any, Dict, List, Optional
from datetime import datetime

from loguru import logger

from driveflow.core.context import RequestContext
from driveflow.db.stores import AuditStore
from driveflow.models.audit_log import AuditEntry


class AuditRecorder:
    """Appends audit entries. A failed write is logged and never reaches the caller."""

    def __init__(self, store: AuditStore):
        self.store = store

    async def record(
        self,
        ctx: Optional[RequestContext],
        action: str,
        target_model: Optional[str] = None,
        target_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditEntry]:
        entry = AuditEntry(
            user_id=ctx.user_id if ctx else None,
            action=action,
            target_model=target_model,
            target_id=str(target_id) if target_id is not None else None,
            details=details or {},
            ip_address=ctx.ip_address if ctx else None,
        )
        try:
            await self.store.append(entry)
        except Exception as e:
            logger.error(f"Audit write failed for action '{action}' on {target_model}:{target_id}: {e}")
            return None
        return entry

    async def search(
        self,
        user_id: Optional[str] = None,
        action: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEntry]:
        return await self.store.list(user_id=user_id, action=action, start=start, end=end, limit=min(limit, 100))
