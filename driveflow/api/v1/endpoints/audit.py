# driveflow/api/v1/endpoints/audit.py
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from driveflow.api.deps import get_audit_recorder
from driveflow.api.responses import validate_document_response
from driveflow.core.rate_limiter import limiter
from driveflow.core.security import require_admin
from driveflow.models.audit_log import AuditLog
from driveflow.services.audit import AuditRecorder

router = APIRouter(
    tags=["Audit - Admin"],
    dependencies=[Depends(require_admin)],
)


@router.get("/", response_model=List[AuditLog.Response])
@limiter.limit("30/minute")
async def read_audit_logs(
    request: Request,
    user_id: Optional[str] = Query(None, description="Actor user ID"),
    action: Optional[str] = Query(None, description="Case-insensitive match on the action name"),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    limit: int = Query(100, ge=1, le=100),
    recorder: AuditRecorder = Depends(get_audit_recorder),
):
    """Newest entries first, at most 100 per call."""
    if start and end and start > end:
        raise HTTPException(status_code=400, detail="'start' must not be after 'end'.")
    entries = await recorder.search(user_id=user_id, action=action, start=start, end=end, limit=limit)
    return [validate_document_response(e, AuditLog.Response) for e in entries]
