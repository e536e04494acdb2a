# driveflow/api/v1/endpoints/approvals.py
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Path, Query, Request, status
from loguru import logger

from driveflow.api.deps import get_approval_service
from driveflow.api.responses import validate_document_response
from driveflow.core.context import RequestContext
from driveflow.core.rate_limiter import limiter
from driveflow.core.security import get_request_context, require_admin, require_operator
from driveflow.models.approval import ApprovalCreateBody, ApprovalRequest
from driveflow.models.enum import ApprovalStatus, ApprovalType
from driveflow.services.approvals import ApprovalService

router = APIRouter(tags=["Approvals"])


@router.get("/", response_model=List[ApprovalRequest.Response])
@limiter.limit("60/minute")
async def read_approvals(
    request: Request,
    status_filter: Optional[ApprovalStatus] = Query(None, alias="status"),
    type_filter: Optional[ApprovalType] = Query(None, alias="type"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    ctx: RequestContext = Depends(require_admin),
    service: ApprovalService = Depends(get_approval_service),
):
    """Approval queue for admins, newest first."""
    approvals = await service.list_all(ctx, status=status_filter, type=type_filter, skip=skip, limit=limit)
    return [validate_document_response(a, ApprovalRequest.Response) for a in approvals]


@router.get("/mine", response_model=List[ApprovalRequest.Response])
@limiter.limit("60/minute")
async def read_my_approvals(
    request: Request,
    status_filter: Optional[ApprovalStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    ctx: RequestContext = Depends(get_request_context),
    service: ApprovalService = Depends(get_approval_service),
):
    """Customers get requests on their bookings; workshop users get the requests they raised."""
    approvals = await service.list_mine(ctx, status=status_filter, skip=skip, limit=limit)
    return [validate_document_response(a, ApprovalRequest.Response) for a in approvals]


@router.post("/", response_model=ApprovalRequest.Response, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def create_approval(
    request: Request,
    body: ApprovalCreateBody = Body(...),
    ctx: RequestContext = Depends(require_operator),
    service: ApprovalService = Depends(get_approval_service),
):
    created = await service.submit(ctx, body.root)
    logger.info(f"User '{ctx.username}' raised {body.root.type} approval for booking {body.root.related_id}")
    return validate_document_response(created, ApprovalRequest.Response)


@router.get("/{approval_id}", response_model=ApprovalRequest.Response)
@limiter.limit("60/minute")
async def read_approval(
    request: Request,
    approval_id: str = Path(...),
    ctx: RequestContext = Depends(get_request_context),
    service: ApprovalService = Depends(get_approval_service),
):
    return validate_document_response(await service.get(ctx, approval_id), ApprovalRequest.Response)


@router.patch("/{approval_id}/resolve", response_model=ApprovalRequest.Response)
@limiter.limit("30/minute")
async def resolve_approval(
    request: Request,
    approval_id: str = Path(...),
    decision: ApprovalRequest.Resolve = Body(...),
    ctx: RequestContext = Depends(get_request_context),
    service: ApprovalService = Depends(get_approval_service),
):
    """Approve or reject once. A second attempt answers 409 ``already_resolved``."""
    resolved = await service.resolve_approval(ctx, approval_id, decision.status, decision.admin_comment)
    return validate_document_response(resolved, ApprovalRequest.Response)


@router.patch("/{approval_id}/comment", response_model=ApprovalRequest.Response)
@limiter.limit("30/minute")
async def comment_approval(
    request: Request,
    approval_id: str = Path(...),
    comment_in: ApprovalRequest.Comment = Body(...),
    ctx: RequestContext = Depends(require_admin),
    service: ApprovalService = Depends(get_approval_service),
):
    updated = await service.update_comment(ctx, approval_id, comment_in.admin_comment)
    return validate_document_response(updated, ApprovalRequest.Response)
