# driveflow/api/v1/endpoints/services.py
from datetime import datetime, timezone
from typing import List

from bson import ObjectId
from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, Request, status
from loguru import logger
from pymongo.errors import PyMongoError

from driveflow.api.responses import validate_document_response
from driveflow.core.context import RequestContext
from driveflow.core.rate_limiter import limiter
from driveflow.core.security import get_request_context, require_admin
from driveflow.models.service import Service

router = APIRouter(tags=["Services"])


async def get_service_or_404(service_id: str) -> Service:
    if not ObjectId.is_valid(service_id):
        raise HTTPException(status_code=400, detail="Invalid service ID format.")
    service = await Service.find_one({"_id": ObjectId(service_id)})
    if not service:
        raise HTTPException(status_code=404, detail=f"Service with ID '{service_id}' not found")
    return service


@router.get("/", response_model=List[Service.Response])
@limiter.limit("120/minute")
async def read_services(
    request: Request,
    include_inactive: bool = Query(False),
    ctx: RequestContext = Depends(get_request_context),
):
    """Bookable services. Inactive entries are only listed for admins."""
    query = {} if (include_inactive and ctx.is_admin) else {"is_active": True}
    services = await Service.find(query).sort("+name").to_list()
    return [validate_document_response(s, Service.Response) for s in services]


@router.post("/", response_model=Service.Response, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/hour")
async def create_service(
    request: Request,
    service_in: Service.Create = Body(...),
    ctx: RequestContext = Depends(require_admin),
):
    if await Service.find_one(Service.name == service_in.name):
        raise HTTPException(status_code=400, detail="Service name exists.")
    service = Service(**service_in.model_dump())
    try:
        await service.insert()
    except PyMongoError as e:
        raise HTTPException(status_code=500, detail="Failed to save service.") from e
    logger.info(f"Admin '{ctx.username}' created service '{service.name}' ({service.price})")
    return validate_document_response(service, Service.Response)


@router.get("/{service_id}", response_model=Service.Response)
@limiter.limit("120/minute")
async def read_service(request: Request, service_id: str = Path(...)):
    return validate_document_response(await get_service_or_404(service_id), Service.Response)


@router.put("/{service_id}", response_model=Service.Response)
@limiter.limit("30/hour")
async def update_service(
    request: Request,
    service_id: str = Path(...),
    service_in: Service.Update = Body(...),
    ctx: RequestContext = Depends(require_admin),
):
    """Price changes apply to new bookings only; existing bookings keep their services_total."""
    service = await get_service_or_404(service_id)
    update_data = service_in.model_dump(exclude_unset=True)
    if not update_data:
        raise HTTPException(status_code=400, detail="No update data provided.")
    if update_data.get("name") and update_data["name"] != service.name:
        if await Service.find_one(Service.name == update_data["name"]):
            raise HTTPException(status_code=400, detail="Service name exists.")
    update_data["updated_at"] = datetime.now(timezone.utc)
    try:
        await service.update({"$set": update_data})
    except PyMongoError as e:
        raise HTTPException(status_code=500, detail="Failed to update service.") from e
    logger.info(f"Admin '{ctx.username}' updated service {service_id}: {sorted(update_data)}")
    return validate_document_response(await get_service_or_404(service_id), Service.Response)
