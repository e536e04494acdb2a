# driveflow/api/v1/endpoints/vehicles.py
from datetime import datetime, timezone
from typing import List

from bson import ObjectId
from fastapi import APIRouter, Body, Depends, HTTPException, Path, Request, status
from loguru import logger
from pymongo.errors import PyMongoError

from driveflow.api.responses import validate_document_response
from driveflow.core.context import RequestContext
from driveflow.core.rate_limiter import limiter
from driveflow.core.security import get_request_context, require_roles
from driveflow.models.enum import UserRole
from driveflow.models.vehicle import Vehicle

router = APIRouter(tags=["Vehicles"])

require_customer = require_roles([UserRole.CUSTOMER])


async def get_vehicle_or_404(vehicle_id: str, ctx: RequestContext) -> Vehicle:
    """Load a vehicle the caller may see. Customers only see their own."""
    if not ObjectId.is_valid(vehicle_id):
        raise HTTPException(status_code=400, detail="Invalid vehicle ID format.")
    vehicle = await Vehicle.find_one({"_id": ObjectId(vehicle_id)})
    if not vehicle or (ctx.is_customer and str(vehicle.owner_id) != ctx.user_id):
        raise HTTPException(status_code=404, detail=f"Vehicle with ID '{vehicle_id}' not found")
    return vehicle


@router.get("/", response_model=List[Vehicle.Response])
@limiter.limit("60/minute")
async def read_my_vehicles(request: Request, ctx: RequestContext = Depends(require_customer)):
    vehicles = await Vehicle.find({"owner_id": ObjectId(ctx.user_id), "is_active": True}).to_list()
    return [validate_document_response(v, Vehicle.Response) for v in vehicles]


@router.post("/", response_model=Vehicle.Response, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/hour")
async def create_vehicle(
    request: Request,
    vehicle_in: Vehicle.Create = Body(...),
    ctx: RequestContext = Depends(require_customer),
):
    if await Vehicle.find_one(Vehicle.license_plate == vehicle_in.license_plate):
        raise HTTPException(status_code=400, detail="License plate already registered.")
    vehicle = Vehicle(**vehicle_in.model_dump(), owner_id=ObjectId(ctx.user_id))
    try:
        await vehicle.insert()
    except PyMongoError as e:
        raise HTTPException(status_code=500, detail="Failed to save vehicle.") from e
    logger.info(f"User '{ctx.username}' registered vehicle {vehicle.license_plate}")
    return validate_document_response(vehicle, Vehicle.Response)


@router.get("/{vehicle_id}", response_model=Vehicle.Response)
@limiter.limit("60/minute")
async def read_vehicle(
    request: Request,
    vehicle_id: str = Path(...),
    ctx: RequestContext = Depends(get_request_context),
):
    return validate_document_response(await get_vehicle_or_404(vehicle_id, ctx), Vehicle.Response)


@router.patch("/{vehicle_id}", response_model=Vehicle.Response)
@limiter.limit("30/hour")
async def update_vehicle(
    request: Request,
    vehicle_id: str = Path(...),
    vehicle_in: Vehicle.Update = Body(...),
    ctx: RequestContext = Depends(require_customer),
):
    """Setting ``is_active`` to false hides the vehicle from new bookings."""
    vehicle = await get_vehicle_or_404(vehicle_id, ctx)
    update_data = vehicle_in.model_dump(exclude_unset=True)
    if not update_data:
        raise HTTPException(status_code=400, detail="No update data provided.")
    update_data["updated_at"] = datetime.now(timezone.utc)
    try:
        await vehicle.update({"$set": update_data})
    except PyMongoError as e:
        raise HTTPException(status_code=500, detail="Failed to update vehicle.") from e
    return validate_document_response(await get_vehicle_or_404(vehicle_id, ctx), Vehicle.Response)
