# driveflow/api/v1/endpoints/bookings.py
from typing import List, Optional

from beanie import PydanticObjectId
from bson import ObjectId
from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, Request, status
from loguru import logger
from pydantic import ValidationError

from driveflow.api.deps import get_workflow_service
from driveflow.core.context import RequestContext
from driveflow.core.rate_limiter import limiter
from driveflow.core.security import get_request_context, require_admin, require_operator, require_roles
from driveflow.core.status_flow import BookingStatus, STATUS_LABELS, timeline
from driveflow.core.workflow import compute_next_state
from driveflow.models.booking import Booking, BookingBase
from driveflow.models.enum import UserRole
from driveflow.models.service import Service
from driveflow.models.vehicle import Vehicle
from driveflow.services.workflow import WorkflowService

router = APIRouter(tags=["Bookings"])

require_customer_or_admin = require_roles([UserRole.CUSTOMER, UserRole.ADMIN])
require_billing_role = require_roles([UserRole.MERCHANT, UserRole.ADMIN])
require_assigner = require_roles([UserRole.ADMIN, UserRole.MERCHANT])


# --- Helper validasi response booking ---
def validate_booking_response(
    booking: BookingBase, ctx: RequestContext, warnings: Optional[List[str]] = None
) -> Booking.Response:
    """Dump the booking into Booking.Response, hiding the delivery code from anyone but the owner or an admin."""
    booking_id = str(getattr(booking, "id", None))
    try:
        data = booking.model_dump(mode="json")
        data.pop("_id", None)
        data["id"] = booking_id
        can_see_code = ctx.is_admin or str(booking.user_id) == ctx.user_id
        if data.get("delivery_otp") and not can_see_code:
            data["delivery_otp"]["code"] = "****"
        data["status_label"] = STATUS_LABELS.get(booking.status)
        data["next_status"] = compute_next_state(booking.status, booking.pickup_required)
        data["warnings"] = warnings or []
        return Booking.Response.model_validate(data)
    except ValidationError as ve:
        logger.error(f"[{booking_id}] Booking response validation failed: {ve}")
        raise HTTPException(status_code=500, detail="Error preparing booking response.") from ve


async def price_services(service_ids: List[str]) -> float:
    """Sum catalogue prices for the requested services. 400 if any id is invalid or inactive."""
    oids = []
    for sid in service_ids:
        if not ObjectId.is_valid(sid):
            raise HTTPException(status_code=400, detail=f"Invalid service ID format: '{sid}'.")
        oids.append(ObjectId(sid))
    services = await Service.find({"_id": {"$in": oids}, "is_active": True}).to_list()
    if len(services) != len(set(oids)):
        raise HTTPException(status_code=400, detail="One or more services are unavailable.")
    return round(sum(s.price for s in services), 2)


async def check_vehicle(vehicle_id: str, ctx: RequestContext) -> Vehicle:
    if not ObjectId.is_valid(vehicle_id):
        raise HTTPException(status_code=400, detail="Invalid vehicle ID format.")
    vehicle = await Vehicle.find_one({"_id": ObjectId(vehicle_id), "is_active": True})
    if not vehicle:
        raise HTTPException(status_code=404, detail=f"Vehicle with ID '{vehicle_id}' not found")
    if not ctx.is_admin and str(vehicle.owner_id) != ctx.user_id:
        raise HTTPException(status_code=403, detail="Vehicle does not belong to you.")
    return vehicle


@router.post("/", response_model=Booking.Response, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/hour")
async def create_booking(
    request: Request,
    booking_in: Booking.Create = Body(...),
    ctx: RequestContext = Depends(require_customer_or_admin),
    service: WorkflowService = Depends(get_workflow_service),
):
    """Customer books one or more catalogue services for a vehicle."""
    vehicle = await check_vehicle(booking_in.vehicle_id, ctx)
    services_total = await price_services(booking_in.service_ids)
    booking = BookingBase(
        user_id=vehicle.owner_id,
        vehicle_id=vehicle.id,
        service_ids=[PydanticObjectId(s) for s in booking_in.service_ids],
        date=booking_in.date,
        slot=booking_in.slot,
        pickup_required=booking_in.pickup_required,
        services_total=services_total,
        notes=booking_in.notes,
        location=booking_in.location,
        media=booking_in.media,
    )
    created = await service.create_booking(ctx, booking)
    logger.info(f"User '{ctx.username}' created booking #{created.order_number}")
    return validate_booking_response(created, ctx)


@router.get("/", response_model=List[Booking.Response])
@limiter.limit("120/minute")
async def read_bookings(
    request: Request,
    skip: int = Query(0, ge=0),
    limit: int = Query(25, ge=1, le=100),
    status_filter: Optional[List[BookingStatus]] = Query(None, alias="status"),
    ctx: RequestContext = Depends(get_request_context),
    service: WorkflowService = Depends(get_workflow_service),
):
    """Admins see every booking; others see bookings they own or are assigned to."""
    bookings = await service.list_for(ctx, statuses=status_filter, skip=skip, limit=limit)
    return [validate_booking_response(b, ctx) for b in bookings]


@router.get("/mine", response_model=List[Booking.Response])
@limiter.limit("120/minute")
async def read_my_bookings(
    request: Request,
    skip: int = Query(0, ge=0),
    limit: int = Query(25, ge=1, le=100),
    ctx: RequestContext = Depends(get_request_context),
    service: WorkflowService = Depends(get_workflow_service),
):
    """Bookings the caller placed as a customer."""
    bookings = await service.list_for(ctx, skip=skip, limit=limit, own_only=True)
    return [validate_booking_response(b, ctx) for b in bookings]


@router.get("/admin/stats")
@limiter.limit("30/minute")
async def booking_status_counts(
    request: Request,
    ctx: RequestContext = Depends(require_admin),
    service: WorkflowService = Depends(get_workflow_service),
):
    """Count of recent bookings per status (admin)."""
    bookings = await service.list_for(ctx, limit=500)
    counts = {s.value: 0 for s in BookingStatus}
    for booking in bookings:
        counts[booking.status.value] += 1
    return {"total": len(bookings), "by_status": counts}


@router.get("/{booking_id}", response_model=Booking.Response)
@limiter.limit("120/minute")
async def read_booking(
    request: Request,
    booking_id: str = Path(...),
    ctx: RequestContext = Depends(get_request_context),
    service: WorkflowService = Depends(get_workflow_service),
):
    booking = await service.get(ctx, booking_id)
    return validate_booking_response(booking, ctx)


@router.get("/{booking_id}/timeline")
@limiter.limit("120/minute")
async def read_booking_timeline(
    request: Request,
    booking_id: str = Path(...),
    ctx: RequestContext = Depends(get_request_context),
    service: WorkflowService = Depends(get_workflow_service),
):
    """Flow steps with completed/active flags for the booking's path."""
    booking = await service.get(ctx, booking_id)
    next_status = compute_next_state(booking.status, booking.pickup_required)
    return {
        "booking_id": booking_id,
        "status": booking.status.value,
        "label": STATUS_LABELS[booking.status],
        "pickup_required": booking.pickup_required,
        "next_status": next_status.value if next_status else None,
        "steps": timeline(booking.status, booking.pickup_required),
        "delay": booking.delay.model_dump(mode="json") if booking.delay.is_delayed else None,
    }


@router.patch("/{booking_id}/assign", response_model=Booking.Response)
@limiter.limit("60/minute")
async def assign_booking(
    request: Request,
    booking_id: str = Path(...),
    assignment: Booking.Assign = Body(...),
    ctx: RequestContext = Depends(require_assigner),
    service: WorkflowService = Depends(get_workflow_service),
):
    """Admin assigns merchant, driver, technician and slot; a merchant may only set the technician."""
    booking = await service.assign(ctx, booking_id, assignment)
    return validate_booking_response(booking, ctx)


@router.patch("/{booking_id}/status", response_model=Booking.Response)
@limiter.limit("60/minute")
async def update_booking_status(
    request: Request,
    booking_id: str = Path(...),
    status_in: Booking.StatusUpdate = Body(...),
    ctx: RequestContext = Depends(get_request_context),
    service: WorkflowService = Depends(get_workflow_service),
):
    """Move the booking along its flow. Non-blocking warnings are returned in ``warnings``."""
    booking, warnings = await service.transition(ctx, booking_id, status_in.status)
    return validate_booking_response(booking, ctx, warnings)


@router.post("/{booking_id}/hold", response_model=Booking.Response)
@limiter.limit("30/minute")
async def hold_booking(
    request: Request,
    booking_id: str = Path(...),
    hold_in: Booking.Hold = Body(...),
    ctx: RequestContext = Depends(require_operator),
    service: WorkflowService = Depends(get_workflow_service),
):
    booking = await service.mark_delayed(ctx, booking_id, hold_in.reason, hold_in.note)
    return validate_booking_response(booking, ctx)


@router.post("/{booking_id}/resume", response_model=Booking.Response)
@limiter.limit("30/minute")
async def resume_booking(
    request: Request,
    booking_id: str = Path(...),
    ctx: RequestContext = Depends(require_operator),
    service: WorkflowService = Depends(get_workflow_service),
):
    booking = await service.resume(ctx, booking_id)
    return validate_booking_response(booking, ctx)


@router.patch("/{booking_id}/details", response_model=Booking.Response)
@limiter.limit("60/minute")
async def update_booking_details(
    request: Request,
    booking_id: str = Path(...),
    details_in: Booking.DetailsUpdate = Body(...),
    ctx: RequestContext = Depends(get_request_context),
    service: WorkflowService = Depends(get_workflow_service),
):
    booking = await service.update_details(ctx, booking_id, details_in)
    return validate_booking_response(booking, ctx)


@router.patch("/{booking_id}/inspection", response_model=Booking.Response)
@limiter.limit("60/minute")
async def update_inspection(
    request: Request,
    booking_id: str = Path(...),
    inspection_in: Booking.InspectionUpdate = Body(...),
    ctx: RequestContext = Depends(require_operator),
    service: WorkflowService = Depends(get_workflow_service),
):
    """Save inspection notes and proposed parts. New priced parts raise PartReplacement approvals."""
    booking = await service.update_inspection(ctx, booking_id, inspection_in)
    return validate_booking_response(booking, ctx)


@router.patch("/{booking_id}/qc", response_model=Booking.Response)
@limiter.limit("60/minute")
async def update_qc(
    request: Request,
    booking_id: str = Path(...),
    qc_in: Booking.QCUpdate = Body(...),
    ctx: RequestContext = Depends(require_operator),
    service: WorkflowService = Depends(get_workflow_service),
):
    booking = await service.update_qc(ctx, booking_id, qc_in)
    return validate_booking_response(booking, ctx)


@router.patch("/{booking_id}/billing", response_model=Booking.Response)
@limiter.limit("30/minute")
async def submit_billing(
    request: Request,
    booking_id: str = Path(...),
    billing_in: Booking.BillingUpdate = Body(...),
    ctx: RequestContext = Depends(require_billing_role),
    service: WorkflowService = Depends(get_workflow_service),
):
    booking = await service.submit_billing(ctx, booking_id, billing_in)
    return validate_booking_response(booking, ctx)


@router.post("/{booking_id}/execution", response_model=Booking.Response)
@limiter.limit("60/minute")
async def add_execution_photos(
    request: Request,
    booking_id: str = Path(...),
    execution_in: Booking.ExecutionUpdate = Body(...),
    ctx: RequestContext = Depends(require_operator),
    service: WorkflowService = Depends(get_workflow_service),
):
    booking = await service.record_execution(ctx, booking_id, execution_in)
    return validate_booking_response(booking, ctx)


@router.post("/{booking_id}/otp", response_model=Booking.Response)
@limiter.limit("10/minute")
async def generate_delivery_otp(
    request: Request,
    booking_id: str = Path(...),
    ctx: RequestContext = Depends(require_operator),
    service: WorkflowService = Depends(get_workflow_service),
):
    """Issue a fresh delivery code. The code is pushed to the customer, not returned to the driver."""
    booking = await service.generate_delivery_otp(ctx, booking_id)
    return validate_booking_response(booking, ctx)


@router.post("/{booking_id}/otp/verify", response_model=Booking.Response)
@limiter.limit("10/minute")
async def verify_delivery_otp(
    request: Request,
    booking_id: str = Path(...),
    otp_in: Booking.OtpVerify = Body(...),
    ctx: RequestContext = Depends(require_operator),
    service: WorkflowService = Depends(get_workflow_service),
):
    booking = await service.verify_delivery_otp(ctx, booking_id, otp_in.code)
    return validate_booking_response(booking, ctx)

