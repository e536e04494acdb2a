# driveflow/models/booking.py
from typing import Optional, List
from datetime import datetime, timezone

from beanie import Document, PydanticObjectId
from pydantic import BaseModel, Field, ConfigDict, model_validator
from pymongo import IndexModel, ASCENDING, DESCENDING

from driveflow.core.billing import calculate_total
from driveflow.core.status_flow import BookingStatus
from driveflow.models.enum import ApprovalStatus, PaymentStatus, DelayReason


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- Sub-record booking ---
class PartLine(BaseModel):
    """Billable part line counted in the booking total."""
    product_id: Optional[str] = None
    name: str
    price: float = Field(default=0, ge=0)
    quantity: int = Field(default=1, ge=1)
    image: Optional[str] = None
    approval_id: Optional[str] = None


class AdditionalPart(BaseModel):
    """Part proposed during inspection. Billable only once approved."""
    name: str
    price: float = Field(default=0, ge=0)
    quantity: int = Field(default=1, ge=1)
    approved: bool = False
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    image: Optional[str] = None
    old_image: Optional[str] = None
    approval_id: Optional[str] = None


class Inspection(BaseModel):
    damage_report: Optional[str] = None
    photos: List[str] = Field(default_factory=list)
    additional_parts: List[AdditionalPart] = Field(default_factory=list)
    completed_at: Optional[datetime] = None


class QualityCheck(BaseModel):
    test_ride: bool = False
    safety_checks: bool = False
    no_leaks: bool = False
    no_error_lights: bool = False
    notes: Optional[str] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None

    @property
    def all_passed(self) -> bool:
        return all((self.test_ride, self.safety_checks, self.no_leaks, self.no_error_lights))

    @model_validator(mode="after")
    def check_completion(self):
        if self.completed_at is not None and not self.all_passed:
            raise ValueError("QC cannot be marked complete until all four checks pass")
        return self


class Billing(BaseModel):
    invoice_number: Optional[str] = None
    invoice_date: Optional[datetime] = None
    parts_total: Optional[float] = 0
    labour_cost: Optional[float] = 0
    gst: Optional[float] = 0
    total: float = 0
    file_url: Optional[str] = None
    submitted_at: Optional[datetime] = None

    @model_validator(mode="after")
    def recompute_total(self):
        # total selalu turunan, nilai kiriman client diabaikan
        self.total = calculate_total(self.parts_total, self.labour_cost, self.gst)
        return self


class ServiceExecution(BaseModel):
    job_start_time: Optional[datetime] = None
    job_end_time: Optional[datetime] = None
    before_photos: List[str] = Field(default_factory=list)
    during_photos: List[str] = Field(default_factory=list)
    after_photos: List[str] = Field(default_factory=list)


class Delay(BaseModel):
    is_delayed: bool = False
    reason: Optional[DelayReason] = None
    note: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    previous_status: Optional[BookingStatus] = None


class DeliveryOtp(BaseModel):
    code: str
    expires_at: datetime
    attempts: int = 0
    verified_at: Optional[datetime] = None


class BookingLocation(BaseModel):
    address: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None


class BookingBase(BaseModel):
    """Booking fields shared by the Mongo document and the workflow layer."""
    user_id: PydanticObjectId
    vehicle_id: Optional[PydanticObjectId] = None
    service_ids: List[PydanticObjectId] = Field(default_factory=list)
    date: Optional[datetime] = None
    slot: Optional[str] = None
    order_number: Optional[int] = None
    status: BookingStatus = BookingStatus.CREATED
    pickup_required: bool = False
    services_total: float = 0
    total_amount: float = 0
    notes: Optional[str] = None
    location: Optional[BookingLocation] = None

    merchant_id: Optional[PydanticObjectId] = None
    pickup_driver_id: Optional[PydanticObjectId] = None
    technician_id: Optional[PydanticObjectId] = None

    media: List[str] = Field(default_factory=list)
    pre_pickup_photos: List[str] = Field(default_factory=list)
    parts: List[PartLine] = Field(default_factory=list)

    inspection: Inspection = Field(default_factory=Inspection)
    qc: QualityCheck = Field(default_factory=QualityCheck)
    billing: Billing = Field(default_factory=Billing)
    service_execution: ServiceExecution = Field(default_factory=ServiceExecution)
    delay: Delay = Field(default_factory=Delay)
    delivery_otp: Optional[DeliveryOtp] = None

    payment_status: PaymentStatus = PaymentStatus.PENDING
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class Booking(Document, BookingBase):
    """Beanie document for a service booking."""

    class Settings:
        name = "bookings"
        indexes = [
            IndexModel([("order_number", ASCENDING)], name="booking_order_number_unique_index", unique=True, sparse=True),
            IndexModel([("user_id", ASCENDING)], name="booking_user_index"),
            IndexModel([("merchant_id", ASCENDING)], name="booking_merchant_index", sparse=True),
            IndexModel([("pickup_driver_id", ASCENDING)], name="booking_driver_index", sparse=True),
            IndexModel([("technician_id", ASCENDING)], name="booking_technician_index", sparse=True),
            IndexModel([("status", ASCENDING)], name="booking_status_index"),
            IndexModel([("created_at", DESCENDING)], name="booking_created_at_index"),
        ]

    # --- Pydantic Schemas for API ---
    class Create(BaseModel):
        vehicle_id: str = Field(..., description="String ObjectId of the customer's vehicle")
        service_ids: List[str] = Field(..., min_length=1)
        date: datetime
        slot: Optional[str] = None
        pickup_required: bool = False
        notes: Optional[str] = None
        location: Optional[BookingLocation] = None
        media: List[str] = Field(default_factory=list)

    class Assign(BaseModel):
        merchant_id: Optional[str] = None
        pickup_driver_id: Optional[str] = None
        technician_id: Optional[str] = None
        date: Optional[datetime] = None
        slot: Optional[str] = None

    class StatusUpdate(BaseModel):
        status: str

    class Hold(BaseModel):
        reason: DelayReason
        note: Optional[str] = Field(None, max_length=500)

    class DetailsUpdate(BaseModel):
        notes: Optional[str] = None
        media: Optional[List[str]] = None
        pre_pickup_photos: Optional[List[str]] = None
        parts: Optional[List[PartLine]] = None
        location: Optional[BookingLocation] = None

    class InspectionUpdate(BaseModel):
        damage_report: Optional[str] = None
        photos: Optional[List[str]] = None
        additional_parts: Optional[List[AdditionalPart]] = None
        completed: bool = False

    class QCUpdate(BaseModel):
        test_ride: Optional[bool] = None
        safety_checks: Optional[bool] = None
        no_leaks: Optional[bool] = None
        no_error_lights: Optional[bool] = None
        notes: Optional[str] = None
        completed: bool = False

    class BillingUpdate(BaseModel):
        invoice_number: Optional[str] = None
        invoice_date: Optional[datetime] = None
        parts_total: Optional[float] = None
        labour_cost: Optional[float] = None
        gst: Optional[float] = None
        file_url: Optional[str] = None

    class ExecutionUpdate(BaseModel):
        before_photos: List[str] = Field(default_factory=list)
        during_photos: List[str] = Field(default_factory=list)
        after_photos: List[str] = Field(default_factory=list)

    class OtpVerify(BaseModel):
        code: str = Field(..., min_length=4, max_length=4)

    class Response(BookingBase):
        model_config = ConfigDict(from_attributes=True, populate_by_name=True)

        id: str = Field(..., alias="_id")
        status_label: Optional[str] = None
        next_status: Optional[BookingStatus] = None
        warnings: List[str] = Field(default_factory=list)
