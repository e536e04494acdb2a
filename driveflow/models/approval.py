# driveflow/models/approval.py
from typing import Optional, Union, Literal, Any, Dict, Annotated
from datetime import datetime, timezone

from beanie import Document, PydanticObjectId
from pydantic import BaseModel, Field, ConfigDict, RootModel
from pymongo import IndexModel, ASCENDING, DESCENDING

from driveflow.models.enum import ApprovalType, ApprovalStatus, RelatedModel


# --- Payload per tipe approval ---
class PartReplacementData(BaseModel):
    part_name: str = Field(..., min_length=1)
    price: float = Field(..., gt=0)
    quantity: int = Field(default=1, ge=1)
    image: Optional[str] = None
    old_image: Optional[str] = None


class ExtraCostData(BaseModel):
    amount: float = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=300)


class BillEditData(BaseModel):
    new_amount: float = Field(..., ge=0)
    reason: Optional[str] = None


class UserRegistrationData(BaseModel):
    username: str
    role: str
    business_name: Optional[str] = None
    address: Optional[str] = None


PAYLOAD_MODELS = {
    ApprovalType.PART_REPLACEMENT: PartReplacementData,
    ApprovalType.EXTRA_COST: ExtraCostData,
    ApprovalType.BILL_EDIT: BillEditData,
    ApprovalType.USER_REGISTRATION: UserRegistrationData,
}

RELATED_MODELS = {
    ApprovalType.PART_REPLACEMENT: RelatedModel.BOOKING,
    ApprovalType.EXTRA_COST: RelatedModel.BOOKING,
    ApprovalType.BILL_EDIT: RelatedModel.BOOKING,
    ApprovalType.USER_REGISTRATION: RelatedModel.USER,
}


def parse_payload(approval_type: ApprovalType, data: Dict[str, Any]) -> BaseModel:
    """Validate a stored payload dict against the schema for its approval type."""
    return PAYLOAD_MODELS[approval_type].model_validate(data)


class ApprovalRequestBase(BaseModel):
    type: ApprovalType
    status: ApprovalStatus = ApprovalStatus.PENDING
    related_id: PydanticObjectId
    related_model: RelatedModel
    data: Dict[str, Any] = Field(default_factory=dict)
    requested_by: Optional[PydanticObjectId] = None
    admin_comment: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[PydanticObjectId] = None
    # False sampai efek ke booking/user selesai ditulis
    effects_applied: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def payload(self) -> BaseModel:
        return parse_payload(self.type, self.data)


class ApprovalRequest(Document, ApprovalRequestBase):

    class Settings:
        name = "approval_requests"
        indexes = [
            IndexModel([("status", ASCENDING), ("type", ASCENDING)], name="approval_status_type_index"),
            IndexModel([("related_id", ASCENDING)], name="approval_related_index"),
            IndexModel([("requested_by", ASCENDING)], name="approval_requested_by_index"),
            IndexModel([("created_at", DESCENDING)], name="approval_created_at_index"),
        ]

    # --- Request schema: tagged union berdasarkan field `type` ---
    class PartReplacementCreate(BaseModel):
        type: Literal["PartReplacement"]
        related_id: str
        data: PartReplacementData

    class ExtraCostCreate(BaseModel):
        type: Literal["ExtraCost"]
        related_id: str
        data: ExtraCostData

    class BillEditCreate(BaseModel):
        type: Literal["BillEdit"]
        related_id: str
        data: BillEditData

    class Resolve(BaseModel):
        status: Literal["Approved", "Rejected"]
        admin_comment: Optional[str] = Field(None, max_length=500)

    class Comment(BaseModel):
        admin_comment: str = Field(..., max_length=500)

    class Response(ApprovalRequestBase):
        model_config = ConfigDict(from_attributes=True, populate_by_name=True)

        id: str = Field(..., alias="_id")


ApprovalCreate = Annotated[
    Union[
        ApprovalRequest.PartReplacementCreate,
        ApprovalRequest.ExtraCostCreate,
        ApprovalRequest.BillEditCreate,
    ],
    Field(discriminator="type"),
]


class ApprovalCreateBody(RootModel[ApprovalCreate]):
    """Request body for POST /approvals, dispatched on ``type``."""
