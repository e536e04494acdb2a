# driveflow/models/user.py
from typing import Optional
from datetime import datetime, timezone

from beanie import Document
from pydantic import BaseModel, Field, EmailStr, ConfigDict
from pymongo import IndexModel, ASCENDING, DESCENDING

from driveflow.models.enum import UserRole, StaffSubRole


class UserLocation(BaseModel):
    lat: float
    lng: float
    address: Optional[str] = None
    updated_at: Optional[datetime] = None


class User(Document):
    username: str
    email: Optional[EmailStr] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    hashed_password: str
    disabled: bool = Field(default=False)
    role: UserRole = Field(default=UserRole.CUSTOMER)
    sub_role: Optional[StaffSubRole] = None
    # Merchant baru menunggu approval admin (UserRegistration)
    is_approved: bool = Field(default=True)
    rejection_reason: Optional[str] = None
    location: Optional[UserLocation] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "users"
        indexes = [
            IndexModel([("username", ASCENDING)], name="username_unique_index", unique=True),
            IndexModel([("email", ASCENDING)], name="email_unique_index", unique=True, sparse=True),
            IndexModel([("role", ASCENDING)], name="role_index"),
            IndexModel([("is_approved", ASCENDING)], name="user_is_approved_index"),
            IndexModel([("updated_at", DESCENDING)], name="user_updated_at_index"),
        ]

    # --- Pydantic Schemas ---
    class Response(BaseModel):
        model_config = ConfigDict(from_attributes=True, populate_by_name=True, use_enum_values=True)

        id: str = Field(..., alias="_id")
        username: str
        email: Optional[EmailStr] = None
        full_name: Optional[str] = None
        phone: Optional[str] = None
        disabled: bool
        role: UserRole
        sub_role: Optional[StaffSubRole] = None
        is_approved: bool
        rejection_reason: Optional[str] = None
        location: Optional[UserLocation] = None
        created_at: datetime
        updated_at: datetime

    class Create(BaseModel):
        username: str = Field(..., min_length=3, max_length=50)
        email: Optional[EmailStr] = None
        full_name: Optional[str] = None
        phone: Optional[str] = None
        password: str = Field(..., min_length=6)

    class PartnerCreate(Create):
        business_name: Optional[str] = None
        address: Optional[str] = None

    class AdminCreate(BaseModel):
        username: str = Field(..., min_length=3, max_length=50)
        email: Optional[EmailStr] = None
        full_name: Optional[str] = None
        phone: Optional[str] = None
        password: str = Field(..., min_length=6)
        role: UserRole = UserRole.STAFF
        sub_role: Optional[StaffSubRole] = None
        disabled: bool = False

    class AdminUpdate(BaseModel):
        email: Optional[EmailStr] = None
        full_name: Optional[str] = None
        phone: Optional[str] = None
        password: Optional[str] = Field(None, min_length=6)
        role: Optional[UserRole] = None
        sub_role: Optional[StaffSubRole] = None
        disabled: Optional[bool] = None
