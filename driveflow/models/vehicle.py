# driveflow/models/vehicle.py
from typing import Optional
from datetime import datetime, timezone

from beanie import Document, PydanticObjectId
from pydantic import BaseModel, Field, ConfigDict, field_validator
from pymongo import IndexModel, ASCENDING

from driveflow.models.enum import FuelType


class Vehicle(Document):
    """Customer-owned vehicle that bookings are made for."""
    owner_id: PydanticObjectId
    make: str = Field(..., max_length=100)
    model: str = Field(..., max_length=100)
    license_plate: str = Field(..., max_length=20)
    year: Optional[int] = Field(None, ge=1950, le=2100)
    fuel_type: Optional[FuelType] = None
    color: Optional[str] = Field(None, max_length=50)
    is_active: bool = Field(default=True)

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "vehicles"
        indexes = [
            IndexModel([("license_plate", ASCENDING)], name="vehicle_plate_unique_index", unique=True),
            IndexModel([("owner_id", ASCENDING)], name="vehicle_owner_index"),
            IndexModel([("is_active", ASCENDING)], name="vehicle_is_active_index"),
        ]

    class Create(BaseModel):
        make: str = Field(..., min_length=1, max_length=100)
        model: str = Field(..., min_length=1, max_length=100)
        license_plate: str = Field(..., min_length=2, max_length=20)
        year: Optional[int] = Field(None, ge=1950, le=2100)
        fuel_type: Optional[FuelType] = None
        color: Optional[str] = Field(None, max_length=50)

        @field_validator("license_plate")
        @classmethod
        def normalize_plate(cls, value: str) -> str:
            return value.replace(" ", "").upper()

    class Update(BaseModel):
        make: Optional[str] = Field(None, min_length=1, max_length=100)
        model: Optional[str] = Field(None, min_length=1, max_length=100)
        year: Optional[int] = Field(None, ge=1950, le=2100)
        fuel_type: Optional[FuelType] = None
        color: Optional[str] = Field(None, max_length=50)
        is_active: Optional[bool] = None

    class Response(BaseModel):
        model_config = ConfigDict(from_attributes=True, populate_by_name=True)

        id: str = Field(..., alias="_id")
        owner_id: str
        make: str
        model: str
        license_plate: str
        year: Optional[int] = None
        fuel_type: Optional[FuelType] = None
        color: Optional[str] = None
        is_active: bool
        created_at: datetime
        updated_at: datetime
