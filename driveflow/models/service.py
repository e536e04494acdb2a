# driveflow/models/service.py
from typing import Optional
from datetime import datetime, timezone

from beanie import Document
from pydantic import BaseModel, Field, ConfigDict
from pymongo import IndexModel, ASCENDING


class Service(Document):
    """Catalogue entry a customer can book (e.g. General Service, Oil Change)."""
    name: str = Field(..., max_length=100)
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    duration_minutes: Optional[int] = Field(None, ge=0)
    is_active: bool = Field(default=True)

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "services"
        indexes = [
            IndexModel([("name", ASCENDING)], name="service_name_unique_index", unique=True),
            IndexModel([("is_active", ASCENDING)], name="service_is_active_index"),
        ]

    class Create(BaseModel):
        name: str = Field(..., min_length=1, max_length=100)
        description: Optional[str] = None
        price: float = Field(..., ge=0)
        duration_minutes: Optional[int] = Field(None, ge=0)

    class Update(BaseModel):
        name: Optional[str] = Field(None, min_length=1, max_length=100)
        description: Optional[str] = None
        price: Optional[float] = Field(None, ge=0)
        duration_minutes: Optional[int] = Field(None, ge=0)
        is_active: Optional[bool] = None

    class Response(BaseModel):
        model_config = ConfigDict(from_attributes=True, populate_by_name=True)

        id: str = Field(..., alias="_id")
        name: str
        description: Optional[str] = None
        price: float
        duration_minutes: Optional[int] = None
        is_active: bool
        created_at: datetime
        updated_at: datetime
