"""
Site Pydantic schemas for request/response validation.
"""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class SiteCreate(BaseModel):
    """Schema for registering a site."""

    domain: str = Field(..., min_length=3, max_length=255, pattern=r"^[A-Za-z0-9.-]+(:\d+)?$")
    name: str = Field(..., min_length=1, max_length=255)
    timezone: str = Field("UTC", max_length=64)


class SiteResponse(BaseModel):
    """Schema for site API responses."""

    id: int
    tracking_code: str
    domain: str
    name: str
    timezone: str
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
