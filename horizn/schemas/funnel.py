"""
Funnel Pydantic schemas.

Step definitions are a tagged union on `type`, so malformed conditions
are rejected at the API boundary instead of failing during matching.
"""
from datetime import date, datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from horizn.models.funnel import FunnelStatus


class PageviewConditions(BaseModel):
    page_path: str = Field(..., min_length=1, max_length=512)


class EventConditions(BaseModel):
    event_name: str = Field(..., min_length=1, max_length=100)
    event_category: Optional[str] = Field(None, max_length=100)


class _StepBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    is_required: bool = True


class PageviewStep(_StepBase):
    type: Literal["pageview"]
    conditions: PageviewConditions


class EventStep(_StepBase):
    type: Literal["event"]
    conditions: EventConditions


class CustomStep(_StepBase):
    type: Literal["custom"]
    conditions: dict[str, Any] = Field(..., min_length=1)


FunnelStepIn = Annotated[
    Union[PageviewStep, EventStep, CustomStep],
    Field(discriminator="type"),
]


class FunnelCreate(BaseModel):
    """Schema for creating a funnel. Steps are numbered in list order."""

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    status: FunnelStatus = FunnelStatus.ACTIVE
    steps: list[FunnelStepIn] = Field(..., min_length=1, max_length=20)


class FunnelUpdate(BaseModel):
    """Schema for updating a funnel. `steps`, when given, replaces all steps."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[FunnelStatus] = None
    steps: Optional[list[FunnelStepIn]] = Field(None, min_length=1, max_length=20)


class FunnelStepResponse(BaseModel):
    step_order: int
    name: str
    step_type: str
    conditions: dict[str, Any]
    is_required: bool

    model_config = ConfigDict(from_attributes=True)


class FunnelResponse(BaseModel):
    id: int
    site_id: int
    name: str
    description: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    steps: list[FunnelStepResponse]

    model_config = ConfigDict(from_attributes=True)


class FunnelSessionResponse(BaseModel):
    session_id: str
    last_step_reached: int
    is_converted: bool
    conversion_time: Optional[int] = None
    steps_data: dict[str, Any]
    started_at: datetime
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class FunnelAnalyticsResponse(BaseModel):
    day: date
    sessions_entered: int
    total_conversions: int
    overall_conversion_rate: float
    avg_time_to_convert: Optional[float] = None
    step_counts: dict[str, Any]

    model_config = ConfigDict(from_attributes=True)


class PopularPage(BaseModel):
    page_path: str
    page_title: Optional[str] = None
    views: int


class AvailableEvent(BaseModel):
    event_name: str
    event_category: Optional[str] = None
    occurrences: int
