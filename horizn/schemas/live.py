"""
Realtime and stats response schemas.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class LiveVisitorCount(BaseModel):
    site_id: int
    visitors: int
    window_seconds: int


class ActiveVisitor(BaseModel):
    session_id: str
    page_url: Optional[str] = None
    page_title: Optional[str] = None
    last_seen: datetime
    device_type: Optional[str] = None
    browser: Optional[str] = None
    os: Optional[str] = None
    country_code: Optional[str] = None
    referrer_domain: Optional[str] = None
    page_count: Optional[int] = None


class ActiveVisitorsResponse(BaseModel):
    site_id: int
    visitors: list[ActiveVisitor]


class RecentPageview(BaseModel):
    session_id: str
    page_url: str
    page_path: str
    page_title: Optional[str] = None
    referrer: Optional[str] = None
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class RecentPageviewsResponse(BaseModel):
    site_id: int
    pageviews: list[RecentPageview]


class TrackingStats(BaseModel):
    """Tracking totals over the last 24 hours."""

    pageviews_24h: int
    events_24h: int
    sessions_24h: int
    site_id: Optional[int] = None
    timestamp: datetime
