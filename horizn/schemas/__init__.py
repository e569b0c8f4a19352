"""
Pydantic schemas package.
"""
from horizn.schemas.auth import TokenRequest, TokenResponse
from horizn.schemas.funnel import (
    AvailableEvent,
    CustomStep,
    EventStep,
    FunnelAnalyticsResponse,
    FunnelCreate,
    FunnelResponse,
    FunnelSessionResponse,
    FunnelStepIn,
    FunnelUpdate,
    PageviewStep,
    PopularPage,
)
from horizn.schemas.live import (
    ActiveVisitor,
    ActiveVisitorsResponse,
    LiveVisitorCount,
    RecentPageview,
    RecentPageviewsResponse,
    TrackingStats,
)
from horizn.schemas.site import SiteCreate, SiteResponse

__all__ = [
    # Auth
    "TokenRequest",
    "TokenResponse",
    # Site
    "SiteCreate",
    "SiteResponse",
    # Funnel
    "FunnelStepIn",
    "PageviewStep",
    "EventStep",
    "CustomStep",
    "FunnelCreate",
    "FunnelUpdate",
    "FunnelResponse",
    "FunnelSessionResponse",
    "FunnelAnalyticsResponse",
    "PopularPage",
    "AvailableEvent",
    # Live
    "LiveVisitorCount",
    "ActiveVisitor",
    "ActiveVisitorsResponse",
    "RecentPageview",
    "RecentPageviewsResponse",
    "TrackingStats",
]
