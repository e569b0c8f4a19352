"""
SQLAlchemy models package.
All models are imported here for easy access and Alembic discovery.
"""
from horizn.models.funnel import (
    Funnel,
    FunnelAnalytics,
    FunnelStatus,
    FunnelStep,
    FunnelUserSession,
    StepType,
)
from horizn.models.realtime import RealtimeVisitor
from horizn.models.session import VisitorSession
from horizn.models.site import Site
from horizn.models.tracking import CustomEvent, Pageview

__all__ = [
    "Site",
    "VisitorSession",
    "Pageview",
    "CustomEvent",
    "RealtimeVisitor",
    "Funnel",
    "FunnelStep",
    "FunnelUserSession",
    "FunnelAnalytics",
    "FunnelStatus",
    "StepType",
]
