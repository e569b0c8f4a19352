"""
Repository package for data access layer.
"""
from horizn.repositories.base import BaseRepository
from horizn.repositories.funnel import (
    FunnelAnalyticsRepository,
    FunnelRepository,
    FunnelSessionRepository,
)
from horizn.repositories.realtime import RealtimeRepository
from horizn.repositories.session import SessionRepository
from horizn.repositories.site import SiteRepository
from horizn.repositories.tracking import EventRepository, PageviewRepository

__all__ = [
    "BaseRepository",
    "SiteRepository",
    "SessionRepository",
    "PageviewRepository",
    "EventRepository",
    "RealtimeRepository",
    "FunnelRepository",
    "FunnelSessionRepository",
    "FunnelAnalyticsRepository",
]
