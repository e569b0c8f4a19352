"""
Services package for business logic layer.
"""
from horizn.services.errors import (
    RateLimitExceeded,
    ResolutionFailed,
    StorageFailure,
    TrackingError,
    ValidationFailed,
)
from horizn.services.funnel_matcher import FunnelMatcher
from horizn.services.funnels import FunnelService
from horizn.services.ingest import IngestService
from horizn.services.presence import PresenceTracker
from horizn.services.rate_limiter import EventRateLimiter
from horizn.services.sessions import SessionManager

__all__ = [
    "IngestService",
    "SessionManager",
    "EventRateLimiter",
    "PresenceTracker",
    "FunnelMatcher",
    "FunnelService",
    "TrackingError",
    "ValidationFailed",
    "RateLimitExceeded",
    "ResolutionFailed",
    "StorageFailure",
]
