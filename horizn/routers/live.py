"""
Realtime and stats read API.
"""
from datetime import timedelta
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from horizn.core.context import Context
from horizn.core.database import get_db_session
from horizn.core.security import ApiToken
from horizn.models.site import Site
from horizn.repositories.session import SessionRepository
from horizn.repositories.tracking import EventRepository, PageviewRepository
from horizn.routers.sites import get_site_or_404
from horizn.schemas.live import (
    ActiveVisitor,
    ActiveVisitorsResponse,
    LiveVisitorCount,
    RecentPageview,
    RecentPageviewsResponse,
    TrackingStats,
)
from horizn.services.presence import PresenceTracker

router = APIRouter(tags=["live"])

DbSession = Annotated[AsyncSession, Depends(get_db_session)]
SitePath = Annotated[Site, Depends(get_site_or_404)]


@router.get("/live/{site_id}/visitors", response_model=LiveVisitorCount)
async def live_visitors(site: SitePath, ctx: Context, db: DbSession, _: ApiToken) -> LiveVisitorCount:
    """Number of sessions seen within the live window."""
    count = await PresenceTracker(ctx, db).live_count(site.id)
    return LiveVisitorCount(
        site_id=site.id,
        visitors=count,
        window_seconds=ctx.settings.realtime_live_window,
    )


@router.get("/live/{site_id}/active", response_model=ActiveVisitorsResponse)
async def active_visitors(
    site: SitePath,
    ctx: Context,
    db: DbSession,
    _: ApiToken,
    limit: int = Query(100, ge=1, le=500),
) -> ActiveVisitorsResponse:
    """Live sessions with their current page and device details."""
    rows = await PresenceTracker(ctx, db).active_visitors(site.id, limit=limit)
    return ActiveVisitorsResponse(
        site_id=site.id,
        visitors=[ActiveVisitor(**row) for row in rows],
    )


@router.get("/live/{site_id}/pageviews", response_model=RecentPageviewsResponse)
async def recent_pageviews(
    site: SitePath,
    ctx: Context,
    db: DbSession,
    _: ApiToken,
    minutes: int = Query(30, ge=1, le=1440),
    limit: int = Query(100, ge=1, le=100),
) -> RecentPageviewsResponse:
    """Latest pageviews of the site, newest first."""
    since = ctx.now() - timedelta(minutes=minutes)
    rows = await PageviewRepository(db).recent(site.id, since, limit=limit)
    return RecentPageviewsResponse(
        site_id=site.id,
        pageviews=[RecentPageview.model_validate(row) for row in rows],
    )


@router.get("/stats", response_model=TrackingStats)
async def tracking_stats(
    ctx: Context,
    db: DbSession,
    _: ApiToken,
    site_id: Optional[int] = None,
) -> TrackingStats:
    """Tracking totals over the last 24 hours, for one site or all of them."""
    now = ctx.now()
    since = now - timedelta(hours=24)
    return TrackingStats(
        pageviews_24h=await PageviewRepository(db).count_since(since, site_id),
        events_24h=await EventRepository(db).count_since(since, site_id),
        sessions_24h=await SessionRepository(db).count_since(since, site_id),
        site_id=site_id,
        timestamp=now,
    )
