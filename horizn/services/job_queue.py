"""
ARQ Job Queue Service - background maintenance for the ingest engine.

Provides:
- Realtime presence purge (every 5 minutes)
- Daily funnel analytics rollup (shortly after midnight UTC)

Run with: arq horizn.services.job_queue.WorkerSettings
"""
from datetime import date, timedelta
from typing import Any, Optional

from arq.connections import RedisSettings
from arq.cron import cron

from horizn.core.config import get_settings
from horizn.core.context import AppContext, build_context
from horizn.core.logging import configure_logging, get_logger
from horizn.services.funnels import FunnelService
from horizn.services.presence import PresenceTracker

logger = get_logger(__name__)


def get_redis_settings() -> RedisSettings:
    """Get Redis connection settings from config."""
    settings = get_settings()
    redis_url = str(settings.redis_url) if settings.redis_url else "redis://localhost:6379"
    return RedisSettings.from_dsn(redis_url)


async def startup(ctx: dict) -> None:
    """Build the application context once per worker process."""
    settings = get_settings()
    configure_logging(settings)
    ctx["app"] = build_context(settings)
    logger.info("Worker started", environment=settings.environment)


async def shutdown(ctx: dict) -> None:
    app: Optional[AppContext] = ctx.get("app")
    if app is not None:
        await app.database.dispose()
    logger.info("Worker stopped")


# ============================================
# JOB FUNCTIONS
# ============================================

async def purge_realtime_job(ctx: dict) -> dict[str, Any]:
    """
    Delete presence rows that have not been refreshed recently.

    Args:
        ctx: ARQ context holding the application context under "app"

    Returns:
        Number of rows removed
    """
    app: AppContext = ctx["app"]
    async with app.database.session() as db:
        removed = await PresenceTracker(app, db).purge()
    return {"removed": removed}


async def daily_funnel_analytics_job(ctx: dict, day: Optional[str] = None) -> dict[str, Any]:
    """
    Roll up funnel progress for one day into funnel_analytics.

    Args:
        ctx: ARQ context holding the application context under "app"
        day: ISO date to aggregate, defaults to yesterday (UTC)

    Returns:
        Aggregated day and number of funnels processed
    """
    app: AppContext = ctx["app"]
    target = date.fromisoformat(day) if day else app.now().date() - timedelta(days=1)

    async with app.database.session() as db:
        processed = await FunnelService(app, db).compute_daily_all(target)

    logger.info("Funnel analytics computed", day=target.isoformat(), funnels=processed)
    return {"day": target.isoformat(), "funnels": processed}


class WorkerSettings:
    """ARQ worker configuration."""

    functions = [
        purge_realtime_job,
        daily_funnel_analytics_job,
    ]

    cron_jobs = [
        cron(purge_realtime_job, minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55}),
        cron(daily_funnel_analytics_job, hour=0, minute=15),
    ]

    on_startup = startup
    on_shutdown = shutdown

    redis_settings = get_redis_settings()

    # Worker settings
    max_jobs = 10
    job_timeout = 600  # 10 minutes
    keep_result = 3600  # 1 hour
    max_tries = 3
