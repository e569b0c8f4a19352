"""
Funnel definitions service - CRUD, builder helpers and the daily rollup.
"""
from datetime import date, timedelta
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from horizn.core.context import AppContext
from horizn.core.logging import get_logger
from horizn.models.funnel import Funnel, FunnelStatus
from horizn.repositories.funnel import (
    FunnelAnalyticsRepository,
    FunnelRepository,
    FunnelSessionRepository,
)
from horizn.repositories.tracking import EventRepository, PageviewRepository
from horizn.schemas.funnel import FunnelCreate, FunnelStepIn, FunnelUpdate

logger = get_logger(__name__)

BUILDER_LOOKBACK_DAYS = 30


def step_rows(steps: list[FunnelStepIn]) -> list[dict[str, Any]]:
    """Validated step definitions as column values, numbered from 1."""
    rows = []
    for order, step in enumerate(steps, start=1):
        conditions = step.conditions
        if hasattr(conditions, "model_dump"):
            conditions = conditions.model_dump(exclude_none=True)
        rows.append(
            {
                "step_order": order,
                "name": step.name,
                "step_type": step.type,
                "conditions": dict(conditions),
                "is_required": step.is_required,
            }
        )
    return rows


class FunnelService:
    """Funnel definitions for one site."""

    def __init__(self, ctx: AppContext, db: AsyncSession) -> None:
        self.ctx = ctx
        self.funnels = FunnelRepository(db, cache=ctx.cache)
        self.progress = FunnelSessionRepository(db)
        self.rollups = FunnelAnalyticsRepository(db)
        self.pageviews = PageviewRepository(db)
        self.events = EventRepository(db)

    async def create(self, site_id: int, payload: FunnelCreate) -> Funnel:
        funnel = await self.funnels.create_with_steps(
            site_id=site_id,
            name=payload.name,
            description=payload.description,
            status=payload.status.value,
            steps=step_rows(payload.steps),
        )
        logger.info("Funnel created", funnel_id=funnel.id, site_id=site_id, steps=len(funnel.steps))
        return funnel

    async def list_for_site(self, site_id: int) -> list[Funnel]:
        return await self.funnels.list_for_site(site_id)

    async def get(self, site_id: int, funnel_id: int) -> Optional[Funnel]:
        funnel = await self.funnels.get_by_id(funnel_id)
        if funnel is None or funnel.site_id != site_id:
            return None
        return funnel

    async def update(self, funnel: Funnel, payload: FunnelUpdate) -> Funnel:
        changes: dict[str, Any] = {
            "name": payload.name,
            "description": payload.description,
            "status": payload.status.value if payload.status else None,
        }
        if payload.steps is not None:
            await self.funnels.replace_steps(funnel, step_rows(payload.steps))
        funnel = await self.funnels.update(funnel, changes)
        self.funnels.invalidate(funnel.site_id)
        return funnel

    async def delete(self, funnel: Funnel) -> None:
        await self.funnels.remove(funnel)
        logger.info("Funnel deleted", funnel_id=funnel.id)

    async def sessions(self, funnel: Funnel, limit: int = 100):
        return await self.progress.list_for_funnel(funnel.id, limit=limit)

    async def analytics(self, funnel: Funnel, days: int = 30):
        since = self.ctx.now().date() - timedelta(days=days)
        return await self.rollups.for_funnel(funnel.id, since)

    async def popular_pages(self, site_id: int) -> list[dict[str, Any]]:
        since = self.ctx.now() - timedelta(days=BUILDER_LOOKBACK_DAYS)
        return await self.pageviews.popular_pages(site_id, since, limit=20)

    async def available_events(self, site_id: int) -> list[dict[str, Any]]:
        since = self.ctx.now() - timedelta(days=BUILDER_LOOKBACK_DAYS)
        return await self.events.available_events(site_id, since, limit=20)

    async def compute_daily(self, funnel: Funnel, day: date) -> dict[str, Any]:
        """Aggregate one day of funnel progress into `funnel_analytics`."""
        orders = [step.step_order for step in funnel.steps]
        summary = await self.progress.daily_summary(funnel.id, day, orders)
        await self.rollups.store_day(funnel.id, day, summary, self.ctx.now())
        return summary

    async def compute_daily_all(self, day: date) -> int:
        """Roll up every active funnel for `day`. Returns the number of funnels processed."""
        processed = 0
        for funnel in await self.funnels.get_all(limit=10_000):
            if funnel.status != FunnelStatus.ACTIVE.value:
                continue
            await self.compute_daily(funnel, day)
            processed += 1
        return processed
