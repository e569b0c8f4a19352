"""
Funnel repository - definitions, per-session progress and daily rollups.
"""
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import and_, desc, func, select, update

from horizn.models.funnel import (
    Funnel,
    FunnelAnalytics,
    FunnelStatus,
    FunnelStep,
    FunnelUserSession,
)
from horizn.repositories.base import BaseRepository

FUNNEL_CACHE_TTL = 300


def funnel_to_dict(funnel: Funnel) -> dict[str, Any]:
    """Plain, cacheable snapshot of a funnel and its ordered steps."""
    return {
        "id": funnel.id,
        "site_id": funnel.site_id,
        "name": funnel.name,
        "description": funnel.description,
        "status": funnel.status,
        "steps": [
            {
                "step_order": step.step_order,
                "name": step.name,
                "step_type": step.step_type,
                "conditions": dict(step.conditions or {}),
                "is_required": step.is_required,
            }
            for step in sorted(funnel.steps, key=lambda s: s.step_order)
        ],
    }


class FunnelRepository(BaseRepository[Funnel]):
    """Repository for funnel definitions."""

    model = Funnel

    async def list_for_site(self, site_id: int, status: Optional[str] = None) -> list[Funnel]:
        stmt = select(Funnel).where(Funnel.site_id == site_id).order_by(Funnel.id)
        if status:
            stmt = stmt.where(Funnel.status == status)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def active_definitions(self, site_id: int) -> list[dict[str, Any]]:
        """Active funnels of a site as plain dicts, served from the cache when possible."""

        async def load() -> list[dict[str, Any]]:
            funnels = await self.list_for_site(site_id, status=FunnelStatus.ACTIVE.value)
            return [funnel_to_dict(f) for f in funnels if f.steps]

        if self.cache is None:
            return await load()
        return await self.cache.get_or_load(f"funnels:{site_id}", load, ttl=FUNNEL_CACHE_TTL)

    async def create_with_steps(
        self,
        site_id: int,
        name: str,
        description: Optional[str],
        status: str,
        steps: list[dict[str, Any]],
    ) -> Funnel:
        funnel = Funnel(
            site_id=site_id,
            name=name,
            description=description,
            status=status,
            steps=[FunnelStep(**step) for step in steps],
        )
        self.session.add(funnel)
        await self.session.flush()
        await self.session.refresh(funnel, attribute_names=["steps", "created_at", "updated_at"])
        self.invalidate(site_id)
        return funnel

    async def replace_steps(self, funnel: Funnel, steps: list[dict[str, Any]]) -> None:
        funnel.steps.clear()
        # Flush the orphan deletes before reusing their step_order values
        await self.session.flush()
        funnel.steps.extend(FunnelStep(**step) for step in steps)
        await self.session.flush()

    async def remove(self, funnel: Funnel) -> None:
        site_id = funnel.site_id
        await self.delete(funnel)
        self.invalidate(site_id)

    def invalidate(self, site_id: int) -> None:
        if self.cache is not None:
            self.cache.invalidate(f"funnels:{site_id}")


class FunnelSessionRepository(BaseRepository[FunnelUserSession]):
    """Repository for per-session funnel progress."""

    model = FunnelUserSession

    async def get_pair(self, funnel_id: int, session_id: str) -> Optional[FunnelUserSession]:
        stmt = select(FunnelUserSession).where(
            FunnelUserSession.funnel_id == funnel_id,
            FunnelUserSession.session_id == session_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def reload(self, row: FunnelUserSession) -> FunnelUserSession:
        """Re-read a row, overwriting the identity map copy."""
        stmt = (
            select(FunnelUserSession)
            .where(FunnelUserSession.id == row.id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def start(
        self,
        funnel_id: int,
        session_id: str,
        user_hash: Optional[str],
        now: datetime,
    ) -> FunnelUserSession:
        """Get or atomically create the progress row at step 0."""
        await self.insert_ignore(
            {
                "funnel_id": funnel_id,
                "session_id": session_id,
                "user_hash": user_hash,
                "last_step_reached": 0,
                "steps_data": {},
                "is_converted": False,
                "version": 0,
                "started_at": now,
                "date": now.date(),
            }
        )
        row = await self.get_pair(funnel_id, session_id)
        return await self.reload(row)

    async def compare_and_advance(
        self,
        row: FunnelUserSession,
        new_step: int,
        steps_data: dict[str, Any],
        is_converted: bool,
        conversion_time: Optional[int],
        completed_at: Optional[datetime],
    ) -> bool:
        """
        Move `row` to `new_step` only if nobody advanced it since it was read.

        Returns False when the guard did not match (concurrent advance).
        """
        stmt = (
            update(FunnelUserSession)
            .where(
                FunnelUserSession.id == row.id,
                FunnelUserSession.last_step_reached == row.last_step_reached,
                FunnelUserSession.version == row.version,
                FunnelUserSession.is_converted.is_(False),
            )
            .values(
                last_step_reached=new_step,
                steps_data=steps_data,
                is_converted=is_converted,
                conversion_time=conversion_time,
                completed_at=completed_at,
                version=FunnelUserSession.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def list_for_funnel(self, funnel_id: int, limit: int = 100) -> list[FunnelUserSession]:
        stmt = (
            select(FunnelUserSession)
            .where(FunnelUserSession.funnel_id == funnel_id)
            .order_by(desc(FunnelUserSession.started_at))
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def daily_summary(self, funnel_id: int, day: date, step_orders: list[int]) -> dict[str, Any]:
        """Entered/converted counts, mean conversion time and per-step reach for one day."""
        scope = and_(FunnelUserSession.funnel_id == funnel_id, FunnelUserSession.day == day)

        totals = await self.session.execute(
            select(
                func.count(FunnelUserSession.id),
                func.count(FunnelUserSession.id).filter(FunnelUserSession.is_converted.is_(True)),
                func.avg(FunnelUserSession.conversion_time).filter(
                    FunnelUserSession.is_converted.is_(True)
                ),
            ).where(scope)
        )
        entered, converted, avg_time = totals.one()

        step_counts: dict[str, int] = {}
        for order in step_orders:
            reached = await self.session.execute(
                select(func.count(FunnelUserSession.id)).where(
                    scope, FunnelUserSession.last_step_reached >= order
                )
            )
            step_counts[str(order)] = reached.scalar() or 0

        return {
            "sessions_entered": entered or 0,
            "total_conversions": converted or 0,
            "avg_time_to_convert": float(avg_time) if avg_time is not None else None,
            "step_counts": step_counts,
        }


class FunnelAnalyticsRepository(BaseRepository[FunnelAnalytics]):
    """Repository for daily funnel rollups."""

    model = FunnelAnalytics

    async def store_day(self, funnel_id: int, day: date, summary: dict[str, Any], now: datetime) -> None:
        entered = summary["sessions_entered"]
        conversions = summary["total_conversions"]
        rate = round(conversions / entered * 100, 2) if entered else 0.0
        await self.upsert(
            {
                "funnel_id": funnel_id,
                "date": day,
                "sessions_entered": entered,
                "total_conversions": conversions,
                "overall_conversion_rate": rate,
                "avg_time_to_convert": summary["avg_time_to_convert"],
                "step_counts": summary["step_counts"],
                "updated_at": now,
            },
            conflict_columns=["funnel_id", "date"],
            update_columns=[
                "sessions_entered",
                "total_conversions",
                "overall_conversion_rate",
                "avg_time_to_convert",
                "step_counts",
                "updated_at",
            ],
        )

    async def for_funnel(self, funnel_id: int, since: date) -> list[FunnelAnalytics]:
        stmt = (
            select(FunnelAnalytics)
            .where(FunnelAnalytics.funnel_id == funnel_id, FunnelAnalytics.day >= since)
            .order_by(FunnelAnalytics.day)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
