"""
Pageview and event repositories.

Rows are append-only: these repositories insert and read, never update.
"""
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import desc, func, select

from horizn.models.tracking import CustomEvent, Pageview
from horizn.repositories.base import BaseRepository


class PageviewRepository(BaseRepository[Pageview]):
    """Repository for Pageview rows."""

    model = Pageview

    async def add(self, values: dict[str, Any]) -> Pageview:
        pageview = Pageview(**values)
        self.session.add(pageview)
        await self.session.flush()
        return pageview

    async def recent(self, site_id: int, since: datetime, limit: int = 100) -> list[Pageview]:
        stmt = (
            select(Pageview)
            .where(Pageview.site_id == site_id, Pageview.timestamp >= since)
            .order_by(desc(Pageview.timestamp), desc(Pageview.id))
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_since(self, since: datetime, site_id: Optional[int] = None) -> int:
        stmt = select(func.count()).select_from(Pageview).where(Pageview.timestamp >= since)
        if site_id is not None:
            stmt = stmt.where(Pageview.site_id == site_id)
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def popular_pages(
        self,
        site_id: int,
        since: datetime,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Most viewed paths with their latest title."""
        views = func.count(Pageview.id).label("views")
        stmt = (
            select(Pageview.page_path, func.max(Pageview.page_title), views)
            .where(Pageview.site_id == site_id, Pageview.timestamp >= since)
            .group_by(Pageview.page_path)
            .order_by(desc(views))
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [
            {"page_path": path, "page_title": title, "views": count}
            for path, title, count in result.all()
        ]


class EventRepository(BaseRepository[CustomEvent]):
    """Repository for CustomEvent rows."""

    model = CustomEvent

    async def add(self, values: dict[str, Any]) -> CustomEvent:
        event = CustomEvent(**values)
        self.session.add(event)
        await self.session.flush()
        return event

    async def count_for_session(self, session_id: str) -> int:
        stmt = select(func.count()).select_from(CustomEvent).where(
            CustomEvent.session_id == session_id
        )
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def count_since(self, since: datetime, site_id: Optional[int] = None) -> int:
        stmt = select(func.count()).select_from(CustomEvent).where(CustomEvent.timestamp >= since)
        if site_id is not None:
            stmt = stmt.where(CustomEvent.site_id == site_id)
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def available_events(
        self,
        site_id: int,
        since: datetime,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """Distinct (name, category) pairs seen recently, most frequent first."""
        occurrences = func.count(CustomEvent.id).label("occurrences")
        stmt = (
            select(CustomEvent.event_name, CustomEvent.event_category, occurrences)
            .where(CustomEvent.site_id == site_id, CustomEvent.timestamp >= since)
            .group_by(CustomEvent.event_name, CustomEvent.event_category)
            .order_by(desc(occurrences))
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [
            {"event_name": name, "event_category": category, "occurrences": count}
            for name, category, count in result.all()
        ]
