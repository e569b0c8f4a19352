"""
Realtime presence repository.
"""
from datetime import datetime
from typing import Any

from sqlalchemy import delete, desc, func, select

from horizn.models.realtime import RealtimeVisitor
from horizn.models.session import VisitorSession
from horizn.repositories.base import BaseRepository

PRESENCE_UPDATE_COLUMNS = ["page_url", "page_title", "user_agent", "ip_hash", "last_seen"]


class RealtimeRepository(BaseRepository[RealtimeVisitor]):
    """Repository for RealtimeVisitor rows."""

    model = RealtimeVisitor

    async def touch(self, values: dict[str, Any]) -> None:
        # Missing details keep what the last beacon recorded
        await self.upsert(
            values,
            conflict_columns=["site_id", "session_id"],
            update_columns=[c for c in PRESENCE_UPDATE_COLUMNS if values.get(c) is not None],
        )

    async def count_since(self, site_id: int, since: datetime) -> int:
        stmt = select(func.count(func.distinct(RealtimeVisitor.session_id))).where(
            RealtimeVisitor.site_id == site_id,
            RealtimeVisitor.last_seen >= since,
        )
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def list_since(self, site_id: int, since: datetime, limit: int = 100) -> list[dict[str, Any]]:
        """Live visitors joined with their session's device and entry details."""
        stmt = (
            select(
                RealtimeVisitor.session_id,
                RealtimeVisitor.page_url,
                RealtimeVisitor.page_title,
                RealtimeVisitor.last_seen,
                VisitorSession.device_type,
                VisitorSession.browser,
                VisitorSession.os,
                VisitorSession.country_code,
                VisitorSession.referrer_domain,
                VisitorSession.page_count,
            )
            .join(VisitorSession, VisitorSession.id == RealtimeVisitor.session_id, isouter=True)
            .where(RealtimeVisitor.site_id == site_id, RealtimeVisitor.last_seen >= since)
            .order_by(desc(RealtimeVisitor.last_seen))
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [dict(row._mapping) for row in result.all()]

    async def delete_older_than(self, cutoff: datetime) -> int:
        stmt = delete(RealtimeVisitor).where(RealtimeVisitor.last_seen < cutoff)
        result = await self.session.execute(stmt)
        return result.rowcount or 0
