"""
Realtime presence tracker.

Presence rows are a best-effort "seen recently" marker per session. They
are refreshed by every pageview or event of a live session and purged by
the worker; nothing reads them as history.
"""
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from horizn.core.context import AppContext
from horizn.core.logging import get_logger
from horizn.repositories.realtime import RealtimeRepository

logger = get_logger(__name__)


class PresenceTracker:
    def __init__(self, ctx: AppContext, db: AsyncSession) -> None:
        self.ctx = ctx
        self.settings = ctx.settings
        self.visitors = RealtimeRepository(db)

    async def touch(
        self,
        site_id: int,
        session_id: str,
        page_url: Optional[str],
        page_title: Optional[str] = None,
        user_agent: Optional[str] = None,
        ip_hash: Optional[str] = None,
    ) -> None:
        """Mark the session as seen now on `page_url`."""
        await self.visitors.touch(
            {
                "site_id": site_id,
                "session_id": session_id,
                "page_url": page_url,
                "page_title": page_title,
                "user_agent": user_agent,
                "ip_hash": ip_hash,
                "last_seen": self.ctx.now(),
            }
        )

    def _live_since(self):
        return self.ctx.now() - timedelta(seconds=self.settings.realtime_live_window)

    async def live_count(self, site_id: int) -> int:
        return await self.visitors.count_since(site_id, self._live_since())

    async def active_visitors(self, site_id: int, limit: int = 100) -> list[dict[str, Any]]:
        return await self.visitors.list_since(site_id, self._live_since(), limit)

    async def purge(self) -> int:
        """Delete presence rows older than the purge window."""
        cutoff = self.ctx.now() - timedelta(seconds=self.settings.realtime_purge_window)
        removed = await self.visitors.delete_older_than(cutoff)
        if removed:
            logger.info("Purged realtime visitors", removed=removed)
        return removed
