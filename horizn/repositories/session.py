"""
Visitor session repository.

Counter updates are single UPDATE statements so that concurrent beacons
for the same session never lose increments.
"""
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import case, func, select, update

from horizn.models.session import VisitorSession
from horizn.repositories.base import BaseRepository


class SessionRepository(BaseRepository[VisitorSession]):
    """Repository for VisitorSession model operations."""

    model = VisitorSession

    async def get_for_site(self, session_id: str, site_id: int) -> Optional[VisitorSession]:
        stmt = select(VisitorSession).where(
            VisitorSession.id == session_id,
            VisitorSession.site_id == site_id,
        ).execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_active(
        self,
        session_id: str,
        site_id: int,
        active_since: datetime,
    ) -> Optional[VisitorSession]:
        """Session `session_id` of the site, if its last activity is after `active_since`."""
        stmt = select(VisitorSession).where(
            VisitorSession.id == session_id,
            VisitorSession.site_id == site_id,
            VisitorSession.last_activity > active_since,
        ).execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_if_absent(self, values: dict[str, Any]) -> bool:
        """Insert a new session row; False when the id was already taken."""
        return await self.insert_ignore(values)

    async def record_pageview(self, session_id: str, page_path: str, now: datetime) -> bool:
        """Count a pageview, move the exit page and recompute the bounce flag."""
        stmt = (
            update(VisitorSession)
            .where(VisitorSession.id == session_id)
            .values(
                page_count=VisitorSession.page_count + 1,
                exit_page=page_path,
                last_activity=now,
                updated_at=now,
                is_bounce=self._bounce_after_increment(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def record_event(self, session_id: str, now: datetime, active_since: datetime) -> bool:
        """
        Count an event and recompute the bounce flag.

        Last activity only moves while the session is still active: an event
        arriving after the timeout is counted but cannot revive the session.
        """
        stmt = (
            update(VisitorSession)
            .where(VisitorSession.id == session_id)
            .values(
                event_count=VisitorSession.event_count + 1,
                last_activity=case(
                    (VisitorSession.last_activity > active_since, now),
                    else_=VisitorSession.last_activity,
                ),
                updated_at=now,
                is_bounce=self._bounce_after_increment(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def get_event_count(self, session_id: str) -> Optional[int]:
        stmt = select(VisitorSession.event_count).where(VisitorSession.id == session_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def count_since(self, since: datetime, site_id: Optional[int] = None) -> int:
        stmt = select(func.count()).select_from(VisitorSession).where(
            VisitorSession.first_visit >= since
        )
        if site_id is not None:
            stmt = stmt.where(VisitorSession.site_id == site_id)
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    @staticmethod
    def _bounce_after_increment():
        # SET expressions read the pre-update row: a bounce while nothing
        # had been recorded yet, never again afterwards.
        return case(
            (VisitorSession.page_count + VisitorSession.event_count == 0, True),
            else_=False,
        )
