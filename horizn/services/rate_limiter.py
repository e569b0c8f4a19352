"""
Per-session event ceiling.

A monotone counter check, not a sliding window: once a session has
recorded `max_events_per_session` events every further event is refused
until the visitor starts a new session.
"""
from sqlalchemy.ext.asyncio import AsyncSession

from horizn.core.context import AppContext
from horizn.repositories.session import SessionRepository
from horizn.services.errors import RateLimitExceeded


class EventRateLimiter:
    def __init__(self, ctx: AppContext, db: AsyncSession) -> None:
        self.limit = ctx.settings.max_events_per_session
        self.sessions = SessionRepository(db)

    async def allow(self, session_id: str) -> bool:
        """True while the session is below its ceiling. Unknown sessions are refused."""
        count = await self.sessions.get_event_count(session_id)
        if count is None:
            return False
        return count < self.limit

    async def check(self, session_id: str) -> None:
        if not await self.allow(session_id):
            raise RateLimitExceeded()
