"""
Session manager - resolves beacons onto visitor sessions and keeps the
session aggregate (counters, bounce flag, entry/exit pages) current.
"""
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from horizn.core.context import AppContext
from horizn.core.logging import get_logger
from horizn.models.session import VisitorSession
from horizn.repositories.session import SessionRepository
from horizn.services import identity
from horizn.services.beacon import Beacon, RequestMeta, referrer_domain
from horizn.services.errors import ResolutionFailed
from horizn.services.user_agent import classify

logger = get_logger(__name__)


class SessionManager:
    """Session resolution and counters for one database session."""

    def __init__(self, ctx: AppContext, db: AsyncSession) -> None:
        self.ctx = ctx
        self.settings = ctx.settings
        self.sessions = SessionRepository(db)

    def _active_since(self, now: datetime) -> datetime:
        return now - timedelta(seconds=self.settings.session_timeout)

    async def resolve_or_create(
        self,
        beacon: Beacon,
        site_id: int,
        meta: RequestMeta,
    ) -> tuple[VisitorSession, bool]:
        """
        Return the session a pageview belongs to and whether it was created.

        A supplied id is reused while its last activity is within the
        timeout. Otherwise a new session is opened: with a random id when
        none was supplied, or with the deterministic successor of the stale
        id so that parallel beacons land on the same row.
        """
        now = self.ctx.now()
        active_since = self._active_since(now)
        user_hash = identity.visitor_hash(meta.ip, meta.user_agent, now, beacon.user_id)

        if not beacon.session_id:
            return await self._open(identity.new_session_id(), site_id, user_hash, beacon, meta, now)

        current = await self.sessions.get_active(beacon.session_id, site_id, active_since)
        if current is not None:
            return current, False

        previous = await self.sessions.get_for_site(beacon.session_id, site_id)
        successor_id = identity.successor_session_id(
            beacon.session_id,
            user_hash,
            previous.last_activity if previous else None,
        )
        session, created = await self._open(successor_id, site_id, user_hash, beacon, meta, now)
        if created or session.last_activity > active_since:
            return session, created

        # The successor itself went stale: start over with a random id
        return await self._open(identity.new_session_id(), site_id, user_hash, beacon, meta, now)

    async def _open(
        self,
        session_id: str,
        site_id: int,
        user_hash: str,
        beacon: Beacon,
        meta: RequestMeta,
        now: datetime,
    ) -> tuple[VisitorSession, bool]:
        device = classify(meta.user_agent)
        created = await self.sessions.create_if_absent(
            {
                "id": session_id,
                "site_id": site_id,
                "user_hash": user_hash,
                "ip_hash": identity.hash_ip(meta.ip, self.settings.ip_salt),
                "first_visit": now,
                "last_activity": now,
                "page_count": 0,
                "event_count": 0,
                "is_bounce": True,
                "referrer": beacon.referrer,
                "referrer_domain": referrer_domain(beacon.referrer),
                "entry_page": beacon.page_path,
                "exit_page": beacon.page_path,
                "user_agent": meta.user_agent or None,
                "device_type": device["device_type"],
                "browser": device["browser"],
                "os": device["os"],
                "country_code": meta.country_code,
                "created_at": now,
                "updated_at": now,
            }
        )
        session = await self.sessions.get_for_site(session_id, site_id)
        if session is None:
            # Id taken by another site's session
            raise ResolutionFailed("Invalid session")
        if created:
            logger.debug("Session opened", session_id=session_id, site_id=site_id)
        return session, created

    async def require_active(self, session_id: Optional[str], site_id: int) -> VisitorSession:
        """Existing session of the site, for events that cannot open one."""
        if not session_id:
            raise ResolutionFailed("Invalid session")
        session = await self.sessions.get_for_site(session_id, site_id)
        if session is None:
            raise ResolutionFailed("Invalid session")
        return session

    async def record_pageview(self, session_id: str, page_path: str) -> None:
        if not await self.sessions.record_pageview(session_id, page_path, self.ctx.now()):
            raise ResolutionFailed("Invalid session")

    async def record_event(self, session_id: str) -> None:
        now = self.ctx.now()
        if not await self.sessions.record_event(session_id, now, self._active_since(now)):
            raise ResolutionFailed("Invalid session")
