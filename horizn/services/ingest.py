"""
Ingest gateway service.

Every collector request (JSON, form, `?json=`, pixel or batch) ends up
here. Failures are returned as structured results and never propagate to
the browser:

    (200, {"success": true, ...})
    (400, {"success": false, "error": "..."})
    (429, {"success": false, "error": "Event rate limit exceeded"})
"""
import base64
from datetime import timedelta
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from horizn.core.context import AppContext
from horizn.core.logging import get_logger
from horizn.models.session import VisitorSession
from horizn.repositories.site import SiteRepository
from horizn.repositories.tracking import EventRepository, PageviewRepository
from horizn.services import identity
from horizn.services.beacon import (
    BATCH,
    EVENT,
    PAGEVIEW,
    PIXEL,
    Beacon,
    RequestMeta,
    infer_kind,
    parse_beacon,
    pixel_payload,
    site_identifier,
)
from horizn.services.errors import (
    ResolutionFailed,
    StorageFailure,
    TrackingError,
    ValidationFailed,
)
from horizn.services.funnel_matcher import FunnelMatcher
from horizn.services.presence import PresenceTracker
from horizn.services.rate_limiter import EventRateLimiter
from horizn.services.sessions import SessionManager

logger = get_logger(__name__)

# 1x1 transparent GIF, 43 bytes
PIXEL_GIF = base64.b64decode("R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7")

Response = tuple[int, dict[str, Any]]


class IngestService:
    """Processes beacons for one request within one database session."""

    def __init__(self, ctx: AppContext, db: AsyncSession) -> None:
        self.ctx = ctx
        self.settings = ctx.settings
        self.db = db
        self.sites = SiteRepository(db, cache=ctx.cache)
        self.pageviews = PageviewRepository(db)
        self.events = EventRepository(db)
        self.sessions = SessionManager(ctx, db)
        self.rate_limiter = EventRateLimiter(ctx, db)
        self.presence = PresenceTracker(ctx, db)
        self.funnels = FunnelMatcher(ctx, db)

    # Entry points

    async def handle(self, data: Any, meta: RequestMeta, default_kind: str = PAGEVIEW) -> Response:
        """Dispatch a decoded payload and commit or roll back its writes."""
        if not isinstance(data, dict) or not data:
            return 400, ValidationFailed("Invalid request data").to_dict()

        if infer_kind(data, default_kind) == BATCH:
            return await self.track_batch(data, meta)

        try:
            beacon = parse_beacon(data, self.settings, default_kind)
            site = await self.resolve_site(beacon.site)
            result = await self.track(beacon, site, meta)
            await self.db.commit()
            return 200, result
        except TrackingError as e:
            await self.db.rollback()
            logger.info("Beacon rejected", kind=e.kind, error=e.message)
            return e.status_code, e.to_dict()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Beacon storage failed", error=str(e))
            return 400, StorageFailure().to_dict()

    async def handle_pixel(self, params: dict[str, Any], meta: RequestMeta) -> bytes:
        """Record a pixel pageview. Always returns the GIF, whatever happened."""
        try:
            status, body = await self.handle(pixel_payload(params), meta, PAGEVIEW)
            if status != 200:
                logger.debug("Pixel beacon dropped", error=body.get("error"))
        except Exception:
            await self.db.rollback()
            logger.exception("Pixel tracking failed", kind=PIXEL)
        return PIXEL_GIF

    async def track_batch(self, data: dict[str, Any], meta: RequestMeta) -> Response:
        """
        Process up to `max_batch_size` items in one transaction.

        Each item runs in its own savepoint: an expected failure rolls back
        that item only and is reported in `results`. Any other error rolls
        back the whole batch.
        """
        items = data.get("batch")
        if not isinstance(items, list):
            return 400, ValidationFailed("Invalid batch data").to_dict()

        limit = self.settings.max_batch_size
        if len(items) > limit:
            return 400, ValidationFailed(f"Batch size exceeds limit of {limit}").to_dict()

        try:
            site = await self.resolve_site(site_identifier(data))
        except TrackingError as e:
            return e.status_code, e.to_dict()

        session_id = data.get("session_id")
        user_id = data.get("user_id")
        results: list[dict[str, Any]] = []
        successful = 0

        try:
            for raw in items:
                item = dict(raw) if isinstance(raw, dict) else {"type": "invalid"}
                item["site_id"] = site["id"]
                item.pop("tracking_code", None)
                if session_id and not item.get("session_id"):
                    item["session_id"] = session_id
                if user_id and not item.get("user_id"):
                    item["user_id"] = user_id

                try:
                    async with self.db.begin_nested():
                        beacon = parse_beacon(item, self.settings)
                        result = await self.track(beacon, site, meta)
                except TrackingError as e:
                    results.append(e.to_dict())
                    continue

                results.append(result)
                successful += 1
                # Later items follow the session resolved so far
                session_id = result.get("session_id") or session_id

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.exception("Batch tracking failed", site_id=site["id"], items=len(items))
            return 400, {
                "success": False,
                "error": "Batch tracking failed",
                "processed": 0,
                "successful": 0,
                "errors": len(items),
            }

        return 200, {
            "success": True,
            "processed": len(items),
            "successful": successful,
            "errors": len(items) - successful,
            "results": results,
        }

    # Single beacons

    async def resolve_site(self, identifier: str) -> dict[str, Any]:
        site = await self.sites.resolve_active(identifier)
        if site is None:
            raise ResolutionFailed("Invalid site")
        return site

    async def track(self, beacon: Beacon, site: dict[str, Any], meta: RequestMeta) -> dict[str, Any]:
        """Persist one validated beacon. Store errors surface as `StorageFailure`."""
        try:
            if beacon.kind == EVENT:
                return await self._track_event(beacon, site["id"], meta)
            return await self._track_pageview(beacon, site["id"], meta)
        except SQLAlchemyError as e:
            logger.error("Tracking write failed", kind=beacon.kind, error=str(e))
            raise StorageFailure() from e

    async def _track_pageview(self, beacon: Beacon, site_id: int, meta: RequestMeta) -> dict[str, Any]:
        session, is_new = await self.sessions.resolve_or_create(beacon, site_id, meta)
        ip_hash = identity.hash_ip(meta.ip, self.settings.ip_salt)

        pageview = await self.pageviews.add(
            {
                "site_id": site_id,
                "session_id": session.id,
                "page_url": beacon.page_url,
                "page_path": beacon.page_path,
                "page_title": beacon.page_title,
                "referrer": beacon.referrer,
                "user_agent": meta.user_agent or None,
                "ip_hash": ip_hash,
                "load_time": beacon.load_time,
                "timestamp": self.ctx.now(),
            }
        )
        await self.sessions.record_pageview(session.id, beacon.page_path)
        await self.presence.touch(
            site_id,
            session.id,
            beacon.page_url,
            beacon.page_title,
            meta.user_agent or None,
            ip_hash,
        )
        await self.funnels.process(site_id, session.id, session.user_hash, beacon)

        return {
            "success": True,
            "pageview_id": pageview.id,
            "session_id": session.id,
            "new_session": is_new,
        }

    async def _track_event(self, beacon: Beacon, site_id: int, meta: RequestMeta) -> dict[str, Any]:
        session = await self.sessions.require_active(beacon.session_id, site_id)
        expired = self._is_expired(session)
        await self.rate_limiter.check(session.id)

        event = await self.events.add(
            {
                "site_id": site_id,
                "session_id": session.id,
                "event_name": beacon.event_name,
                "event_category": beacon.event_category,
                "event_action": beacon.event_action,
                "event_label": beacon.event_label,
                "event_value": beacon.event_value,
                "event_data": beacon.event_data or None,
                "page_url": beacon.page_url,
                "page_path": beacon.page_path,
                "timestamp": self.ctx.now(),
            }
        )
        await self.sessions.record_event(session.id)

        # Presence and funnel progress end with the session
        if not expired:
            await self.presence.touch(
                site_id,
                session.id,
                beacon.page_url,
                user_agent=meta.user_agent or None,
                ip_hash=identity.hash_ip(meta.ip, self.settings.ip_salt),
            )
            await self.funnels.process(site_id, session.id, session.user_hash, beacon)

        return {"success": True, "event_id": event.id, "session_id": session.id}

    def _is_expired(self, session: VisitorSession) -> bool:
        timeout = timedelta(seconds=self.settings.session_timeout)
        return session.last_activity <= self.ctx.now() - timeout
