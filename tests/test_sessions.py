"""
Tests for session resolution, counters and the bounce flag.
"""
import pytest

from horizn.repositories.session import SessionRepository
from horizn.services.beacon import RequestMeta, parse_pageview
from horizn.services.ingest import IngestService
from horizn.services.sessions import SessionManager



def pageview(ctx, site, url="https://example.com/", session_id=None, **extra):
    data = {"type": "pageview", "site_id": site.id, "url": url, **extra}
    if session_id:
        data["session_id"] = session_id
    return parse_pageview(data, ctx.settings)


async def load_session(db, session_id, site):
    return await SessionRepository(db).get_for_site(session_id, site.id)


class TestSessionResolution:
    """Tests for SessionManager.resolve_or_create."""

    async def test_new_session_without_id(self, ctx, db, site, meta):
        manager = SessionManager(ctx, db)
        session, is_new = await manager.resolve_or_create(
            pageview(ctx, site, "https://example.com/landing", referrer="https://www.google.com/search"),
            site.id,
            meta,
        )

        assert is_new is True
        assert session.id.startswith("sess_")
        assert session.entry_page == "/landing"
        assert session.referrer_domain == "google.com"
        assert session.device_type == "desktop"
        assert session.browser == "Chrome"
        assert session.os == "Windows"
        assert session.country_code == "DE"
        assert session.page_count == 0

    async def test_reuses_session_within_timeout(self, ctx, db, site, clock, meta):
        manager = SessionManager(ctx, db)
        first, _ = await manager.resolve_or_create(pageview(ctx, site), site.id, meta)

        clock.advance(minutes=10)
        second, is_new = await manager.resolve_or_create(
            pageview(ctx, site, session_id=first.id), site.id, meta
        )

        assert is_new is False
        assert second.id == first.id

    async def test_expired_session_gets_successor(self, ctx, db, site, clock, meta):
        manager = SessionManager(ctx, db)
        first, _ = await manager.resolve_or_create(pageview(ctx, site), site.id, meta)

        clock.advance(minutes=31)
        second, is_new = await manager.resolve_or_create(
            pageview(ctx, site, session_id=first.id), site.id, meta
        )
        # A parallel beacon with the same stale id lands on the same successor
        third, third_is_new = await manager.resolve_or_create(
            pageview(ctx, site, session_id=first.id), site.id, meta
        )

        assert is_new is True
        assert second.id != first.id
        assert third.id == second.id
        assert third_is_new is False

    async def test_unknown_session_id_opens_new_session(self, ctx, db, site, meta):
        manager = SessionManager(ctx, db)
        session, is_new = await manager.resolve_or_create(
            pageview(ctx, site, session_id="sess_doesnotexist"), site.id, meta
        )

        assert is_new is True
        assert session.id != "sess_doesnotexist"

    async def test_user_id_sets_stable_user_hash(self, ctx, db, site, meta):
        manager = SessionManager(ctx, db)
        a, _ = await manager.resolve_or_create(pageview(ctx, site, user_id="u-1"), site.id, meta)
        other_meta = RequestMeta(ip="192.0.2.50", user_agent="curl/8.0")
        b, _ = await manager.resolve_or_create(pageview(ctx, site, user_id="u-1"), site.id, other_meta)

        assert a.id != b.id
        assert a.user_hash == b.user_hash


class TestSessionCounters:
    """Tests for counters and bounce tracking through the ingest service."""

    async def test_single_pageview_is_a_bounce(self, ctx, db, site, meta):
        service = IngestService(ctx, db)
        status, body = await service.handle(
            {"type": "pageview", "site_id": site.id, "url": "https://example.com/"}, meta
        )

        assert status == 200
        session = await load_session(db, body["session_id"], site)
        assert session.page_count == 1
        assert session.is_bounce is True

    async def test_second_pageview_clears_bounce(self, ctx, db, site, clock, meta):
        service = IngestService(ctx, db)
        _, body = await service.handle(
            {"type": "pageview", "site_id": site.id, "url": "https://example.com/"}, meta
        )
        clock.advance(seconds=20)
        _, body = await service.handle(
            {
                "type": "pageview",
                "site_id": site.id,
                "url": "https://example.com/pricing",
                "session_id": body["session_id"],
            },
            meta,
        )

        session = await load_session(db, body["session_id"], site)
        assert session.page_count == 2
        assert session.is_bounce is False
        assert session.entry_page == "/"
        assert session.exit_page == "/pricing"
        assert session.last_activity == clock()

    async def test_event_clears_bounce(self, ctx, db, site, meta):
        service = IngestService(ctx, db)
        _, body = await service.handle(
            {"type": "pageview", "site_id": site.id, "url": "https://example.com/"}, meta
        )
        status, event = await service.handle(
            {
                "type": "event",
                "site_id": site.id,
                "session_id": body["session_id"],
                "event": {"name": "click", "category": "cta"},
            },
            meta,
        )

        assert status == 200
        assert event["session_id"] == body["session_id"]
        session = await load_session(db, body["session_id"], site)
        assert session.event_count == 1
        assert session.page_count == 1
        assert session.is_bounce is False

    async def test_late_event_keeps_last_activity(self, ctx, db, site, clock, meta):
        service = IngestService(ctx, db)
        _, body = await service.handle(
            {"type": "pageview", "site_id": site.id, "url": "https://example.com/"}, meta
        )
        opened_at = clock()
        clock.advance(minutes=31)
        status, _ = await service.handle(
            {
                "type": "event",
                "site_id": site.id,
                "session_id": body["session_id"],
                "event": {"name": "scroll"},
            },
            meta,
        )

        assert status == 200
        session = await load_session(db, body["session_id"], site)
        assert session.event_count == 1
        assert session.last_activity == opened_at

    @pytest.mark.parametrize("timeout_minutes", [1, 30])
    async def test_timeout_follows_settings(self, ctx, db, site, clock, meta, timeout_minutes):
        ctx.settings.session_timeout = timeout_minutes * 60
        manager = SessionManager(ctx, db)
        first, _ = await manager.resolve_or_create(pageview(ctx, site), site.id, meta)

        clock.advance(minutes=timeout_minutes, seconds=1)
        second, is_new = await manager.resolve_or_create(
            pageview(ctx, site, session_id=first.id), site.id, meta
        )

        assert is_new is True
        assert second.id != first.id
