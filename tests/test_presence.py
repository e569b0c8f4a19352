"""
Tests for realtime presence and the maintenance jobs.
"""
from datetime import date

import pytest
from sqlalchemy import func, select

from horizn.models.funnel import FunnelAnalytics
from horizn.models.realtime import RealtimeVisitor
from horizn.schemas.funnel import FunnelCreate
from horizn.services.funnels import FunnelService
from horizn.services.ingest import IngestService
from horizn.services.job_queue import daily_funnel_analytics_job, purge_realtime_job
from horizn.services.presence import PresenceTracker


async def presence_rows(db) -> int:
    return await db.scalar(select(func.count()).select_from(RealtimeVisitor))


class TestPresenceTracker:
    """Tests for PresenceTracker."""

    async def test_touch_keeps_one_row_per_session(self, ctx, db, site):
        tracker = PresenceTracker(ctx, db)

        await tracker.touch(site.id, "sess_a", "https://example.com/", "Home")
        await tracker.touch(site.id, "sess_a", "https://example.com/pricing", "Pricing")
        await tracker.touch(site.id, "sess_b", "https://example.com/")
        await db.commit()

        assert await presence_rows(db) == 2
        visitors = await tracker.active_visitors(site.id)
        pages = {v["session_id"]: v["page_url"] for v in visitors}
        assert pages["sess_a"] == "https://example.com/pricing"

    async def test_live_count_window(self, ctx, db, site, clock):
        tracker = PresenceTracker(ctx, db)
        await tracker.touch(site.id, "sess_a", "https://example.com/")
        clock.advance(minutes=3)
        await tracker.touch(site.id, "sess_b", "https://example.com/")

        assert await tracker.live_count(site.id) == 2

        clock.advance(minutes=3)
        assert await tracker.live_count(site.id) == 1

        clock.advance(minutes=3)
        assert await tracker.live_count(site.id) == 0

    async def test_purge_removes_stale_rows(self, ctx, db, site, clock):
        tracker = PresenceTracker(ctx, db)
        await tracker.touch(site.id, "sess_old", "https://example.com/")
        clock.advance(minutes=8)
        await tracker.touch(site.id, "sess_new", "https://example.com/")
        clock.advance(minutes=3)

        assert await tracker.purge() == 1
        assert await tracker.live_count(site.id) == 1
        assert await presence_rows(db) == 1

    async def test_pageview_updates_presence(self, ctx, db, site, meta):
        _, body = await IngestService(ctx, db).handle(
            {"type": "pageview", "site_id": site.id, "url": "https://example.com/", "title": "Home"},
            meta,
        )

        visitors = await PresenceTracker(ctx, db).active_visitors(site.id)
        assert [v["session_id"] for v in visitors] == [body["session_id"]]
        assert visitors[0]["page_title"] == "Home"

    @pytest.mark.parametrize("idle_minutes, live", [(6, 1), (45, 0)])
    async def test_events_refresh_presence(self, ctx, db, site, meta, clock, idle_minutes, live):
        service = IngestService(ctx, db)
        _, view = await service.handle(
            {"type": "pageview", "site_id": site.id, "url": "https://example.com/", "title": "Home"},
            meta,
        )
        clock.advance(minutes=idle_minutes)
        status, _ = await service.handle(
            {
                "type": "event",
                "site_id": site.id,
                "session_id": view["session_id"],
                "event": {"name": "click"},
            },
            meta,
        )

        assert status == 200
        tracker = PresenceTracker(ctx, db)
        assert await tracker.live_count(site.id) == live
        if live:
            visitors = await tracker.active_visitors(site.id)
            assert visitors[0]["page_title"] == "Home"


class TestJobs:
    """Tests for the arq job functions."""

    async def test_purge_realtime_job(self, ctx, site, clock):
        async with ctx.database.session() as db:
            await PresenceTracker(ctx, db).touch(site.id, "sess_old", "https://example.com/")
        clock.advance(minutes=15)

        result = await purge_realtime_job({"app": ctx})

        assert result == {"removed": 1}

    async def test_daily_funnel_analytics_job(self, ctx, site, meta, clock):
        steps = [
            {"name": "Landing", "type": "pageview", "conditions": {"page_path": "/landing"}},
            {"name": "Signup", "type": "event", "conditions": {"event_name": "signup"}},
        ]
        async with ctx.database.session() as db:
            funnel = await FunnelService(ctx, db).create(
                site.id, FunnelCreate.model_validate({"name": "Signup", "steps": steps})
            )

        async with ctx.database.session() as db:
            service = IngestService(ctx, db)
            _, converted = await service.handle(
                {"type": "pageview", "site_id": site.id, "url": "https://example.com/landing"}, meta
            )
            clock.advance(seconds=40)
            await service.handle(
                {
                    "type": "event",
                    "site_id": site.id,
                    "session_id": converted["session_id"],
                    "event": {"name": "signup"},
                },
                meta,
            )
            await service.handle(
                {"type": "pageview", "site_id": site.id, "url": "https://example.com/landing"}, meta
            )

        clock.advance(days=1)
        result = await daily_funnel_analytics_job({"app": ctx})

        assert result == {"day": "2026-03-10", "funnels": 1}
        async with ctx.database.session() as db:
            rollup = await db.scalar(
                select(FunnelAnalytics).where(FunnelAnalytics.funnel_id == funnel.id)
            )
            assert rollup.day == date(2026, 3, 10)
            assert rollup.sessions_entered == 2
            assert rollup.total_conversions == 1
            assert rollup.overall_conversion_rate == 50.0
            assert rollup.avg_time_to_convert == 40.0
            assert rollup.step_counts == {"1": 2, "2": 1}

        # Re-running a day overwrites its row
        await daily_funnel_analytics_job({"app": ctx}, day="2026-03-10")
        async with ctx.database.session() as db:
            rows = await db.scalar(select(func.count()).select_from(FunnelAnalytics))
            assert rows == 1
