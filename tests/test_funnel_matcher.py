"""
Tests for funnel step matching and per-session progress.
"""
import pytest

from horizn.repositories.funnel import FunnelSessionRepository
from horizn.schemas.funnel import FunnelCreate
from horizn.services.beacon import Beacon
from horizn.services.funnel_matcher import (
    CustomMatch,
    EventMatch,
    PageviewMatch,
    conversion_seconds,
    matches_pattern,
    parse_step_condition,
)
from horizn.services.funnels import FunnelService
from horizn.services.ingest import IngestService

CHECKOUT_STEPS = [
    {"name": "Landing", "type": "pageview", "conditions": {"page_path": "/landing"}},
    {"name": "Pricing", "type": "pageview", "conditions": {"page_path": "/pricing"}},
    {"name": "Signup", "type": "event", "conditions": {"event_name": "signup"}},
]


async def create_funnel(ctx, db, site, steps, name="Checkout"):
    funnel = await FunnelService(ctx, db).create(
        site.id, FunnelCreate.model_validate({"name": name, "steps": steps})
    )
    await db.commit()
    return funnel


class Visitor:
    """Sends beacons for one session through the ingest service."""

    def __init__(self, ctx, db, site, meta) -> None:
        self.service = IngestService(ctx, db)
        self.site = site
        self.meta = meta
        self.session_id = None

    async def view(self, path: str) -> dict:
        data = {"type": "pageview", "site_id": self.site.id, "url": f"https://example.com{path}"}
        if self.session_id:
            data["session_id"] = self.session_id
        status, body = await self.service.handle(data, self.meta)
        assert status == 200, body
        self.session_id = body["session_id"]
        return body

    async def fire(self, name: str, **fields) -> dict:
        status, body = await self.service.handle(
            {
                "type": "event",
                "site_id": self.site.id,
                "session_id": self.session_id,
                "event": {"name": name, **fields},
            },
            self.meta,
        )
        assert status == 200, body
        return body


async def progress(db, funnel, session_id):
    row = await FunnelSessionRepository(db).get_pair(funnel.id, session_id)
    if row is None:
        return None
    return await FunnelSessionRepository(db).reload(row)


class TestPatterns:
    """Tests for page path patterns."""

    @pytest.mark.parametrize(
        "value, pattern, expected",
        [
            ("/checkout", "/checkout", True),
            ("/product/shoes", "/product/*", True),
            ("/product/", "/product/*", True),
            ("/products", "/product/*", False),
            ("/blog/a/b/c", "/blog/*", True),
            ("/v1", "/v?", True),
            ("/v10", "/v?", False),
            ("/a.b", "/a.b", True),
            ("/axb", "/a.b", False),
            (None, "/checkout", False),
        ],
    )
    def test_matches_pattern(self, value, pattern, expected):
        assert matches_pattern(value, pattern) is expected


class TestStepConditions:
    """Tests for typed step conditions."""

    def test_parse_each_type(self):
        assert parse_step_condition("pageview", {"page_path": "/x"}) == PageviewMatch("/x")
        assert parse_step_condition("event", {"event_name": "buy", "event_category": "shop"}) == EventMatch(
            "buy", "shop"
        )
        assert isinstance(parse_step_condition("custom", {"plan": ["pro", "team"]}), CustomMatch)

    @pytest.mark.parametrize(
        "step_type, conditions",
        [("pageview", {}), ("event", {"event_category": "x"}), ("bogus", {"a": 1})],
    )
    def test_invalid_definitions(self, step_type, conditions):
        with pytest.raises(ValueError):
            parse_step_condition(step_type, conditions)

    def test_pageview_step_ignores_events(self):
        condition = PageviewMatch("/pricing")
        event = Beacon(kind="event", site="1", page_path="/pricing", event_name="click")

        assert condition.matches(event) is False

    def test_event_category_must_match_when_given(self):
        condition = EventMatch("buy", "shop")

        assert condition.matches(Beacon(kind="event", site="1", event_name="buy", event_category="shop"))
        assert not condition.matches(Beacon(kind="event", site="1", event_name="buy", event_category="blog"))

    def test_custom_list_membership(self):
        condition = parse_step_condition("custom", {"plan": ["pro", "team"], "name": "upgrade"})

        assert condition.matches(
            Beacon(kind="event", site="1", event_name="upgrade", event_data={"plan": "team"})
        )
        assert not condition.matches(
            Beacon(kind="event", site="1", event_name="upgrade", event_data={"plan": "free"})
        )
        assert not condition.matches(Beacon(kind="event", site="1", event_name="upgrade"))

    @pytest.mark.parametrize("sent, expected", [(1.0, "1"), ("1", 1), (2, "2.0"), (" 3 ", 3), ("pro", "pro")])
    def test_custom_values_compare_by_number(self, sent, expected):
        condition = parse_step_condition("custom", {"amount": expected})

        assert condition.matches(Beacon(kind="event", site="1", event_name="buy", event_data={"amount": sent}))

    @pytest.mark.parametrize("sent, expected", [(True, "1"), (1.5, "1"), ("one", 1)])
    def test_custom_values_that_differ(self, sent, expected):
        condition = parse_step_condition("custom", {"amount": expected})

        assert not condition.matches(Beacon(kind="event", site="1", event_name="buy", event_data={"amount": sent}))

    def test_conversion_seconds(self):
        steps_data = {
            "1": {"timestamp": "2026-03-10T12:00:00"},
            "2": {"timestamp": "2026-03-10T12:01:00"},
            "3": {"timestamp": "2026-03-10T12:02:30"},
        }

        assert conversion_seconds(steps_data) == 150
        assert conversion_seconds({}) is None


class TestFunnelProgress:
    """Tests for FunnelMatcher driven by real beacons."""

    async def test_full_conversion(self, ctx, db, site, meta, clock):
        funnel = await create_funnel(ctx, db, site, CHECKOUT_STEPS)
        visitor = Visitor(ctx, db, site, meta)

        await visitor.view("/landing")
        clock.advance(seconds=60)
        await visitor.view("/pricing")
        clock.advance(seconds=90)
        await visitor.fire("signup")

        row = await progress(db, funnel, visitor.session_id)
        assert row.last_step_reached == 3
        assert row.is_converted is True
        assert row.conversion_time == 150
        assert row.completed_at == clock()
        assert set(row.steps_data) == {"1", "2", "3"}
        assert row.steps_data["3"]["event_data"]["event_name"] == "signup"

    async def test_no_row_until_first_step(self, ctx, db, site, meta):
        funnel = await create_funnel(ctx, db, site, CHECKOUT_STEPS)
        visitor = Visitor(ctx, db, site, meta)

        await visitor.view("/pricing")

        assert await progress(db, funnel, visitor.session_id) is None

    async def test_steps_cannot_be_skipped(self, ctx, db, site, meta):
        funnel = await create_funnel(ctx, db, site, CHECKOUT_STEPS)
        visitor = Visitor(ctx, db, site, meta)

        await visitor.view("/landing")
        await visitor.fire("signup")
        await visitor.view("/landing")

        row = await progress(db, funnel, visitor.session_id)
        assert row.last_step_reached == 1
        assert row.is_converted is False

    async def test_events_cannot_revive_expired_session(self, ctx, db, site, meta, clock):
        steps = [
            {"name": "Landing", "type": "pageview", "conditions": {"page_path": "/landing"}},
            {"name": "Scroll", "type": "event", "conditions": {"event_name": "scroll"}},
            {"name": "Signup", "type": "event", "conditions": {"event_name": "signup"}},
        ]
        funnel = await create_funnel(ctx, db, site, steps)
        visitor = Visitor(ctx, db, site, meta)

        await visitor.view("/landing")
        expired_id = visitor.session_id
        clock.advance(minutes=45)
        await visitor.fire("scroll")
        await visitor.fire("signup")

        row = await progress(db, funnel, expired_id)
        assert row.last_step_reached == 1
        assert row.is_converted is False

        body = await visitor.view("/other")
        assert body["new_session"] is True
        assert body["session_id"] != expired_id

    async def test_one_beacon_advances_one_step(self, ctx, db, site, meta):
        steps = [
            {"name": "Docs", "type": "pageview", "conditions": {"page_path": "/docs/*"}},
            {"name": "Docs again", "type": "pageview", "conditions": {"page_path": "/docs/*"}},
        ]
        funnel = await create_funnel(ctx, db, site, steps)
        visitor = Visitor(ctx, db, site, meta)

        await visitor.view("/docs/intro")
        row = await progress(db, funnel, visitor.session_id)
        assert row.last_step_reached == 1
        assert row.is_converted is False

        await visitor.view("/docs/setup")
        row = await progress(db, funnel, visitor.session_id)
        assert row.last_step_reached == 2
        assert row.is_converted is True

    async def test_converted_rows_are_terminal(self, ctx, db, site, meta):
        steps = [{"name": "Thanks", "type": "pageview", "conditions": {"page_path": "/thanks"}}]
        funnel = await create_funnel(ctx, db, site, steps)
        visitor = Visitor(ctx, db, site, meta)

        await visitor.view("/thanks")
        before = await progress(db, funnel, visitor.session_id)
        version = before.version
        await visitor.view("/thanks")
        after = await progress(db, funnel, visitor.session_id)

        assert after.is_converted is True
        assert after.version == version
        assert after.conversion_time == 0

    async def test_inactive_funnels_are_ignored(self, ctx, db, site, meta):
        funnel = await FunnelService(ctx, db).create(
            site.id,
            FunnelCreate.model_validate({"name": "Paused", "status": "paused", "steps": CHECKOUT_STEPS}),
        )
        await db.commit()
        visitor = Visitor(ctx, db, site, meta)

        await visitor.view("/landing")

        assert await progress(db, funnel, visitor.session_id) is None

    async def test_expired_session_events_skip_funnels(self, ctx, db, site, meta, clock):
        steps = [
            {"name": "Landing", "type": "pageview", "conditions": {"page_path": "/landing"}},
            {"name": "Signup", "type": "event", "conditions": {"event_name": "signup"}},
        ]
        funnel = await create_funnel(ctx, db, site, steps)
        visitor = Visitor(ctx, db, site, meta)

        await visitor.view("/landing")
        clock.advance(minutes=45)
        await visitor.fire("signup")

        row = await progress(db, funnel, visitor.session_id)
        assert row.last_step_reached == 1


class TestConcurrency:
    """Tests for compare-and-swap progress updates."""

    async def test_stale_snapshot_loses(self, ctx, db, site, meta, clock):
        funnel = await create_funnel(ctx, db, site, CHECKOUT_STEPS)
        visitor = Visitor(ctx, db, site, meta)
        await visitor.view("/about")

        repo = FunnelSessionRepository(db)
        row = await repo.start(funnel.id, visitor.session_id, None, clock())
        won = await repo.compare_and_advance(row, 1, {"1": {}}, False, None, None)
        lost = await repo.compare_and_advance(row, 1, {"1": {}}, False, None, None)

        assert won is True
        assert lost is False
        fresh = await repo.reload(row)
        assert fresh.last_step_reached == 1
        assert fresh.version == 1

    async def test_concurrent_advance_is_not_repeated(self, ctx, db, site, meta, monkeypatch):
        """A worker that loses the race re-reads and does not advance twice."""
        funnel = await create_funnel(ctx, db, site, CHECKOUT_STEPS)
        visitor = Visitor(ctx, db, site, meta)
        original = FunnelSessionRepository.compare_and_advance
        calls = []

        async def racing(self, row, new_step, steps_data, is_converted, conversion_time, completed_at):
            if not calls:
                # Another worker applies the same step first
                await original(self, row, new_step, steps_data, is_converted, conversion_time, completed_at)
            calls.append(new_step)
            return await original(self, row, new_step, steps_data, is_converted, conversion_time, completed_at)

        monkeypatch.setattr(FunnelSessionRepository, "compare_and_advance", racing)
        await visitor.view("/landing")

        row = await progress(db, funnel, visitor.session_id)
        assert calls == [1]
        assert row.last_step_reached == 1
        assert row.version == 1

    async def test_failing_funnel_does_not_affect_others(self, ctx, db, site, meta, monkeypatch):
        broken = await create_funnel(ctx, db, site, CHECKOUT_STEPS, name="Broken")
        healthy = await create_funnel(ctx, db, site, CHECKOUT_STEPS, name="Healthy")
        original = FunnelSessionRepository.start

        async def flaky_start(self, funnel_id, *args):
            if funnel_id == broken.id:
                raise RuntimeError("boom")
            return await original(self, funnel_id, *args)

        monkeypatch.setattr(FunnelSessionRepository, "start", flaky_start)
        visitor = Visitor(ctx, db, site, meta)
        body = await visitor.view("/landing")

        assert body["success"] is True
        assert await progress(db, broken, visitor.session_id) is None
        assert (await progress(db, healthy, visitor.session_id)).last_step_reached == 1
