"""
Tests for the collector ingest endpoints.
"""
import json

import pytest
from sqlalchemy import func, select

from horizn.models.session import VisitorSession
from horizn.models.tracking import CustomEvent, Pageview
from horizn.repositories.site import SiteRepository
from horizn.routers.ingest import DECOY_PATHS
from horizn.services.identity import hash_ip
from horizn.services.ingest import PIXEL_GIF
from horizn.services.presence import PresenceTracker


async def count(ctx, model) -> int:
    async with ctx.database.session() as db:
        return await db.scalar(select(func.count()).select_from(model))


def pageview(site, path="/", **extra) -> dict:
    return {"type": "pageview", "site_id": site.id, "url": f"https://example.com{path}", **extra}


class TestPageviews:
    """Tests for JSON pageview beacons."""

    async def test_track_pageview(self, async_client, ctx, site):
        response = await async_client.post(
            "/api/ingest",
            json=pageview(site, "/pricing?plan=pro", title="Pricing", load_time=420),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["new_session"] is True
        assert data["session_id"].startswith("sess_")
        assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate"

        async with ctx.database.session() as db:
            stored = await db.scalar(select(Pageview))
            assert stored.page_path == "/pricing?plan=pro"
            assert stored.page_title == "Pricing"
            assert stored.load_time == 420
            assert stored.session_id == data["session_id"]
            assert len(stored.ip_hash) == 64

    async def test_tracking_code_identifies_site(self, async_client, site):
        response = await async_client.post(
            "/api/ingest",
            json={"tracking_code": site.tracking_code, "url": "https://example.com/"},
        )

        assert response.status_code == 200
        assert response.json()["success"] is True

    async def test_session_is_reused(self, async_client, ctx, site):
        first = (await async_client.post("/api/ingest", json=pageview(site))).json()
        second = (
            await async_client.post(
                "/api/ingest", json=pageview(site, "/about", session_id=first["session_id"])
            )
        ).json()

        assert second["session_id"] == first["session_id"]
        assert second["new_session"] is False
        assert await count(ctx, VisitorSession) == 1

    async def test_plain_text_body_from_send_beacon(self, async_client, site):
        response = await async_client.post(
            "/api/ingest",
            content=json.dumps(pageview(site)),
            headers={"Content-Type": "text/plain;charset=UTF-8"},
        )

        assert response.status_code == 200
        assert response.json()["success"] is True

    async def test_form_encoded_body(self, async_client, site):
        response = await async_client.post(
            "/api/ingest",
            data={"site_id": str(site.id), "url": "https://example.com/contact"},
        )

        assert response.status_code == 200
        assert response.json()["success"] is True

    async def test_json_query_parameter(self, async_client, site):
        response = await async_client.get("/api/ingest", params={"json": json.dumps(pageview(site))})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/json")
        assert response.json()["success"] is True

    @pytest.mark.parametrize("path", DECOY_PATHS)
    async def test_decoy_paths_accept_beacons(self, async_client, site, path):
        response = await async_client.post(path, json=pageview(site))

        assert response.status_code == 200
        assert response.json()["success"] is True

    async def test_preflight(self, async_client):
        response = await async_client.options("/assets/js/data.js")

        assert response.status_code == 204
        assert response.headers["access-control-allow-origin"] == "*"

    async def test_forwarded_address_is_hashed(self, async_client, ctx, site, settings):
        await async_client.post(
            "/api/ingest",
            json=pageview(site),
            headers={"X-Forwarded-For": "10.1.1.1, 8.8.4.4"},
        )

        async with ctx.database.session() as db:
            stored = await db.scalar(select(Pageview))
            assert stored.ip_hash == hash_ip("8.8.4.4", settings.ip_salt)


class TestValidation:
    """Tests for rejected beacons."""

    @pytest.mark.parametrize(
        "payload, error",
        [
            ({"type": "pageview", "url": "https://example.com/"}, "Site ID is required"),
            ({"type": "pageview", "site_id": 1}, "Page URL is required"),
            ({"type": "pageview", "site_id": 1, "url": "javascript:alert(1)"}, "Invalid page URL"),
            (
                {"type": "pageview", "site_id": 1, "url": "https://example.com/", "load_time": -5},
                "Invalid load time",
            ),
            ({"type": "event", "site_id": 1, "session_id": "sess_x"}, "Event name is required"),
            ({"type": "event", "site_id": 1, "event": {"name": "click"}}, "Session ID is required"),
            (
                {"type": "event", "site_id": 1, "session_id": "sess_x", "event": {"name": "a", "value": "abc"}},
                "Event value must be numeric",
            ),
            ({"type": "pageview", "site_id": 999, "url": "https://example.com/"}, "Invalid site"),
            (
                {"type": "event", "site_id": 1, "session_id": "sess_missing", "event": {"name": "click"}},
                "Invalid session",
            ),
            ({"type": "heartbeat", "site_id": 1}, "Unknown item type"),
        ],
    )
    async def test_rejected_payloads(self, async_client, ctx, site, payload, error):
        response = await async_client.post("/api/ingest", json=payload)

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": error}
        assert await count(ctx, Pageview) == 0
        assert await count(ctx, CustomEvent) == 0

    async def test_unparseable_body(self, async_client, site):
        response = await async_client.post(
            "/api/ingest", content=b"{not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Invalid request data"}

    async def test_inactive_site_is_rejected(self, async_client, ctx, site):
        async with ctx.database.session() as db:
            stored = await db.get(type(site), site.id)
            stored.is_active = False
        ctx.cache.clear()

        response = await async_client.post("/api/ingest", json=pageview(site))

        assert response.json() == {"success": False, "error": "Invalid site"}


class TestEvents:
    """Tests for custom event beacons."""

    async def test_track_event(self, async_client, ctx, site):
        session_id = (await async_client.post("/api/ingest", json=pageview(site))).json()["session_id"]

        response = await async_client.post(
            "/api/ingest",
            json={
                "type": "event",
                "site_id": site.id,
                "session_id": session_id,
                "url": "https://example.com/pricing",
                "event": {
                    "name": "purchase",
                    "category": "shop",
                    "value": "19.99",
                    "data": {"sku": "A-1"},
                },
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["session_id"] == session_id
        async with ctx.database.session() as db:
            stored = await db.scalar(select(CustomEvent))
            assert stored.id == data["event_id"]
            assert stored.event_name == "purchase"
            assert stored.event_category == "shop"
            assert stored.event_value == 19.99
            assert stored.event_data == {"sku": "A-1"}
            assert stored.page_path == "/pricing"

    async def test_event_session_of_other_site_is_invalid(self, async_client, ctx, site):
        async with ctx.database.session() as db:
            other = await SiteRepository(db).register(domain="other.org", name="Other")
        session_id = (await async_client.post("/api/ingest", json=pageview(site))).json()["session_id"]

        response = await async_client.post(
            "/api/ingest",
            json={"type": "event", "site_id": other.id, "session_id": session_id, "event": {"name": "x"}},
        )

        assert response.json() == {"success": False, "error": "Invalid session"}


class TestBatch:
    """Tests for batched beacons."""

    async def test_partial_failure(self, async_client, ctx, site):
        response = await async_client.post(
            "/api/ingest",
            json={
                "site_id": site.id,
                "batch": [
                    {"type": "pageview", "url": "https://example.com/"},
                    {"type": "event"},
                    {"type": "event", "event": {"name": "signup"}},
                ],
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["processed"] == 3
        assert data["successful"] == 2
        assert data["errors"] == 1
        assert data["results"][1] == {"success": False, "error": "Event name is required"}
        # The event joins the session opened by the pageview
        assert data["results"][2]["session_id"] == data["results"][0]["session_id"]
        assert await count(ctx, Pageview) == 1
        assert await count(ctx, CustomEvent) == 1

    async def test_batch_size_limit(self, async_client, ctx, site):
        items = [{"type": "pageview", "url": "https://example.com/"}] * 51

        response = await async_client.post("/api/ingest", json={"site_id": site.id, "batch": items})

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Batch size exceeds limit of 50"}
        assert await count(ctx, Pageview) == 0

    async def test_batch_requires_valid_site(self, async_client):
        response = await async_client.post(
            "/api/ingest",
            json={"site_id": "nope", "batch": [{"type": "pageview", "url": "https://example.com/"}]},
        )

        assert response.json() == {"success": False, "error": "Invalid site"}

    async def test_unexpected_error_rolls_back_batch(self, async_client, ctx, site, monkeypatch):
        calls = []

        async def touch(self, *args, **kwargs):
            calls.append(args)
            if len(calls) == 2:
                raise RuntimeError("presence store down")

        monkeypatch.setattr(PresenceTracker, "touch", touch)

        response = await async_client.post(
            "/api/ingest",
            json={
                "site_id": site.id,
                "batch": [
                    {"type": "pageview", "url": "https://example.com/"},
                    {"type": "pageview", "url": "https://example.com/about"},
                ],
            },
        )

        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "error": "Batch tracking failed",
            "processed": 0,
            "successful": 0,
            "errors": 2,
        }
        assert await count(ctx, Pageview) == 0
        assert await count(ctx, VisitorSession) == 0


class TestPixel:
    """Tests for the image beacon."""

    async def test_pixel_records_pageview(self, async_client, ctx, site):
        response = await async_client.get(
            "/p.gif",
            params={"s": site.tracking_code, "u": "https://example.com/docs", "t": "Docs"},
        )

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/gif"
        assert response.content == PIXEL_GIF
        assert len(response.content) == 43
        async with ctx.database.session() as db:
            stored = await db.scalar(select(Pageview))
            assert stored.page_path == "/docs"
            assert stored.page_title == "Docs"

    @pytest.mark.parametrize(
        "params",
        [{}, {"s": "unknown-code", "u": "https://example.com/"}, {"s": "x", "u": "not a url"}],
    )
    async def test_pixel_always_returns_gif(self, async_client, ctx, params):
        response = await async_client.get("/pixel.png", params=params)

        assert response.status_code == 200
        assert response.content == PIXEL_GIF
        assert await count(ctx, Pageview) == 0

    async def test_pixel_survives_unexpected_errors(self, async_client, site, monkeypatch):
        async def touch(self, *args, **kwargs):
            raise RuntimeError("presence store down")

        monkeypatch.setattr(PresenceTracker, "touch", touch)

        response = await async_client.get(
            "/p.gif", params={"s": site.tracking_code, "u": "https://example.com/"}
        )

        assert response.status_code == 200
        assert response.content == PIXEL_GIF

    async def test_json_beacon_never_gets_server_error(self, async_client, site, monkeypatch):
        async def touch(self, *args, **kwargs):
            raise RuntimeError("presence store down")

        monkeypatch.setattr(PresenceTracker, "touch", touch)

        response = await async_client.post("/api/ingest", json=pageview(site))

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Tracking failed"}
