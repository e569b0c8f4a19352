"""
Collector ingest routes.

The primary endpoint and the decoy paths (named like static assets so
that content blockers leave them alone) all share one handler:

- GET without `json`   -> pixel, always answers with a 1x1 GIF
- GET with `?json=...` -> JSON envelope
- POST (JSON, text/plain JSON from sendBeacon, or form) -> JSON envelope
"""
import json
import re
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from horizn.core.config import Settings
from horizn.core.context import Context
from horizn.core.database import get_db_session
from horizn.core.logging import get_logger
from horizn.services.beacon import RequestMeta
from horizn.services.identity import client_ip
from horizn.services.ingest import IngestService

logger = get_logger(__name__)

router = APIRouter(tags=["ingest"])

PRIMARY_PATH = "/api/ingest"
DECOY_PATHS = (
    "/analytics.css",
    "/assets/css/site.css",
    "/assets/js/data.js",
    "/pixel.png",
    "/p.gif",
)
INGEST_PATHS = frozenset((PRIMARY_PATH, *DECOY_PATHS))

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
    "X-Robots-Tag": "noindex",
}

PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Max-Age": "86400",
}

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")
_COUNTRY_CODE = re.compile(r"^[A-Z]{2}$")


def country_from_headers(request: Request, settings: Settings) -> Optional[str]:
    """ISO country code set by an upstream proxy, when configured and well-formed."""
    if not settings.geo_country_header:
        return None
    value = (request.headers.get(settings.geo_country_header) or "").strip().upper()
    if not _COUNTRY_CODE.match(value) or value == "XX":
        return None
    return value


def request_meta(request: Request, settings: Settings) -> RequestMeta:
    peer = request.client.host if request.client else None
    return RequestMeta(
        ip=client_ip(request.headers, peer),
        user_agent=request.headers.get("user-agent", "")[:1000],
        country_code=country_from_headers(request, settings),
    )


async def read_payload(request: Request) -> Any:
    """Decoded POST body, or None when it cannot be read."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(FORM_CONTENT_TYPES):
        form = await request.form()
        return {key: value for key, value in form.items() if isinstance(value, str)}

    body = await request.body()
    if not body:
        return None
    try:
        return json.loads(body)
    except ValueError:
        return None


async def ingest(
    request: Request,
    ctx: Context,
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> Response:
    """Accept a pageview, event, batch or pixel beacon."""
    meta = request_meta(request, ctx.settings)
    service = IngestService(ctx, db)

    if request.method == "GET":
        params = dict(request.query_params)
        encoded = params.get("json")
        if not encoded:
            gif = await service.handle_pixel(params, meta)
            return Response(content=gif, media_type="image/gif", headers=NO_CACHE_HEADERS)
        try:
            data = json.loads(encoded)
        except ValueError:
            data = None
    else:
        data = await read_payload(request)

    status_code, body = await service.handle(data, meta)
    return JSONResponse(body, status_code=status_code, headers=NO_CACHE_HEADERS)


async def preflight() -> Response:
    """CORS preflight for collectors that send one without an Origin match."""
    return Response(status_code=204, headers=PREFLIGHT_HEADERS)


for _path in (PRIMARY_PATH, *DECOY_PATHS):
    router.add_api_route(
        _path,
        ingest,
        methods=["GET", "POST"],
        include_in_schema=_path == PRIMARY_PATH,
    )
    router.add_api_route(_path, preflight, methods=["OPTIONS"], include_in_schema=False)
