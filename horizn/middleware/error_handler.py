"""
Global error handling middleware.

Uses pure ASGI middleware (not BaseHTTPMiddleware) to avoid breaking
async generator dependencies like get_db_session().
"""
import json
from typing import Iterable
from urllib.parse import parse_qs

from fastapi import HTTPException
from starlette.types import ASGIApp, Receive, Scope, Send

from horizn.core.logging import get_logger
from horizn.services.ingest import PIXEL_GIF

logger = get_logger(__name__)


class ErrorHandlerMiddleware:
    """
    Pure ASGI error handler that catches unhandled exceptions
    and returns proper JSON 500 responses.

    Collector paths never see a server error: pixel requests still get
    the GIF and JSON beacons get a `{"success": false}` envelope.

    Does NOT catch HTTPException: those are handled by FastAPI's
    default exception handler and must pass through unchanged.
    """

    def __init__(self, app: ASGIApp, tracking_paths: Iterable[str] = ()) -> None:
        self.app = app
        self.tracking_paths = frozenset(tracking_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False
        original_send = send

        async def send_wrapper(message):
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await original_send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as e:
            # HTTPException belongs to FastAPI
            if isinstance(e, HTTPException):
                raise

            if response_started:
                # Headers already sent, can't change the response
                logger.exception(
                    "Unhandled exception after response started",
                    error=str(e),
                    path=scope.get("path", "unknown"),
                )
                raise

            logger.exception(
                "Unhandled exception",
                error=str(e),
                path=scope.get("path", "unknown"),
            )

            status, content_type, body = self._error_response(scope, e)
            await original_send({
                "type": "http.response.start",
                "status": status,
                "headers": [
                    [b"content-type", content_type],
                    [b"content-length", str(len(body)).encode()],
                ],
            })
            await original_send({
                "type": "http.response.body",
                "body": body,
            })

    def _error_response(self, scope: Scope, error: Exception) -> tuple[int, bytes, bytes]:
        if scope.get("path") in self.tracking_paths:
            query = parse_qs(scope.get("query_string", b"").decode("latin-1"))
            if scope.get("method") == "GET" and not query.get("json"):
                return 200, b"image/gif", PIXEL_GIF
            body = json.dumps({"success": False, "error": "Tracking failed"}).encode("utf-8")
            return 400, b"application/json", body

        body = json.dumps({
            "detail": "Internal server error",
            "type": type(error).__name__,
        }).encode("utf-8")
        return 500, b"application/json", body
