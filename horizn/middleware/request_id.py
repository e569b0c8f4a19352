"""
Request ID and access logging middleware.

Uses pure ASGI middleware (not BaseHTTPMiddleware) to avoid breaking
async generator dependencies like get_db_session().
"""
import time
import uuid
from typing import Iterable

import structlog
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from horizn.core.logging import get_logger

logger = get_logger(__name__)

MAX_REQUEST_ID_LENGTH = 64


class RequestIdMiddleware:
    """
    Tags every request with an id (taken from `X-Request-ID` or generated),
    echoes it in the response and logs one line per finished request.

    Collector paths log at debug level; they carry most of the traffic.
    """

    def __init__(self, app: ASGIApp, quiet_paths: Iterable[str] = ()) -> None:
        self.app = app
        self.quiet_paths = frozenset(quiet_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = None
        for header_name, header_value in scope.get("headers", []):
            if header_name == b"x-request-id":
                request_id = header_value.decode("latin-1")[:MAX_REQUEST_ID_LENGTH]
                break
        request_id = request_id or uuid.uuid4().hex

        path = scope.get("path", "")
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, path=path)
        scope.setdefault("state", {})["request_id"] = request_id

        started = time.perf_counter()
        status_code = 500

        async def send_with_request_id(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                headers = list(message.get("headers", []))
                headers.append((b"x-request-id", request_id.encode("latin-1")))
                message = {**message, "headers": headers}
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            log = logger.debug if path in self.quiet_paths else logger.info
            log(
                "Request finished",
                method=scope.get("method"),
                status=status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 1),
            )
