"""
Explicit application context.

Built once by the process entry point (FastAPI lifespan or arq startup)
and handed to services, replacing module-level singletons.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Annotated, Callable

from fastapi import Depends, Request

from horizn.core.cache import TTLCache
from horizn.core.config import Settings
from horizn.core.database import Database


def utc_now() -> datetime:
    """Naive UTC timestamp; every stored datetime uses this convention."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class AppContext:
    """Process-wide collaborators shared by request handlers and jobs."""

    settings: Settings
    database: Database
    clock: Callable[[], datetime] = field(default=utc_now)

    @property
    def cache(self) -> TTLCache:
        return self.database.cache

    def now(self) -> datetime:
        return self.clock()


def build_context(settings: Settings) -> AppContext:
    return AppContext(settings=settings, database=Database(settings))


def get_context(request: Request) -> AppContext:
    """Dependency returning the context stored by the lifespan."""
    return request.app.state.ctx


Context = Annotated[AppContext, Depends(get_context)]
