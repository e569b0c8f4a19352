"""
Shared fixtures.

Every test gets its own in-memory SQLite database and an application
context with a controllable clock.
"""
import os
from datetime import datetime, timedelta

# Settings are read when horizn.main is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-long-enough-1234")
os.environ.setdefault("API_KEY", "test-api-key-0123456789")
os.environ.setdefault("ENVIRONMENT", "testing")

import pytest
from httpx import ASGITransport, AsyncClient

from horizn.core.config import Settings
from horizn.core.context import AppContext
from horizn.core.database import Database
from horizn.core.security import create_access_token
from horizn.main import create_app
from horizn.repositories.site import SiteRepository
from horizn.services.beacon import RequestMeta

USER_AGENT_DESKTOP = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class FrozenClock:
    """Deterministic clock; call `advance` to move time forward."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        secret_key="test-secret-key-that-is-long-enough-1234",
        api_key="test-api-key-0123456789",
        environment="testing",
        log_level="WARNING",
        ip_salt="test-salt",
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 10, 12, 0, 0))


@pytest.fixture
async def ctx(settings: Settings, clock: FrozenClock):
    """Application context over a fresh in-memory database."""
    database = Database(settings)
    await database.create_all()
    context = AppContext(settings=settings, database=database, clock=clock)
    yield context
    await database.dispose()


@pytest.fixture
async def db(ctx: AppContext):
    """Database session for service-level tests."""
    async with ctx.database.session_factory() as session:
        yield session


@pytest.fixture
async def site(ctx: AppContext):
    """A registered, active site (committed in its own session)."""
    async with ctx.database.session() as session:
        return await SiteRepository(session).register(domain="example.com", name="Example")


@pytest.fixture
def app(ctx: AppContext):
    return create_app(ctx.settings, context=ctx)


@pytest.fixture
async def async_client(app):
    """Async HTTP client against the ASGI app."""
    transport = ASGITransport(app=app, client=("203.0.113.7", 51000))
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"User-Agent": USER_AGENT_DESKTOP},
    ) as client:
        yield client


@pytest.fixture
def auth_headers(settings: Settings) -> dict:
    token = create_access_token(settings, {"sub": "api"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def meta() -> RequestMeta:
    """Request facts of a desktop visitor."""
    return RequestMeta(ip="198.51.100.20", user_agent=USER_AGENT_DESKTOP, country_code="DE")
