"""
horizn API - Main Application Entry Point.

Self-hosted web analytics: beacon ingestion, sessions, realtime presence
and funnel tracking.
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from horizn.core.config import Settings, get_settings
from horizn.core.context import AppContext, build_context
from horizn.core.logging import configure_logging, get_logger
from horizn.core.security import AttemptLimiter
from horizn.middleware import ErrorHandlerMiddleware, RequestIdMiddleware
from horizn.routers import (
    auth_router,
    funnels_router,
    health_router,
    ingest_router,
    live_router,
    sites_router,
)
from horizn.routers.ingest import INGEST_PATHS

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    context: Optional[AppContext] = None,
) -> FastAPI:
    """
    Application factory function.
    Creates and configures the FastAPI application.

    A prebuilt `context` (tests, embedding) is used as-is and not disposed
    on shutdown; otherwise the lifespan builds and owns one.
    """
    settings = settings or (context.settings if context else get_settings())
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        Application lifespan manager.
        Handles startup and shutdown events.
        """
        # Startup
        logger.info(
            "Starting application",
            app_name=settings.app_name,
            version=settings.app_version,
            environment=settings.environment,
        )

        owns_context = context is None
        ctx = context or build_context(settings)
        app.state.ctx = ctx

        # Alembic owns the schema outside development and tests
        if settings.environment in ("development", "testing"):
            await ctx.database.create_all()

        # Initialize Sentry if configured
        if settings.sentry_dsn:
            import sentry_sdk

            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                environment=settings.environment,
                traces_sample_rate=0.1,
            )
            logger.info("Sentry initialized")

        yield

        # Shutdown
        logger.info("Shutting down application")
        if owns_context:
            await ctx.database.dispose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Self-hosted web analytics ingest API",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    if context is not None:
        # Available before the lifespan runs (e.g. transports that skip it)
        app.state.ctx = context
    app.state.auth_limiter = AttemptLimiter(
        max_attempts=settings.auth_max_attempts,
        window=settings.auth_attempt_window,
    )

    # Add middleware (order matters - last added = outermost)
    app.add_middleware(ErrorHandlerMiddleware, tracking_paths=INGEST_PATHS)
    app.add_middleware(RequestIdMiddleware, quiet_paths=INGEST_PATHS)

    # CORS - collectors post from any origin without credentials
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "X-Request-ID",
        ],
        max_age=86400,
    )

    # Register routers
    app.include_router(health_router)
    app.include_router(ingest_router)
    app.include_router(auth_router, prefix="/api")
    app.include_router(sites_router, prefix="/api")
    app.include_router(funnels_router, prefix="/api")
    app.include_router(live_router, prefix="/api")

    logger.info(
        "Application created",
        routes=len(app.routes),
        cors_origins=len(settings.allowed_origins),
    )

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "horizn.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
