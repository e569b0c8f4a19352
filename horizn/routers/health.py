"""
Health check and monitoring endpoints.
"""
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from horizn.core.context import Context

router = APIRouter(tags=["health"])


@router.get("/")
async def root(ctx: Context) -> dict:
    """API root endpoint."""
    return {
        "name": ctx.settings.app_name,
        "version": ctx.settings.app_version,
        "status": "running",
    }


@router.get("/health")
async def health_check(ctx: Context) -> dict:
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": ctx.now().isoformat(),
        "version": ctx.settings.app_version,
    }


@router.get("/health/ready")
async def readiness_check(ctx: Context) -> JSONResponse:
    """
    Readiness probe - checks if the service can handle requests.
    Verifies database connectivity.
    """
    db_ok = await ctx.database.ping()

    return JSONResponse(
        status_code=200 if db_ok else 503,
        content={
            "status": "ready" if db_ok else "not_ready",
            "checks": {
                "database": "connected" if db_ok else "error",
            },
            "timestamp": ctx.now().isoformat(),
        },
    )


@router.get("/health/live")
async def liveness_check(ctx: Context) -> dict:
    """
    Liveness probe - checks if the service is alive.
    Simple check that doesn't verify dependencies.
    """
    return {
        "status": "alive",
        "timestamp": ctx.now().isoformat(),
    }
