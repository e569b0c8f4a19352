"""
API routers package.
"""
from horizn.routers.auth import router as auth_router
from horizn.routers.funnels import router as funnels_router
from horizn.routers.health import router as health_router
from horizn.routers.ingest import router as ingest_router
from horizn.routers.live import router as live_router
from horizn.routers.sites import router as sites_router

__all__ = [
    "health_router",
    "ingest_router",
    "auth_router",
    "sites_router",
    "funnels_router",
    "live_router",
]
