"""
Funnel definition API routes.
"""
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from horizn.core.context import Context
from horizn.core.database import get_db_session
from horizn.core.logging import get_logger
from horizn.core.security import ApiToken
from horizn.models.funnel import Funnel
from horizn.models.site import Site
from horizn.routers.sites import get_site_or_404
from horizn.schemas.funnel import (
    AvailableEvent,
    FunnelAnalyticsResponse,
    FunnelCreate,
    FunnelResponse,
    FunnelSessionResponse,
    FunnelUpdate,
    PopularPage,
)
from horizn.services.funnels import FunnelService

logger = get_logger(__name__)

router = APIRouter(prefix="/sites/{site_id}", tags=["funnels"])

SitePath = Annotated[Site, Depends(get_site_or_404)]


async def get_funnel_service(
    ctx: Context,
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> FunnelService:
    """Dependency to get funnel service."""
    return FunnelService(ctx, session)


Service = Annotated[FunnelService, Depends(get_funnel_service)]


async def get_funnel_or_404(funnel_id: int, site: SitePath, service: Service) -> Funnel:
    funnel = await service.get(site.id, funnel_id)
    if not funnel:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Funnel not found",
        )
    return funnel


FunnelPath = Annotated[Funnel, Depends(get_funnel_or_404)]


@router.post("/funnels", response_model=FunnelResponse, status_code=status.HTTP_201_CREATED)
async def create_funnel(
    payload: FunnelCreate,
    site: SitePath,
    service: Service,
    _: ApiToken,
) -> FunnelResponse:
    """Create a funnel. Steps are numbered in the order given."""
    funnel = await service.create(site.id, payload)
    return FunnelResponse.model_validate(funnel)


@router.get("/funnels", response_model=list[FunnelResponse])
async def list_funnels(site: SitePath, service: Service, _: ApiToken) -> list[FunnelResponse]:
    """List all funnels of a site."""
    return [FunnelResponse.model_validate(f) for f in await service.list_for_site(site.id)]


@router.get("/funnels/{funnel_id}", response_model=FunnelResponse)
async def get_funnel(funnel: FunnelPath, _: ApiToken) -> FunnelResponse:
    return FunnelResponse.model_validate(funnel)


@router.put("/funnels/{funnel_id}", response_model=FunnelResponse)
async def update_funnel(
    payload: FunnelUpdate,
    funnel: FunnelPath,
    service: Service,
    _: ApiToken,
) -> FunnelResponse:
    """Update a funnel. A `steps` list replaces every existing step."""
    funnel = await service.update(funnel, payload)
    logger.info("Updated funnel", funnel_id=funnel.id)
    return FunnelResponse.model_validate(funnel)


@router.delete("/funnels/{funnel_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_funnel(funnel: FunnelPath, service: Service, _: ApiToken) -> None:
    """Delete a funnel with its steps, progress rows and rollups."""
    await service.delete(funnel)


@router.get("/funnels/{funnel_id}/sessions", response_model=list[FunnelSessionResponse])
async def funnel_sessions(
    funnel: FunnelPath,
    service: Service,
    _: ApiToken,
    limit: int = Query(100, ge=1, le=500),
) -> list[FunnelSessionResponse]:
    """Most recent per-session progress through the funnel."""
    rows = await service.sessions(funnel, limit=limit)
    return [FunnelSessionResponse.model_validate(row) for row in rows]


@router.get("/funnels/{funnel_id}/analytics", response_model=list[FunnelAnalyticsResponse])
async def funnel_analytics(
    funnel: FunnelPath,
    service: Service,
    _: ApiToken,
    days: int = Query(30, ge=1, le=365),
) -> list[FunnelAnalyticsResponse]:
    """Daily rollups computed by the worker."""
    rows = await service.analytics(funnel, days=days)
    return [FunnelAnalyticsResponse.model_validate(row) for row in rows]


@router.get("/funnel-builder/pages", response_model=list[PopularPage])
async def popular_pages(site: SitePath, service: Service, _: ApiToken) -> list[PopularPage]:
    """Most viewed pages of the last 30 days, for building pageview steps."""
    return [PopularPage(**row) for row in await service.popular_pages(site.id)]


@router.get("/funnel-builder/events", response_model=list[AvailableEvent])
async def available_events(site: SitePath, service: Service, _: ApiToken) -> list[AvailableEvent]:
    """Event names seen in the last 30 days, for building event steps."""
    return [AvailableEvent(**row) for row in await service.available_events(site.id)]
