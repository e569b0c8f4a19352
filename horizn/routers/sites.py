"""
Site management API routes.
"""
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from horizn.core.context import Context
from horizn.core.database import get_db_session
from horizn.core.logging import get_logger
from horizn.core.security import ApiToken
from horizn.models.site import Site
from horizn.repositories.site import SiteRepository
from horizn.schemas.site import SiteCreate, SiteResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/sites", tags=["sites"])


async def get_site_repository(
    ctx: Context,
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> SiteRepository:
    """Dependency to get site repository."""
    return SiteRepository(session, cache=ctx.cache)


SiteRepo = Annotated[SiteRepository, Depends(get_site_repository)]


async def get_site_or_404(site_id: int, repo: SiteRepo) -> Site:
    """Path dependency resolving `site_id` to a site."""
    site = await repo.get_by_id(site_id)
    if not site:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Site not found",
        )
    return site


@router.post("", response_model=SiteResponse, status_code=status.HTTP_201_CREATED)
async def create_site(site_data: SiteCreate, repo: SiteRepo, _: ApiToken) -> SiteResponse:
    """Register a site and generate its tracking code."""
    site = await repo.register(
        domain=site_data.domain.lower(),
        name=site_data.name,
        timezone=site_data.timezone,
    )
    logger.info("Registered site", site_id=site.id, domain=site.domain)
    return SiteResponse.model_validate(site)


@router.get("", response_model=list[SiteResponse])
async def list_sites(repo: SiteRepo, _: ApiToken) -> list[SiteResponse]:
    """List all registered sites."""
    return [SiteResponse.model_validate(site) for site in await repo.list_sites()]


@router.get("/by-code/{tracking_code}", response_model=SiteResponse)
async def get_site_by_code(tracking_code: str, repo: SiteRepo, _: ApiToken) -> SiteResponse:
    """Get site details by tracking code."""
    site = await repo.get_by_tracking_code(tracking_code)
    if not site:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Site not found",
        )
    return SiteResponse.model_validate(site)


@router.get("/{site_id}", response_model=SiteResponse)
async def get_site(site: Annotated[Site, Depends(get_site_or_404)], _: ApiToken) -> SiteResponse:
    """Get site details by id."""
    return SiteResponse.model_validate(site)
