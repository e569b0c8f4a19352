"""
Site repository - registration and cached tracking-code lookups.
"""
from typing import Any, Optional

from sqlalchemy import select

from horizn.core.security import generate_tracking_code
from horizn.models.site import Site
from horizn.repositories.base import BaseRepository

SITE_CACHE_TTL = 600


def site_to_dict(site: Site) -> dict[str, Any]:
    return {
        "id": site.id,
        "tracking_code": site.tracking_code,
        "domain": site.domain,
        "name": site.name,
        "timezone": site.timezone,
        "is_active": site.is_active,
    }


class SiteRepository(BaseRepository[Site]):
    """Repository for Site model operations."""

    model = Site

    async def get_by_tracking_code(self, tracking_code: str) -> Optional[Site]:
        stmt = select(Site).where(Site.tracking_code == tracking_code)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_sites(self, *, active_only: bool = False) -> list[Site]:
        stmt = select(Site).order_by(Site.id)
        if active_only:
            stmt = stmt.where(Site.is_active.is_(True))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def register(self, domain: str, name: str, timezone: str = "UTC") -> Site:
        """Create a site with a freshly generated tracking code."""
        site = await self.create(
            {
                "tracking_code": generate_tracking_code(),
                "domain": domain,
                "name": name,
                "timezone": timezone,
            }
        )
        self.invalidate()
        return site

    async def resolve_active(self, identifier: str | int) -> Optional[dict[str, Any]]:
        """
        Resolve an active site from a numeric id or a tracking code.

        Returns a plain dict (cached when the repository has a cache).
        """
        if isinstance(identifier, int) or str(identifier).isdigit():
            key = f"site:id:{int(identifier)}"

            async def load() -> Optional[dict[str, Any]]:
                site = await self.get_by_id(int(identifier))
                return site_to_dict(site) if site else None
        else:
            key = f"site:code:{identifier}"

            async def load() -> Optional[dict[str, Any]]:
                site = await self.get_by_tracking_code(str(identifier))
                return site_to_dict(site) if site else None

        if self.cache is not None:
            site = await self.cache.get_or_load(key, load, ttl=SITE_CACHE_TTL)
        else:
            site = await load()

        if site is None or not site["is_active"]:
            return None
        return site

    def invalidate(self) -> None:
        if self.cache is not None:
            self.cache.invalidate_prefix("site:")
