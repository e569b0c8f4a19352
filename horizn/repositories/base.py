"""
Base repository with common CRUD operations.
Implements the Repository pattern for data access abstraction.
"""
from typing import Any, Generic, Optional, TypeVar

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession

from horizn.core.cache import TTLCache
from horizn.core.database import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Generic repository providing common database operations.

    Subclasses should set the `model` class attribute to the SQLAlchemy model.
    A `TTLCache` may be passed for repositories that serve cached lookups.
    """

    model: type[ModelType]

    def __init__(self, session: AsyncSession, cache: Optional[TTLCache] = None) -> None:
        self.session = session
        self.cache = cache

    async def get_by_id(self, id: Any) -> ModelType | None:
        """Get a single record by its primary key."""
        return await self.session.get(self.model, id)

    async def get_all(
        self,
        *,
        skip: int = 0,
        limit: int = 100,
    ) -> list[ModelType]:
        """Get all records with pagination."""
        stmt = select(self.model).offset(skip).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def create(self, obj_in: dict[str, Any]) -> ModelType:
        """Create a new record."""
        db_obj = self.model(**obj_in)
        self.session.add(db_obj)
        await self.session.flush()
        await self.session.refresh(db_obj)
        return db_obj

    async def update(
        self,
        db_obj: ModelType,
        obj_in: dict[str, Any],
    ) -> ModelType:
        """Update an existing record."""
        for field, value in obj_in.items():
            if value is not None:
                setattr(db_obj, field, value)
        await self.session.flush()
        await self.session.refresh(db_obj)
        return db_obj

    async def delete(self, db_obj: ModelType) -> None:
        """Delete a record."""
        await self.session.delete(db_obj)
        await self.session.flush()

    async def count(self) -> int:
        """Count total records."""
        stmt = select(func.count()).select_from(self.model)
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    # Dialect-aware writes

    def _insert(self):
        """Core INSERT on the table (column names, not attributes) with ON CONFLICT support."""
        dialect = self.session.bind.dialect.name
        if dialect == "postgresql":
            return postgresql.insert(self.model.__table__)
        if dialect == "sqlite":
            return sqlite.insert(self.model.__table__)
        raise NotImplementedError(f"ON CONFLICT is not supported for {dialect}")

    async def insert_ignore(self, values: dict[str, Any]) -> bool:
        """
        INSERT ... ON CONFLICT DO NOTHING.

        Returns True when this call inserted the row, False when a row with
        the same key already existed.
        """
        stmt = self._insert().values(**values).on_conflict_do_nothing()
        result: CursorResult = await self.session.execute(stmt)
        return result.rowcount == 1

    async def upsert(
        self,
        values: dict[str, Any],
        conflict_columns: list[str],
        update_columns: list[str],
    ) -> None:
        """INSERT ... ON CONFLICT (keys) DO UPDATE SET the given columns."""
        stmt = self._insert().values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=conflict_columns,
            set_={column: stmt.excluded[column] for column in update_columns},
        )
        await self.session.execute(stmt)
