"""
Base Repository Pattern

Purpose
-------
Type-safe, generic data access over SQLAlchemy 2.0 async sessions. Concrete
repositories add the handful of queries their service needs.

Design Notes
------------
- No row locks: aggregates are protected by their `version` column and the
  service-level retry loop, so every method here is a plain read or write.
- Repositories never commit; the caller's `get_transaction()` owns that.
- Every call emits a debug log with the model name and outcome.

Usage
-----
    class LobbyRepository(BaseRepository[Lobby]):
        async def find_joinable(self, session: AsyncSession) -> list[Lobby]:
            return await self.find_many_where(
                session, Lobby.status.in_(["waiting", "starting"])
            )
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy import delete, func, select

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """
    Generic base repository.

    Type Parameters:
        T: The SQLAlchemy model class this repository manages
    """

    def __init__(self, model_class: Type[T], logger: Logger) -> None:
        self.model_class = model_class
        self.log = logger

    async def get(self, session: AsyncSession, id_value: Any) -> Optional[T]:
        """
        Get a single record by primary key.

        Composite keys are passed as a tuple in column order.
        """
        instance = await session.get(self.model_class, id_value)

        self.log.debug(
            f"Repository.get: {self.model_class.__name__}",
            extra={
                "model": self.model_class.__name__,
                "id": str(id_value),
                "found": instance is not None,
            },
        )
        return instance

    async def find_one_where(
        self, session: AsyncSession, *conditions: ColumnElement[bool]
    ) -> Optional[T]:
        stmt = select(self.model_class).where(*conditions)
        result = await session.execute(stmt)
        instance = result.scalars().first()

        self.log.debug(
            f"Repository.find_one_where: {self.model_class.__name__}",
            extra={"model": self.model_class.__name__, "found": instance is not None},
        )
        return instance

    async def find_many_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        limit: Optional[int] = None,
        order_by: Optional[Any] = None,
    ) -> List[T]:
        stmt = select(self.model_class).where(*conditions)
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await session.execute(stmt)
        instances = list(result.scalars().all())

        self.log.debug(
            f"Repository.find_many_where: {self.model_class.__name__}",
            extra={
                "model": self.model_class.__name__,
                "found_count": len(instances),
                "limit": limit,
            },
        )
        return instances

    async def exists(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> bool:
        return await self.count(session, *conditions) > 0

    async def count(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> int:
        stmt = select(func.count()).select_from(self.model_class).where(*conditions)
        result = await session.execute(stmt)
        count = int(result.scalar_one())

        self.log.debug(
            f"Repository.count: {self.model_class.__name__}",
            extra={"model": self.model_class.__name__, "count": count},
        )
        return count

    def add(self, session: AsyncSession, instance: T) -> T:
        session.add(instance)
        self.log.debug(
            f"Repository.add: {self.model_class.__name__}",
            extra={"model": self.model_class.__name__},
        )
        return instance

    async def delete(self, session: AsyncSession, instance: T) -> None:
        await session.delete(instance)
        self.log.debug(
            f"Repository.delete: {self.model_class.__name__}",
            extra={"model": self.model_class.__name__},
        )

    async def delete_where(
        self, session: AsyncSession, *conditions: ColumnElement[bool]
    ) -> int:
        """Bulk delete; returns the number of rows removed."""
        result = await session.execute(delete(self.model_class).where(*conditions))
        deleted = int(result.rowcount or 0)

        self.log.debug(
            f"Repository.delete_where: {self.model_class.__name__}",
            extra={"model": self.model_class.__name__, "deleted_count": deleted},
        )
        return deleted

    async def flush(self, session: AsyncSession) -> None:
        await session.flush()
