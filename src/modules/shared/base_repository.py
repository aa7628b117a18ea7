"""
Typed data access over SQLAlchemy 2.0 async sessions.

Repositories never commit and hold no rules; the service's
``DatabaseService.get_transaction()`` block owns the unit of work.
Subclasses add the handful of model-specific lookups their service needs:

    class LabAttemptRepository(BaseRepository[LabAttempt]):
        async def get_for_pair(self, session, user_id, lab_id, for_update=False):
            return await self.find_one_where(
                session,
                LabAttempt.user_id == user_id,
                LabAttempt.lab_id == lab_id,
                for_update=for_update,
            )
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import delete, func, select

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy import ColumnElement, Select
    from sqlalchemy.ext.asyncio import AsyncSession

ModelT = TypeVar("ModelT")


class BaseRepository(Generic[ModelT]):
    """Query helpers bound to one mapped class."""

    def __init__(self, model_class: Type[ModelT], logger: Logger) -> None:
        self.model_class = model_class
        self.log = logger

    def _trace(self, call: str, **fields: Any) -> None:
        name = self.model_class.__name__
        self.log.debug(f"{name}.{call}", extra={"model": name, **fields})

    def _where(self, conditions: Sequence[ColumnElement[bool]]) -> Select[Any]:
        return select(self.model_class).where(*conditions)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def find_one_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        for_update: bool = False,
    ) -> Optional[ModelT]:
        """
        At most one row; ``for_update`` takes a row lock on PostgreSQL.

        Raises ``MultipleResultsFound`` when the conditions are not unique.
        """
        stmt = self._where(conditions)
        if for_update:
            stmt = stmt.with_for_update()

        row = (await session.execute(stmt)).scalar_one_or_none()
        self._trace("find_one_where", found=row is not None, locked=for_update)
        return row

    async def find_many_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        order_by: Sequence[Any] = (),
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[ModelT]:
        stmt = self._where(conditions).order_by(*order_by).offset(offset or None).limit(limit)
        rows = list((await session.execute(stmt)).scalars())
        self._trace("find_many_where", found_count=len(rows), limit=limit, offset=offset)
        return rows

    async def count(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> int:
        stmt = select(func.count()).select_from(self.model_class).where(*conditions)
        total = int((await session.execute(stmt)).scalar_one())
        self._trace("count", count=total)
        return total

    async def exists(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> bool:
        return await self.count(session, *conditions) > 0

    async def sum_column(
        self,
        session: AsyncSession,
        column: Any,
        *conditions: ColumnElement[bool],
    ) -> int:
        """``SUM(column)`` as an int, 0 over an empty match."""
        stmt = select(func.coalesce(func.sum(column), 0)).where(*conditions)
        total = int((await session.execute(stmt)).scalar_one())
        self._trace("sum_column", total=total)
        return total

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def add(self, session: AsyncSession, instance: ModelT) -> ModelT:
        session.add(instance)
        self._trace("add")
        return instance

    async def flush(self, session: AsyncSession) -> None:
        """Flush pending rows; unique violations surface here as ``IntegrityError``."""
        await session.flush()
        self._trace("flush")

    async def refresh(
        self,
        session: AsyncSession,
        instance: ModelT,
        attribute_names: Optional[List[str]] = None,
    ) -> ModelT:
        await session.refresh(instance, attribute_names=attribute_names)
        self._trace("refresh", attributes=attribute_names)
        return instance

    async def delete_where(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> int:
        result = await session.execute(delete(self.model_class).where(*conditions))
        deleted = int(result.rowcount or 0)
        self._trace("delete_where", deleted_count=deleted)
        return deleted
