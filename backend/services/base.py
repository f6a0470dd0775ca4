"""Model service shared by the SQL stores.

A ``BaseService`` wraps one ``AsyncSession``. The stores open a session
per call and build the services they need inside it, so a service never
outlives its transaction.
"""

from typing import Any, Generic, Iterable, Optional, Sequence, Type, TypeVar
from uuid import uuid4

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import NotFoundError
from db.base import BaseModel

ModelType = TypeVar("ModelType", bound=BaseModel)


class BaseService(Generic[ModelType]):
    """Soft-delete aware reads and writes for one model.

    Usage:
        tasks = BaseService(Task, session)
        task = await tasks.require(task_id)
        await tasks.update(task.id, {"status": "DONE"})
    """

    def __init__(self, model: Type[ModelType], db: AsyncSession):
        self.model = model
        self.db = db

    def _live(self, include_deleted: bool = False) -> list:
        if include_deleted or not hasattr(self.model, "is_deleted"):
            return []
        return [self.model.is_deleted == False]  # noqa: E712

    # ─── Read ──────────────────────────────────────────────

    async def get_by_id(self, id: str, include_deleted: bool = False) -> Optional[ModelType]:
        result = await self.db.execute(
            select(self.model).where(self.model.id == id, *self._live(include_deleted))
        )
        return result.scalar_one_or_none()

    async def require(self, id: str) -> ModelType:
        """Like ``get_by_id`` but raises ``NotFoundError`` for a missing row."""
        instance = await self.get_by_id(id)
        if instance is None:
            raise NotFoundError(f"{self.model.__name__} {id} not found")
        return instance

    async def query(
        self,
        *clauses,
        order_by: Iterable = (),
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> Sequence[ModelType]:
        """Live rows matching every clause, in ``order_by`` order."""
        stmt = select(self.model).where(*self._live(), *clauses).order_by(*order_by).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def list(
        self,
        offset: int = 0,
        limit: int = 50,
        filters: Optional[dict[str, Any]] = None,
    ) -> tuple[Sequence[ModelType], int]:
        """Page through live rows, newest first.

        ``filters`` maps column names to a value (equality) or a list (IN);
        None values and unknown columns are skipped.

        Returns:
            Tuple of (items, total_count)
        """
        clauses = []
        for field, value in (filters or {}).items():
            if value is None or not hasattr(self.model, field):
                continue
            column = getattr(self.model, field)
            clauses.append(column.in_(value) if isinstance(value, list) else column == value)

        items = await self.query(
            *clauses, order_by=[self.model.created_at.desc()], offset=offset, limit=limit
        )
        total = await self.db.execute(
            select(func.count()).select_from(self.model).where(*self._live(), *clauses)
        )
        return items, total.scalar() or 0

    # ─── Write ─────────────────────────────────────────────

    async def create(self, data: dict[str, Any]) -> ModelType:
        data.setdefault("id", str(uuid4()))
        instance = self.model(**data)
        self.db.add(instance)
        await self.db.flush()
        await self.db.refresh(instance)
        return instance

    async def update(self, id: str, data: dict[str, Any]) -> Optional[ModelType]:
        """Set the given columns on a live row; unknown keys are ignored.

        Returns None if the row does not exist.
        """
        instance = await self.get_by_id(id)
        if instance is None:
            return None
        for key, value in data.items():
            if hasattr(instance, key):
                setattr(instance, key, value)
        await self.db.flush()
        await self.db.refresh(instance)
        return instance

    async def claim(self, id: str, values: dict[str, Any], **expected: Any) -> bool:
        """Conditionally update one row in a single statement.

        Applies ``values`` only while every ``expected`` column still holds
        its expected value (None means IS NULL). True when this call won.
        """
        conditions = [
            getattr(self.model, column).is_(None) if value is None else getattr(self.model, column) == value
            for column, value in expected.items()
        ]
        result = await self.db.execute(
            update(self.model).where(self.model.id == id, *conditions).values(**values)
        )
        return result.rowcount == 1

    async def soft_delete(self, id: str) -> bool:
        """Returns False if the row is missing or already deleted."""
        instance = await self.get_by_id(id)
        if instance is None:
            return False
        instance.soft_delete()
        await self.db.flush()
        return True
