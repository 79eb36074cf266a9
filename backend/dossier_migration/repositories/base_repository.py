"""Base repository with common staging table operations."""
from datetime import datetime, timezone
from typing import Any, Generic, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dossier_migration.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)

# Text column limit of the staging store
MAX_ERROR_LENGTH = 4000

# Select rounds per claim when rows are lost to a concurrent claimer
CLAIM_ATTEMPTS = 3


def truncate_error(error: Optional[str]) -> str:
    """Clip an error message to the column limit; None becomes empty."""
    if not error:
        return ""
    return error[:MAX_ERROR_LENGTH]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BaseRepository(Generic[ModelType]):
    """Generic base repository bound to one session."""

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        """Initialize repository.

        Args:
            model: SQLAlchemy model class
            session: Async database session
        """
        self.model = model
        self.session = session

    async def get_by_id(self, id: Any) -> Optional[ModelType]:
        """Get row by primary key.

        Args:
            id: Primary key value

        Returns:
            Model instance or None if not found
        """
        return await self.session.get(self.model, id)

    async def list_all(self) -> List[ModelType]:
        """Get all rows.

        Returns:
            List of all model instances
        """
        result = await self.session.execute(select(self.model))
        return list(result.scalars().all())

    async def claim(self, take: int, from_status: str, to_status: str, *criteria: Any) -> List[ModelType]:
        """Move up to `take` rows from one status to another for this caller.

        Candidates are selected FOR UPDATE SKIP LOCKED and moved with a
        status-guarded UPDATE. Only rows this call actually transitioned are
        returned. Rows lost to a concurrent claimer are replaced by selecting
        again, at most CLAIM_ATTEMPTS times.

        Args:
            take: Maximum number of rows to claim
            from_status: Status a row must still have to be claimed
            to_status: Status written to claimed rows
            *criteria: Extra filters on candidate rows

        Returns:
            Claimed rows in id order
        """
        table_id = self.model.id
        table_status = self.model.status
        claimed_ids: List[int] = []
        for _ in range(CLAIM_ATTEMPTS):
            wanted = take - len(claimed_ids)
            if wanted <= 0:
                break
            candidates = await self.session.execute(
                select(table_id)
                .filter(table_status == from_status, *criteria)
                .order_by(table_id)
                .limit(wanted)
                .with_for_update(skip_locked=True)
            )
            ids = list(candidates.scalars().all())
            if not ids:
                break

            claimed = await self.session.execute(
                update(self.model)
                .where(table_id.in_(ids), table_status == from_status)
                .values(status=to_status, updated_at=utc_now())
                .returning(table_id)
                .execution_options(synchronize_session=False)
            )
            won = [row[0] for row in claimed.all()]
            claimed_ids.extend(won)
            if len(won) == len(ids):
                break

        if not claimed_ids:
            return []
        result = await self.session.execute(
            select(self.model)
            .filter(table_id.in_(claimed_ids))
            .order_by(table_id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def count(self) -> int:
        """Count all rows in the table."""
        result = await self.session.execute(select(func.count()).select_from(self.model))
        return int(result.scalar_one())

    async def create(self, obj: ModelType) -> ModelType:
        """Insert one row.

        Args:
            obj: Model instance to create

        Returns:
            Created model instance with ID populated
        """
        self.session.add(obj)
        await self.session.flush()
        await self.session.refresh(obj)
        return obj

    async def bulk_create(self, objs: Sequence[ModelType]) -> List[ModelType]:
        """Insert many rows in one flush.

        Args:
            objs: Model instances

        Returns:
            The same instances with IDs populated
        """
        self.session.add_all(objs)
        await self.session.flush()
        return list(objs)

    async def insert_ignore_duplicates(self, objs: Sequence[ModelType], conflict_column: str) -> int:
        """Insert rows, skipping any whose conflict column already exists.

        Uses the dialect's ON CONFLICT DO NOTHING so concurrent writers
        cannot fail each other on the unique key.

        Args:
            objs: Transient model instances
            conflict_column: Name of the unique column

        Returns:
            Number of rows actually inserted
        """
        if not objs:
            return 0

        rows = []
        seen = set()
        for obj in objs:
            key = getattr(obj, conflict_column)
            if key in seen:
                continue
            seen.add(key)
            rows.append(self._insert_values(obj))

        table = self.model.__table__
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert as dialect_insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert as dialect_insert
        else:
            raise NotImplementedError(f"Unsupported staging dialect: {dialect}")

        stmt = (
            dialect_insert(table)
            .on_conflict_do_nothing(index_elements=[conflict_column])
            .returning(table.c[conflict_column])
        )
        inserted = 0
        for offset in range(0, len(rows), 100):
            result = await self.session.execute(stmt, rows[offset:offset + 100])
            inserted += len(result.all())
        return inserted

    def _insert_values(self, obj: ModelType) -> dict:
        """Column values of a transient instance with Python-side defaults applied."""
        values = {}
        for column in self.model.__table__.columns:
            if column.primary_key and column.autoincrement is not False:
                continue
            value = getattr(obj, column.key)
            if value is None and column.default is not None:
                if column.default.is_scalar:
                    value = column.default.arg
                elif column.default.is_callable:
                    value = column.default.arg(None)
            values[column.key] = value
        return values

    async def delete(self, obj: ModelType) -> None:
        """Delete one row.

        Args:
            obj: Model instance to delete
        """
        await self.session.delete(obj)
        await self.session.flush()
