"""
Persistence gateway: the only way lifecycle code talks to the database.

Provides
- unit_of_work(): one transaction, committed on success, rolled back on any
  failure, with infrastructure errors surfaced as InternalError
- get_by_id(): read-by-id that raises NotFoundError
- conditional_update(): UPDATE ... WHERE id = ? AND <expected> with rowcount
- insert_with_next_number(): atomic per-scope "current max + 1" insert
"""

import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Type, TypeVar

from sqlalchemy import func, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orderflow.config import get_settings
from orderflow.errors import ConflictError, InternalError, NotFoundError, OrderFlowError
from orderflow.kernel.models.base import Base, generate_uuid
from orderflow.logging_config import get_logger

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=Base)


class PersistenceGateway:
    """
    Transactional access to the order store.

    Usage:
        gateway = PersistenceGateway(async_session_maker)
        async with gateway.unit_of_work() as session:
            order = await gateway.get_by_id(session, Order, order_id)
            ...
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        number_allocation_retries: Optional[int] = None,
    ):
        self.session_factory = session_factory
        if number_allocation_retries is None:
            number_allocation_retries = get_settings().number_allocation_retries
        self.number_allocation_retries = max(1, number_allocation_retries)

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[AsyncSession]:
        """Yield a session inside one transaction; commit on clean exit."""
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    yield session
            except OrderFlowError:
                raise
            except SQLAlchemyError as exc:
                logger.error(
                    "Unit of work failed and was rolled back",
                    exc_info=True,
                    extra={"error_type": type(exc).__name__},
                )
                raise InternalError() from exc

    async def get_by_id(
        self,
        session: AsyncSession,
        model: Type[ModelT],
        ident: uuid.UUID,
        *,
        for_update: bool = False,
        label: Optional[str] = None,
    ) -> ModelT:
        query = select(model).where(model.id == ident)
        if for_update:
            query = query.with_for_update()
        result = await session.execute(query)
        obj = result.scalar_one_or_none()
        if obj is None:
            name = label or model.__name__
            raise NotFoundError(f"{name} not found", context={"id": str(ident)})
        return obj

    async def conditional_update(
        self,
        session: AsyncSession,
        model: Type[Base],
        ident: uuid.UUID,
        *,
        expected: Dict[str, Any],
        values: Dict[str, Any],
    ) -> bool:
        """
        Apply `values` only if the row still matches `expected`.

        Returns False when another writer got there first (rowcount 0).
        """
        stmt = update(model).where(model.id == ident)
        for column, value in expected.items():
            stmt = stmt.where(getattr(model, column) == value)
        stmt = stmt.values({getattr(model, column): value for column, value in values.items()})
        stmt = stmt.execution_options(synchronize_session=False)

        result = await session.execute(stmt)
        return result.rowcount == 1

    async def insert_with_next_number(
        self,
        session: AsyncSession,
        model: Type[ModelT],
        *,
        scope_column: str,
        scope_value: Any,
        number_column: str,
        values: Dict[str, Any],
    ) -> ModelT:
        """
        Insert a row whose number is max(number in scope) + 1.

        The max is taken by a scalar subquery inside the INSERT itself; a
        unique index on (scope, number) backs it, and a collision is retried
        in a fresh savepoint.
        """
        table = model.__table__
        scoped = table.alias()
        next_number = (
            select(func.coalesce(func.max(scoped.c[number_column]), 0) + 1)
            .where(scoped.c[scope_column] == scope_value)
            .scalar_subquery()
        )

        for attempt in range(1, self.number_allocation_retries + 1):
            row_id = generate_uuid()
            stmt = (
                insert(table)
                .values(
                    {
                        **values,
                        "id": row_id,
                        scope_column: scope_value,
                        number_column: next_number,
                    }
                )
            )
            try:
                async with session.begin_nested():
                    await session.execute(stmt)
            except IntegrityError:
                logger.warning(
                    "Number allocation collided, retrying",
                    extra={
                        "table": table.name,
                        "scope": str(scope_value),
                        "attempt": attempt,
                    },
                )
                continue
            return await self.get_by_id(session, model, row_id)

        raise ConflictError(
            f"Could not allocate a {number_column}, please retry",
            context={"table": table.name, "scope": str(scope_value)},
        )
