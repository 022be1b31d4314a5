"""
Atomic conditional writes

INSERT ... ON CONFLICT statements built for the dialect the session is bound
to. These close the read-then-write window when two deliveries of the same
order race each other.
"""

from typing import Any, Dict, Iterable, Optional, Sequence, Type

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from order_engine.database.models import Base


def _insert_for(session: AsyncSession, model: Type[Base]):
    dialect = session.bind.dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"No conditional insert for dialect '{dialect}'")


async def insert_if_absent(
    session: AsyncSession,
    model: Type[Base],
    values: Dict[str, Any],
    conflict_columns: Sequence[str],
) -> Optional[Any]:
    """
    Insert a row unless one already holds the same conflict key.

    Returns:
        The new row's primary key, or None when the row already existed.
    """
    stmt = (
        _insert_for(session, model)
        .values(**values)
        .on_conflict_do_nothing(index_elements=list(conflict_columns))
        .returning(model.id)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def upsert(
    session: AsyncSession,
    model: Type[Base],
    values: Dict[str, Any],
    conflict_columns: Sequence[str],
    update_columns: Iterable[str],
    extra_updates: Optional[Dict[str, Any]] = None,
) -> Any:
    """
    Insert a row or update the listed columns of the existing one.

    `extra_updates` holds SQL expressions evaluated against the existing row
    (e.g. counters).

    Returns:
        The primary key of the inserted or updated row.
    """
    stmt = _insert_for(session, model).values(**values)
    set_ = {column: stmt.excluded[column] for column in update_columns}
    if extra_updates:
        set_.update(extra_updates)
    stmt = stmt.on_conflict_do_update(
        index_elements=list(conflict_columns),
        set_=set_,
    ).returning(model.id)
    result = await session.execute(stmt)
    return result.scalar_one()
