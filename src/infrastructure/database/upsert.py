"""
Dialect-aware INSERT ... ON CONFLICT helper.

Both PostgreSQL and SQLite support ``ON CONFLICT (...) DO UPDATE``, which
gives an atomic find-or-create/update keyed on a unique constraint without
external locking.
"""

from typing import Any, Dict, Iterable, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def _insert_for(session: AsyncSession, model: Any):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upsert not supported for dialect '{dialect}'")


async def upsert_row(
    session: AsyncSession,
    model: Any,
    values: Dict[str, Any],
    conflict_columns: Iterable[str],
    update_columns: Optional[Iterable[str]] = None,
) -> Any:
    """
    Insert ``values`` or update the row matching ``conflict_columns``.

    Args:
        session: Active session (statement runs in its transaction)
        model: ORM model class
        values: Column values for the insert
        conflict_columns: Columns of the unique constraint
        update_columns: Columns overwritten on conflict (default: all but the key and id)

    Returns:
        Primary key of the inserted or updated row
    """
    conflict_columns = list(conflict_columns)
    if update_columns is None:
        update_columns = [
            name for name in values
            if name not in conflict_columns and name != "id"
        ]

    stmt = _insert_for(session, model).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=conflict_columns,
        set_={name: stmt.excluded[name] for name in update_columns},
    ).returning(model.id)

    result = await session.execute(stmt)
    return result.scalar_one()
