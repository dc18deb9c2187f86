"""Database utility functions for cross-database compatibility."""

from typing import Any, Optional, TypeVar

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def dialect_name(session: AsyncSession) -> str:
    return session.bind.dialect.name


async def upsert(
    session: AsyncSession,
    model: type[T],
    values: dict[str, Any],
    conflict_columns: list[str],
    update_columns: Optional[list[str]] = None,
) -> None:
    """
    Single-statement INSERT ... ON CONFLICT DO UPDATE.

    Works on PostgreSQL and SQLite, which share the ON CONFLICT syntax.
    Concurrent writers converge on last-write-wins without a read first.

    Args:
        session: AsyncSession instance
        model: SQLModel table class
        values: Dictionary of column values to insert/update
        conflict_columns: Columns of the unique constraint
        update_columns: Columns to update on conflict (defaults to all non-conflict columns)

    Example:
        await upsert(
            session,
            TeamStat,
            {"team_id": 40, "competition": "PL", "form_index": 0.61},
            conflict_columns=["team_id", "competition"],
        )
    """
    if update_columns is None:
        update_columns = [k for k in values.keys() if k not in conflict_columns]

    stmt = dialect_insert(session)(model).values(**values)
    if update_columns:
        stmt = stmt.on_conflict_do_update(
            index_elements=conflict_columns,
            set_={col: getattr(stmt.excluded, col) for col in update_columns},
        )
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=conflict_columns)

    await session.execute(stmt)


async def bulk_upsert(
    session: AsyncSession,
    model: type[T],
    values_list: list[dict[str, Any]],
    conflict_columns: list[str],
    update_columns: Optional[list[str]] = None,
) -> int:
    """
    Upsert many records, one statement each.

    Returns:
        Number of records processed
    """
    for values in values_list:
        await upsert(session, model, values, conflict_columns, update_columns)
    return len(values_list)


def dialect_insert(session: AsyncSession):
    """Dialect-specific `insert` construct supporting ON CONFLICT."""
    name = dialect_name(session)
    try:
        return _INSERTS[name]
    except KeyError:
        raise NotImplementedError(f"upsert not supported on dialect '{name}'") from None
