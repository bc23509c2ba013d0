"""
Database helper functions — dialect-aware upserts keyed on unique columns.
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from connectors.exceptions import StorageError
from database.models import Base

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _insert_for(session: AsyncSession):
    dialect = session.get_bind().dialect.name
    try:
        return _INSERTS[dialect]
    except KeyError:
        raise StorageError(f"Upsert not supported on dialect '{dialect}'") from None


async def upsert_rows(
    session: AsyncSession,
    model: type[Base],
    rows: List[Dict[str, Any]],
    key_columns: Sequence[str],
) -> int:
    """
    ``INSERT … ON CONFLICT (key_columns) DO UPDATE`` every non-key column.

    All non-key values in ``rows`` replace whatever is stored (no field-level
    merge).  Every row must carry the same set of columns.  Returns the
    number of rows written.
    """
    if not rows:
        return 0

    insert = _insert_for(session)
    stmt = insert(model).values(rows)
    update_cols = {
        name: stmt.excluded[name]
        for name in rows[0]
        if name not in key_columns
    }
    stmt = stmt.on_conflict_do_update(index_elements=list(key_columns), set_=update_cols)
    await session.execute(stmt)
    await session.flush()
    return len(rows)
