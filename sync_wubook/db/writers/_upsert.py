"""
Dialect-aware upsert statement builders.

PostgreSQL and SQLite both support `INSERT ... ON CONFLICT`; SQLAlchemy
exposes it through each dialect's own `insert()`. These helpers pick the
right one so writers stay portable between production and the test suite.
"""

from typing import Any, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.sql import Executable

_INSERTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


def _insert_for(dialect_name: str) -> Any:
    try:
        return _INSERTS[dialect_name]
    except KeyError:
        raise ValueError(f"Unsupported dialect for upsert: {dialect_name}") from None


def build_upsert(
    dialect_name: str,
    table: type,
    row: dict[str, Any],
    conflict_columns: list[str],
    update_columns: Optional[list[str]] = None,
    distinct_column: Optional[str] = None,
) -> Executable:
    """
    Build an insert-or-update statement for one row.

    Args:
        dialect_name: `engine.dialect.name` of the target engine
        table: SQLAlchemy ORM table class (e.g. Reservation, FxLinkMeta)
        row: Column values to insert
        conflict_columns: Columns of the unique/primary key
        update_columns: Columns to overwrite on conflict (default: every
            column in `row` except the conflict columns and `created_at`)
        distinct_column: When given, only update if this column's value
            IS DISTINCT FROM the incoming one

    Returns:
        Executable: The statement, ready for `conn.execute()` or a
        BoundedWriteSession.

    Example:
        >>> stmt = build_upsert("postgresql", Reservation, row, ["id"], distinct_column="content_hash")
    """
    stmt = _insert_for(dialect_name)(table).values(**row)
    if update_columns is None:
        update_columns = [c for c in row if c not in conflict_columns and c != "created_at"]

    set_dict = {col: getattr(stmt.excluded, col) for col in update_columns}

    where = None
    if distinct_column is not None:
        where = getattr(table, distinct_column).is_distinct_from(
            getattr(stmt.excluded, distinct_column)
        )

    return stmt.on_conflict_do_update(index_elements=conflict_columns, set_=set_dict, where=where)


def build_insert_ignore(
    dialect_name: str, table: type, row: dict[str, Any], conflict_columns: list[str]
) -> Executable:
    """Build an insert that silently does nothing when the key already exists."""
    stmt = _insert_for(dialect_name)(table).values(**row)
    return stmt.on_conflict_do_nothing(index_elements=conflict_columns)
