"""Dialect-aware SQL helpers for insert-if-absent and upsert."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import text

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession


def get_dialect(engine: Engine | AsyncEngine) -> str:
    """Return 'sqlite', 'postgresql', or 'mssql'."""
    # AsyncEngine wraps a sync engine
    sync_engine = getattr(engine, "sync_engine", engine)
    name = sync_engine.dialect.name
    if name == "sqlite":
        return "sqlite"
    if name in ("postgresql", "postgres"):
        return "postgresql"
    if name in ("mssql", "pyodbc"):
        return "mssql"
    return name


def _dialect_module(dialect: str) -> Any:
    if dialect == "postgresql":
        from sqlalchemy.dialects import postgresql as pg_dialect

        return pg_dialect
    if dialect == "sqlite":
        from sqlalchemy.dialects import sqlite as sqlite_dialect

        return sqlite_dialect
    msg = f"Unsupported dialect for conflict handling: {dialect!r}"
    raise ValueError(msg)


async def insert_if_absent(
    session: AsyncSession,
    dialect: str,
    model: type,
    values: dict[str, Any],
    conflict_keys: list[str],
    *,
    conflict_where: str | None = None,
) -> bool:
    """Insert *values* unless a row conflicting on *conflict_keys* exists.

    Returns True when the row was inserted.  The check and the insert are a
    single statement, so two concurrent callers (in one process or across
    processes sharing the database) cannot both succeed.

    *conflict_where* names the predicate of a partial unique index, e.g.
    ``"status = 'active'"``.

    - SQLite/PostgreSQL: INSERT ... ON CONFLICT (...) [WHERE ...] DO NOTHING
    - MSSQL: MERGE INTO ... WITH (HOLDLOCK) ... WHEN NOT MATCHED THEN INSERT
    """
    if dialect == "mssql":
        return await _insert_if_absent_mssql(session, model, values, conflict_keys, conflict_where)

    stmt = _dialect_module(dialect).insert(model).values(**values)
    stmt = stmt.on_conflict_do_nothing(
        index_elements=conflict_keys,
        index_where=text(conflict_where) if conflict_where else None,
    )
    result = await session.execute(stmt)
    return (result.rowcount or 0) > 0  # type: ignore[attr-defined]


def _merge_sql(
    model: type,
    values: dict[str, Any],
    conflict_keys: list[str],
    *,
    conflict_where: str | None = None,
    update_cols: list[str] | None = None,
) -> str:
    """Build a ``MERGE ... WITH (HOLDLOCK)`` statement bound by parameter name.

    HOLDLOCK takes a range lock on the matched key so two sessions cannot both
    reach the NOT MATCHED branch.
    """
    table_name: str = model.__tablename__  # type: ignore[attr-defined]
    source_cols = ", ".join(f":{k} AS {k}" for k in conflict_keys)
    match = " AND ".join(f"target.{k} = source.{k}" for k in conflict_keys)
    if conflict_where:
        match += f" AND target.{conflict_where}"
    columns = list(values)

    lines = [
        f"MERGE INTO {table_name} WITH (HOLDLOCK) AS target",
        f"USING (SELECT {source_cols}) AS source",
        f"ON {match}",
        "WHEN NOT MATCHED THEN",
        f"    INSERT ({', '.join(columns)})",
        f"    VALUES ({', '.join(f':{c}' for c in columns)})",
    ]
    if update_cols:
        lines.append("WHEN MATCHED THEN")
        lines.append("    UPDATE SET " + ", ".join(f"target.{c} = :{c}" for c in update_cols))
    return "\n".join(lines) + ";"


def _update_columns(
    values: dict[str, Any], conflict_keys: list[str], update_keys: list[str] | None
) -> list[str]:
    if update_keys is not None:
        return [k for k in values if k in update_keys]
    return [k for k in values if k not in conflict_keys]


async def _insert_if_absent_mssql(
    session: AsyncSession,
    model: type,
    values: dict[str, Any],
    conflict_keys: list[str],
    conflict_where: str | None,
) -> bool:
    sql = _merge_sql(model, values, conflict_keys, conflict_where=conflict_where)
    result = await session.execute(text(sql), values)
    return (result.rowcount or 0) > 0  # type: ignore[attr-defined]


async def upsert(
    session: AsyncSession,
    dialect: str,
    model: type,
    values: dict[str, Any],
    conflict_keys: list[str],
    update_keys: list[str] | None = None,
) -> int:
    """Insert *values* or overwrite the row sharing its *conflict_keys*.

    Columns in *update_keys* (default: every column not in *conflict_keys*)
    are overwritten on conflict. Returns the driver rowcount.
    """
    if dialect == "mssql":
        return await _upsert_mssql(session, model, values, conflict_keys, update_keys)

    changed = _update_columns(values, conflict_keys, update_keys)
    stmt = _dialect_module(dialect).insert(model).values(**values)
    if changed:
        stmt = stmt.on_conflict_do_update(
            index_elements=conflict_keys, set_={c: values[c] for c in changed}
        )
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=conflict_keys)

    result = await session.execute(stmt)
    return result.rowcount  # type: ignore[attr-defined]


async def _upsert_mssql(
    session: AsyncSession,
    model: type,
    values: dict[str, Any],
    conflict_keys: list[str],
    update_keys: list[str] | None,
) -> int:
    changed = _update_columns(values, conflict_keys, update_keys)
    sql = _merge_sql(model, values, conflict_keys, update_cols=changed)
    result = await session.execute(text(sql), values)
    return result.rowcount  # type: ignore[attr-defined]
