from __future__ import annotations

from typing import Iterable

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncConnection

from db.models import Base, mapped_public_table_names


def _existing_tables_sync(sync_connection) -> set[str]:
    return set(inspect(sync_connection).get_table_names())


def _existing_columns_sync(sync_connection, table_names: Iterable[str]) -> dict[str, set[str]]:
    inspector = inspect(sync_connection)
    return {
        table_name: {column["name"] for column in inspector.get_columns(table_name)}
        for table_name in table_names
    }


async def fetch_existing_tables(connection: AsyncConnection) -> set[str]:
    return await connection.run_sync(_existing_tables_sync)


async def ensure_required_schema(connection: AsyncConnection) -> list[str]:
    """Creates missing tables and indexes; returns the names of tables that were created."""
    before = await fetch_existing_tables(connection)
    await connection.run_sync(Base.metadata.create_all, checkfirst=True)
    after = await fetch_existing_tables(connection)
    return sorted(set(mapped_public_table_names()) & (after - before))


async def validate_required_tables(
    connection: AsyncConnection,
    required_tables: Iterable[str] | None = None,
) -> None:
    required = list(required_tables) if required_tables is not None else list(mapped_public_table_names())
    existing = await fetch_existing_tables(connection)
    missing_tables = sorted(table for table in required if table not in existing)
    if missing_tables:
        raise RuntimeError(f"Missing required DB tables: {', '.join(missing_tables)}")

    model_columns = {
        table.name: {column.name for column in table.columns}
        for table in Base.metadata.sorted_tables
        if table.name in required
    }
    existing_columns = await connection.run_sync(_existing_columns_sync, list(model_columns))
    problems: list[str] = []
    for table_name, expected in sorted(model_columns.items()):
        missing_columns = sorted(expected - existing_columns.get(table_name, set()))
        if missing_columns:
            problems.append(f"{table_name}({', '.join(missing_columns)})")
    if problems:
        raise RuntimeError(f"Missing required DB columns: {'; '.join(problems)}")
