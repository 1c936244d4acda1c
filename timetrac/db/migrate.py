"""Idempotent schema upkeep for databases created by older builds.

``create_all`` only creates missing tables. This module fills the gaps it
leaves behind: columns added after a table first shipped, and the indexes
the session ledger depends on. Nothing is ever dropped.
"""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine

logger = logging.getLogger("timetrac.migrate")

# (table, column, DDL type) added after the first release of each table.
LATER_COLUMNS: tuple[tuple[str, str, str], ...] = (
    ("auth_tokens", "issued_at", "TIMESTAMP"),
    ("time_entries", "location_lat", "FLOAT"),
    ("time_entries", "location_lng", "FLOAT"),
    ("time_entries", "location_addr", "TEXT"),
    ("time_entries", "photo_data", "TEXT"),
)


def _column_names(engine: Engine, table: str) -> set[str]:
    return {column["name"] for column in inspect(engine).get_columns(table)}


def _add_column(engine: Engine, table: str, col_def: str) -> None:
    with engine.begin() as conn:
        conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {col_def}"))


def _create_index_if_not_exists(
    engine: Engine,
    table: str,
    name: str,
    cols: Iterable[str],
    *,
    unique: bool = False,
    where: str | None = None,
) -> None:
    cols_sql = ", ".join(cols)
    unique_sql = "UNIQUE " if unique else ""
    where_sql = f" WHERE {where}" if where else ""
    with engine.begin() as conn:
        conn.execute(text(f"CREATE {unique_sql}INDEX IF NOT EXISTS {name} ON {table} ({cols_sql}){where_sql}"))


def _close_duplicate_open_entries(engine: Engine) -> int:
    """Close all but the newest open entry per user so the unique index can be built."""

    with engine.begin() as conn:
        result = conn.execute(
            text(
                """
                UPDATE time_entries
                SET end_at = start_at, updated_at = CURRENT_TIMESTAMP
                WHERE end_at IS NULL
                  AND EXISTS (
                    SELECT 1 FROM time_entries AS newer
                    WHERE newer.user_id = time_entries.user_id
                      AND newer.end_at IS NULL
                      AND (newer.start_at > time_entries.start_at
                           OR (newer.start_at = time_entries.start_at AND newer.id > time_entries.id))
                  )
                """
            )
        )
        return result.rowcount or 0


def run_migrations(engine: Engine) -> None:
    tables = set(inspect(engine).get_table_names())

    for table, column, ddl_type in LATER_COLUMNS:
        if table in tables and column not in _column_names(engine, table):
            _add_column(engine, table, f"{column} {ddl_type}")
            logger.info("migrate.column_added", extra={"extra_data": {"table": table, "column": column}})

    if "time_entries" in tables:
        closed = _close_duplicate_open_entries(engine)
        if closed:
            logger.warning("migrate.open_entries_closed", extra={"extra_data": {"count": closed}})
        _create_index_if_not_exists(engine, "time_entries", "ix_time_entries_user_start", ["user_id", "start_at"])
        _create_index_if_not_exists(
            engine,
            "time_entries",
            "uq_time_entries_one_open",
            ["user_id"],
            unique=True,
            where="end_at IS NULL",
        )
    if "auth_tokens" in tables:
        _create_index_if_not_exists(engine, "auth_tokens", "ix_auth_tokens_user_id", ["user_id"])


__all__ = ["run_migrations"]
