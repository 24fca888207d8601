"""Basic query execution helpers.

These wrap low-level sqlite3 operations with logging, error mapping and
the typed return shapes used by the storage engine: reads come back as
lists of plain dicts, writes as an integer (new rowid or affected rows).
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Sequence
from typing import Any

from .errors import ExecuteError, QueryError, from_sqlite_error

logger = logging.getLogger(__name__)

Params = Sequence[Any]


def is_insert(sql: str) -> bool:
    """Return True if the statement's first keyword is INSERT."""
    return sql.lstrip().upper().startswith("INSERT")


def _bindable(params: Params | None) -> tuple[Any, ...]:
    """Convert parameters to a tuple sqlite3 can bind (bools become 0/1)."""
    if not params:
        return ()
    return tuple(int(p) if isinstance(p, bool) else p for p in params)


def fetch_all(
    conn: sqlite3.Connection,
    sql: str,
    params: Params | None = None,
) -> list[dict[str, Any]]:
    """Execute query and return all rows as list of dicts.

    Args:
        conn: Database connection.
        sql: SQL query string with `?` placeholders.
        params: Positional query parameters. Defaults to empty tuple.

    Returns:
        List of dictionaries, one per row, with column names as keys.
        Empty list if no rows match.

    Raises:
        QueryError: If query execution fails.

    Logs:
        - DEBUG: "Executed query: {sql[:80]}" on success.
    """
    try:
        cursor = conn.execute(sql, _bindable(params))
        rows = cursor.fetchall()
    except sqlite3.Error as exc:
        logger.error("Query execution failed: %s", exc)
        raise from_sqlite_error(exc, sql=sql, kind=QueryError) from exc
    logger.debug("Executed query: %s", sql.strip()[:80])
    return [dict(row) for row in rows]


def fetch_one(
    conn: sqlite3.Connection,
    sql: str,
    params: Params | None = None,
) -> dict[str, Any] | None:
    """Execute query and return single row as dict, or None if no results.

    Raises:
        QueryError: If query execution fails.
    """
    rows = fetch_all(conn, sql, params)
    return rows[0] if rows else None


def execute_update(
    conn: sqlite3.Connection,
    sql: str,
    params: Params | None = None,
) -> int:
    """Execute INSERT/UPDATE/DELETE and return the new rowid or affected rows.

    For INSERT statements the generated primary key is returned, or 0 when
    nothing was inserted (`INSERT OR IGNORE` hitting a conflict); for every
    other statement the affected row count reported by SQLite.

    Args:
        conn: Database connection.
        sql: SQL statement with `?` placeholders.
        params: Positional statement parameters. Defaults to empty tuple.

    Returns:
        Last inserted rowid for INSERT, otherwise the number of rows affected.

    Raises:
        ExecuteError: If statement execution fails (IntegrityError for
            constraint violations).

    Logs:
        - DEBUG: "Update affected {rowcount} rows" on success.
    """
    try:
        cursor = conn.execute(sql, _bindable(params))
    except sqlite3.Error as exc:
        logger.error("Statement execution failed: %s", exc)
        raise from_sqlite_error(exc, sql=sql, kind=ExecuteError) from exc

    if is_insert(sql):
        # lastrowid keeps the previous insert's id when no row was written
        if cursor.rowcount == 0:
            logger.debug("Insert wrote no rows")
            return 0
        logger.debug("Inserted row id %s", cursor.lastrowid)
        return int(cursor.lastrowid or 0)

    rowcount = cursor.rowcount
    logger.debug("Update affected %s rows", rowcount)
    return rowcount
