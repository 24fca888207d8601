"""Generic row helpers built on top of a storage backend's query/execute.

These functions operate on table names and dict-like row data and are
intended to stay low-level and generic. They do *not* open or close
anything; callers hand in an initialized backend (anything with
`query`/`execute`, see `valot.providers.base.StorageBackend`) and manage
transaction boundaries themselves.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Mapping

if TYPE_CHECKING:
    from ..providers.base import StorageBackend

logger = logging.getLogger(__name__)


def _validate_identifier(name: str) -> None:
    """Validate SQL identifier to prevent injection.

    Checks that identifier contains only alphanumeric characters and
    underscores. This is a basic safeguard, not comprehensive protection.

    Args:
        name: SQL identifier (table or column name) to validate.

    Raises:
        ValueError: If identifier contains unsafe characters.
    """
    if not name or not name.replace("_", "").isalnum():
        msg = f"Unsafe SQL identifier: {name!r}"
        raise ValueError(msg)


def insert_row(db: StorageBackend, table: str, data: Mapping[str, Any]) -> int:
    """Insert a single record and return its generated id.

    Unlike timestamped application writes, the payload is stored as given:
    imports and migrations carry `created_at`/`updated_at` over from the
    source, and columns left out fall back to their schema defaults.

    Args:
        db: Initialized backend (caller manages transaction).
        table: Table name to insert into.
        data: Column name to value mapping for the new record.

    Returns:
        The new row's id.

    Raises:
        ValueError: If a table or column name is invalid.
        ExecuteError: If the insert fails (IntegrityError on constraints).

    Logs:
        - DEBUG: "Inserted record into {table}" on success.
    """
    _validate_identifier(table)
    payload = dict(data)
    for column in payload:
        _validate_identifier(column)

    columns = ", ".join(payload.keys())
    placeholders = ", ".join("?" for _ in payload)
    sql = f"INSERT INTO {table} ({columns}) VALUES ({placeholders})"  # noqa: S608
    row_id = db.execute(sql, tuple(payload.values()))
    logger.debug("Inserted record into %s (id=%s)", table, row_id)
    return row_id


def find_id_by_name(db: StorageBackend, table: str, name: str) -> int | None:
    """Return the id of the row with the given unique name, or None."""
    _validate_identifier(table)
    rows = db.query(f"SELECT id FROM {table} WHERE name = ? LIMIT 1", (name,))  # noqa: S608
    return int(rows[0]["id"]) if rows else None


def id_exists(db: StorageBackend, table: str, row_id: int) -> bool:
    """Return True if a row with this primary key exists."""
    _validate_identifier(table)
    rows = db.query(f"SELECT 1 AS present FROM {table} WHERE id = ?", (row_id,))  # noqa: S608
    return bool(rows)


def count_rows(db: StorageBackend, table: str) -> int:
    """Return the number of rows in table."""
    _validate_identifier(table)
    rows = db.query(f"SELECT COUNT(*) AS n FROM {table}")  # noqa: S608
    return int(rows[0]["n"]) if rows else 0


def table_exists(db: StorageBackend, table: str) -> bool:
    """Return True if a table with this name exists."""
    rows = db.query(
        "SELECT 1 AS present FROM sqlite_master WHERE type = 'table' AND name = ?",
        (table,),
    )
    return bool(rows)


def select_all(
    db: StorageBackend,
    table: str,
    *,
    order_by: str | None = "id",
) -> list[dict[str, Any]]:
    """Select every row of table, optionally ordered by one column.

    Raises:
        ValueError: If table or order_by are invalid identifiers.
        QueryError: If the query fails.
    """
    _validate_identifier(table)
    sql = f"SELECT * FROM {table}"  # noqa: S608
    if order_by:
        _validate_identifier(order_by)
        sql += f" ORDER BY {order_by}"
    return db.query(sql)


def delete_where_not_id(db: StorageBackend, table: str, keep_id: int) -> int:
    """Delete every row except the one with `keep_id`. Returns rows removed."""
    _validate_identifier(table)
    return db.execute(f"DELETE FROM {table} WHERE id != ?", (keep_id,))  # noqa: S608


def delete_all(db: StorageBackend, table: str) -> int:
    """Delete every row of table. Returns rows removed."""
    _validate_identifier(table)
    return db.execute(f"DELETE FROM {table}")  # noqa: S608


def recompute_instance_totals(db: StorageBackend) -> int:
    """Set every TaskInstance.total_time to the sum of its entry durations.

    Returns:
        Number of TaskInstance rows updated.
    """
    updated = db.execute(
        """
        UPDATE TaskInstance
        SET total_time = COALESCE(
            (SELECT SUM(duration) FROM TimeEntry
             WHERE TimeEntry.task_instance_id = TaskInstance.id),
            0
        )
        """
    )
    logger.debug("Recomputed total_time for %s task instances", updated)
    return updated
