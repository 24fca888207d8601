"""Schema bootstrap using the packaged `sql/schema.sql` file.

This module is responsible for creating a fresh database (or ensuring an
existing one is compatible) by executing `sql/schema.sql`, adding columns
that older relational releases did not have, inserting the reserved
default rows, and maintaining the `_metadata` key/value table that holds
`schema_version`.

Integrity repair and the final version bump are driven by the storage
engine (see `valot.database.engine`), because they go through its
query/execute primitives.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from .. import __version__
from .. import global_config as g
from .connection import execute_script
from .errors import LegacySchemaError

logger = logging.getLogger(__name__)

# First relational layout (Task/TaskInstance/TimeEntry split). Anything
# below it is the legacy one-row-per-session layout.
RELATIONAL_SCHEMA_VERSION = 2
# Relational layout plus indices and repaired historical data.
CURRENT_SCHEMA_VERSION = 4

DEFAULT_CLIENT_ID = 1
DEFAULT_CLIENT_NAME = "Default Client"
DEFAULT_PROJECT_ID = 1
DEFAULT_PROJECT_NAME = "Default"
DEFAULT_PROJECT_COLOR = "#3584e4"

METADATA_TABLE = "_metadata"
SCHEMA_VERSION_KEY = "schema_version"
APP_VERSION_KEY = "app_version"

# Columns introduced after the first relational release. ADD COLUMN cannot
# use non-constant defaults, so last_used_at starts out NULL on old files.
_COLUMN_ADDITIONS: tuple[tuple[str, str, str], ...] = (
    ("Project", "total_time", "INTEGER DEFAULT 0"),
    ("Project", "dark_icons", "INTEGER DEFAULT 0"),
    ("Project", "icon_color", "TEXT DEFAULT '#cccccc'"),
    ("Project", "icon_color_mode", "TEXT DEFAULT 'auto'"),
    ("TaskInstance", "last_used_at", "DATETIME"),
    ("TaskInstance", "is_favorite", "INTEGER DEFAULT 0"),
)


def _schema_path() -> Path:
    """Return path to schema.sql file.

    Returns:
        Path to schema.sql in the packaged SQL directory.
    """
    return g.SQL_DIR / "schema.sql"


def _table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
        (table,),
    ).fetchone()
    return row is not None


def _ensure_not_legacy(conn: sqlite3.Connection, db_path: Path | None) -> None:
    """Refuse to bootstrap over a pre-relational database.

    A legacy file has a Task table holding sessions and no TaskInstance.
    It may carry no `_metadata` at all, or one whose schema_version is
    below the relational version. Creating the relational tables next to it
    would stamp the file as current and hide the data from every query.

    Raises:
        LegacySchemaError: If the database uses the legacy layout.
    """
    if _table_exists(conn, METADATA_TABLE):
        if read_schema_version(conn) >= RELATIONAL_SCHEMA_VERSION:
            return
    if _table_exists(conn, "Task") and not _table_exists(conn, "TaskInstance"):
        raise LegacySchemaError(
            f"Database at {db_path or '<unknown>'} uses the legacy (pre-relational) "
            "schema; run the migration before opening it."
        )


def add_column_if_missing(conn: sqlite3.Connection, table: str, column: str, decl: str) -> bool:
    """Add a column, ignoring the failure if it already exists.

    Args:
        conn: Database connection.
        table: Table to alter.
        column: Column name to add.
        decl: Column type and default clause.

    Returns:
        True if the column was added, False if it was already present.

    Raises:
        sqlite3.Error: For any failure other than a duplicate column.
    """
    try:
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {decl}")
    except sqlite3.OperationalError as exc:
        if "duplicate column" in str(exc).lower():
            return False
        raise
    logger.info("Added column %s.%s", table, column)
    return True


def read_schema_version(conn: sqlite3.Connection) -> int:
    """Return the stored schema version, or 0 when missing or unreadable."""
    try:
        row = conn.execute(
            f"SELECT value FROM {METADATA_TABLE} WHERE key = ?",
            (SCHEMA_VERSION_KEY,),
        ).fetchone()
    except sqlite3.Error:
        return 0
    if row is None or row[0] is None:
        return 0
    try:
        return int(str(row[0]).strip())
    except ValueError:
        logger.warning("Unparsable schema_version %r treated as 0", row[0])
        return 0


def _insert_reserved_rows(conn: sqlite3.Connection) -> None:
    conn.execute(
        "INSERT OR IGNORE INTO Client (id, name, rate, currency) VALUES (?, ?, 0.0, 'USD')",
        (DEFAULT_CLIENT_ID, DEFAULT_CLIENT_NAME),
    )
    conn.execute(
        "INSERT OR IGNORE INTO Project (id, name, color, icon) VALUES (?, ?, ?, 'folder-symbolic')",
        (DEFAULT_PROJECT_ID, DEFAULT_PROJECT_NAME, DEFAULT_PROJECT_COLOR),
    )


def bootstrap_schema(conn: sqlite3.Connection, *, db_path: Path | None = None) -> int:
    """Create tables, reserved rows and initial metadata.

    Safe to run on a new database or re-run on an existing one. On a
    database without a version the relational version is recorded, so
    the storage engine knows the integrity repair still has to run.

    Args:
        conn: Database connection in autocommit mode.
        db_path: Path of the database, for error messages.

    Returns:
        Schema version found (or recorded) after bootstrap.

    Raises:
        LegacySchemaError: If the database uses the legacy layout.
        FileNotFoundError: If schema.sql is missing from the package.
        sqlite3.Error: If SQL execution fails.

    Logs:
        - INFO: "Schema bootstrap complete (schema_version={version})".
    """
    schema_file = _schema_path()
    if not schema_file.exists():
        msg = f"Schema file not found: {schema_file}"
        raise FileNotFoundError(msg)

    _ensure_not_legacy(conn, db_path)

    execute_script(conn, schema_file.read_text(encoding="utf-8"), description="schema.sql")
    for table, column, decl in _COLUMN_ADDITIONS:
        add_column_if_missing(conn, table, column, decl)
    _insert_reserved_rows(conn)

    version = read_schema_version(conn)
    if version == 0:
        conn.execute(
            f"INSERT OR IGNORE INTO {METADATA_TABLE} (key, value) VALUES (?, ?)",
            (SCHEMA_VERSION_KEY, str(RELATIONAL_SCHEMA_VERSION)),
        )
        conn.execute(
            f"INSERT OR IGNORE INTO {METADATA_TABLE} (key, value) VALUES (?, ?)",
            (APP_VERSION_KEY, __version__),
        )
        version = RELATIONAL_SCHEMA_VERSION

    logger.info("Schema bootstrap complete (schema_version=%s)", version)
    return version
