"""Database connection helpers.

This module provides a small, synchronous API for obtaining SQLite
connections configured for the local, single-user time-tracking store.
Connections run in autocommit mode (`isolation_level=None`) so that
transaction boundaries are always explicit `BEGIN`/`COMMIT`/`ROLLBACK`
statements issued by the storage engine.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from .errors import DatabaseConnectionError

logger = logging.getLogger(__name__)


def _ensure_parent_dir(db_path: Path) -> None:
    """Ensure the parent directory for a database file exists.

    Args:
        db_path: Path to database file whose parent directory should exist.

    Side Effects:
        - Creates parent directory if it doesn't exist (with parents=True).
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _decode_text(raw: bytes) -> str | None:
    """Decode a TEXT cell, degrading undecodable values to NULL."""
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        logger.debug("Undecodable TEXT value (%d bytes) read as NULL", len(raw))
        return None


def _configure_connection(conn: sqlite3.Connection) -> None:
    """Apply standard pragmas, row factory and text decoding to a new connection.

    Configures the connection for use with the project by:
    - Setting row_factory to sqlite3.Row for dict-like access
    - Decoding TEXT leniently (bad bytes become None instead of raising)
    - Enabling foreign key constraints (cascading deletes rely on it)

    Args:
        conn: SQLite connection to configure.

    Side Effects:
        - Modifies connection settings (row_factory, text_factory, pragmas).
    """
    conn.row_factory = sqlite3.Row
    conn.text_factory = _decode_text
    conn.execute("PRAGMA foreign_keys = ON")
    # Using default DELETE journal mode (no WAL) since this is single-user.
    # Exported and backed-up files are then self-contained.


def get_connection(db_path: Path | str) -> sqlite3.Connection:
    """Return a configured read-write SQLite connection.

    Ensures the parent directory exists before creating the database file.

    Args:
        db_path: Path to SQLite database file.

    Returns:
        Configured SQLite connection in autocommit mode.

    Raises:
        DatabaseConnectionError: If the file cannot be opened or created.

    Logs:
        - DEBUG: "Opening SQLite database at {path}" when creating connection.
    """
    resolved = Path(db_path)
    try:
        _ensure_parent_dir(resolved)
        logger.debug("Opening SQLite database at %s", resolved)
        conn = sqlite3.connect(str(resolved), isolation_level=None)
    except (OSError, sqlite3.Error) as exc:
        raise DatabaseConnectionError(f"Cannot open database at {resolved}: {exc}") from exc

    try:
        _configure_connection(conn)
    except sqlite3.Error as exc:
        conn.close()
        raise DatabaseConnectionError(f"Cannot open database at {resolved}: {exc}") from exc
    return conn


def get_readonly_connection(db_path: Path | str) -> sqlite3.Connection:
    """Return a configured read-only connection to an existing database file.

    Used for import and migration sources, which must never be modified.

    Args:
        db_path: Path to an existing SQLite database file.

    Returns:
        Configured read-only SQLite connection.

    Raises:
        DatabaseConnectionError: If the file does not exist or cannot be opened.
    """
    resolved = Path(db_path)
    if not resolved.is_file():
        raise DatabaseConnectionError(f"Database file not found: {resolved}")

    uri = f"{resolved.resolve().as_uri()}?mode=ro"
    logger.debug("Opening SQLite database read-only at %s", resolved)
    try:
        conn = sqlite3.connect(uri, uri=True, isolation_level=None)
    except sqlite3.Error as exc:
        raise DatabaseConnectionError(f"Cannot open database at {resolved}: {exc}") from exc

    try:
        _configure_connection(conn)
        # Fails early on files that are not SQLite databases
        conn.execute("SELECT name FROM sqlite_master LIMIT 1").fetchall()
    except sqlite3.Error as exc:
        conn.close()
        raise DatabaseConnectionError(f"Cannot open database at {resolved}: {exc}") from exc
    return conn


def execute_script(conn: sqlite3.Connection, sql: str, *, description: str) -> None:
    """Execute a multi-statement SQL script with logging.

    Executes SQL that may contain multiple statements separated by semicolons.
    Primarily intended for schema initialization.

    Args:
        conn: Database connection to execute script on.
        sql: Multi-statement SQL script to execute.
        description: Human-readable description for logging purposes.

    Raises:
        sqlite3.Error: If script execution fails.

    Logs:
        - INFO: "Executing SQL script: {description}" before execution.
        - ERROR: "Failed while executing SQL script: {description}" with
            exception details on failure.
    """
    logger.info("Executing SQL script: %s", description)
    try:
        conn.executescript(sql)
    except sqlite3.Error:
        logger.exception("Failed while executing SQL script: %s", description)
        raise
