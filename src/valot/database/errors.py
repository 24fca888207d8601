"""Database-specific exception types for the project.

Every error raised by the persistence layer derives from `DatabaseError`
so callers (CLI, UI) can surface one human-readable message that includes
the underlying SQLite text.
"""

from __future__ import annotations

import sqlite3


class DatabaseError(Exception):
    """Base exception for database-related errors."""


class DatabaseConnectionError(DatabaseError):
    """Raised when a database file cannot be opened or created, or is not open."""


class LegacySchemaError(DatabaseError):
    """Raised when bootstrap finds a pre-relational database that must be migrated first."""


class TransactionError(DatabaseError):
    """Raised on misuse of explicit transaction boundaries (nesting, no open transaction)."""


class StatementError(DatabaseError):
    """A SQL statement failed. Carries the statement text and engine message."""

    def __init__(self, sql: str, message: str) -> None:
        self.sql = sql
        self.message = message
        super().__init__(f"{message} (statement: {_shorten(sql)})")


class QueryError(StatementError):
    """Raised when a read statement fails."""


class ExecuteError(StatementError):
    """Raised when a mutating statement fails."""


class IntegrityError(ExecuteError):
    """Raised when a constraint violation occurs."""


class ProviderError(DatabaseError):
    """Base exception for provider registry errors."""


class ProviderValidationError(ProviderError):
    """Raised when a backend does not expose the full storage capability set."""


class NoActiveProviderError(ProviderError):
    """Raised when an operation needs an active provider and none is selected."""


class ProviderSwitchError(ProviderError):
    """Raised when switching providers fails. The previous provider stays active."""


class MigrationError(DatabaseError):
    """Raised when a schema migration step fails. The destination is rolled back."""


class BackupError(MigrationError):
    """Raised when the pre-migration backup copy cannot be made."""


class DataImportError(DatabaseError):
    """Raised when an import, merge or replace fails. The destination is rolled back."""


def _shorten(sql: str, limit: int = 120) -> str:
    flat = " ".join(sql.split())
    return flat if len(flat) <= limit else flat[: limit - 3] + "..."


def from_sqlite_error(
    error: sqlite3.Error,
    *,
    sql: str,
    kind: type[StatementError] = ExecuteError,
) -> DatabaseError:
    """Map a raw sqlite3 error to a project-level DatabaseError.

    Converts sqlite3 exceptions to project-specific exception types.
    Constraint violations on mutating statements map to IntegrityError,
    everything else to `kind` (QueryError for reads, ExecuteError for writes).

    Args:
        error: SQLite exception to convert.
        sql: Statement text that failed.
        kind: Statement error class to use for non-constraint failures.

    Returns:
        StatementError instance carrying the statement and engine message.
    """
    if isinstance(error, sqlite3.IntegrityError) and issubclass(kind, ExecuteError):
        return IntegrityError(sql, str(error))
    return kind(sql, str(error))
