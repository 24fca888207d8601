"""Local SQLite storage engine.

`SQLiteStorageEngine` owns one connection to one database file and is the
only object the rest of the application uses to read or write it. It
implements the `valot.providers.base.StorageBackend` capability set, so it
can be registered with the `ProviderRegistry`.

Typical use:

    engine = SQLiteStorageEngine(path, name="local")
    engine.initialize()
    with engine.transaction():
        engine.execute("INSERT INTO Task (name) VALUES (?)", ("Write report",))
    rows = engine.query("SELECT * FROM Task")
"""

from __future__ import annotations

import contextlib
import logging
import sqlite3
from pathlib import Path
from typing import Any, Iterator

from . import queries, schema
from .connection import get_connection, get_readonly_connection
from .errors import (
    DatabaseConnectionError,
    DatabaseError,
    LegacySchemaError,
    TransactionError,
)
from .queries import Params
from .repair import repair_integrity

logger = logging.getLogger(__name__)

LOCAL_PROVIDER_TYPE = "local"


class SQLiteStorageEngine:
    """Storage backend over a single local SQLite file."""

    def __init__(self, db_path: Path | str | None = None, name: str = LOCAL_PROVIDER_TYPE) -> None:
        self._db_path: Path | None = Path(db_path) if db_path is not None else None
        self._name = name
        self._conn: sqlite3.Connection | None = None
        self._readonly = False

    def __repr__(self) -> str:
        state = "connected" if self.is_connected else "closed"
        return f"<SQLiteStorageEngine name={self._name!r} path={str(self._db_path)!r} {state}>"

    # ------------------------------------------------------------------
    # Identity

    @property
    def provider_type(self) -> str:
        return LOCAL_PROVIDER_TYPE

    @property
    def provider_name(self) -> str:
        return self._name

    @property
    def database_path(self) -> Path | None:
        return self._db_path

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    @property
    def in_transaction(self) -> bool:
        return self._conn is not None and self._conn.in_transaction

    @property
    def readonly(self) -> bool:
        return self._readonly

    # ------------------------------------------------------------------
    # Lifecycle

    def initialize(self, db_path: Path | str | None = None) -> None:
        """Open the database and bring its schema up to date.

        Creates the file (and parent directory) when missing, runs schema
        bootstrap, and on databases below the current schema version runs
        the integrity repair and records the new version in one transaction.
        Re-initializing an open engine closes the old connection first.

        Args:
            db_path: Database path. Falls back to the path given at
                construction.

        Raises:
            DatabaseConnectionError: If no path is known or the file cannot
                be opened or bootstrapped.
            LegacySchemaError: If the file uses the pre-relational layout.

        Logs:
            - INFO: "Initialized database {path} (schema_version={version})".
        """
        if db_path is not None:
            self._db_path = Path(db_path)
        if self._db_path is None:
            raise DatabaseConnectionError("No database path configured")

        self.close()

        if self._readonly:
            self._conn = get_readonly_connection(self._db_path)
            return

        conn = get_connection(self._db_path)
        try:
            schema.bootstrap_schema(conn, db_path=self._db_path)
        except LegacySchemaError:
            conn.close()
            raise
        except (sqlite3.Error, OSError) as exc:
            conn.close()
            raise DatabaseConnectionError(
                f"Cannot initialize database at {self._db_path}: {exc}"
            ) from exc
        self._conn = conn

        try:
            version = self.get_schema_version()
            if version < schema.CURRENT_SCHEMA_VERSION:
                logger.info(
                    "Upgrading %s from schema_version=%s to %s",
                    self._db_path,
                    version,
                    schema.CURRENT_SCHEMA_VERSION,
                )
                with self.transaction():
                    repair_integrity(self)
                    self.set_schema_version(schema.CURRENT_SCHEMA_VERSION)
        except DatabaseError as exc:
            self.close()
            raise DatabaseConnectionError(
                f"Cannot initialize database at {self._db_path}: {exc}"
            ) from exc

        logger.info(
            "Initialized database %s (schema_version=%s)",
            self._db_path,
            self.get_schema_version(),
        )

    @classmethod
    def open_readonly(cls, db_path: Path | str, name: str | None = None) -> SQLiteStorageEngine:
        """Open an existing database file read-only, without bootstrap.

        Used for migration and import sources.

        Raises:
            DatabaseConnectionError: If the file is missing or unreadable.
        """
        path = Path(db_path)
        engine = cls(path, name=name or f"readonly:{path}")
        engine._readonly = True
        engine._conn = get_readonly_connection(path)
        return engine

    def close(self) -> None:
        """Close the connection. Safe to call repeatedly."""
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        try:
            if conn.in_transaction:
                logger.warning("Closing %s with an open transaction; rolling back", self._db_path)
                conn.rollback()
            conn.close()
        except sqlite3.Error:
            logger.exception("Error while closing database %s", self._db_path)
        logger.debug("Connection closed (%s)", self._db_path)

    def _require_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise DatabaseConnectionError("not connected")
        return self._conn

    # ------------------------------------------------------------------
    # Statements

    def query(self, sql: str, params: Params | None = None) -> list[dict[str, Any]]:
        """Run a read statement and return its rows as dicts.

        Raises:
            DatabaseConnectionError: If the engine is not connected.
            QueryError: If the statement fails.
        """
        return queries.fetch_all(self._require_connection(), sql, params)

    def execute(self, sql: str, params: Params | None = None) -> int:
        """Run a write statement.

        Returns:
            The new rowid for INSERT statements, otherwise the affected rows.

        Raises:
            DatabaseConnectionError: If the engine is not connected.
            ExecuteError: If the statement fails (IntegrityError on constraints).
        """
        return queries.execute_update(self._require_connection(), sql, params)

    # ------------------------------------------------------------------
    # Transactions

    def begin_transaction(self) -> None:
        """Open an explicit write transaction (`BEGIN IMMEDIATE`).

        Raises:
            TransactionError: If a transaction is already open.
        """
        conn = self._require_connection()
        if conn.in_transaction:
            raise TransactionError("A transaction is already in progress")
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as exc:
            raise TransactionError(f"Cannot begin transaction: {exc}") from exc
        logger.debug("Beginning transaction")

    def commit(self) -> None:
        """Commit the open transaction.

        Raises:
            TransactionError: If no transaction is open or the commit fails.
        """
        conn = self._require_connection()
        if not conn.in_transaction:
            raise TransactionError("No transaction in progress")
        try:
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            raise TransactionError(f"Commit failed: {exc}") from exc
        logger.debug("Transaction committed")

    def rollback(self) -> None:
        """Roll back the open transaction.

        Raises:
            TransactionError: If no transaction is open or the rollback fails.
        """
        conn = self._require_connection()
        if not conn.in_transaction:
            raise TransactionError("No transaction in progress")
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as exc:
            raise TransactionError(f"Rollback failed: {exc}") from exc
        logger.debug("Transaction rolled back")

    @contextlib.contextmanager
    def transaction(self) -> Iterator[SQLiteStorageEngine]:
        """Context manager for a transactional block.

        Commits on success; rolls back and re-raises on error.

        Logs:
            - ERROR: "Transaction rolled back due to error" on failure.
        """
        self.begin_transaction()
        try:
            yield self
        except Exception:
            logger.exception("Transaction rolled back due to error")
            if self.in_transaction:
                self.rollback()
            raise
        except BaseException:
            if self.in_transaction:
                self.rollback()
            raise
        self.commit()

    # ------------------------------------------------------------------
    # Metadata

    def get_schema_version(self) -> int:
        """Return `schema_version`, or 0 when missing or unparsable."""
        return schema.read_schema_version(self._require_connection())

    def set_schema_version(self, version: int) -> None:
        self.set_metadata(schema.SCHEMA_VERSION_KEY, str(int(version)))
        logger.info("Schema version set to %s for %s", version, self._db_path)

    def get_metadata(self, key: str) -> str | None:
        if not self._metadata_table_exists():
            return None
        row = queries.fetch_one(
            self._require_connection(),
            f"SELECT value FROM {schema.METADATA_TABLE} WHERE key = ?",
            (key,),
        )
        return None if row is None else row["value"]

    def set_metadata(self, key: str, value: str) -> None:
        queries.execute_update(
            self._require_connection(),
            f"""
            INSERT INTO {schema.METADATA_TABLE} (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (key, value),
        )

    def _metadata_table_exists(self) -> bool:
        rows = self.query(
            "SELECT 1 AS present FROM sqlite_master WHERE type = 'table' AND name = ?",
            (schema.METADATA_TABLE,),
        )
        return bool(rows)

    # ------------------------------------------------------------------
    # Files

    def export_to(self, destination: Path | str) -> Path:
        """Write a consistent snapshot of the database to another file.

        Uses the SQLite online backup API, so the copy is complete even
        while this engine stays open.

        Args:
            destination: Target file path. Overwritten if it exists.

        Returns:
            The destination path.

        Raises:
            DatabaseConnectionError: If not connected, or the target cannot
                be written.
            DatabaseError: If the destination is this engine's own file.

        Logs:
            - INFO: "Exported {source} -> {destination}".
        """
        conn = self._require_connection()
        dest = Path(destination)
        if self._db_path is not None and dest.resolve() == self._db_path.resolve():
            raise DatabaseError(f"Refusing to export {dest} onto itself")

        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            target = sqlite3.connect(str(dest))
        except (OSError, sqlite3.Error) as exc:
            raise DatabaseConnectionError(f"Cannot open export target {dest}: {exc}") from exc
        try:
            conn.backup(target)
        except sqlite3.Error as exc:
            raise DatabaseConnectionError(f"Export to {dest} failed: {exc}") from exc
        finally:
            target.close()

        logger.info("Exported %s -> %s", self._db_path, dest)
        return dest
