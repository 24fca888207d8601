"""Public interface for the database package.

This module exposes the main primitives needed by the rest of the
project: the SQLite storage engine, schema constants, integrity
repair/checks, and the exception hierarchy.
"""

from .engine import LOCAL_PROVIDER_TYPE, SQLiteStorageEngine
from .errors import (
    BackupError,
    DataImportError,
    DatabaseConnectionError,
    DatabaseError,
    ExecuteError,
    IntegrityError,
    LegacySchemaError,
    MigrationError,
    NoActiveProviderError,
    ProviderError,
    ProviderSwitchError,
    ProviderValidationError,
    QueryError,
    StatementError,
    TransactionError,
)
from .files import DatabaseLockedError, delete_database
from .integrity import IntegrityReport, check_integrity
from .repair import RepairReport, repair_integrity
from .schema import (
    CURRENT_SCHEMA_VERSION,
    DEFAULT_CLIENT_ID,
    DEFAULT_CLIENT_NAME,
    DEFAULT_PROJECT_ID,
    DEFAULT_PROJECT_NAME,
    RELATIONAL_SCHEMA_VERSION,
)

__all__ = [
    "SQLiteStorageEngine",
    "LOCAL_PROVIDER_TYPE",
    "CURRENT_SCHEMA_VERSION",
    "RELATIONAL_SCHEMA_VERSION",
    "DEFAULT_CLIENT_ID",
    "DEFAULT_CLIENT_NAME",
    "DEFAULT_PROJECT_ID",
    "DEFAULT_PROJECT_NAME",
    "repair_integrity",
    "RepairReport",
    "check_integrity",
    "IntegrityReport",
    "delete_database",
    "DatabaseLockedError",
    "DatabaseError",
    "DatabaseConnectionError",
    "LegacySchemaError",
    "TransactionError",
    "StatementError",
    "QueryError",
    "ExecuteError",
    "IntegrityError",
    "ProviderError",
    "ProviderValidationError",
    "NoActiveProviderError",
    "ProviderSwitchError",
    "MigrationError",
    "BackupError",
    "DataImportError",
]
