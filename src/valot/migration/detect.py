"""Schema layout detection for migration and import sources."""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from ..database.engine import SQLiteStorageEngine
from ..database.errors import DatabaseError
from ..database.schema import METADATA_TABLE, RELATIONAL_SCHEMA_VERSION, SCHEMA_VERSION_KEY

if TYPE_CHECKING:
    from ..providers.base import StorageBackend

logger = logging.getLogger(__name__)


class SchemaKind(Enum):
    """Layout of a database file."""

    LEGACY = "legacy"
    CURRENT = "current"


def detect_schema(source: StorageBackend) -> SchemaKind:
    """Classify an open database as legacy or current.

    A database is LEGACY when `_metadata` is missing, has no
    `schema_version`, or records a version below the first relational
    release. Any database error while probing also counts as LEGACY.
    """
    try:
        tables = source.query(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
            (METADATA_TABLE,),
        )
        if not tables:
            logger.debug("No %s table; treating source as legacy", METADATA_TABLE)
            return SchemaKind.LEGACY

        rows = source.query(
            f"SELECT value FROM {METADATA_TABLE} WHERE key = ?",
            (SCHEMA_VERSION_KEY,),
        )
    except DatabaseError as exc:
        logger.warning("Schema detection failed (%s); treating source as legacy", exc)
        return SchemaKind.LEGACY

    if not rows or rows[0]["value"] is None:
        return SchemaKind.LEGACY
    try:
        version = int(str(rows[0]["value"]).strip())
    except ValueError:
        return SchemaKind.LEGACY

    kind = SchemaKind.CURRENT if version >= RELATIONAL_SCHEMA_VERSION else SchemaKind.LEGACY
    logger.debug("Detected %s schema (schema_version=%s)", kind.value, version)
    return kind


def detect_schema_at(db_path: Path | str) -> SchemaKind:
    """Open a file read-only and classify it.

    Raises:
        DatabaseConnectionError: If the file is missing or not a database.
    """
    source = SQLiteStorageEngine.open_readonly(db_path)
    try:
        return detect_schema(source)
    finally:
        source.close()
