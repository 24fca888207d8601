"""Startup migration workflow: detect, back up, migrate or start fresh.

The application calls `needs_migration` on startup. When it returns True
the user chooses between `backup_and_migrate` and `start_fresh`. Both
take a backup before touching anything; a failed migration restores the
original file so the user can retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from ..database import crud
from ..database.engine import SQLiteStorageEngine
from ..database.errors import DatabaseError, MigrationError
from ..database.files import delete_database, move_database
from .backup import backup_name, create_backup
from .detect import SchemaKind, detect_schema
from .migrator import MigrationResult, ProgressCallback, migrate_file

logger = logging.getLogger(__name__)

MIGRATING_SUFFIX = ".migrating"


@dataclass(frozen=True)
class WorkflowResult:
    backup_path: Path | None
    database_path: Path
    migration: MigrationResult | None = None


def needs_migration(db_path: Path | str) -> bool:
    """Return True if the file exists and holds legacy data.

    Missing files, empty databases and current databases need nothing.
    """
    path = Path(db_path)
    if not path.is_file():
        return False
    try:
        source = SQLiteStorageEngine.open_readonly(path)
    except DatabaseError as exc:
        logger.warning("Cannot inspect %s: %s", path, exc)
        return False
    try:
        if not crud.table_exists(source, "Task"):
            return False
        return detect_schema(source) is SchemaKind.LEGACY
    finally:
        source.close()


def backup_and_migrate(
    source_path: Path | str,
    target_path: Path | str | None = None,
    backup_dir: Path | str | None = None,
    progress: ProgressCallback | None = None,
) -> WorkflowResult:
    """Back up a legacy database and migrate it into a fresh relational file.

    When `target_path` is the source itself (the default), the source is
    moved aside while the new file is built in its place.

    Args:
        source_path: Legacy database file.
        target_path: Where the migrated database goes. Defaults to source_path.
        backup_dir: Directory for the backup. Defaults to the source's directory.
        progress: Step callback passed to the migrator.

    Returns:
        WorkflowResult with backup path, database path and per-step counts.

    Raises:
        BackupError: If the backup cannot be made (nothing else is touched).
        MigrationError: If migration fails. The partial target is deleted
            and the source restored.
    """
    source = Path(source_path)
    target = Path(target_path) if target_path is not None else source
    backup = create_backup(source, Path(backup_dir) if backup_dir is not None else source.parent)

    in_place = target.resolve() == source.resolve()
    if not in_place and target.exists():
        raise MigrationError(f"Migration target {target} already exists")

    migrate_from = source
    if in_place:
        migrate_from = move_database(source, source.with_name(source.name + MIGRATING_SUFFIX))

    engine = SQLiteStorageEngine(target, name="migration")
    try:
        engine.initialize()
        result = migrate_file(migrate_from, engine, progress)
        # Migrated data is recorded at the relational version; re-run bootstrap repairs
        engine.initialize()
    except Exception as exc:
        engine.close()
        _restore(source, target, migrate_from, in_place)
        if isinstance(exc, MigrationError):
            raise
        raise MigrationError(f"Migration of {source} failed: {exc}") from exc
    engine.close()

    if in_place:
        delete_database(migrate_from)
    logger.info("Migrated %s -> %s (backup at %s)", source, target, backup)
    return WorkflowResult(backup_path=backup, database_path=target, migration=result)


def _restore(source: Path, target: Path, moved: Path, in_place: bool) -> None:
    try:
        delete_database(target)
        if in_place:
            move_database(moved, source)
    except OSError:
        logger.exception("Could not restore %s after failed migration", source)
        return
    logger.warning("Migration failed; restored %s", source)


def start_fresh(
    db_path: Path | str,
    backup_dir: Path | str,
    target_path: Path | str | None = None,
) -> WorkflowResult:
    """Move an old database into the backup directory and create an empty one.

    Args:
        db_path: Database file to discard (may be missing).
        backup_dir: Directory that receives the old file.
        target_path: New database location. Defaults to db_path.

    Returns:
        WorkflowResult with the moved file's path (None if there was nothing
        to move) and the new database path.
    """
    old = Path(db_path)
    target = Path(target_path) if target_path is not None else old
    moved: Path | None = None
    if old.exists():
        moved = move_database(old, Path(backup_dir) / backup_name(old))
        logger.info("Moved %s to %s", old, moved)

    engine = SQLiteStorageEngine(target, name="fresh")
    try:
        engine.initialize()
    finally:
        engine.close()
    logger.info("Started fresh database at %s", target)
    return WorkflowResult(backup_path=moved, database_path=target)
