"""Byte-for-byte backups taken before a database is migrated or discarded."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from ..database.errors import BackupError
from ..database.files import side_files
from ..utils.time import backup_stamp

logger = logging.getLogger(__name__)


def backup_name(source_path: Path, stamp: str | None = None) -> str:
    """Return `<stem>-backup-<YYYY-MM-DDTHH-MM-SS>.db` for a database file."""
    stem = source_path.name.split(".", 1)[0] or source_path.name
    return f"{stem}-backup-{stamp or backup_stamp()}.db"


def create_backup(source_path: Path | str, backup_dir: Path | str) -> Path:
    """Copy a database file, and any -wal/-shm side files, into `backup_dir`.

    Args:
        source_path: Database file to back up.
        backup_dir: Directory for the copy (created if missing).

    Returns:
        Path of the backup file.

    Raises:
        BackupError: If the source is missing or any copy fails.

    Logs:
        - INFO: "Created backup {path}".
    """
    source = Path(source_path)
    target_dir = Path(backup_dir)
    if not source.is_file():
        raise BackupError(f"Cannot back up {source}: file not found")

    name = backup_name(source)
    target = target_dir / name
    counter = 1
    while target.exists():
        target = target_dir / f"{name[:-3]}-{counter}.db"
        counter += 1
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, target)
        for src_side, dest_side in zip(side_files(source), side_files(target)):
            if src_side.exists():
                shutil.copy2(src_side, dest_side)
    except OSError as exc:
        logger.error("Failed to create backup of %s", source, exc_info=exc)
        raise BackupError(f"Cannot back up {source} to {target_dir}: {exc}") from exc

    logger.info("Created backup %s", target)
    return target
