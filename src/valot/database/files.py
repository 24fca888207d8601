"""Filesystem helpers for SQLite database files and their side files."""

from __future__ import annotations

import errno
import logging
import shutil
from pathlib import Path

from .errors import DatabaseError

logger = logging.getLogger(__name__)

SIDE_FILE_SUFFIXES = ("-wal", "-shm", "-journal")


class DatabaseLockedError(DatabaseError):
    """Raised when database deletion fails because the database is in use."""


def side_files(db_path: Path) -> list[Path]:
    """Return the journal side-file paths that may accompany a database file."""
    return [db_path.with_name(db_path.name + suffix) for suffix in SIDE_FILE_SUFFIXES]


def database_files(db_path: Path) -> list[Path]:
    """Return the database file followed by its side files, existing or not."""
    return [db_path, *side_files(db_path)]


def delete_database(db_path: Path | str) -> int:
    """Delete a SQLite database file and its side files.

    Missing files are ignored, so deleting an absent database succeeds.
    The caller must close every connection to the file first.

    Args:
        db_path: Path to SQLite database file.

    Returns:
        Number of files removed.

    Raises:
        DatabaseLockedError: If a file is locked or in use.
        OSError: If deletion fails for other reasons (permissions, etc.).

    Logs:
        - INFO: "Deleted database at {path} ({n} file(s) removed)".
    """
    resolved = Path(db_path)
    deleted = 0
    failed: list[tuple[Path, str]] = []

    for file_path in database_files(resolved):
        if not file_path.exists():
            continue
        try:
            file_path.unlink()
            deleted += 1
            logger.debug("Deleted %s", file_path)
        except OSError as exc:
            if exc.errno == errno.EBUSY or "locked" in str(exc).lower():
                failed.append((file_path, "locked"))
                logger.error("Failed to delete %s: database is locked", file_path)
            else:
                failed.append((file_path, str(exc)))
                logger.error("Failed to delete %s: %s", file_path, exc)

    if failed:
        if any(reason == "locked" for _, reason in failed):
            raise DatabaseLockedError(
                f"Database at {resolved} is in use; close every program using it and retry."
            )
        details = "; ".join(f"{f.name}: {reason}" for f, reason in failed)
        raise OSError(f"Failed to delete database files: {details}")

    logger.info("Deleted database at %s (%d file(s) removed)", resolved, deleted)
    return deleted


def move_database(source: Path | str, destination: Path | str) -> Path:
    """Move a database file and any side files next to `destination`.

    Raises:
        FileNotFoundError: If the source database file does not exist.
        OSError: If a move fails.
    """
    src = Path(source)
    dest = Path(destination)
    if not src.is_file():
        raise FileNotFoundError(f"Database file not found: {src}")

    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.move(str(src), str(dest))
    for src_side, dest_side in zip(side_files(src), side_files(dest)):
        if src_side.exists():
            shutil.move(str(src_side), str(dest_side))
    logger.debug("Moved database %s -> %s", src, dest)
    return dest
