"""One-time integrity repair for historical time entries.

Older releases could leave several open entries on one task instance,
entries that end before they start, and closed entries without a usable
duration. `repair_integrity` fixes all three in a fixed order and then
brings `TaskInstance.total_time` back in line with the entries.

The passes only rewrite rows that are actually wrong, so running the
repair twice reports zero changes the second time.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from ..utils.time import try_parse_timestamp

if TYPE_CHECKING:
    from ..providers.base import StorageBackend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RepairReport:
    """Rows changed by each repair pass."""

    duplicate_active_closed: int = 0
    invalid_intervals_fixed: int = 0
    durations_normalized: int = 0
    totals_resynced: int = 0

    @property
    def total_changes(self) -> int:
        return (
            self.duplicate_active_closed
            + self.invalid_intervals_fixed
            + self.durations_normalized
            + self.totals_resynced
        )

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def _start_sort_key(row: dict[str, Any]) -> tuple[int, Any, int]:
    # Unparseable starts sort before every real timestamp; id breaks ties
    started = try_parse_timestamp(row["start_time"])
    if started is None:
        return (0, "", row["id"])
    return (1, started, row["id"])


def close_duplicate_active_entries(db: StorageBackend) -> int:
    """Keep only the latest-started open entry per task instance.

    The other open entries are closed as zero-length entries at their own
    start time.

    Returns:
        Number of entries closed.
    """
    rows = db.query(
        "SELECT id, task_instance_id, start_time FROM TimeEntry "
        "WHERE end_time IS NULL ORDER BY task_instance_id, id"
    )
    by_instance: dict[int, list[dict[str, Any]]] = {}
    for row in rows:
        by_instance.setdefault(row["task_instance_id"], []).append(row)

    closed = 0
    for instance_id, open_rows in by_instance.items():
        if len(open_rows) < 2:
            continue
        open_rows.sort(key=_start_sort_key)
        keep = open_rows[-1]
        for row in open_rows[:-1]:
            closed += db.execute(
                "UPDATE TimeEntry SET end_time = start_time, duration = 0 WHERE id = ?",
                (row["id"],),
            )
        logger.warning(
            "Closed %d duplicate active entries on task instance %s (kept entry %s)",
            len(open_rows) - 1,
            instance_id,
            keep["id"],
        )
    return closed


def fix_invalid_intervals(db: StorageBackend) -> int:
    """Collapse closed entries whose end is not after their start.

    Entries that are already zero-length with a zero duration are left
    untouched.

    Returns:
        Number of entries rewritten.
    """
    rows = db.query(
        "SELECT id, start_time, end_time, duration FROM TimeEntry WHERE end_time IS NOT NULL"
    )
    fixed = 0
    for row in rows:
        start = try_parse_timestamp(row["start_time"])
        end = try_parse_timestamp(row["end_time"])
        if start is None or end is None or end > start:
            continue
        if row["end_time"] == row["start_time"] and row["duration"] == 0:
            continue
        fixed += db.execute(
            "UPDATE TimeEntry SET end_time = start_time, duration = 0 WHERE id = ?",
            (row["id"],),
        )
    if fixed:
        logger.warning("Collapsed %d time entries ending before they start", fixed)
    return fixed


def normalize_durations(db: StorageBackend) -> int:
    """Fill in NULL or negative durations on closed entries.

    The duration becomes `max(0, end - start)` in seconds, or 0 when the
    bounds cannot be parsed.

    Returns:
        Number of entries updated.
    """
    rows = db.query(
        "SELECT id, start_time, end_time FROM TimeEntry "
        "WHERE end_time IS NOT NULL AND (duration IS NULL OR duration < 0)"
    )
    updated = 0
    for row in rows:
        start = try_parse_timestamp(row["start_time"])
        end = try_parse_timestamp(row["end_time"])
        seconds = 0
        if start is not None and end is not None:
            seconds = max(0, int((end - start).total_seconds()))
        updated += db.execute(
            "UPDATE TimeEntry SET duration = ? WHERE id = ?",
            (seconds, row["id"]),
        )
    if updated:
        logger.warning("Normalized duration on %d closed time entries", updated)
    return updated


def resync_instance_totals(db: StorageBackend) -> int:
    """Rewrite `total_time` on instances whose value differs from their entries.

    Returns:
        Number of instances corrected.
    """
    return db.execute(
        """
        UPDATE TaskInstance
        SET total_time = (
            SELECT COALESCE(SUM(duration), 0) FROM TimeEntry
            WHERE TimeEntry.task_instance_id = TaskInstance.id
        )
        WHERE COALESCE(total_time, -1) != (
            SELECT COALESCE(SUM(duration), 0) FROM TimeEntry
            WHERE TimeEntry.task_instance_id = TaskInstance.id
        )
        """
    )


def repair_integrity(db: StorageBackend) -> RepairReport:
    """Run every repair pass in order and report what changed.

    The caller owns the transaction; bootstrap wraps this together with the
    schema version bump.

    Args:
        db: Initialized backend.

    Returns:
        RepairReport with per-pass counts.

    Raises:
        QueryError: If reading entries fails.
        ExecuteError: If rewriting an entry fails.

    Logs:
        - INFO: "Integrity repair finished: {counts}".
    """
    report = RepairReport(
        duplicate_active_closed=close_duplicate_active_entries(db),
        invalid_intervals_fixed=fix_invalid_intervals(db),
        durations_normalized=normalize_durations(db),
        totals_resynced=resync_instance_totals(db),
    )
    logger.info("Integrity repair finished: %s", report.as_dict())
    return report
