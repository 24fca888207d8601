"""Read-only checks for the time-tracking invariants.

`check_integrity` never modifies the database; it lists what
`valot.database.repair` (or a migration) would have to fix.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..utils.time import try_parse_timestamp
from .schema import DEFAULT_CLIENT_ID, DEFAULT_PROJECT_ID

if TYPE_CHECKING:
    from ..providers.base import StorageBackend

logger = logging.getLogger(__name__)


@dataclass
class IntegrityReport:
    """Violations found per invariant. Empty lists mean the check passed."""

    multiple_active: list[int] = field(default_factory=list)
    invalid_intervals: list[int] = field(default_factory=list)
    bad_durations: list[int] = field(default_factory=list)
    total_mismatches: list[int] = field(default_factory=list)
    missing_reserved: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not any(
            (
                self.multiple_active,
                self.invalid_intervals,
                self.bad_durations,
                self.total_mismatches,
                self.missing_reserved,
            )
        )

    def summary(self) -> dict[str, int]:
        return {
            "multiple_active": len(self.multiple_active),
            "invalid_intervals": len(self.invalid_intervals),
            "bad_durations": len(self.bad_durations),
            "total_mismatches": len(self.total_mismatches),
            "missing_reserved": len(self.missing_reserved),
        }


def check_integrity(db: StorageBackend) -> IntegrityReport:
    """Verify the stored data against the time-tracking invariants.

    Checks:
        - at most one open entry per task instance (ids of offending instances)
        - closed entries do not end before they start (entry ids)
        - closed durations equal `max(0, end - start)` (entry ids)
        - `TaskInstance.total_time` equals the sum of its durations (instance ids)
        - reserved Client id=1 and Project id=1 exist

    Args:
        db: Initialized backend.

    Returns:
        IntegrityReport listing every violation found.
    """
    report = IntegrityReport()

    rows = db.query(
        "SELECT task_instance_id FROM TimeEntry WHERE end_time IS NULL "
        "GROUP BY task_instance_id HAVING COUNT(*) > 1 ORDER BY task_instance_id"
    )
    report.multiple_active = [row["task_instance_id"] for row in rows]

    rows = db.query(
        "SELECT id, start_time, end_time, duration FROM TimeEntry "
        "WHERE end_time IS NOT NULL ORDER BY id"
    )
    for row in rows:
        start = try_parse_timestamp(row["start_time"])
        end = try_parse_timestamp(row["end_time"])
        if start is None or end is None:
            continue
        if end < start:
            report.invalid_intervals.append(row["id"])
        expected = max(0, int((end - start).total_seconds()))
        if row["duration"] != expected:
            report.bad_durations.append(row["id"])

    rows = db.query(
        """
        SELECT ti.id AS id
        FROM TaskInstance ti
        LEFT JOIN (
            SELECT task_instance_id, SUM(duration) AS total
            FROM TimeEntry GROUP BY task_instance_id
        ) te ON te.task_instance_id = ti.id
        WHERE COALESCE(ti.total_time, 0) != COALESCE(te.total, 0)
        ORDER BY ti.id
        """
    )
    report.total_mismatches = [row["id"] for row in rows]

    if not db.query("SELECT id FROM Client WHERE id = ?", (DEFAULT_CLIENT_ID,)):
        report.missing_reserved.append("Client")
    if not db.query("SELECT id FROM Project WHERE id = ?", (DEFAULT_PROJECT_ID,)):
        report.missing_reserved.append("Project")

    if report.ok:
        logger.info("Integrity check passed")
    else:
        logger.warning("Integrity check found violations: %s", report.summary())
    return report
