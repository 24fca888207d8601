"""Reading the pre-relational (legacy) layout.

Legacy files have one `Task` row per tracked session: the task name, its
project and client, the seconds spent and the session's start/end. The
relational layout splits that into a Task template, one TaskInstance per
session and a TimeEntry holding the interval.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping

from ..database import crud
from ..utils.time import format_timestamp, normalize_interval, now_local, shift_timestamp

if TYPE_CHECKING:
    from ..providers.base import StorageBackend

logger = logging.getLogger(__name__)

LEGACY_SESSION_TABLE = "Task"


@dataclass(frozen=True)
class LegacySession:
    """One legacy `Task` row."""

    old_id: int
    name: str
    project_id: int | None = None
    client_id: int | None = None
    time_spent: int = 0
    start_time: str | None = None
    end_time: str | None = None
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> LegacySession:
        return cls(
            old_id=int(row["id"]),
            name=row["name"],
            project_id=row.get("project_id"),
            client_id=row.get("client_id"),
            time_spent=int(row.get("time_spent") or 0),
            start_time=row.get("start_time") or None,
            end_time=row.get("end_time") or None,
            created_at=row.get("created_at") or None,
        )

    @property
    def last_used_at(self) -> str:
        """When the session was last active: its end, else its creation, else now."""
        return self.end_time or self.created_at or format_timestamp(now_local())

    @property
    def has_interval(self) -> bool:
        return bool(self.start_time and self.end_time)

    def recorded_entry(self) -> tuple[str, str, int] | None:
        """Return the normalized (start, end, duration) when both bounds exist."""
        if not self.has_interval:
            return None
        start, end, duration = normalize_interval(self.start_time, self.end_time, self.time_spent)
        if (start, end) != (self.start_time, self.end_time):
            logger.warning(
                "Legacy session %s ends before it starts; stored as zero-length", self.old_id
            )
        return start, end, duration  # type: ignore[return-value]

    def reconstructed_entry(self) -> tuple[str, str, int] | None:
        """Rebuild an interval ending at `last_used_at` from the seconds spent.

        Returns None when there is no positive duration or the anchor
        timestamp cannot be parsed.
        """
        if self.time_spent <= 0:
            return None
        end = self.last_used_at
        try:
            start = shift_timestamp(end, -self.time_spent)
        except ValueError:
            logger.warning(
                "Legacy session %s has unparseable timestamp %r; no time entry created",
                self.old_id,
                end,
            )
            return None
        return start, end, self.time_spent


def read_sessions(source: StorageBackend) -> list[LegacySession]:
    """Read every legacy session row, oldest id first.

    Rows without a name are skipped.
    """
    if not crud.table_exists(source, LEGACY_SESSION_TABLE):
        return []
    sessions: list[LegacySession] = []
    for row in crud.select_all(source, LEGACY_SESSION_TABLE):
        if not row.get("name"):
            logger.warning("Skipping legacy session %s without a name", row.get("id"))
            continue
        sessions.append(LegacySession.from_row(row))
    return sessions


def distinct_task_names(sessions: list[LegacySession]) -> list[str]:
    """Return the task names in first-seen order, without duplicates."""
    return list(dict.fromkeys(session.name for session in sessions))
