"""Import another database file into a live database.

`DataImporter` merges a source file into the destination (keeping what is
there) or replaces the destination's data with it. The source is opened
read-only and never modified; every call runs in a single destination
transaction and reports the rows it actually inserted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ..database import crud, repair
from ..database.engine import SQLiteStorageEngine
from ..database.errors import DataImportError, DatabaseError, TransactionError
from ..database.schema import DEFAULT_CLIENT_ID, DEFAULT_PROJECT_ID
from . import legacy
from .detect import SchemaKind, detect_schema
from .mapping import (
    CLIENT_COLUMNS,
    PROJECT_COLUMNS,
    TASK_COLUMNS,
    IdMap,
    carry,
    copy_named_rows,
    read_table,
)
from .migrator import ProgressCallback

if TYPE_CHECKING:
    from ..providers.base import StorageBackend

logger = logging.getLogger(__name__)

IMPORT_STEPS: tuple[str, ...] = (
    "Importing clients",
    "Importing projects",
    "Importing tasks",
    "Importing task instances",
    "Importing time entries",
    "Synchronizing task totals",
)


@dataclass
class ImportSummary:
    """Rows inserted into the destination by one import."""

    clients_added: int = 0
    projects_added: int = 0
    tasks_added: int = 0
    entries_added: int = 0
    task_instances_added: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "clientsAdded": self.clients_added,
            "projectsAdded": self.projects_added,
            "tasksAdded": self.tasks_added,
            "entriesAdded": self.entries_added,
            "taskInstancesAdded": self.task_instances_added,
        }


class DataImporter:
    """Merge or replace data in `destination` from another database file."""

    def __init__(self, destination: StorageBackend) -> None:
        self.destination = destination

    def merge_data(
        self,
        source_path: Path | str,
        progress: ProgressCallback | None = None,
    ) -> ImportSummary:
        """Add the source's data to the destination, reusing rows with matching names.

        Raises:
            DataImportError: If the source cannot be read or any insert fails.
        """
        return self._run(source_path, progress, replace=False)

    def replace_data(
        self,
        source_path: Path | str,
        progress: ProgressCallback | None = None,
    ) -> ImportSummary:
        """Delete the destination's data (except reserved rows), then import.

        Raises:
            DataImportError: If the source cannot be read or any step fails.
                Nothing is deleted in that case.
        """
        return self._run(source_path, progress, replace=True)

    def _run(
        self,
        source_path: Path | str,
        progress: ProgressCallback | None,
        *,
        replace: bool,
    ) -> ImportSummary:
        mode = "replace" if replace else "merge"
        try:
            source = SQLiteStorageEngine.open_readonly(source_path)
        except DatabaseError as exc:
            raise DataImportError(f"Cannot open import source {source_path}: {exc}") from exc

        try:
            kind = detect_schema(source)
            logger.info("Starting %s from %s (%s schema)", mode, source_path, kind.value)
            try:
                self.destination.begin_transaction()
            except DatabaseError as exc:
                raise DataImportError(f"Import could not start: {exc}") from exc

            try:
                if replace:
                    self._clear_destination()
                summary = _ImportRun(source, self.destination, kind, progress).run()
                self.destination.commit()
            except Exception as exc:
                logger.exception("Import (%s) failed; rolling back", mode)
                self._rollback()
                raise DataImportError(f"Import ({mode}) failed: {exc}") from exc
        finally:
            source.close()

        logger.info("Finished %s from %s: %s", mode, source_path, summary.as_dict())
        return summary

    def _rollback(self) -> None:
        try:
            self.destination.rollback()
        except TransactionError:
            logger.debug("No open transaction to roll back")

    def _clear_destination(self) -> None:
        db = self.destination
        deleted = {
            "TimeEntry": crud.delete_all(db, "TimeEntry"),
            "TaskInstance": crud.delete_all(db, "TaskInstance"),
            "Task": crud.delete_all(db, "Task"),
            "Project": crud.delete_where_not_id(db, "Project", DEFAULT_PROJECT_ID),
            "Client": crud.delete_where_not_id(db, "Client", DEFAULT_CLIENT_ID),
        }
        logger.info("Cleared destination before replace: %s", deleted)


class _ImportRun:
    """State for one import: id maps and the running summary."""

    def __init__(
        self,
        source: StorageBackend,
        destination: StorageBackend,
        kind: SchemaKind,
        progress: ProgressCallback | None,
    ) -> None:
        self.source = source
        self.dest = destination
        self.kind = kind
        self.progress = progress
        self.summary = ImportSummary()
        self.clients = IdMap("Client")
        self.projects = IdMap("Project")
        self.tasks = IdMap("Task")
        self.instances = IdMap("TaskInstance")
        self.sessions: list[legacy.LegacySession] = []

    def _step(self, index: int) -> None:
        if self.progress is not None:
            self.progress(index + 1, len(IMPORT_STEPS), IMPORT_STEPS[index])

    def run(self) -> ImportSummary:
        self._step(0)
        self.clients, self.summary.clients_added = copy_named_rows(
            self.dest,
            "Client",
            read_table(self.source, "Client"),
            CLIENT_COLUMNS,
            skip_ids=(DEFAULT_CLIENT_ID,),
        )

        self._step(1)
        self.projects, self.summary.projects_added = copy_named_rows(
            self.dest,
            "Project",
            read_table(self.source, "Project"),
            PROJECT_COLUMNS,
            skip_ids=(DEFAULT_PROJECT_ID,),
            hook=self._remap_project_client,
        )

        if self.kind is SchemaKind.CURRENT:
            self._import_current()
        else:
            self._import_legacy()

        self._step(5)
        # Sources below the current version may still hold unrepaired entries
        repair.close_duplicate_active_entries(self.dest)
        repair.fix_invalid_intervals(self.dest)
        repair.normalize_durations(self.dest)
        crud.recompute_instance_totals(self.dest)
        return self.summary

    def _remap_project_client(self, row: dict[str, Any], payload: dict[str, Any]) -> None:
        client_id = row.get("client_id")
        if client_id == DEFAULT_CLIENT_ID:
            payload["client_id"] = DEFAULT_CLIENT_ID
        else:
            payload["client_id"] = self.clients.get(client_id)
        # Totals are derived from entries, never imported
        payload.pop("total_time", None)

    def _instance_refs(self, project_id: int | None, client_id: int | None) -> tuple[int, int]:
        if project_id == DEFAULT_PROJECT_ID:
            project = DEFAULT_PROJECT_ID
        else:
            project = self.projects.get(project_id) or DEFAULT_PROJECT_ID
        if client_id == DEFAULT_CLIENT_ID:
            client = DEFAULT_CLIENT_ID
        else:
            client = self.clients.get(client_id) or DEFAULT_CLIENT_ID
        return project, client

    # ------------------------------------------------------------------
    # Current layout

    def _import_current(self) -> None:
        self._step(2)
        self.tasks, self.summary.tasks_added = copy_named_rows(
            self.dest, "Task", read_table(self.source, "Task"), TASK_COLUMNS
        )

        self._step(3)
        for row in read_table(self.source, "TaskInstance"):
            task_id = self.tasks.get(row.get("task_id"))
            if task_id is None:
                logger.warning("Skipping task instance %s: unknown task", row.get("id"))
                continue
            project_id, client_id = self._instance_refs(row.get("project_id"), row.get("client_id"))
            new_id = crud.insert_row(
                self.dest,
                "TaskInstance",
                {
                    "task_id": task_id,
                    "project_id": project_id,
                    "client_id": client_id,
                    "total_time": 0,
                    **carry(row, ("last_used_at", "is_favorite", "created_at", "updated_at")),
                },
            )
            self.instances.add(row["id"], new_id)
            self.summary.task_instances_added += 1

        self._step(4)
        for row in read_table(self.source, "TimeEntry"):
            instance_id = self.instances.get(row.get("task_instance_id"))
            start = row.get("start_time")
            if instance_id is None or not start:
                logger.warning("Skipping time entry %s: no imported task instance", row.get("id"))
                continue
            if self._entry_exists(instance_id, start):
                continue
            crud.insert_row(
                self.dest,
                "TimeEntry",
                {
                    "task_instance_id": instance_id,
                    "start_time": start,
                    **carry(row, ("end_time", "duration", "created_at")),
                },
            )
            self.summary.entries_added += 1

    def _entry_exists(self, instance_id: int, start_time: str) -> bool:
        rows = self.dest.query(
            "SELECT 1 AS present FROM TimeEntry WHERE task_instance_id = ? AND start_time = ? LIMIT 1",
            (instance_id, start_time),
        )
        return bool(rows)

    # ------------------------------------------------------------------
    # Legacy layout

    def _import_legacy(self) -> None:
        self._step(2)
        self.sessions = legacy.read_sessions(self.source)
        for name in legacy.distinct_task_names(self.sessions):
            if crud.find_id_by_name(self.dest, "Task", name) is None:
                crud.insert_row(self.dest, "Task", {"name": name})
                self.summary.tasks_added += 1

        self._step(3)
        created: list[tuple[legacy.LegacySession, int]] = []
        for session in self.sessions:
            task_id = crud.find_id_by_name(self.dest, "Task", session.name)
            if task_id is None:
                continue
            project_id, client_id = self._instance_refs(session.project_id, session.client_id)
            instance_id = crud.insert_row(
                self.dest,
                "TaskInstance",
                {
                    "task_id": task_id,
                    "project_id": project_id,
                    "client_id": client_id,
                    "total_time": 0,
                    "last_used_at": session.last_used_at,
                    "is_favorite": 0,
                },
            )
            created.append((session, instance_id))
            self.summary.task_instances_added += 1

        self._step(4)
        for session, instance_id in created:
            if session.time_spent <= 0:
                continue
            entry = session.recorded_entry()
            if entry is None:
                continue
            start, end, duration = entry
            crud.insert_row(
                self.dest,
                "TimeEntry",
                {
                    "task_instance_id": instance_id,
                    "start_time": start,
                    "end_time": end,
                    "duration": duration,
                },
            )
            self.summary.entries_added += 1
