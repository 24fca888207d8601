"""Copy a database's data into a freshly bootstrapped relational database.

`SchemaMigrator` reads a source (legacy or current layout) and writes it
into a destination in six ordered steps inside one destination
transaction. A failure rolls everything back; migration is not resumable,
callers start over from the backup.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from ..database import crud
from ..database.engine import SQLiteStorageEngine
from ..database.errors import DatabaseError, MigrationError, TransactionError
from ..database.schema import DEFAULT_CLIENT_ID, DEFAULT_PROJECT_ID, RELATIONAL_SCHEMA_VERSION
from . import legacy
from .backup import create_backup
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

if TYPE_CHECKING:
    from ..providers.base import StorageBackend

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]

STEPS: tuple[str, ...] = (
    "Migrating clients",
    "Migrating projects",
    "Migrating tasks",
    "Creating task instances",
    "Creating time entries",
    "Synchronizing task totals",
)


@dataclass
class MigrationResult:
    """Rows written per step."""

    schema: SchemaKind
    clients: int = 0
    projects: int = 0
    tasks: int = 0
    task_instances: int = 0
    time_entries: int = 0
    totals_synced: int = 0

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["schema"] = self.schema.value
        return data


class SchemaMigrator:
    """Migrate `source` into `destination`.

    Both backends must be initialized; the destination should already be
    bootstrapped (reserved rows present). The caller closes both.
    """

    create_backup = staticmethod(create_backup)

    def __init__(
        self,
        source: StorageBackend,
        destination: StorageBackend,
        schema: SchemaKind | None = None,
    ) -> None:
        self.source = source
        self.destination = destination
        self.schema = schema
        self._clients = IdMap("Client")
        self._projects = IdMap("Project")
        self._tasks = IdMap("Task")
        self._instances = IdMap("TaskInstance")
        self._sessions: list[tuple[legacy.LegacySession, int]] = []

    def migrate(self, progress: ProgressCallback | None = None) -> MigrationResult:
        """Run every step in one destination transaction.

        Args:
            progress: Called as `progress(step, total, description)` before
                each step, with 1-based step numbers.

        Returns:
            MigrationResult with per-step counts.

        Raises:
            MigrationError: If any step fails. The destination is rolled back.

        Logs:
            - INFO: "Migrating {kind} database" and "Migration complete: {counts}".
        """
        kind = self.schema or detect_schema(self.source)
        result = MigrationResult(schema=kind)
        logger.info("Migrating %s database", kind.value)

        steps: tuple[Callable[[SchemaKind], int], ...] = (
            self._migrate_clients,
            self._migrate_projects,
            self._migrate_tasks,
            self._migrate_task_instances,
            self._migrate_time_entries,
            self._sync_totals,
        )
        fields = ("clients", "projects", "tasks", "task_instances", "time_entries", "totals_synced")

        try:
            self.destination.begin_transaction()
        except DatabaseError as exc:
            raise MigrationError(f"Migration could not start: {exc}") from exc

        try:
            for index, (step, field_name) in enumerate(zip(steps, fields), start=1):
                if progress is not None:
                    progress(index, len(STEPS), STEPS[index - 1])
                setattr(result, field_name, step(kind))
            self.destination.set_schema_version(RELATIONAL_SCHEMA_VERSION)
            self.destination.commit()
        except Exception as exc:
            logger.exception("Migration failed; rolling back")
            self._rollback()
            raise MigrationError(f"Migration failed: {exc}") from exc

        logger.info("Migration complete: %s", result.as_dict())
        return result

    def _rollback(self) -> None:
        try:
            self.destination.rollback()
        except TransactionError:
            logger.debug("No open transaction to roll back")

    # ------------------------------------------------------------------
    # Steps

    def _migrate_clients(self, kind: SchemaKind) -> int:
        rows = read_table(self.source, "Client")
        self._clients, inserted = copy_named_rows(
            self.destination, "Client", rows, CLIENT_COLUMNS, keep_ids=True
        )
        return inserted

    def _migrate_projects(self, kind: SchemaKind) -> int:
        def remap_client(row: dict[str, Any], payload: dict[str, Any]) -> None:
            payload["client_id"] = self._clients.get(row.get("client_id"))

        rows = read_table(self.source, "Project")
        self._projects, inserted = copy_named_rows(
            self.destination, "Project", rows, PROJECT_COLUMNS, keep_ids=True, hook=remap_client
        )
        return inserted

    def _migrate_tasks(self, kind: SchemaKind) -> int:
        if kind is SchemaKind.CURRENT:
            rows = read_table(self.source, "Task")
            self._tasks, inserted = copy_named_rows(
                self.destination, "Task", rows, TASK_COLUMNS, keep_ids=True
            )
            return inserted

        sessions = legacy.read_sessions(self.source)
        self._sessions = [(session, 0) for session in sessions]
        inserted = 0
        for name in legacy.distinct_task_names(sessions):
            if crud.find_id_by_name(self.destination, "Task", name) is None:
                crud.insert_row(self.destination, "Task", {"name": name})
                inserted += 1
        return inserted

    def _instance_refs(self, project_id: int | None, client_id: int | None) -> tuple[int, int]:
        return (
            self._projects.get(project_id) or DEFAULT_PROJECT_ID,
            self._clients.get(client_id) or DEFAULT_CLIENT_ID,
        )

    def _migrate_task_instances(self, kind: SchemaKind) -> int:
        if kind is SchemaKind.CURRENT:
            return self._copy_task_instances()

        created: list[tuple[legacy.LegacySession, int]] = []
        for session, _ in self._sessions:
            task_id = crud.find_id_by_name(self.destination, "Task", session.name)
            if task_id is None:
                logger.warning("Task not found for legacy session %s", session.old_id)
                continue
            project_id, client_id = self._instance_refs(session.project_id, session.client_id)
            # One instance per session; identical triples are kept as a stack
            instance_id = crud.insert_row(
                self.destination,
                "TaskInstance",
                {
                    "task_id": task_id,
                    "project_id": project_id,
                    "client_id": client_id,
                    "total_time": session.time_spent,
                    "last_used_at": session.last_used_at,
                    "is_favorite": 0,
                },
            )
            created.append((session, instance_id))
        self._sessions = created
        return len(created)

    def _copy_task_instances(self) -> int:
        inserted = 0
        for row in read_table(self.source, "TaskInstance"):
            task_id = self._tasks.get(row.get("task_id"))
            if task_id is None:
                logger.warning("Skipping task instance %s: task not migrated", row.get("id"))
                continue
            project_id, client_id = self._instance_refs(row.get("project_id"), row.get("client_id"))
            payload = {
                "task_id": task_id,
                "project_id": None if row.get("project_id") is None else project_id,
                "client_id": None if row.get("client_id") is None else client_id,
                **carry(row, ("total_time", "last_used_at", "is_favorite", "created_at", "updated_at")),
            }
            new_id = crud.insert_row(self.destination, "TaskInstance", payload)
            self._instances.add(row["id"], new_id)
            inserted += 1
        return inserted

    def _migrate_time_entries(self, kind: SchemaKind) -> int:
        if kind is SchemaKind.CURRENT:
            return self._copy_time_entries()

        inserted = 0
        for session, instance_id in self._sessions:
            entry = session.recorded_entry() or session.reconstructed_entry()
            if entry is None:
                continue
            start, end, duration = entry
            crud.insert_row(
                self.destination,
                "TimeEntry",
                {
                    "task_instance_id": instance_id,
                    "start_time": start,
                    "end_time": end,
                    "duration": duration,
                },
            )
            inserted += 1
        return inserted

    def _copy_time_entries(self) -> int:
        inserted = 0
        for row in read_table(self.source, "TimeEntry"):
            instance_id = self._instances.get(row.get("task_instance_id"))
            if instance_id is None or not row.get("start_time"):
                logger.warning("Skipping time entry %s: no migrated task instance", row.get("id"))
                continue
            payload = {
                "task_instance_id": instance_id,
                "start_time": row["start_time"],
                **carry(row, ("end_time", "duration", "created_at")),
            }
            crud.insert_row(self.destination, "TimeEntry", payload)
            inserted += 1
        return inserted

    def _sync_totals(self, kind: SchemaKind) -> int:
        return crud.recompute_instance_totals(self.destination)


def migrate_file(
    source_path: Path | str,
    destination: StorageBackend,
    progress: ProgressCallback | None = None,
) -> MigrationResult:
    """Open `source_path` read-only and migrate it into `destination`.

    Raises:
        MigrationError: If the source cannot be opened or a step fails.
    """
    try:
        source = SQLiteStorageEngine.open_readonly(source_path)
    except DatabaseError as exc:
        raise MigrationError(f"Cannot open migration source {source_path}: {exc}") from exc
    try:
        return SchemaMigrator(source, destination).migrate(progress)
    finally:
        source.close()
