"""CLI commands for database management."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.table import Table

from ...config import build_registry
from ...database import check_integrity, crud, repair_integrity
from ...database.errors import DatabaseError
from ...migration import backup_and_migrate, detect_schema_at, needs_migration
from ...providers import ProviderRegistry
from ..base import BaseCLI, console

db_app = typer.Typer(help="Database management commands.")

TABLES = ("Client", "Project", "Task", "TaskInstance", "TimeEntry")

DbPathOption = Annotated[
    Path | None,
    typer.Option(
        "--db-path",
        help="Path to SQLite database file (defaults to config / VALOT_DB_PATH)",
    ),
]


def _print_progress(step: int, total: int, description: str) -> None:
    typer.echo(f"  [{step}/{total}] {description}")


class DatabaseCLI(BaseCLI):
    """CLI helpers for database management."""

    def __init__(self) -> None:
        super().__init__("db")

    @contextmanager
    def _registry(self, db_path: Path | None) -> Iterator[ProviderRegistry]:
        config = self.load_config(db_path)
        registry = build_registry(config)
        try:
            yield registry
        finally:
            registry.close_all()

    def _run(
        self,
        operation: str,
        db_path: Path | None,
        body: Callable[[ProviderRegistry], dict[str, Any]],
        *,
        pre_message: str | None = None,
    ) -> dict[str, Any]:
        def op() -> dict[str, Any]:
            with self._registry(db_path) as registry:
                return body(registry)

        return self.handle_cli_operation(operation=operation, op_callable=op, pre_message=pre_message)

    def init_db(self, *, db_path: Path | None) -> dict[str, Any]:
        def body(registry: ProviderRegistry) -> dict[str, Any]:
            return {
                "success": True,
                "message": f"Database ready at {registry.active_database_path()}",
                "counts": {"schema_version": registry.get_schema_version()},
            }

        return self._run("db init", db_path, body, pre_message="Initializing database...")

    def info(self, *, db_path: Path | None) -> dict[str, Any]:
        def op() -> dict[str, Any]:
            with self._registry(db_path) as registry:
                counts = {table: crud.count_rows(registry.active, table) for table in TABLES}
                info = {
                    "path": str(registry.active_database_path()),
                    "schema_version": registry.get_schema_version(),
                    "app_version": registry.get_metadata("app_version") or "unknown",
                    "counts": counts,
                }
            table = Table(title="valot database")
            table.add_column("Property", style="cyan")
            table.add_column("Value", justify="right")
            table.add_row("Path", info["path"])
            table.add_row("Schema version", str(info["schema_version"]))
            table.add_row("Created by", info["app_version"])
            for name, count in counts.items():
                table.add_row(f"{name} rows", str(count))
            console.print(table)
            return info

        return self.handle_cli_operation(operation="db info", op_callable=op, quiet_result=True)

    def check(self, *, db_path: Path | None) -> dict[str, Any]:
        def body(registry: ProviderRegistry) -> dict[str, Any]:
            report = check_integrity(registry.active)
            return {
                "success": report.ok,
                "message": "All invariants hold" if report.ok else "Run `valot db repair`",
                "counts": report.summary(),
            }

        return self._run("db check", db_path, body)

    def repair(self, *, db_path: Path | None) -> dict[str, Any]:
        def body(registry: ProviderRegistry) -> dict[str, Any]:
            with registry.transaction() as backend:
                report = repair_integrity(backend)
            return {"success": True, "counts": report.as_dict()}

        return self._run("db repair", db_path, body, pre_message="Repairing time entries...")

    def export(self, *, destination: Path, db_path: Path | None) -> dict[str, Any]:
        def body(registry: ProviderRegistry) -> dict[str, Any]:
            dest = registry.export_active_database(destination)
            return {"success": True, "message": f"Exported to {dest}"}

        return self._run("db export", db_path, body)

    def merge(self, *, source: Path, db_path: Path | None) -> dict[str, Any]:
        def body(registry: ProviderRegistry) -> dict[str, Any]:
            summary = registry.merge_from_file(source, _print_progress)
            return {"success": True, "counts": summary.as_dict()}

        return self._run("db merge", db_path, body, pre_message=f"Merging {source}...")

    def replace(self, *, source: Path, db_path: Path | None) -> dict[str, Any]:
        def body(registry: ProviderRegistry) -> dict[str, Any]:
            summary = registry.replace_with_file(source, _print_progress)
            return {"success": True, "counts": summary.as_dict()}

        return self._run("db replace", db_path, body, pre_message=f"Replacing data with {source}...")

    def reset(self, *, db_path: Path | None) -> dict[str, Any]:
        def body(registry: ProviderRegistry) -> dict[str, Any]:
            deleted = registry.reset_active_database()
            return {"success": True, "message": "Database reset", "counts": deleted}

        return self._run("db reset", db_path, body)

    def detect(self, *, source: Path) -> dict[str, Any]:
        def op() -> dict[str, Any]:
            kind = detect_schema_at(source)
            pending = needs_migration(source)
            return {
                "success": True,
                "message": f"{source}: {kind.value} schema"
                + (" (migration needed)" if pending else ""),
            }

        return self.handle_cli_operation(operation="db detect", op_callable=op)

    def migrate(
        self,
        *,
        source: Path,
        target: Path | None,
        backup_dir: Path | None,
    ) -> dict[str, Any]:
        def op() -> dict[str, Any]:
            config = self.load_config()
            if not needs_migration(source):
                raise DatabaseError(f"{source} does not need migration")
            result = backup_and_migrate(
                source,
                target,
                backup_dir or config.backup_dir,
                _print_progress,
            )
            counts = result.migration.as_dict() if result.migration else {}
            counts.pop("schema", None)
            return {
                "success": True,
                "message": f"Migrated to {result.database_path} (backup: {result.backup_path})",
                "counts": counts,
            }

        return self.handle_cli_operation(
            operation="db migrate", op_callable=op, pre_message=f"Migrating {source}..."
        )


cli = DatabaseCLI()


def _require_confirmation(yes: bool, action: str) -> None:
    if not yes:
        typer.secho(f"✗ Refusing to {action} without --yes", fg=typer.colors.RED)
        raise typer.Exit(1)


@db_app.command("init")
def init_command(db_path: DbPathOption = None) -> None:
    """Create (or upgrade) the database and report its schema version."""
    cli.init_db(db_path=db_path)


@db_app.command("info")
def info_command(db_path: DbPathOption = None) -> None:
    """Show the database path, schema version and row counts."""
    cli.info(db_path=db_path)


@db_app.command("check")
def check_command(db_path: DbPathOption = None) -> None:
    """Verify time-entry invariants without changing anything.

    Exits with code 1 if any violation is found.
    """
    result = cli.check(db_path=db_path)
    if not result.get("success"):
        raise typer.Exit(1)


@db_app.command("repair")
def repair_command(db_path: DbPathOption = None) -> None:
    """Close duplicate active entries, fix invalid intervals and durations."""
    cli.repair(db_path=db_path)


@db_app.command("export")
def export_command(
    destination: Annotated[Path, typer.Argument(help="File to write the copy to")],
    db_path: DbPathOption = None,
) -> None:
    """Write a consistent copy of the database to DESTINATION."""
    cli.export(destination=destination, db_path=db_path)


@db_app.command("merge")
def merge_command(
    source: Annotated[Path, typer.Argument(help="Database file to merge in")],
    db_path: DbPathOption = None,
) -> None:
    """Add data from SOURCE, reusing clients, projects and tasks with the same name."""
    cli.merge(source=source, db_path=db_path)


@db_app.command("replace")
def replace_command(
    source: Annotated[Path, typer.Argument(help="Database file to import")],
    yes: Annotated[bool, typer.Option("--yes", help="Confirm deleting current data")] = False,
    db_path: DbPathOption = None,
) -> None:
    """Delete current data and import everything from SOURCE."""
    _require_confirmation(yes, "replace all data")
    cli.replace(source=source, db_path=db_path)


@db_app.command("reset")
def reset_command(
    yes: Annotated[bool, typer.Option("--yes", help="Confirm deleting all data")] = False,
    db_path: DbPathOption = None,
) -> None:
    """Delete all data except the default client and project."""
    _require_confirmation(yes, "reset the database")
    cli.reset(db_path=db_path)


@db_app.command("detect")
def detect_command(
    source: Annotated[Path, typer.Argument(help="Database file to inspect")],
) -> None:
    """Report whether SOURCE uses the legacy or the current schema."""
    cli.detect(source=source)


@db_app.command("migrate")
def migrate_command(
    source: Annotated[Path, typer.Argument(help="Legacy database file")],
    target: Annotated[
        Path | None,
        typer.Option("--target", help="Where to write the migrated database (default: in place)"),
    ] = None,
    backup_dir: Annotated[
        Path | None,
        typer.Option("--backup-dir", help="Directory for the pre-migration backup"),
    ] = None,
) -> None:
    """Back up a legacy database and migrate it to the current schema."""
    cli.migrate(source=source, target=target, backup_dir=backup_dir)


app = db_app
