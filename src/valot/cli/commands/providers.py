"""CLI commands for inspecting configured storage providers."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

import typer
from rich.table import Table

from ...config import build_registry
from ...providers import DEFAULT_PROVIDER_NAME
from ..base import BaseCLI, console

providers_app = typer.Typer(help="Storage provider commands.")


class ProvidersCLI(BaseCLI):
    def __init__(self) -> None:
        super().__init__("providers")

    def list_providers(self, *, db_path: Path | None) -> list[dict[str, Any]]:
        def op() -> list[dict[str, Any]]:
            config = self.load_config(db_path)
            registry = build_registry(config, activate=False)
            try:
                rows = []
                for name in registry.available_providers():
                    backend = registry.get_provider(name)
                    rows.append(
                        {
                            "name": name,
                            "type": backend.provider_type if backend else "?",
                            "path": str(getattr(backend, "database_path", "") or ""),
                            "default": name == DEFAULT_PROVIDER_NAME,
                        }
                    )
            finally:
                registry.close_all()

            table = Table(title="Storage providers")
            table.add_column("Name", style="cyan")
            table.add_column("Type")
            table.add_column("Database")
            table.add_column("Default", justify="center")
            for row in rows:
                table.add_row(row["name"], row["type"], row["path"], "✓" if row["default"] else "")
            console.print(table)
            return rows

        return self.handle_cli_operation(
            operation="providers list", op_callable=op, quiet_result=True
        )


cli = ProvidersCLI()


@providers_app.command("list")
def list_command(
    db_path: Annotated[
        Path | None,
        typer.Option("--db-path", help="Override the default local database path"),
    ] = None,
) -> None:
    """List the configured providers and their database files."""
    cli.list_providers(db_path=db_path)


app = providers_app
