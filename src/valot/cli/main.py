from __future__ import annotations

import typer

from .commands.db import app as db_app
from .commands.providers import app as providers_app

app = typer.Typer(
    help="valot time-tracking database tools",
    context_settings={"help_option_names": ["-h", "--help"]},
    no_args_is_help=True,
)

app.add_typer(db_app, name="db")
app.add_typer(providers_app, name="providers")


def main() -> None:
    """Main entry point for package CLI.

    Invokes the Typer application, which handles command parsing and
    execution.
    """
    app()


if __name__ == "__main__":
    main()
