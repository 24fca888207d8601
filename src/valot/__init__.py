"""
valot core package.

This package currently provides the persistence layer of the valot time
tracker:
- A SQLite storage engine with schema bootstrap and integrity repair
  (`valot.database`)
- A provider registry that routes queries to the active backend
  (`valot.providers`)
- Legacy schema migration and database import/merge (`valot.migration`)
- A Typer-based maintenance CLI (`valot.cli`)

Configuration:
- Shared filesystem anchors live in `valot.global_config`.
- User-editable settings (database path, extra providers) are loaded by
  `valot.config`.
"""

__version__ = "0.9.0"
