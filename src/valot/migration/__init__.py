"""Schema migration and data import.

- `detect`: classify a database as legacy or current
- `migrator`: copy data into a fresh relational database
- `importer`: merge or replace data from another database file
- `workflow`: startup backup/migrate/start-fresh flow
"""

from .backup import create_backup
from .detect import SchemaKind, detect_schema, detect_schema_at
from .importer import DataImporter, ImportSummary
from .migrator import MigrationResult, SchemaMigrator, migrate_file
from .workflow import WorkflowResult, backup_and_migrate, needs_migration, start_fresh

__all__ = [
    "SchemaKind",
    "detect_schema",
    "detect_schema_at",
    "create_backup",
    "SchemaMigrator",
    "MigrationResult",
    "migrate_file",
    "DataImporter",
    "ImportSummary",
    "needs_migration",
    "backup_and_migrate",
    "start_fresh",
    "WorkflowResult",
]
