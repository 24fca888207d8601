"""Global, project-wide configuration constants.

This module intentionally contains **no business logic** – only simple,
shared filesystem anchors and cross-cutting constants that many modules
can import.

User-editable settings build on top of these anchors in `valot.config`.
Nothing in `valot.database` reads these values directly; the composition
root resolves them and hands explicit paths to the storage engine.
"""

import os
from pathlib import Path

# Core roots
PACKAGE_ROOT: Path = Path(__file__).resolve().parent

# Core Names
APP_NAME = "valot"
DB_FILENAME = "valot.db"


def _xdg_dir(env_var: str, fallback: Path) -> Path:
    value = os.environ.get(env_var)
    return Path(value) if value else fallback


# User directories (XDG layout, the same places the desktop app uses)
DATA_DIR: Path = _xdg_dir("XDG_DATA_HOME", Path.home() / ".local" / "share") / APP_NAME
CONFIG_DIR: Path = _xdg_dir("XDG_CONFIG_HOME", Path.home() / ".config") / APP_NAME

# Database locations
DEFAULT_DB_PATH: Path = DATA_DIR / DB_FILENAME

# Backups taken before destructive migrations
BACKUP_DIR: Path = Path.home() / "Documents" / APP_NAME

# SQL directory (shipped inside the package)
SQL_DIR: Path = PACKAGE_ROOT / "database" / "sql"

# Configuration file
CONFIG_FILE: Path = CONFIG_DIR / "config.yaml"
