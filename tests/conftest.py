from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterator, Sequence
from pathlib import Path
from typing import Any

import pytest

from valot import global_config as g
from valot.database import SQLiteStorageEngine


@pytest.fixture(autouse=True)
def app_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """
    Forces test mode and points every user directory under tmp_path.
    Automatically applied to all tests, so nothing touches the real data dir.
    """
    monkeypatch.setenv("APP_ENV", "test")
    home = tmp_path / "home"
    monkeypatch.setenv("XDG_DATA_HOME", str(home / ".local" / "share"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.delenv("VALOT_DB_PATH", raising=False)
    monkeypatch.setenv("VALOT_CONFIG", str(home / ".config" / "valot" / "config.yaml"))
    monkeypatch.setattr(g, "DATA_DIR", home / ".local" / "share" / "valot")
    monkeypatch.setattr(g, "DEFAULT_DB_PATH", home / ".local" / "share" / "valot" / g.DB_FILENAME)
    monkeypatch.setattr(g, "BACKUP_DIR", home / "Documents" / "valot")
    monkeypatch.setattr(g, "CONFIG_DIR", home / ".config" / "valot")
    monkeypatch.setattr(g, "CONFIG_FILE", home / ".config" / "valot" / "config.yaml")


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """
    A dedicated temp root directory for each test.
    All filesystem writes in tests should be under this root (or tmp_path directly).
    """
    root = tmp_path / "proj"
    (root / "data" / "in").mkdir(parents=True)
    (root / "data" / "out").mkdir(parents=True)
    return root


@pytest.fixture(autouse=True)
def chdir_to_project_root(project_root: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """
    Automatically change working directory to project_root for all tests.
    This ensures relative-path operations go into the temp directory by default.
    """
    monkeypatch.chdir(project_root)


@pytest.fixture
def sqlite_path(project_root: Path) -> Path:
    """
    On-disk SQLite DB under the temp project root (more realistic than :memory:).
    """
    return project_root / "data" / "out" / "valot.db"


@pytest.fixture
def engine(sqlite_path: Path, project_root: Path) -> Iterator[SQLiteStorageEngine]:
    """
    An initialized storage engine that is always closed after each test.

    Safety enforcement: the database must live under project_root
    (prevents touching real databases).
    """
    try:
        sqlite_path.resolve().relative_to(project_root.resolve())
    except ValueError:
        raise AssertionError(
            f"SQLite path {sqlite_path} is not under project_root {project_root}. "
            "This prevents accidental writes to real databases."
        )

    eng = SQLiteStorageEngine(sqlite_path, name="test")
    eng.initialize()
    try:
        yield eng
    finally:
        eng.close()


# ---------------------------------------------------------------------------
# Source database builders
# ---------------------------------------------------------------------------

LEGACY_SCHEMA = """
CREATE TABLE Client (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    rate REAL DEFAULT 0.0,
    currency TEXT DEFAULT 'USD'
);
CREATE TABLE Project (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    color TEXT DEFAULT '#cccccc',
    icon TEXT DEFAULT 'folder-symbolic',
    client_id INTEGER
);
CREATE TABLE Task (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    project_id INTEGER,
    client_id INTEGER,
    time_spent INTEGER DEFAULT 0,
    start_time TEXT,
    end_time TEXT,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
"""

LegacyBuilder = Callable[..., Path]


@pytest.fixture
def make_legacy_db(project_root: Path) -> LegacyBuilder:
    """
    Build a pre-relational database file.

    Call with `sessions` as (name, project_id, client_id, time_spent, start, end)
    tuples plus optional `clients` (id, name, rate) and `projects`
    (id, name, client_id).
    """

    def build(
        name: str = "legacy.db",
        *,
        sessions: Sequence[tuple[Any, ...]] = (),
        clients: Sequence[tuple[Any, ...]] = ((1, "Default Client", 0.0),),
        projects: Sequence[tuple[Any, ...]] = ((1, "Default", None),),
    ) -> Path:
        path = project_root / "data" / "in" / name
        conn = sqlite3.connect(path)
        try:
            conn.executescript(LEGACY_SCHEMA)
            conn.executemany("INSERT INTO Client (id, name, rate) VALUES (?, ?, ?)", clients)
            conn.executemany(
                "INSERT INTO Project (id, name, client_id) VALUES (?, ?, ?)", projects
            )
            conn.executemany(
                "INSERT INTO Task (name, project_id, client_id, time_spent, start_time, end_time) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                sessions,
            )
            conn.commit()
        finally:
            conn.close()
        return path

    return build


def add_entry(
    db: SQLiteStorageEngine,
    task: str,
    start: str,
    end: str | None,
    *,
    project_id: int = 1,
    client_id: int = 1,
    duration: int | None = None,
    instance_id: int | None = None,
) -> int:
    """Insert a task (if needed), an instance (unless given) and one entry. Returns the instance id."""
    rows = db.query("SELECT id FROM Task WHERE name = ?", (task,))
    task_id = rows[0]["id"] if rows else db.execute("INSERT INTO Task (name) VALUES (?)", (task,))
    if instance_id is None:
        instance_id = db.execute(
            "INSERT INTO TaskInstance (task_id, project_id, client_id) VALUES (?, ?, ?)",
            (task_id, project_id, client_id),
        )
    db.execute(
        "INSERT INTO TimeEntry (task_instance_id, start_time, end_time, duration) VALUES (?, ?, ?, ?)",
        (instance_id, start, end, duration),
    )
    return instance_id


@pytest.fixture
def make_current_db(project_root: Path) -> Callable[..., Path]:
    """
    Build a current-schema database file by running `populate(engine)` on a
    freshly initialized engine, then closing it.
    """

    def build(name: str, populate: Callable[[SQLiteStorageEngine], None]) -> Path:
        path = project_root / "data" / "in" / name
        eng = SQLiteStorageEngine(path, name=name)
        eng.initialize()
        try:
            populate(eng)
            eng.execute(
                "UPDATE TaskInstance SET total_time = "
                "(SELECT COALESCE(SUM(duration), 0) FROM TimeEntry "
                "WHERE task_instance_id = TaskInstance.id)"
            )
        finally:
            eng.close()
        return path

    return build


def totals_consistent(db: SQLiteStorageEngine) -> bool:
    rows = db.query(
        """
        SELECT ti.id FROM TaskInstance ti
        WHERE COALESCE(ti.total_time, 0) != (
            SELECT COALESCE(SUM(duration), 0) FROM TimeEntry WHERE task_instance_id = ti.id
        )
        """
    )
    return not rows
