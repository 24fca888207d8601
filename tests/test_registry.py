from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest

from conftest import add_entry

from valot import events
from valot.database import (
    NoActiveProviderError,
    ProviderError,
    ProviderSwitchError,
    ProviderValidationError,
    SQLiteStorageEngine,
)
from valot.providers import ProviderRegistry, StorageBackend
from valot.providers.base import missing_capabilities


class HalfBackend:
    provider_type = "remote"
    provider_name = "half"
    is_connected = False

    def initialize(self, db_path: Any = None) -> None:
        pass

    def query(self, sql: str, params: Any = None) -> list[dict[str, Any]]:
        return []


@pytest.fixture
def registry(project_root: Path) -> Iterator[ProviderRegistry]:
    reg = ProviderRegistry()
    reg.initialize_default(project_root / "data" / "out" / "main.db")
    yield reg
    reg.close_all()


@pytest.mark.unit
def test_engine_satisfies_backend_protocol() -> None:
    engine = SQLiteStorageEngine()
    assert isinstance(engine, StorageBackend)
    assert missing_capabilities(engine) == []


@pytest.mark.unit
def test_register_rejects_incomplete_backend() -> None:
    reg = ProviderRegistry()
    with pytest.raises(ProviderValidationError) as excinfo:
        reg.register("half", HalfBackend())
    assert "execute" in str(excinfo.value)
    assert "commit" in str(excinfo.value)
    assert not reg.has_provider("half")

    with pytest.raises(ProviderValidationError):
        reg.register("nothing", None)  # type: ignore[arg-type]


@pytest.mark.unit
def test_no_active_provider() -> None:
    reg = ProviderRegistry()
    assert reg.current_name is None
    assert not reg.is_connected
    with pytest.raises(NoActiveProviderError):
        reg.query("SELECT 1")


@pytest.mark.integration
def test_initialize_default_activates_local(registry: ProviderRegistry) -> None:
    assert registry.current_name == "local"
    assert registry.available_providers() == ["local"]
    assert registry.is_connected
    assert registry.get_schema_version() == 4
    assert registry.active_database_path().name == "main.db"


@pytest.mark.integration
def test_delegation_reaches_active_backend(registry: ProviderRegistry) -> None:
    with registry.transaction():
        registry.execute("INSERT INTO Task (name) VALUES ('via registry')")
    assert registry.query("SELECT name FROM Task") == [{"name": "via registry"}]

    registry.set_metadata("owner", "me")
    assert registry.get_metadata("owner") == "me"

    with pytest.raises(RuntimeError):
        with registry.transaction():
            registry.execute("INSERT INTO Task (name) VALUES ('rolled back')")
            raise RuntimeError("abort")
    assert len(registry.query("SELECT id FROM Task")) == 1


@pytest.mark.integration
def test_switch_moves_active_and_closes_previous(registry: ProviderRegistry, project_root: Path) -> None:
    switched: list[dict[str, Any]] = []
    registry.subscribe(events.PROVIDER_SWITCHED, switched.append)
    first = registry.active
    second = registry.register_local_database("work", project_root / "data" / "out" / "work.db")

    registry.switch_to("work")

    assert registry.current_name == "work"
    assert registry.active is second
    assert second.is_connected
    assert not first.is_connected
    assert switched == [{"name": "work", "provider": second}]


@pytest.mark.integration
def test_failing_switch_subscriber_does_not_abort_switch(
    registry: ProviderRegistry, project_root: Path, caplog: pytest.LogCaptureFixture
) -> None:
    def explode(payload: dict[str, Any]) -> None:
        raise RuntimeError("listener broke")

    switched: list[dict[str, Any]] = []
    registry.subscribe(events.PROVIDER_SWITCHED, explode)
    registry.subscribe(events.PROVIDER_SWITCHED, switched.append)
    work = registry.register_local_database("work", project_root / "data" / "out" / "work.db")

    assert registry.switch_to("work") is work

    assert registry.current_name == "work"
    assert work.is_connected
    assert registry.query("SELECT id FROM Client") == [{"id": 1}]
    assert switched == [{"name": "work", "provider": work}]
    assert "listener broke" in caplog.text


@pytest.mark.integration
def test_switch_to_unknown_keeps_previous(registry: ProviderRegistry) -> None:
    previous = registry.active
    with pytest.raises(ProviderSwitchError, match="available: local"):
        registry.switch_to("missing")
    assert registry.active is previous
    assert previous.is_connected


@pytest.mark.integration
def test_failed_connect_keeps_previous(registry: ProviderRegistry, tmp_path: Path) -> None:
    blocker = tmp_path / "file-not-dir"
    blocker.write_text("x")
    registry.register_local_database("broken", blocker / "db.sqlite")
    previous = registry.active

    with pytest.raises(ProviderSwitchError):
        registry.switch_to("broken")

    assert registry.current_name == "local"
    assert previous.is_connected
    assert registry.query("SELECT id FROM Client") == [{"id": 1}]


@pytest.mark.integration
def test_switch_to_local_database_reuses_registration(registry: ProviderRegistry, project_root: Path) -> None:
    path = project_root / "data" / "out" / "main.db"
    registry.switch_to_local_database(path)
    assert registry.current_name == "local"
    assert registry.available_providers() == ["local"]

    other = project_root / "data" / "out" / "other.db"
    registry.switch_to_local_database(other)
    assert registry.current_name == f"local:{other.resolve()}"
    assert other.exists()


@pytest.mark.integration
def test_unregister(registry: ProviderRegistry, project_root: Path) -> None:
    changes: list[list[str]] = []
    registry.subscribe(events.PROVIDERS_CHANGED, changes.append)
    registry.register_local_database("spare", project_root / "data" / "out" / "spare.db")

    with pytest.raises(ProviderError):
        registry.unregister("local")
    assert registry.unregister("spare") is True
    assert registry.unregister("spare") is False
    assert changes == [["local", "spare"], ["local"]]


@pytest.mark.integration
def test_reset_keeps_reserved_rows(registry: ProviderRegistry) -> None:
    resets: list[dict[str, Any]] = []
    registry.subscribe(events.DATABASE_RESET, resets.append)
    engine = registry.active
    add_entry(engine, "Write", "2024-01-01 10:00:00", "2024-01-01 11:00:00", duration=3600)
    client_id = engine.execute("INSERT INTO Client (name) VALUES ('Acme')")
    engine.execute("INSERT INTO Project (name, client_id) VALUES ('Site', ?)", (client_id,))

    deleted = registry.reset_active_database()

    assert deleted == {"TimeEntry": 1, "TaskInstance": 1, "Task": 1, "Project": 1, "Client": 1}
    assert registry.query("SELECT id FROM Client") == [{"id": 1}]
    assert registry.query("SELECT id FROM Project") == [{"id": 1}]
    assert len(resets) == 1
    assert resets[0]["deleted"] == deleted


@pytest.mark.integration
def test_export_emits_event(registry: ProviderRegistry, tmp_path: Path) -> None:
    exported: list[dict[str, str]] = []
    registry.subscribe(events.DATABASE_EXPORTED, exported.append)

    dest = registry.export_active_database(tmp_path / "export.db")

    assert dest.exists()
    assert exported == [{"from": str(registry.active_database_path()), "to": str(dest)}]


@pytest.mark.integration
def test_merge_and_replace_emit_events(registry: ProviderRegistry, make_current_db) -> None:
    def populate(db: SQLiteStorageEngine) -> None:
        add_entry(db, "Imported", "2024-02-01 09:00:00", "2024-02-01 10:00:00", duration=3600)

    source = make_current_db("source.db", populate)
    merged: list[Any] = []
    replaced: list[Any] = []
    registry.subscribe(events.DATA_MERGED, merged.append)
    registry.subscribe(events.DATA_REPLACED, replaced.append)

    summary = registry.merge_from_file(source)
    assert summary.entries_added == 1
    registry.replace_with_file(source)

    assert len(merged) == 1 and len(replaced) == 1
    assert registry.query("SELECT name FROM Task") == [{"name": "Imported"}]
    assert len(registry.query("SELECT id FROM TimeEntry")) == 1


class RemoteBackend:
    provider_type = "remote"
    provider_name = "remote"
    is_connected = True

    def initialize(self, db_path: Any = None) -> None: ...
    def query(self, sql: str, params: Any = None) -> list[dict[str, Any]]: return []
    def execute(self, sql: str, params: Any = None) -> int: return 0
    def begin_transaction(self) -> None: ...
    def commit(self) -> None: ...
    def rollback(self) -> None: ...
    def close(self) -> None: ...
    def get_schema_version(self) -> int: return 4
    def set_schema_version(self, version: int) -> None: ...
    def get_metadata(self, key: str) -> str | None: return None
    def set_metadata(self, key: str, value: str) -> None: ...


@pytest.mark.unit
def test_file_operations_need_a_local_provider(project_root: Path) -> None:
    reg = ProviderRegistry()
    reg.register("remote", RemoteBackend())
    reg.switch_to("remote")
    with pytest.raises(ProviderError, match="not a local database"):
        reg.export_active_database(project_root / "out.db")
    assert reg.active_database_path() is None
