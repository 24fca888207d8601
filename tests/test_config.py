from __future__ import annotations

from pathlib import Path

import pytest

from valot import global_config as g
from valot.config import (
    AppConfig,
    ConfigError,
    build_registry,
    config_path,
    load_config,
    save_config,
)


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.mark.unit
def test_missing_file_gives_defaults() -> None:
    config = load_config()
    assert config.database_path == g.DEFAULT_DB_PATH
    assert config.backup_dir == g.BACKUP_DIR
    assert config.log_level == "WARNING"
    assert config.providers == {}
    assert config.source is None


@pytest.mark.unit
def test_yaml_values_are_parsed(tmp_path: Path) -> None:
    path = _write(
        config_path(),
        f"""
database_path: {tmp_path / "main.db"}
backup_dir: {tmp_path / "backups"}
log_level: debug
providers:
  archive: {tmp_path / "archive.db"}
""",
    )
    config = load_config()
    assert config.source == path
    assert config.database_path == tmp_path / "main.db"
    assert config.backup_dir == tmp_path / "backups"
    assert config.log_level == "DEBUG"
    assert config.providers == {"archive": tmp_path / "archive.db"}


@pytest.mark.unit
def test_env_var_overrides_database_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _write(config_path(), f"database_path: {tmp_path / 'from-file.db'}\n")
    monkeypatch.setenv("VALOT_DB_PATH", str(tmp_path / "from-env.db"))
    assert load_config().database_path == tmp_path / "from-env.db"


@pytest.mark.unit
def test_home_is_expanded(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    _write(config_path(), "database_path: ~/valot.db\n")
    assert load_config().database_path == tmp_path / "valot.db"


@pytest.mark.unit
@pytest.mark.parametrize(
    "text",
    [
        "log_level: LOUD\n",
        "providers: [a, b]\n",
        "providers:\n  local: /tmp/x.db\n",
        "database_path: ''\n",
        "- just\n- a list\n",
        "database_path: [unclosed\n",
    ],
)
def test_invalid_config_raises(text: str) -> None:
    _write(config_path(), text)
    with pytest.raises(ConfigError):
        load_config()


@pytest.mark.unit
def test_unknown_keys_are_ignored(caplog: pytest.LogCaptureFixture) -> None:
    _write(config_path(), "theme: dark\n")
    config = load_config()
    assert config.log_level == "WARNING"
    assert "theme" in caplog.text


@pytest.mark.unit
def test_save_then_load(tmp_path: Path) -> None:
    original = AppConfig(
        database_path=tmp_path / "a.db",
        backup_dir=tmp_path / "bk",
        log_level="INFO",
        providers={"old": tmp_path / "old.db"},
    )
    written = save_config(original)
    loaded = load_config(written)
    assert loaded.database_path == original.database_path
    assert loaded.providers == original.providers
    assert loaded.log_level == "INFO"


@pytest.mark.integration
def test_build_registry_registers_local_and_extras(tmp_path: Path) -> None:
    config = AppConfig(
        database_path=tmp_path / "main.db",
        providers={"archive": tmp_path / "archive.db"},
    )
    registry = build_registry(config)
    try:
        assert registry.available_providers() == ["local", "archive"]
        assert registry.current_name == "local"
        assert (tmp_path / "main.db").exists()
        assert not (tmp_path / "archive.db").exists()
    finally:
        registry.close_all()


@pytest.mark.unit
def test_build_registry_without_activation(tmp_path: Path) -> None:
    registry = build_registry(AppConfig(database_path=tmp_path / "main.db"), activate=False)
    assert registry.current_name is None
    assert not (tmp_path / "main.db").exists()
