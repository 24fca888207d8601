"""Provider registry: named storage backends with one active at a time.

All application reads and writes go through the registry, which delegates
to the active backend. Switching publishes a fully prepared state: the
target is initialized and verified before the active pointer moves, and
the previous backend is only closed afterwards. A failed switch leaves
the previous backend active and connected.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Iterator, Sequence

from .. import events
from ..database import crud
from ..database.engine import SQLiteStorageEngine
from ..database.errors import (
    DatabaseError,
    NoActiveProviderError,
    ProviderError,
    ProviderSwitchError,
)
from ..database.schema import DEFAULT_CLIENT_ID, DEFAULT_PROJECT_ID
from ..migration.importer import DataImporter, ImportSummary, ProgressCallback
from .base import StorageBackend, validate_backend

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER_NAME = "local"


class ProviderRegistry:
    """Holds registered backends and routes calls to the active one."""

    def __init__(self, event_bus: events.EventBus | None = None) -> None:
        self.events = event_bus or events.EventBus()
        self._providers: dict[str, StorageBackend] = {}
        self._active: StorageBackend | None = None
        self._active_name: str | None = None
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Registration

    def register(self, name: str, backend: StorageBackend) -> None:
        """Register `backend` under `name`, replacing any previous registration.

        Raises:
            ProviderValidationError: If backend lacks part of the capability set.
        """
        validate_backend(backend, name)
        with self._lock:
            if name in self._providers:
                logger.debug("Replacing registered provider %s", name)
            self._providers[name] = backend
            names = list(self._providers)
        logger.info("Registered provider %s (%s)", name, backend.provider_type)
        self.events.emit(events.PROVIDERS_CHANGED, names)

    def register_local_database(self, name: str, db_path: Path | str) -> SQLiteStorageEngine:
        """Create a local SQLite backend for `db_path` and register it."""
        engine = SQLiteStorageEngine(db_path, name=name)
        self.register(name, engine)
        return engine

    def unregister(self, name: str) -> bool:
        """Remove and close a backend. Returns False if `name` was not registered.

        Raises:
            ProviderError: If `name` is the active provider.
        """
        with self._lock:
            if name == self._active_name:
                raise ProviderError(f"Cannot unregister the active provider {name!r}")
            backend = self._providers.pop(name, None)
            names = list(self._providers)
        if backend is None:
            return False
        self._close_quietly(name, backend)
        self.events.emit(events.PROVIDERS_CHANGED, names)
        return True

    # ------------------------------------------------------------------
    # Switching

    def switch_to(self, name: str) -> StorageBackend:
        """Make `name` the active provider.

        Returns:
            The now-active backend.

        Raises:
            ProviderSwitchError: If `name` is unknown or cannot be connected.
                The previous provider stays active.

        Logs:
            - INFO: "Switched provider {old} -> {new}".
        """
        with self._lock:
            target = self._providers.get(name)
            if target is None:
                available = ", ".join(self._providers) or "none"
                raise ProviderSwitchError(
                    f"Unknown provider {name!r} (available: {available})"
                )

            if target is self._active:
                self._connect(name, target)
                return target

            self._connect(name, target)
            previous, previous_name = self._active, self._active_name
            self._active, self._active_name = target, name
            if previous is not None and previous is not target:
                self._close_quietly(previous_name, previous)

        logger.info("Switched provider %s -> %s", previous_name, name)
        self.events.emit(events.PROVIDER_SWITCHED, {"name": name, "provider": target})
        return target

    def switch_to_local_database(self, db_path: Path | str) -> StorageBackend:
        """Activate a local database file, registering it if needed.

        Reuses an already registered local backend for the same file;
        otherwise registers one as `local:<path>`.
        """
        resolved = Path(db_path).expanduser().resolve()
        with self._lock:
            for name, backend in self._providers.items():
                path = getattr(backend, "database_path", None)
                if isinstance(backend, SQLiteStorageEngine) and path is not None:
                    if Path(path).expanduser().resolve() == resolved:
                        return self.switch_to(name)
            name = f"local:{resolved}"
            self.register_local_database(name, resolved)
            return self.switch_to(name)

    def initialize_default(self, db_path: Path | str) -> StorageBackend:
        """Register the default local database and make it active."""
        self.register_local_database(DEFAULT_PROVIDER_NAME, db_path)
        return self.switch_to(DEFAULT_PROVIDER_NAME)

    def _connect(self, name: str, backend: StorageBackend) -> None:
        try:
            if not backend.is_connected:
                backend.initialize()
        except (DatabaseError, OSError) as exc:
            raise ProviderSwitchError(f"Cannot switch to provider {name!r}: {exc}") from exc
        if not backend.is_connected:
            raise ProviderSwitchError(f"Provider {name!r} did not connect")

    @staticmethod
    def _close_quietly(name: str | None, backend: StorageBackend) -> None:
        try:
            backend.close()
        except Exception:
            logger.exception("Failed to close provider %s", name)

    def close_all(self) -> None:
        """Close every backend (best effort) and clear the registry."""
        with self._lock:
            providers = list(self._providers.items())
            self._providers.clear()
            self._active, self._active_name = None, None
        for name, backend in providers:
            self._close_quietly(name, backend)
        logger.info("Closed %d providers", len(providers))
        self.events.emit(events.PROVIDERS_CHANGED, [])

    # ------------------------------------------------------------------
    # Listing

    def available_providers(self) -> list[str]:
        with self._lock:
            return list(self._providers)

    def has_provider(self, name: str) -> bool:
        with self._lock:
            return name in self._providers

    def get_provider(self, name: str) -> StorageBackend | None:
        with self._lock:
            return self._providers.get(name)

    @property
    def current_name(self) -> str | None:
        return self._active_name

    @property
    def active(self) -> StorageBackend:
        """The active backend.

        Raises:
            NoActiveProviderError: If no provider has been activated.
        """
        backend = self._active
        if backend is None:
            raise NoActiveProviderError("No active storage provider")
        return backend

    def active_database_path(self) -> Path | None:
        """Path of the active local database, or None for non-file backends."""
        path = getattr(self.active, "database_path", None)
        return Path(path) if path is not None else None

    # ------------------------------------------------------------------
    # Delegation

    @property
    def is_connected(self) -> bool:
        with self._lock:
            return self._active is not None and self._active.is_connected

    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        with self._lock:
            return self.active.query(sql, params)

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> int:
        with self._lock:
            return self.active.execute(sql, params)

    def begin_transaction(self) -> None:
        with self._lock:
            self.active.begin_transaction()

    def commit(self) -> None:
        with self._lock:
            self.active.commit()

    def rollback(self) -> None:
        with self._lock:
            self.active.rollback()

    @contextlib.contextmanager
    def transaction(self) -> Iterator[StorageBackend]:
        """Run a block in one transaction on the active backend.

        The registry lock is held for the whole block, so no switch can
        happen halfway through.
        """
        with self._lock:
            backend = self.active
            backend.begin_transaction()
            try:
                yield backend
            except BaseException:
                backend.rollback()
                raise
            backend.commit()

    def get_schema_version(self) -> int:
        with self._lock:
            return self.active.get_schema_version()

    def set_schema_version(self, version: int) -> None:
        with self._lock:
            self.active.set_schema_version(version)

    def get_metadata(self, key: str) -> str | None:
        with self._lock:
            return self.active.get_metadata(key)

    def set_metadata(self, key: str, value: str) -> None:
        with self._lock:
            self.active.set_metadata(key, value)

    # ------------------------------------------------------------------
    # File operations on the active local database

    def _active_local(self) -> SQLiteStorageEngine:
        backend = self.active
        if not isinstance(backend, SQLiteStorageEngine):
            raise ProviderError(
                f"Provider {self._active_name!r} ({backend.provider_type}) is not a local database"
            )
        return backend

    def export_active_database(self, destination: Path | str) -> Path:
        """Copy the active database to `destination`."""
        with self._lock:
            engine = self._active_local()
            dest = engine.export_to(destination)
            source = engine.database_path
        self.events.emit(events.DATABASE_EXPORTED, {"from": str(source), "to": str(dest)})
        return dest

    def merge_from_file(
        self,
        source_path: Path | str,
        progress: ProgressCallback | None = None,
    ) -> ImportSummary:
        """Merge another database file into the active one."""
        with self._lock:
            summary = DataImporter(self._active_local()).merge_data(source_path, progress)
        self.events.emit(events.DATA_MERGED, summary)
        return summary

    def replace_with_file(
        self,
        source_path: Path | str,
        progress: ProgressCallback | None = None,
    ) -> ImportSummary:
        """Replace the active database's data with another file's data."""
        with self._lock:
            summary = DataImporter(self._active_local()).replace_data(source_path, progress)
        self.events.emit(events.DATA_REPLACED, summary)
        return summary

    def reset_active_database(self) -> dict[str, int]:
        """Delete all data except the reserved default client and project.

        Returns:
            Rows deleted per table.

        Logs:
            - WARNING: "Reset database {path}: {counts}".
        """
        with self._lock:
            engine = self._active_local()
            with engine.transaction():
                deleted = {
                    "TimeEntry": crud.delete_all(engine, "TimeEntry"),
                    "TaskInstance": crud.delete_all(engine, "TaskInstance"),
                    "Task": crud.delete_all(engine, "Task"),
                    "Project": crud.delete_where_not_id(engine, "Project", DEFAULT_PROJECT_ID),
                    "Client": crud.delete_where_not_id(engine, "Client", DEFAULT_CLIENT_ID),
                }
                engine.execute(
                    "UPDATE Project SET total_time = 0 WHERE id = ?", (DEFAULT_PROJECT_ID,)
                )
            path = engine.database_path
        logger.warning("Reset database %s: %s", path, deleted)
        self.events.emit(events.DATABASE_RESET, {"path": str(path), "deleted": deleted})
        return deleted

    def subscribe(self, event: str, handler: Callable[[Any], None]) -> Callable[[], None]:
        return self.events.on(event, handler)
