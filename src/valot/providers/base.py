"""Storage backend protocol.

Business code types against `StorageBackend`; the registry checks every
backend against it at registration time with `validate_backend`, so a
backend missing part of the capability set is rejected up front instead
of failing on first use.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol, Sequence, runtime_checkable

from ..database.errors import ProviderValidationError

# Attributes every backend must expose (methods and properties).
REQUIRED_CAPABILITIES: tuple[str, ...] = (
    "initialize",
    "is_connected",
    "query",
    "execute",
    "begin_transaction",
    "commit",
    "rollback",
    "close",
    "get_schema_version",
    "set_schema_version",
    "get_metadata",
    "set_metadata",
    "provider_type",
    "provider_name",
)

_CALLABLE_CAPABILITIES = frozenset(REQUIRED_CAPABILITIES) - {
    "is_connected",
    "provider_type",
    "provider_name",
}


@runtime_checkable
class StorageBackend(Protocol):
    """Capability set the registry and the data operations rely on."""

    @property
    def provider_type(self) -> str: ...

    @property
    def provider_name(self) -> str: ...

    @property
    def is_connected(self) -> bool: ...

    def initialize(self, db_path: Path | str | None = None) -> None: ...

    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]: ...

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> int: ...

    def begin_transaction(self) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def close(self) -> None: ...

    def get_schema_version(self) -> int: ...

    def set_schema_version(self, version: int) -> None: ...

    def get_metadata(self, key: str) -> str | None: ...

    def set_metadata(self, key: str, value: str) -> None: ...


def missing_capabilities(backend: object) -> list[str]:
    """Return the names of required capabilities `backend` lacks."""
    missing: list[str] = []
    for name in REQUIRED_CAPABILITIES:
        # Look up on the type first so properties are not evaluated
        if hasattr(type(backend), name):
            attr = getattr(type(backend), name)
            if name in _CALLABLE_CAPABILITIES and not callable(attr):
                missing.append(name)
            continue
        if not hasattr(backend, name):
            missing.append(name)
        elif name in _CALLABLE_CAPABILITIES and not callable(getattr(backend, name)):
            missing.append(name)
    return missing


def validate_backend(backend: object, name: str = "<unnamed>") -> StorageBackend:
    """Assert that `backend` implements the full `StorageBackend` capability set.

    Args:
        backend: Candidate backend.
        name: Registration name, for the error message.

    Returns:
        The same object, typed as a StorageBackend.

    Raises:
        ProviderValidationError: If backend is None or lacks any capability.
    """
    if backend is None:
        raise ProviderValidationError(f"Provider {name!r}: backend is None")
    missing = missing_capabilities(backend)
    if missing:
        raise ProviderValidationError(
            f"Provider {name!r} is missing required capabilities: {', '.join(missing)}"
        )
    return backend  # type: ignore[return-value]
