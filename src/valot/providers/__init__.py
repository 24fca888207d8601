"""Storage providers: the backend protocol and the registry that routes to it."""

from .base import REQUIRED_CAPABILITIES, StorageBackend, validate_backend
from .registry import DEFAULT_PROVIDER_NAME, ProviderRegistry

__all__ = [
    "StorageBackend",
    "REQUIRED_CAPABILITIES",
    "validate_backend",
    "ProviderRegistry",
    "DEFAULT_PROVIDER_NAME",
]
