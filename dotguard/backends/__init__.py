"""
Secret backends.

Placeholders are resolved through one configured backend: the local store,
1Password, Bitwarden or pass.
"""

from .base import (
    BackendName,
    BackendStatus,
    CommandResult,
    ResolvedSecret,
    SecretBackend,
    SecretReference,
    classify_cli_error,
    run_command,
)
from .cache import SecretCache
from .mappings import SecretMappings
from .resolver import BatchResolveResult, SecretResolver, create_backend

__all__ = [
    "BackendName",
    "BackendStatus",
    "BatchResolveResult",
    "CommandResult",
    "ResolvedSecret",
    "SecretBackend",
    "SecretCache",
    "SecretMappings",
    "SecretReference",
    "SecretResolver",
    "classify_cli_error",
    "create_backend",
    "run_command",
]
