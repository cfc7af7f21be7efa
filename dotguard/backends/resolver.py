"""
Backend selection and secret resolution.

This module is responsible for:
- Building backend instances from settings
- Resolving placeholder names to values through the configured backend
- Caching resolved values and collecting per-name failures

This module does NOT:
- Substitute values into content (see ``redactor``)
- Migrate secrets between backends when the configured backend changes
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from ..errors import (
    BackendAuthenticationError,
    BackendNotAvailableError,
    SecretBackendError,
    UnresolvedSecretsError,
)
from ..settings import SecurityConfig
from ..store import SecretStore
from .base import (
    DISPLAY_NAMES,
    BackendName,
    BackendStatus,
    CommandRunner,
    ResolvedSecret,
    SecretBackend,
    SecretReference,
)
from .bitwarden import BitwardenBackend
from .cache import SecretCache
from .local import LocalBackend
from .mappings import SecretMapping, SecretMappings
from .onepassword import OnePasswordBackend
from .pass_store import PassBackend

logger = logging.getLogger(__name__)

AUTO = "auto"
DETECTION_ORDER = (BackendName.onepassword, BackendName.bitwarden, BackendName.pass_store, BackendName.local)


@dataclass
class BatchResolveResult:
    resolved: Dict[str, ResolvedSecret] = field(default_factory=dict)
    unresolved: List[str] = field(default_factory=list)
    errors: Dict[str, Exception] = field(default_factory=dict)


def create_backend(
    name: Union[BackendName, str],
    settings: Optional[SecurityConfig] = None,
    store: Optional[SecretStore] = None,
    runner: Optional[CommandRunner] = None,
    timeout: Optional[float] = None,
) -> SecretBackend:
    """
    Build a backend instance.

    Raises:
        BackendNotAvailableError: for an unknown backend name.
        ValueError: if the local backend is requested without a store.
    """

    settings = settings or SecurityConfig()
    timeout = settings.backend_timeout if timeout is None else timeout
    try:
        backend = BackendName(name)
    except ValueError:
        raise BackendNotAvailableError(str(name), "Unknown backend") from None

    if backend is BackendName.local:
        if store is None:
            raise ValueError("the local backend needs a SecretStore")
        return LocalBackend(store)
    if backend is BackendName.onepassword:
        return OnePasswordBackend(settings.backends.onepassword, runner, timeout)
    if backend is BackendName.bitwarden:
        return BitwardenBackend(settings.backends.bitwarden, runner, timeout)
    return PassBackend(settings.backends.pass_store, runner, timeout)


class SecretResolver:
    def __init__(
        self,
        repo_root: Union[str, Path],
        settings: Optional[SecurityConfig] = None,
        cache: Optional[SecretCache] = None,
        runner: Optional[CommandRunner] = None,
    ):
        self.repo_root = Path(repo_root)
        self.settings = settings or SecurityConfig()
        self.store = SecretStore(self.repo_root, self.settings.secrets_file)
        self.mappings = SecretMappings(self.repo_root, self.settings.secret_mappings)
        self.cache = cache if cache is not None else SecretCache()
        self.use_cache = self.settings.cache_secrets
        self.backends: Dict[BackendName, SecretBackend] = {
            name: create_backend(name, self.settings, self.store, runner) for name in BackendName
        }

        configured = self.settings.secret_backend
        self.primary = BackendName.local if configured == AUTO else BackendName(configured)

    # ------------------------------------------------------------------
    # Backend queries
    # ------------------------------------------------------------------

    def get_backend(self, name: Union[BackendName, str]) -> SecretBackend:
        try:
            return self.backends[BackendName(name)]
        except ValueError:
            raise BackendNotAvailableError(str(name), "Unknown backend") from None

    def available_backends(self) -> List[BackendName]:
        return [name for name, backend in self.backends.items() if backend.is_available()]

    def _ready(self, name: BackendName) -> bool:
        backend = self.backends[name]
        try:
            return backend.is_available() and backend.is_authenticated()
        except SecretBackendError:
            return False

    def auto_detect_backend(self) -> BackendName:
        """
        Pick the first backend that is installed and signed in.

        Environment hints (a 1Password service account token, a Bitwarden
        session) take precedence over the default order.
        """

        if os.environ.get("OP_SERVICE_ACCOUNT_TOKEN") and self._ready(BackendName.onepassword):
            return BackendName.onepassword
        if os.environ.get("BW_SESSION") and self._ready(BackendName.bitwarden):
            return BackendName.bitwarden
        for name in DETECTION_ORDER:
            if self._ready(name):
                return name
        return BackendName.local

    def backend_statuses(self) -> List[BackendStatus]:
        statuses = []
        for name, backend in self.backends.items():
            status = backend.status()
            statuses.append(status)
            logger.debug("Backend %s: available=%s authenticated=%s",
                         DISPLAY_NAMES[name], status.available, status.authenticated)
        return statuses

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _cache_ttl(self, backend: BackendName) -> Optional[float]:
        if backend is BackendName.onepassword:
            return self.settings.backends.onepassword.cache_timeout
        if backend is BackendName.bitwarden:
            return self.settings.backends.bitwarden.cache_timeout
        return None

    def _reference(self, name: str, backend: BackendName) -> SecretReference:
        path = self.mappings.get_backend_path(name, backend)
        if path is None and backend is BackendName.local:
            path = name
        return SecretReference(name=name, backend_path=path)

    def resolve_secret(
        self,
        name: str,
        backend: Optional[Union[BackendName, str]] = None,
        skip_cache: bool = False,
        fail_on_auth_required: bool = False,
    ) -> Optional[ResolvedSecret]:
        """
        Resolve one secret, returning None if the backend has no such item.

        Raises:
            BackendNotAvailableError: if the backend CLI is not installed.
            BackendAuthenticationError: if sign-in is needed and
                ``fail_on_auth_required`` is set (or sign-in fails).
            SecretBackendError: on any other backend failure.
        """

        if self.use_cache and not skip_cache:
            cached = self.cache.get(name)
            if cached is not None:
                return ResolvedSecret(name=name, value=cached.value, backend=cached.backend, cached=True)

        backend_name = BackendName(backend) if backend is not None else self.primary
        impl = self.get_backend(backend_name)

        if not impl.is_available():
            raise BackendNotAvailableError(backend_name.value, "CLI not installed")

        if not impl.is_authenticated():
            if fail_on_auth_required:
                raise BackendAuthenticationError(backend_name.value, impl.get_setup_instructions())
            impl.authenticate()

        value = impl.get_secret(self._reference(name, backend_name))
        if value is None:
            logger.debug("Secret %s not found in %s", name, backend_name.value)
            return None

        if self.use_cache:
            self.cache.set(name, value, backend_name.value, self._cache_ttl(backend_name))
        return ResolvedSecret(name=name, value=value, backend=backend_name.value, cached=False)

    def resolve_all(self, names: Iterable[str], **options) -> BatchResolveResult:
        """Resolve every name; failures are collected, never raised."""
        result = BatchResolveResult()
        for name in names:
            try:
                secret = self.resolve_secret(name, **options)
            except SecretBackendError as exc:
                logger.warning("Could not resolve %s: %s", name, exc.message)
                result.errors[name] = exc
                result.unresolved.append(name)
                continue
            if secret is None:
                result.unresolved.append(name)
            else:
                result.resolved[name] = secret
        return result

    def resolve_all_or_throw(self, names: Iterable[str], **options) -> Dict[str, ResolvedSecret]:
        """
        Raises:
            UnresolvedSecretsError: if any name could not be resolved.
        """

        result = self.resolve_all(names, **options)
        if result.unresolved:
            raise UnresolvedSecretsError(result.unresolved, self.primary.value)
        return result.resolved

    def resolve_to_map(self, names: Iterable[str], **options) -> Dict[str, str]:
        result = self.resolve_all(names, **options)
        return {name: secret.value for name, secret in result.resolved.items()}

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def invalidate_cache(self, name: Optional[str] = None) -> None:
        self.cache.invalidate(name)

    def lock_all(self) -> None:
        for name, backend in self.backends.items():
            try:
                backend.lock()
            except SecretBackendError as exc:
                logger.debug("Locking %s failed: %s", name.value, exc.message)
        self.cache.clear()

    def list_mappings(self) -> Dict[str, SecretMapping]:
        return self.mappings.list_mappings()
