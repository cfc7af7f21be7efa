"""1Password backend driven by the ``op`` CLI."""

from __future__ import annotations

import json
import logging
import os
from typing import List, Optional

from ..config import BACKEND_TIMEOUT_SECONDS
from ..errors import BackendErrorKind, SecretBackendError, sanitize_detail
from ..settings import OnePasswordConfig
from .base import BackendName, CommandBackend, CommandRunner, SecretReference, classify_cli_error

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_ENV = "OP_SERVICE_ACCOUNT_TOKEN"
REFERENCE_PREFIX = "op://"


class OnePasswordBackend(CommandBackend):
    name = BackendName.onepassword
    display_name = "1Password"

    def __init__(
        self,
        config: Optional[OnePasswordConfig] = None,
        runner: Optional[CommandRunner] = None,
        timeout: float = BACKEND_TIMEOUT_SECONDS,
    ):
        super().__init__(runner, timeout)
        self.config = config or OnePasswordConfig()

    @staticmethod
    def _service_account() -> bool:
        return bool(os.environ.get(SERVICE_ACCOUNT_ENV))

    def is_available(self) -> bool:
        return self.run("op", "--version").ok

    def is_authenticated(self) -> bool:
        if self.run("op", "account", "get", "--format=json").ok:
            return True
        if self._service_account():
            return self.run("op", "vault", "list", "--format=json").ok
        return False

    def authenticate(self) -> None:
        if self._service_account():
            result = self.run("op", "vault", "list", "--format=json")
            if result.ok:
                return
            raise SecretBackendError(
                self.name.value,
                f"Service account token is invalid: {sanitize_detail(result.stderr)}",
                [
                    f"Check that {SERVICE_ACCOUNT_ENV} is set correctly",
                    "Service account tokens can be created at https://start.1password.com/",
                ],
                kind=BackendErrorKind.AUTH_REQUIRED,
            )
        super().authenticate()

    def lock(self) -> None:
        if self._service_account():
            return
        result = self.run("op", "signout")
        if not result.ok:
            logger.debug("op signout failed: %s", sanitize_detail(result.stderr))

    def _reference(self, ref: SecretReference) -> str:
        if not ref.backend_path:
            raise self.missing_mapping(ref.name)

        path = ref.backend_path
        if path.startswith(REFERENCE_PREFIX):
            return path
        if self.config.vault:
            return f"{REFERENCE_PREFIX}{self.config.vault}/{path}"
        raise SecretBackendError(
            self.name.value,
            f"Invalid path format for secret {ref.name}",
            [
                "Path must be in op://vault/item/field format",
                "Or set a default vault: security.backends.1password.vault",
            ],
            kind=BackendErrorKind.INVALID_PATH,
        )

    def get_secret(self, ref: SecretReference) -> Optional[str]:
        result = self.run("op", "read", self._reference(ref), "--no-newline")
        if result.ok:
            return result.stdout
        if classify_cli_error(self.name, result.stderr, result.timed_out) is BackendErrorKind.NOT_FOUND:
            return None
        self.raise_for_result(result, "Reading secret")
        return None

    def list_vaults(self) -> List[str]:
        result = self.run("op", "vault", "list", "--format=json")
        if not result.ok:
            return []
        try:
            return [vault["name"] for vault in json.loads(result.stdout)]
        except (ValueError, KeyError, TypeError):
            logger.warning("Unexpected output from `op vault list`")
            return []

    def get_setup_instructions(self) -> List[str]:
        return [
            "Install the 1Password CLI: https://1password.com/downloads/command-line/",
            "Sign in with `op signin`",
            f"For CI, set {SERVICE_ACCOUNT_ENV} to a service account token",
            "Map secrets with `dotguard secrets map NAME --backend 1password --path op://vault/item/field`",
        ]
