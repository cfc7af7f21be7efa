"""Bitwarden backend driven by the ``bw`` CLI."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, List, Optional

from ..config import BACKEND_TIMEOUT_SECONDS
from ..errors import BackendAuthenticationError, BackendErrorKind, SecretBackendError, sanitize_detail
from ..settings import BitwardenConfig
from .base import BackendName, CommandBackend, CommandRunner, SecretReference, classify_cli_error

logger = logging.getLogger(__name__)

SESSION_ENV = "BW_SESSION"
SERVER_ENV = "BW_URL"

STATUS_UNAUTHENTICATED = "unauthenticated"
STATUS_LOCKED = "locked"
STATUS_UNLOCKED = "unlocked"


class BitwardenBackend(CommandBackend):
    name = BackendName.bitwarden
    display_name = "Bitwarden"

    def __init__(
        self,
        config: Optional[BitwardenConfig] = None,
        runner: Optional[CommandRunner] = None,
        timeout: float = BACKEND_TIMEOUT_SECONDS,
    ):
        super().__init__(runner, timeout)
        self.config = config or BitwardenConfig()
        self.session_key: Optional[str] = os.environ.get(SESSION_ENV)

    def _env(self) -> Dict[str, str]:
        env = dict(os.environ)
        if self.session_key:
            env[SESSION_ENV] = self.session_key
        if self.config.server_url:
            env[SERVER_ENV] = self.config.server_url
        return env

    def is_available(self) -> bool:
        return self.run("bw", "--version").ok

    def status_name(self) -> Optional[str]:
        """Return the vault status reported by ``bw status``, or None if unknown."""
        result = self.run("bw", "status")
        if not result.ok:
            return None
        try:
            return json.loads(result.stdout).get("status")
        except (ValueError, AttributeError):
            logger.warning("Unexpected output from `bw status`")
            return None

    def is_authenticated(self) -> bool:
        return self.status_name() == STATUS_UNLOCKED

    def authenticate(self) -> None:
        status = self.status_name()
        if status == STATUS_UNLOCKED:
            return
        if status == STATUS_LOCKED:
            raise BackendAuthenticationError(
                self.name.value,
                [
                    "Run `bw unlock` and set the BW_SESSION environment variable",
                    'Or run: export BW_SESSION="$(bw unlock --raw)"',
                ],
            )
        raise BackendAuthenticationError(self.name.value, self.get_setup_instructions())

    def lock(self) -> None:
        result = self.run("bw", "lock")
        if result.ok:
            self.session_key = None
        else:
            logger.debug("bw lock failed: %s", sanitize_detail(result.stderr))

    @staticmethod
    def _pick_field(item: Dict[str, Any], field_name: Optional[str]) -> Optional[str]:
        login = item.get("login") or {}
        if not field_name:
            return login.get("password")

        wanted = field_name.lower()
        for custom in item.get("fields") or []:
            if str(custom.get("name", "")).lower() == wanted:
                return custom.get("value")

        if wanted == "username":
            return login.get("username") or None
        if wanted == "password":
            return login.get("password") or None
        if wanted == "notes":
            return item.get("notes") or None
        return None

    def get_secret(self, ref: SecretReference) -> Optional[str]:
        """
        Look up ``item`` or ``item/field``.

        Without a field the login password is returned. A field name is
        matched against custom fields first (case-insensitive), then
        ``username``, ``password`` and ``notes``.
        """

        if not ref.backend_path:
            raise self.missing_mapping(ref.name)

        item_name, _, field_name = ref.backend_path.partition("/")
        result = self.run("bw", "get", "item", item_name)
        if not result.ok:
            if classify_cli_error(self.name, result.stderr, result.timed_out) is BackendErrorKind.NOT_FOUND:
                return None
            self.raise_for_result(result, "Getting item")

        try:
            item = json.loads(result.stdout)
        except ValueError:
            raise SecretBackendError(
                self.name.value,
                f"Unexpected output from `bw get item` for secret {ref.name}",
                kind=BackendErrorKind.UNKNOWN,
            ) from None
        if not isinstance(item, dict):
            return None
        return self._pick_field(item, field_name or None)

    def get_setup_instructions(self) -> List[str]:
        return [
            "Install the Bitwarden CLI: https://bitwarden.com/help/cli/",
            "Log in with `bw login`",
            'Unlock and export the session: export BW_SESSION="$(bw unlock --raw)"',
            "Map secrets with `dotguard secrets map NAME --backend bitwarden --path item[/field]`",
        ]
