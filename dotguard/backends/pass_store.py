"""``pass`` (the standard Unix password store) backend."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Dict, List, Optional

from ..config import BACKEND_TIMEOUT_SECONDS
from ..errors import BackendAuthenticationError, BackendErrorKind
from ..paths import expand_path
from ..settings import PassConfig
from .base import BackendName, CommandBackend, CommandRunner, SecretReference, classify_cli_error

DEFAULT_STORE_PATH = "~/.password-store"
_TREE_CHARS = re.compile(r"[├└│─\s]")


class PassBackend(CommandBackend):
    name = BackendName.pass_store
    display_name = "pass (Unix password store)"

    def __init__(
        self,
        config: Optional[PassConfig] = None,
        runner: Optional[CommandRunner] = None,
        timeout: float = BACKEND_TIMEOUT_SECONDS,
    ):
        super().__init__(runner, timeout)
        self.config = config or PassConfig()
        self.store_path: Path = expand_path(self.config.store_path or DEFAULT_STORE_PATH)

    def _env(self) -> Dict[str, str]:
        env = dict(os.environ)
        if self.config.store_path:
            env["PASSWORD_STORE_DIR"] = str(self.store_path)
        if self.config.gpg_id:
            env["PASSWORD_STORE_GPG_OPTS"] = f"--default-key {self.config.gpg_id}"
        return env

    def is_available(self) -> bool:
        return self.run("pass", "version").ok

    def is_authenticated(self) -> bool:
        return (self.store_path / ".gpg-id").exists()

    def authenticate(self) -> None:
        if not self.is_authenticated():
            raise BackendAuthenticationError(
                self.name.value,
                [
                    "Password store not initialized: run `pass init <gpg-id>`",
                    "See https://www.passwordstore.org/ for setup instructions",
                ],
            )

    def get_secret(self, ref: SecretReference) -> Optional[str]:
        if not ref.backend_path:
            raise self.missing_mapping(ref.name)

        result = self.run("pass", "show", ref.backend_path)
        if not result.ok:
            if classify_cli_error(self.name, result.stderr, result.timed_out) is BackendErrorKind.NOT_FOUND:
                return None
            self.raise_for_result(result, "Reading secret")

        if ref.backend_path.endswith("/*"):
            return result.stdout.strip()
        if result.stdout == "":
            return None
        return result.stdout.split("\n", 1)[0]

    def list_secrets(self) -> List[str]:
        result = self.run("pass", "ls")
        if not result.ok:
            return []

        names: List[str] = []
        for line in result.stdout.split("\n"):
            if not line.strip() or line.startswith("Password Store"):
                continue
            entry = _TREE_CHARS.sub("", line)
            if entry and not entry.endswith("/"):
                names.append(entry)
        return names

    def get_setup_instructions(self) -> List[str]:
        return [
            "Install pass: https://www.passwordstore.org/",
            "Initialize the store with `pass init <gpg-id>`",
            "Map secrets with `dotguard secrets map NAME --backend pass --path path/to/secret`",
        ]
