"""Local backend: values come from the git-ignored secrets store."""

from __future__ import annotations

from typing import List, Optional

from ..store import SecretStore
from .base import BackendName, SecretBackend, SecretReference


class LocalBackend(SecretBackend):
    name = BackendName.local
    display_name = "Local Store"

    def __init__(self, store: SecretStore):
        self.store = store

    def is_available(self) -> bool:
        return True

    def is_authenticated(self) -> bool:
        return True

    def authenticate(self) -> None:
        return None

    def get_secret(self, ref: SecretReference) -> Optional[str]:
        return self.store.get(ref.name)

    def list_secrets(self) -> List[str]:
        return [info.name for info in self.store.list()]

    def get_setup_instructions(self) -> List[str]:
        return [
            f"Secrets are kept in {self.store.path} (git-ignored)",
            "Run `dotguard secrets set NAME` to add one",
        ]
