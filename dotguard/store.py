"""
Local secret store.

This module is responsible for:
- Persisting placeholder name → secret value mappings in a git-ignored JSON file
- Validating and normalizing placeholder names
- Making sure the store file is listed in the repository ``.gitignore``

This module does NOT:
- Scan or redact content
- Talk to external password managers (see ``backends``)

The whole store is rewritten on every change through a temp file and an
atomic rename, with owner-only permissions.
"""

from __future__ import annotations

import json
import logging
import os
import re
import stat
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import (
    GITIGNORE_FILENAME,
    REPO_DIR_MODE,
    SECRET_NAME_MAX_LENGTH,
    SECRETS_FILE_MODE,
    SECRETS_FILENAME,
    STORE_FORMAT_VERSION,
    PLACEHOLDER_PREFIX,
    PLACEHOLDER_SUFFIX,
)
from .errors import InvalidSecretNameError, SecretStoreCorruptError
from .paths import validate_path_within_root
from .utils import atomic_write_text

logger = logging.getLogger(__name__)

_NAME_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]*$")
GITIGNORE_COMMENT = "# Local secrets (NEVER commit)"


# ---------------------------------------------------------------------------
# Name grammar
# ---------------------------------------------------------------------------


def is_valid_secret_name(name: str) -> bool:
    """Uppercase identifier starting with a letter, at most 100 characters."""
    if not name or len(name) > SECRET_NAME_MAX_LENGTH:
        return False
    return bool(_NAME_PATTERN.match(name))


def normalize_secret_name(name: str) -> str:
    """Coerce arbitrary text into a valid secret name."""
    normalized = re.sub(r"[^A-Z0-9_]", "_", (name or "").upper())
    normalized = re.sub(r"^[0-9_]+", "", normalized)
    normalized = re.sub(r"_+", "_", normalized).strip("_")

    if not normalized:
        normalized = "SECRET"
    normalized = normalized[:SECRET_NAME_MAX_LENGTH]
    if not normalized[0].isalpha():
        normalized = ("S_" + normalized)[:SECRET_NAME_MAX_LENGTH]
    return normalized


def _token(name: str) -> str:
    return f"{PLACEHOLDER_PREFIX}{name}{PLACEHOLDER_SUFFIX}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# File schema
# ---------------------------------------------------------------------------


class SecretEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    value: str
    placeholder: str
    description: Optional[str] = None
    source: Optional[str] = None
    added_at: str = Field(alias="addedAt")
    last_used: Optional[str] = Field(default=None, alias="lastUsed")

    def __repr__(self) -> str:
        return f"SecretEntry(placeholder={self.placeholder!r}, value=<hidden>)"

    __str__ = __repr__


class SecretsFile(BaseModel):
    version: str = STORE_FORMAT_VERSION
    secrets: Dict[str, SecretEntry] = Field(default_factory=dict)


@dataclass(frozen=True)
class SecretInfo:
    """Listing view of a stored secret. Never carries the value."""
    name: str
    placeholder: str
    description: Optional[str]
    source: Optional[str]
    added_at: str
    last_used: Optional[str]


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SecretStore:
    def __init__(self, repo_root: str | Path, filename: str = SECRETS_FILENAME):
        self.repo_root = Path(repo_root)
        self.filename = filename
        self._path = validate_path_within_root(filename, self.repo_root, "secrets_file")

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> SecretsFile:
        """
        Load the store, returning an empty one if the file does not exist.

        Raises:
            SecretStoreCorruptError: if the file is unreadable or malformed.
        """

        path = self.path
        if not path.exists():
            return SecretsFile()

        self._tighten_permissions(path)

        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return SecretsFile.model_validate(raw)
        except FileNotFoundError:
            logger.warning("Secrets store disappeared while reading: %s", path)
            return SecretsFile()
        except (OSError, ValueError, ValidationError) as exc:
            # ValidationError text can echo input values; keep only the type.
            detail = type(exc).__name__ if isinstance(exc, ValidationError) else str(exc)
            logger.error("Failed to load secrets store %s (%s)", path, type(exc).__name__)
            raise SecretStoreCorruptError(str(path), detail) from None

    def save(self, data: SecretsFile) -> None:
        self.ensure_secrets_gitignored()
        self.repo_root.mkdir(parents=True, exist_ok=True)
        try:
            os.chmod(self.repo_root, REPO_DIR_MODE)
        except OSError:
            logger.debug("Cannot restrict permissions on %s", self.repo_root)

        payload = data.model_dump(by_alias=True, exclude_none=True)
        atomic_write_text(self.path, json.dumps(payload, indent=2) + "\n", mode=SECRETS_FILE_MODE)

    @staticmethod
    def _tighten_permissions(path: Path) -> None:
        try:
            mode = stat.S_IMODE(path.stat().st_mode)
            if mode & 0o077:
                os.chmod(path, SECRETS_FILE_MODE)
                logger.warning("Fixed permissive permissions on %s", path)
        except OSError:
            logger.debug("Cannot check permissions on %s", path)

    def ensure_secrets_gitignored(self) -> bool:
        """
        Make sure the store file name is listed in ``<repo>/.gitignore``.

        Returns:
            True if the ignore file was changed.
        """

        gitignore = self.repo_root / GITIGNORE_FILENAME
        content = gitignore.read_text(encoding="utf-8") if gitignore.exists() else ""
        lines = [line.strip() for line in content.splitlines()]
        if self.filename in lines or f"/{self.filename}" in lines:
            return False

        block = f"{GITIGNORE_COMMENT}\n{self.filename}\n"
        new_content = f"{content.rstrip()}\n\n{block}" if content.strip() else block
        self.repo_root.mkdir(parents=True, exist_ok=True)
        atomic_write_text(gitignore, new_content)
        logger.info("Added %s to %s", self.filename, gitignore)
        return True

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def get(self, name: str) -> Optional[str]:
        entry = self.load().secrets.get(name)
        return entry.value if entry else None

    def has(self, name: str) -> bool:
        return name in self.load().secrets

    def set(
        self,
        name: str,
        value: str,
        description: Optional[str] = None,
        source: Optional[str] = None,
    ) -> str:
        """
        Store ``value`` under ``name`` (normalized) and return the final name.

        Raises:
            InvalidSecretNameError: if the name cannot be used.
        """

        return self.set_many([(name, value, description, source)])[0]

    def set_many(self, entries: Iterable[tuple]) -> List[str]:
        """Store several ``(name, value, description, source)`` tuples in one write."""
        data = self.load()
        now = _now()
        names: List[str] = []

        for name, value, description, source in entries:
            final = normalize_secret_name(name) if not is_valid_secret_name(name) else name
            if not is_valid_secret_name(final):
                raise InvalidSecretNameError(name)
            previous = data.secrets.get(final)
            data.secrets[final] = SecretEntry(
                value=value,
                placeholder=_token(final),
                description=description,
                source=source,
                added_at=previous.added_at if previous else now,
                last_used=now,
            )
            names.append(final)

        self.save(data)
        return names

    def unset(self, name: str) -> bool:
        data = self.load()
        if name not in data.secrets:
            return False
        del data.secrets[name]
        self.save(data)
        return True

    def touch(self, names: Iterable[str]) -> None:
        """Update ``lastUsed`` for the given names that exist."""
        data = self.load()
        now = _now()
        changed = False
        for name in names:
            entry = data.secrets.get(name)
            if entry is not None:
                entry.last_used = now
                changed = True
        if changed:
            self.save(data)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list(self) -> List[SecretInfo]:
        return [
            SecretInfo(
                name=name,
                placeholder=entry.placeholder,
                description=entry.description,
                source=entry.source,
                added_at=entry.added_at,
                last_used=entry.last_used,
            )
            for name, entry in self.load().secrets.items()
        ]

    def all_values(self) -> Dict[str, str]:
        return {name: entry.value for name, entry in self.load().secrets.items()}

    def count(self) -> int:
        return len(self.load().secrets)
