"""
Secret name → backend path mappings.

The mappings file is safe to commit: it only holds locations such as
``op://Personal/GitHub/token``, never values.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import MAPPINGS_FILENAME, MAPPINGS_FORMAT_VERSION
from ..paths import validate_path_within_root
from ..utils import atomic_write_text
from .base import BackendName

logger = logging.getLogger(__name__)


class SecretMapping(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    onepassword: Optional[str] = Field(default=None, alias="1password")
    bitwarden: Optional[str] = None
    pass_store: Optional[str] = Field(default=None, alias="pass")
    local: Optional[bool] = None

    def is_empty(self) -> bool:
        return not any(v is not None for v in (self.onepassword, self.bitwarden, self.pass_store, self.local))


class MappingsFile(BaseModel):
    version: str = MAPPINGS_FORMAT_VERSION
    mappings: Dict[str, SecretMapping] = Field(default_factory=dict)


_FIELDS = {
    BackendName.onepassword: "onepassword",
    BackendName.bitwarden: "bitwarden",
    BackendName.pass_store: "pass_store",
    BackendName.local: "local",
}


class SecretMappings:
    def __init__(self, repo_root: Union[str, Path], filename: str = MAPPINGS_FILENAME):
        self.repo_root = Path(repo_root)
        self.filename = filename
        self._path = validate_path_within_root(filename, self.repo_root, "secret_mappings")

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> MappingsFile:
        """Load the mappings file. Missing or invalid files yield an empty one."""
        if not self.path.exists():
            return MappingsFile()
        try:
            return MappingsFile.model_validate(json.loads(self.path.read_text(encoding="utf-8")))
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("Failed to load mappings file %s (%s)", self.path, type(exc).__name__)
            return MappingsFile()

    def save(self, data: MappingsFile) -> None:
        payload = data.model_dump(by_alias=True, exclude_none=True)
        atomic_write_text(self.path, json.dumps(payload, indent=2) + "\n")

    def get_mapping(self, name: str) -> Optional[SecretMapping]:
        return self.load().mappings.get(name)

    def set_mapping(self, name: str, backend: BackendName | str, path: Union[str, bool]) -> None:
        backend = BackendName(backend)
        data = self.load()
        mapping = data.mappings.setdefault(name, SecretMapping())
        if backend is BackendName.local:
            mapping.local = path is True or path == "true"
        else:
            setattr(mapping, _FIELDS[backend], str(path))
        self.save(data)
        logger.info("Mapped %s for backend %s", name, backend.value)

    def remove_mapping(self, name: str, backend: Optional[BackendName | str] = None) -> bool:
        data = self.load()
        mapping = data.mappings.get(name)
        if mapping is None:
            return False

        if backend is None:
            del data.mappings[name]
        else:
            setattr(mapping, _FIELDS[BackendName(backend)], None)
            if mapping.is_empty():
                del data.mappings[name]
        self.save(data)
        return True

    def list_mappings(self) -> Dict[str, SecretMapping]:
        return dict(self.load().mappings)

    def get_backend_path(self, name: str, backend: BackendName | str) -> Optional[str]:
        """
        Return the backend-specific path for ``name``.

        For the local backend a ``local: true`` mapping resolves to the name
        itself.
        """

        backend = BackendName(backend)
        mapping = self.get_mapping(name)
        if mapping is None:
            return None
        if backend is BackendName.local:
            return name if mapping.local else None
        return getattr(mapping, _FIELDS[backend]) or None

    def secrets_for_backend(self, backend: BackendName | str) -> List[str]:
        backend = BackendName(backend)
        return [
            name
            for name, mapping in self.load().mappings.items()
            if getattr(mapping, _FIELDS[backend])
        ]
