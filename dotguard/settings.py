"""
Settings loading, validation, and normalization.

This module answers one question:
    "How does the user want secrets to be handled in this repository?"

Responsibilities:
- Load ``<repo>/dotguard.yml``
- Validate types of the ``security`` and ``encryption`` sections
- Normalize defaults
- Write the file back (used by the encryption manager)

This module does NOT:
- Scan files
- Talk to secret backends
- Encrypt anything
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import yaml

from .config import (
    BACKEND_TIMEOUT_SECONDS,
    MAPPINGS_FILENAME,
    MAX_FILE_SIZE,
    SECRET_CACHE_TTL_SECONDS,
    SECRETS_FILENAME,
    SETTINGS_FILENAME,
)
from .errors import ConfigError
from .patterns import SecretPattern, Severity, create_custom_pattern
from .scanner import ScanOptions
from .utils import atomic_write_text

logger = logging.getLogger(__name__)

SCANNERS = ("builtin", "gitleaks", "trufflehog")
SECRET_BACKENDS = ("local", "1password", "bitwarden", "pass", "auto")


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------


@dataclass
class CustomPatternConfig:
    name: str
    pattern: str
    severity: str = "high"
    description: Optional[str] = None
    placeholder: Optional[str] = None
    flags: Optional[str] = None


@dataclass
class OnePasswordConfig:
    vault: Optional[str] = None
    service_account: bool = False
    cache_timeout: float = SECRET_CACHE_TTL_SECONDS


@dataclass
class BitwardenConfig:
    server_url: Optional[str] = None
    cache_timeout: float = SECRET_CACHE_TTL_SECONDS


@dataclass
class PassConfig:
    store_path: Optional[str] = None
    gpg_id: Optional[str] = None


@dataclass
class BackendsConfig:
    onepassword: OnePasswordConfig = field(default_factory=OnePasswordConfig)
    bitwarden: BitwardenConfig = field(default_factory=BitwardenConfig)
    pass_store: PassConfig = field(default_factory=PassConfig)


@dataclass
class SecurityConfig:
    scan_secrets: bool = True
    block_on_secrets: bool = True
    min_severity: Severity = Severity.high
    scanner: str = "builtin"
    gitleaks_path: Optional[str] = None
    custom_patterns: List[CustomPatternConfig] = field(default_factory=list)
    exclude_patterns: List[str] = field(default_factory=list)
    exclude_files: List[str] = field(default_factory=list)
    max_file_size: int = MAX_FILE_SIZE
    secret_backend: str = "local"
    backends: BackendsConfig = field(default_factory=BackendsConfig)
    cache_secrets: bool = True
    secret_mappings: str = MAPPINGS_FILENAME
    secrets_file: str = SECRETS_FILENAME
    backend_timeout: float = BACKEND_TIMEOUT_SECONDS

    def build_custom_patterns(self) -> List[SecretPattern]:
        """
        Compile configured custom patterns.

        Names that slug to the same id get numeric suffixes (``-1``, ``-2`` ...)
        so every pattern id stays unique.

        Raises:
            UnsafePatternError: if any pattern is rejected.
        """

        patterns = []
        seen: Set[str] = set()
        for custom in self.custom_patterns:
            base_id = re.sub(r"[^a-z0-9]+", "-", custom.name.lower()).strip("-") or "pattern"
            pattern_id = base_id
            counter = 1
            while pattern_id in seen:
                pattern_id = f"{base_id}-{counter}"
                counter += 1
            if pattern_id != base_id:
                logger.warning("Custom pattern %r shares an id with another pattern, using %s", custom.name, pattern_id)
            seen.add(pattern_id)
            patterns.append(
                create_custom_pattern(
                    pattern_id,
                    custom.name,
                    custom.pattern,
                    severity=custom.severity,
                    description=custom.description,
                    placeholder=custom.placeholder,
                    flags=custom.flags,
                )
            )
        return patterns

    def scan_options(self) -> ScanOptions:
        return ScanOptions(
            custom_patterns=self.build_custom_patterns(),
            exclude_pattern_ids=list(self.exclude_patterns),
            min_severity=self.min_severity,
            max_file_size=self.max_file_size,
        )


@dataclass
class EncryptionSettings:
    enabled: bool = False
    salt: Optional[str] = None
    verification_hash: Optional[str] = None


@dataclass
class Settings:
    security: SecurityConfig = field(default_factory=SecurityConfig)
    encryption: EncryptionSettings = field(default_factory=EncryptionSettings)
    # Sections owned by other parts of the tracker, written back untouched.
    extra: Dict[str, Any] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Loading API
    # ------------------------------------------------------------------

    @classmethod
    def load(cls, path: str | Path) -> "Settings":
        """
        Load and validate a settings file.

        A missing file yields the defaults.

        Raises:
            ConfigError: if the file is not valid YAML or has invalid values
        """

        path = Path(path)
        if not path.exists():
            return cls()

        try:
            with path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"{path} is not valid YAML ({exc.__class__.__name__})")

        if not isinstance(raw, dict):
            raise ConfigError(f"{path} must contain a mapping at the top level")

        return cls._from_dict(raw)

    @classmethod
    def for_repo(cls, repo_root: str | Path) -> "Settings":
        return cls.load(settings_path(repo_root))

    def save(self, path: str | Path) -> None:
        data = dict(self.extra)
        data["security"] = self._dump_security()
        data["encryption"] = {
            "enabled": self.encryption.enabled,
            "salt": self.encryption.salt,
            "verification_hash": self.encryption.verification_hash,
        }
        atomic_write_text(Path(path), yaml.safe_dump(data, sort_keys=False))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "Settings":
        extra = {k: v for k, v in data.items() if k not in ("security", "encryption")}
        return cls(
            security=cls._parse_security(_section(data, "security")),
            encryption=cls._parse_encryption(_section(data, "encryption")),
            extra=extra,
        )

    @staticmethod
    def _parse_security(data: Dict[str, Any]) -> SecurityConfig:
        defaults = SecurityConfig()
        scanner = _str(data, "scanner", defaults.scanner, "security")
        if scanner not in SCANNERS:
            raise ConfigError(f"security.scanner must be one of {', '.join(SCANNERS)}")
        backend = _str(data, "secret_backend", defaults.secret_backend, "security")
        if backend not in SECRET_BACKENDS:
            raise ConfigError(f"security.secret_backend must be one of {', '.join(SECRET_BACKENDS)}")

        return SecurityConfig(
            scan_secrets=_bool(data, "scan_secrets", defaults.scan_secrets, "security"),
            block_on_secrets=_bool(data, "block_on_secrets", defaults.block_on_secrets, "security"),
            min_severity=Severity.parse(data.get("min_severity", defaults.min_severity.value)),
            scanner=scanner,
            gitleaks_path=_opt_str(data, "gitleaks_path", "security"),
            custom_patterns=Settings._parse_custom_patterns(data.get("custom_patterns") or []),
            exclude_patterns=_str_list(data, "exclude_patterns", "security"),
            exclude_files=_str_list(data, "exclude_files", "security"),
            max_file_size=_int(data, "max_file_size", defaults.max_file_size, "security"),
            secret_backend=backend,
            backends=Settings._parse_backends(_section(data, "backends", "security")),
            cache_secrets=_bool(data, "cache_secrets", defaults.cache_secrets, "security"),
            secret_mappings=_str(data, "secret_mappings", defaults.secret_mappings, "security"),
            secrets_file=_str(data, "secrets_file", defaults.secrets_file, "security"),
            backend_timeout=_number(data, "backend_timeout", defaults.backend_timeout, "security"),
        )

    @staticmethod
    def _parse_custom_patterns(items: Any) -> List[CustomPatternConfig]:
        if not isinstance(items, list):
            raise ConfigError("security.custom_patterns must be a list")

        patterns: List[CustomPatternConfig] = []
        for idx, item in enumerate(items):
            where = f"security.custom_patterns[{idx}]"
            if not isinstance(item, dict):
                raise ConfigError(f"{where} must be a mapping")
            for key in ("name", "pattern"):
                if not isinstance(item.get(key), str) or not item[key]:
                    raise ConfigError(f"{where} missing '{key}'")

            patterns.append(
                CustomPatternConfig(
                    name=item["name"],
                    pattern=item["pattern"],
                    severity=Severity.parse(item.get("severity", "high")).value,
                    description=_opt_str(item, "description", where),
                    placeholder=_opt_str(item, "placeholder", where),
                    flags=_opt_str(item, "flags", where),
                )
            )
        return patterns

    @staticmethod
    def _parse_backends(data: Dict[str, Any]) -> BackendsConfig:
        op = _section(data, "1password", "security.backends")
        bw = _section(data, "bitwarden", "security.backends")
        ps = _section(data, "pass", "security.backends")
        return BackendsConfig(
            onepassword=OnePasswordConfig(
                vault=_opt_str(op, "vault", "security.backends.1password"),
                service_account=_bool(op, "service_account", False, "security.backends.1password"),
                cache_timeout=_number(op, "cache_timeout", SECRET_CACHE_TTL_SECONDS,
                                      "security.backends.1password"),
            ),
            bitwarden=BitwardenConfig(
                server_url=_opt_str(bw, "server_url", "security.backends.bitwarden"),
                cache_timeout=_number(bw, "cache_timeout", SECRET_CACHE_TTL_SECONDS,
                                      "security.backends.bitwarden"),
            ),
            pass_store=PassConfig(
                store_path=_opt_str(ps, "store_path", "security.backends.pass"),
                gpg_id=_opt_str(ps, "gpg_id", "security.backends.pass"),
            ),
        )

    @staticmethod
    def _parse_encryption(data: Dict[str, Any]) -> EncryptionSettings:
        return EncryptionSettings(
            enabled=_bool(data, "enabled", False, "encryption"),
            salt=_opt_str(data, "salt", "encryption"),
            verification_hash=_opt_str(data, "verification_hash", "encryption"),
        )

    def _dump_security(self) -> Dict[str, Any]:
        sec = self.security
        backends = sec.backends
        return {
            "scan_secrets": sec.scan_secrets,
            "block_on_secrets": sec.block_on_secrets,
            "min_severity": sec.min_severity.value,
            "scanner": sec.scanner,
            "gitleaks_path": sec.gitleaks_path,
            "custom_patterns": [
                {k: v for k, v in vars(p).items() if v is not None} for p in sec.custom_patterns
            ],
            "exclude_patterns": list(sec.exclude_patterns),
            "exclude_files": list(sec.exclude_files),
            "max_file_size": sec.max_file_size,
            "secret_backend": sec.secret_backend,
            "backends": {
                "1password": vars(backends.onepassword).copy(),
                "bitwarden": vars(backends.bitwarden).copy(),
                "pass": vars(backends.pass_store).copy(),
            },
            "cache_secrets": sec.cache_secrets,
            "secret_mappings": sec.secret_mappings,
            "secrets_file": sec.secrets_file,
            "backend_timeout": sec.backend_timeout,
        }


def settings_path(repo_root: str | Path) -> Path:
    return Path(repo_root) / SETTINGS_FILENAME


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------


def _section(data: Dict[str, Any], key: str, parent: Optional[str] = None) -> Dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        where = f"{parent}.{key}" if parent else key
        raise ConfigError(f"{where} must be a mapping")
    return value


def _bool(data: Dict[str, Any], key: str, default: bool, section: str) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{section}.{key} must be true or false")
    return value


def _int(data: Dict[str, Any], key: str, default: int, section: str) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"{section}.{key} must be a positive integer")
    return value


def _number(data: Dict[str, Any], key: str, default: float, section: str) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"{section}.{key} must be a positive number")
    return float(value)


def _str(data: Dict[str, Any], key: str, default: str, section: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str):
        raise ConfigError(f"{section}.{key} must be a string")
    return value


def _opt_str(data: Dict[str, Any], key: str, section: str) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ConfigError(f"{section}.{key} must be a string")
    return value


def _str_list(data: Dict[str, Any], key: str, section: str) -> List[str]:
    value = data.get(key) or []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"{section}.{key} must be a list of strings")
    return list(value)
