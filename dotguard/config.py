"""
Global constants and environment handling.

This module is responsible for:
- Defining format constants (placeholder grammar, blob header, store layout)
- Defining resource limits and timeouts used by the scanning engine
- Resolving the repository root and state directory from the environment

Nothing in this file should depend on:
- the filesystem contents
- the YAML settings file
- CLI arguments

If something here changes, the on-disk formats change with it.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Final

# ---------------------------------------------------------------------------
# Tool / format versioning
# ---------------------------------------------------------------------------

TOOL_VERSION: Final[str] = "0.1.0"
STORE_FORMAT_VERSION: Final[str] = "1.0.0"
MAPPINGS_FORMAT_VERSION: Final[str] = "1.0.0"

# ---------------------------------------------------------------------------
# Repository layout
# ---------------------------------------------------------------------------

DEFAULT_REPO_DIR: Final[str] = "~/.dotguard"
SETTINGS_FILENAME: Final[str] = "dotguard.yml"
SECRETS_FILENAME: Final[str] = "secrets.local.json"
MAPPINGS_FILENAME: Final[str] = "secrets.mappings.json"
IGNORE_FILENAME: Final[str] = ".dotguardignore"
GITIGNORE_FILENAME: Final[str] = ".gitignore"
AUDIT_FILENAME: Final[str] = "audit.log"

SECRETS_FILE_MODE: Final[int] = 0o600
REPO_DIR_MODE: Final[int] = 0o700

# ---------------------------------------------------------------------------
# Placeholders
# ---------------------------------------------------------------------------

PLACEHOLDER_PREFIX: Final[str] = "{{SECRET:"
PLACEHOLDER_SUFFIX: Final[str] = "}}"
SECRET_NAME_MAX_LENGTH: Final[int] = 100

# ---------------------------------------------------------------------------
# Scanning limits
# ---------------------------------------------------------------------------

MAX_FILE_SIZE: Final[int] = 10 * 1024 * 1024
MAX_FILES_PER_SCAN: Final[int] = 1000
WARN_FILES_THRESHOLD: Final[int] = 100
PATTERN_TIMEOUT_SECONDS: Final[float] = 5.0
SCAN_TIMEOUT_SECONDS: Final[float] = 30.0
MIN_SECRET_LENGTH: Final[int] = 4
SCAN_CONCURRENCY: Final[int] = 10
EXTERNAL_SCAN_CONCURRENCY: Final[int] = 5

# Size policy for tracked files (default remote limits)
SIZE_WARN_THRESHOLD: Final[int] = 50 * 1024 * 1024
SIZE_BLOCK_THRESHOLD: Final[int] = 100 * 1024 * 1024

# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

BACKEND_TIMEOUT_SECONDS: Final[float] = 30.0
SECRET_CACHE_TTL_SECONDS: Final[float] = 300.0

# ---------------------------------------------------------------------------
# Encryption (AES-256-GCM, scrypt)
# ---------------------------------------------------------------------------

MAGIC_HEADER: Final[bytes] = b"DOTGD-ENC-1"
SALT_SIZE: Final[int] = 16
AES_NONCE_SIZE: Final[int] = 12
AES_TAG_SIZE: Final[int] = 16
KEY_SIZE: Final[int] = 32
SCRYPT_N: Final[int] = 2 ** 17
SCRYPT_R: Final[int] = 8
SCRYPT_P: Final[int] = 1
MIN_PASSWORD_LENGTH: Final[int] = 8

# ---------------------------------------------------------------------------
# Environment variable names
# ---------------------------------------------------------------------------

ENV_REPO_DIR: Final[str] = "DOTGUARD_REPO"
ENV_STATE_DIR: Final[str] = "DOTGUARD_STATE_DIR"
ENV_PASSWORD: Final[str] = "DOTGUARD_PASSWORD"

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def get_repo_root(override: str | None = None) -> Path:
    """
    Return the repository root used to store tracked files.

    Precedence: explicit override, then ``DOTGUARD_REPO``, then
    ``~/.dotguard``.
    """

    raw = override or os.getenv(ENV_REPO_DIR) or DEFAULT_REPO_DIR
    return Path(raw).expanduser().resolve()


def get_state_dir() -> Path:
    """Return the per-user state directory (audit log lives here)."""

    raw = os.getenv(ENV_STATE_DIR) or DEFAULT_REPO_DIR
    return Path(raw).expanduser()


def load_password_from_env() -> str | None:
    """
    Return the encryption password from the environment, if set.

    The value is returned as-is and must never be logged.
    """

    raw = os.getenv(ENV_PASSWORD)
    return raw or None
