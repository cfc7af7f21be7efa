"""
Typed errors raised across the secret-protection core.

Every error carries a machine-readable ``code`` and a list of human
remediation hints. Messages name paths, placeholder names and counts,
never secret values.

Recoverable conditions (skipped files, scan degradations) are returned as
data by the components that detect them and do not appear here.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, List, Optional

MAX_DETAIL_LENGTH = 200


class DotguardError(RuntimeError):
    """Base class for all errors raised by dotguard."""

    code = "DOTGUARD_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        suggestions: Optional[Iterable[str]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.suggestions: List[str] = list(suggestions or [])

    def format(self) -> str:
        """Return the message followed by its suggestions, one per line."""
        lines = [self.message]
        for hint in self.suggestions:
            lines.append(f"  → {hint}")
        return "\n".join(lines)


def sanitize_detail(detail: str) -> str:
    """Reduce external tool output to a single bounded line."""
    first = (detail or "").strip().splitlines()
    line = first[0] if first else ""
    if len(line) > MAX_DETAIL_LENGTH:
        line = line[: MAX_DETAIL_LENGTH - 3] + "..."
    return line


# ---------------------------------------------------------------------------
# Policy rejections
# ---------------------------------------------------------------------------


class UnsafePathError(DotguardError):
    def __init__(self, path: str, reason: str):
        super().__init__(
            f"Unsafe path '{path}': {reason}",
            "UNSAFE_PATH",
            ["Only files inside your home directory can be tracked"],
        )
        self.path = path
        self.reason = reason


class PrivateKeyError(DotguardError):
    def __init__(self, path: str):
        super().__init__(
            f"Cannot track private key: {path}",
            "PRIVATE_KEY",
            [
                "Private keys should never be committed to a repository",
                "Track the matching .pub file or your ssh config instead",
            ],
        )
        self.path = path


class TrackedFileNotFoundError(DotguardError):
    def __init__(self, path: str):
        super().__init__(
            f"File not found: {path}",
            "FILE_NOT_FOUND",
            [
                "Check that the path is correct",
                "Use absolute paths or paths relative to home directory",
            ],
        )
        self.path = path


class FileAlreadyTrackedError(DotguardError):
    def __init__(self, path: str):
        super().__init__(
            f"File is already tracked: {path}",
            "ALREADY_TRACKED",
            ["Sync the repository to update it instead of adding it again"],
        )
        self.path = path


class SecretsDetectedError(DotguardError):
    def __init__(self, count: int, files: List[str]):
        file_list = ", ".join(files[:3])
        if len(files) > 3:
            file_list += f" and {len(files) - 3} more"
        super().__init__(
            f"Found {count} potential secret(s) in: {file_list}",
            "SECRETS_DETECTED",
            [
                "Review the detected secrets and choose how to proceed",
                "Use --force to bypass secret scanning (not recommended)",
                "Run `dotguard secrets list` to see stored secrets",
                "Set security.scan_secrets to false in dotguard.yml to disable scanning",
            ],
        )
        self.count = count
        self.files = list(files)


class OperationCancelledError(DotguardError):
    def __init__(self, reason: str = "operation cancelled"):
        super().__init__(f"Operation cancelled: {reason}", "CANCELLED")
        self.reason = reason


# ---------------------------------------------------------------------------
# Input / configuration
# ---------------------------------------------------------------------------


class ConfigError(DotguardError):
    def __init__(self, message: str):
        super().__init__(
            f"Configuration error: {message}",
            "CONFIG_ERROR",
            ["Fix the value in dotguard.yml or delete the key to use the default"],
        )


class ScanLimitError(DotguardError):
    def __init__(self, count: int, limit: int):
        super().__init__(
            f"Too many files to scan ({count} > {limit})",
            "SCAN_LIMIT",
            [
                "Scan in smaller batches",
                "Use security.exclude_files to reduce the scan scope",
            ],
        )
        self.count = count
        self.limit = limit


class UnsafePatternError(DotguardError):
    def __init__(self, reason: str):
        super().__init__(
            f"Unsafe custom regex pattern rejected: {reason}",
            "UNSAFE_PATTERN",
            ["Simplify the pattern and bound every repetition"],
        )
        self.reason = reason


class InvalidSecretNameError(DotguardError):
    def __init__(self, name: str):
        super().__init__(
            f"Invalid secret name: {name!r}",
            "INVALID_SECRET_NAME",
            ["Secret names must start with A-Z and contain only A-Z, 0-9 and _"],
        )
        self.name = name


# ---------------------------------------------------------------------------
# Storage / integrity
# ---------------------------------------------------------------------------


class SecretStoreCorruptError(DotguardError):
    def __init__(self, path: str, detail: str):
        super().__init__(
            f"Failed to load secrets store from '{path}': {sanitize_detail(detail)}",
            "STORE_CORRUPT",
            [
                "Restore the file from a backup or another machine",
                "Delete it to start over (stored secrets will be lost)",
            ],
        )
        self.path = path


class EncryptionError(DotguardError):
    def __init__(self, message: str, suggestions: Optional[Iterable[str]] = None):
        super().__init__(message, "ENCRYPTION_ERROR", suggestions)


class DecryptionError(DotguardError):
    GENERIC_MESSAGE = "Decryption failed: wrong password or corrupted data"

    def __init__(self):
        super().__init__(self.GENERIC_MESSAGE, "DECRYPTION_FAILED")


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class BackendErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    AUTH_REQUIRED = "auth_required"
    LOCKED = "locked"
    DECRYPTION_FAILED = "decryption_failed"
    INVALID_PATH = "invalid_path"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class SecretBackendError(DotguardError):
    def __init__(
        self,
        backend: str,
        message: str,
        suggestions: Optional[Iterable[str]] = None,
        kind: BackendErrorKind = BackendErrorKind.UNKNOWN,
    ):
        super().__init__(f"[{backend}] {message}", "BACKEND_ERROR", suggestions)
        self.backend = backend
        self.kind = kind


class BackendNotAvailableError(SecretBackendError):
    def __init__(self, backend: str, reason: str):
        super().__init__(
            backend,
            f"Backend not available: {reason}",
            [
                f"Install the {backend} CLI or choose another backend",
                "Run `dotguard secrets backends` to see backend status",
            ],
            kind=BackendErrorKind.UNAVAILABLE,
        )
        self.code = "BACKEND_NOT_AVAILABLE"


class BackendAuthenticationError(SecretBackendError):
    def __init__(self, backend: str, suggestions: Optional[Iterable[str]] = None):
        super().__init__(
            backend,
            "Not authenticated",
            suggestions or [f"Sign in to {backend} and run the command again"],
            kind=BackendErrorKind.AUTH_REQUIRED,
        )
        self.code = "BACKEND_AUTH_REQUIRED"


class UnresolvedSecretsError(DotguardError):
    def __init__(self, names: List[str], backend: str):
        preview = ", ".join(names[:5])
        if len(names) > 5:
            preview += f" and {len(names) - 5} more"
        super().__init__(
            f"Could not resolve {len(names)} secret(s) from {backend}: {preview}",
            "UNRESOLVED_SECRETS",
            [
                "Run `dotguard secrets set NAME` to store missing secrets locally",
                "Run `dotguard secrets map NAME --backend B --path P` to map them",
            ],
        )
        self.names = list(names)
        self.backend = backend
