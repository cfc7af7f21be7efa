"""
Backend abstraction shared by every secret source.

This module is responsible for:
- The ``SecretBackend`` interface the resolver programs against
- Running external password-manager CLIs without a shell
- Mapping CLI failure output onto a fixed set of error kinds

This module does NOT:
- Choose which backend to use (see ``resolver``)
- Cache values (see ``cache``)
"""

from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from ..config import BACKEND_TIMEOUT_SECONDS
from ..errors import (
    BackendAuthenticationError,
    BackendErrorKind,
    SecretBackendError,
    sanitize_detail,
)

logger = logging.getLogger(__name__)


class BackendName(str, Enum):
    local = "local"
    onepassword = "1password"
    bitwarden = "bitwarden"
    pass_store = "pass"


DISPLAY_NAMES: Dict[BackendName, str] = {
    BackendName.local: "Local Store",
    BackendName.onepassword: "1Password",
    BackendName.bitwarden: "Bitwarden",
    BackendName.pass_store: "pass",
}


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SecretReference:
    name: str
    backend_path: Optional[str] = None


@dataclass(frozen=True)
class ResolvedSecret:
    name: str
    value: str = field(repr=False)
    backend: str
    cached: bool = False


@dataclass(frozen=True)
class BackendStatus:
    backend: BackendName
    display_name: str
    available: bool
    authenticated: bool
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Command execution
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str = field(repr=False)
    stderr: str = ""
    timed_out: bool = False
    not_found: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out and not self.not_found


CommandRunner = Callable[[Sequence[str], float, Optional[Mapping[str, str]]], CommandResult]


def run_command(
    argv: Sequence[str],
    timeout: float = BACKEND_TIMEOUT_SECONDS,
    env: Optional[Mapping[str, str]] = None,
) -> CommandResult:
    """
    Run ``argv`` without a shell and capture its output.

    A missing executable or a timeout is reported in the result instead of
    raising.
    """

    try:
        proc = subprocess.run(
            list(argv),
            capture_output=True,
            text=True,
            timeout=timeout,
            env=dict(env) if env is not None else None,
            check=False,
        )
    except FileNotFoundError:
        return CommandResult(returncode=127, stdout="", stderr="command not found", not_found=True)
    except subprocess.TimeoutExpired:
        logger.warning("Command %s timed out after %ss", argv[0], timeout)
        return CommandResult(returncode=-1, stdout="", stderr="timed out", timed_out=True)

    return CommandResult(returncode=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

# Order matters: the first matching kind wins.
_CLI_ERROR_MARKERS: Dict[BackendName, List[tuple]] = {
    BackendName.onepassword: [
        (BackendErrorKind.NOT_FOUND, ("isn't an item", "not found", "could not be found", "no item")),
        (BackendErrorKind.AUTH_REQUIRED, ("not signed in", "not currently signed in", "sign in", "signin",
                                          "session expired", "authorization", "unauthorized")),
        (BackendErrorKind.LOCKED, ("locked",)),
        (BackendErrorKind.INVALID_PATH, ("invalid secret reference", "invalid reference")),
    ],
    BackendName.bitwarden: [
        (BackendErrorKind.NOT_FOUND, ("not found", "no item")),
        (BackendErrorKind.LOCKED, ("vault is locked", "locked")),
        (BackendErrorKind.AUTH_REQUIRED, ("not logged in", "unauthenticated", "you are not logged in")),
    ],
    BackendName.pass_store: [
        (BackendErrorKind.NOT_FOUND, ("is not in the password store", "not in the password store",
                                      "no such file")),
        (BackendErrorKind.DECRYPTION_FAILED, ("gpg", "decrypt")),
        (BackendErrorKind.INVALID_PATH, ("invalid path", "sneaky path")),
    ],
}


def classify_cli_error(backend: BackendName | str, stderr: str, timed_out: bool = False) -> BackendErrorKind:
    """Map CLI stderr onto a ``BackendErrorKind``. Backends act on the kind only."""
    if timed_out:
        return BackendErrorKind.TIMEOUT

    text = (stderr or "").lower()
    try:
        markers = _CLI_ERROR_MARKERS.get(BackendName(backend), [])
    except ValueError:
        markers = []

    for kind, needles in markers:
        if any(needle in text for needle in needles):
            return kind
    if "command not found" in text:
        return BackendErrorKind.UNAVAILABLE
    return BackendErrorKind.UNKNOWN


# ---------------------------------------------------------------------------
# Backend interface
# ---------------------------------------------------------------------------


class SecretBackend(ABC):
    """A source of secret values addressed by ``SecretReference``."""

    name: BackendName
    display_name: str = ""

    @abstractmethod
    def is_available(self) -> bool:
        """True if the backend's tooling is installed."""

    @abstractmethod
    def is_authenticated(self) -> bool:
        """True if values can be read without user interaction."""

    @abstractmethod
    def get_secret(self, ref: SecretReference) -> Optional[str]:
        """
        Return the value for ``ref``, or None if the backend has no such item.

        Raises:
            BackendAuthenticationError: if the backend needs a sign-in or unlock.
            SecretBackendError: on any other failure.
        """

    def authenticate(self) -> None:
        raise BackendAuthenticationError(self.name.value, self.get_setup_instructions())

    def lock(self) -> None:
        """Drop any session held by the backend. No-op by default."""

    def list_secrets(self) -> List[str]:
        raise NotImplementedError(f"{self.display_name} does not support listing secrets")

    def get_setup_instructions(self) -> List[str]:
        return []

    def status(self) -> BackendStatus:
        try:
            available = self.is_available()
            authenticated = available and self.is_authenticated()
            error = None
        except SecretBackendError as exc:
            available, authenticated, error = False, False, exc.message
        return BackendStatus(self.name, self.display_name, available, authenticated, error)


class CommandBackend(SecretBackend):
    """Base for backends driven by an external CLI."""

    def __init__(self, runner: Optional[CommandRunner] = None, timeout: float = BACKEND_TIMEOUT_SECONDS):
        self.runner: CommandRunner = runner or run_command
        self.timeout = timeout

    def _env(self) -> Optional[Dict[str, str]]:
        return None

    def run(self, *argv: str) -> CommandResult:
        logger.debug("Running %s %s", argv[0], argv[1] if len(argv) > 1 else "")
        return self.runner(list(argv), self.timeout, self._env())

    def raise_for_result(self, result: CommandResult, action: str) -> None:
        """
        Translate a failed command into the matching exception.

        NOT_FOUND is left to the caller, which returns None for it.
        """

        kind = classify_cli_error(self.name, result.stderr, result.timed_out)
        detail = sanitize_detail(result.stderr)

        if kind in (BackendErrorKind.AUTH_REQUIRED, BackendErrorKind.LOCKED):
            raise BackendAuthenticationError(self.name.value, self.get_setup_instructions())
        if kind is BackendErrorKind.TIMEOUT:
            raise SecretBackendError(
                self.name.value,
                f"{action} timed out after {self.timeout:g}s",
                ["Check that the CLI is not waiting for input"],
                kind=kind,
            )
        if kind is BackendErrorKind.DECRYPTION_FAILED:
            raise SecretBackendError(
                self.name.value,
                f"{action} failed: could not decrypt",
                ["Check that your GPG key is available and gpg-agent is running"],
                kind=kind,
            )
        raise SecretBackendError(self.name.value, f"{action} failed: {detail}", kind=kind)

    def missing_mapping(self, name: str) -> SecretBackendError:
        return SecretBackendError(
            self.name.value,
            f"No {self.display_name} path mapped for secret {name}",
            [f"Run `dotguard secrets map {name} --backend {self.name.value} --path <path>`"],
            kind=BackendErrorKind.INVALID_PATH,
        )
