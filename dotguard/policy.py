"""
Tracking policy: which candidate files may enter the repository.

This module is responsible for:
- Rejecting unsafe paths, private keys, missing and already-tracked files
- Skipping ignored files, binaries in ``bin`` directories and oversized files
- Applying the secret policy (bypass, strict or interactive) to what remains

This module does NOT:
- Copy files into the repository
- Render prompts itself (a ``Prompter`` is passed in)

It is the only place that may decide to proceed while secrets are present,
and every such path leaves an audit entry.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Callable, Iterable, List, Optional, Protocol, Sequence, Tuple

from .audit import log_force_secret_bypass, log_secrets_committed
from .config import SIZE_BLOCK_THRESHOLD, SIZE_WARN_THRESHOLD
from .errors import (
    FileAlreadyTrackedError,
    OperationCancelledError,
    PrivateKeyError,
    SecretsDetectedError,
    TrackedFileNotFoundError,
)
from .ignore_file import IgnoreRules, add_to_ignore_file
from .paths import collapse_path, expand_path, is_within, validate_safe_source_path
from .protection import (
    _security_or_default,
    process_secrets_for_redaction,
    scan_for_secrets,
    secret_store_for,
)
from .redactor import redact_file
from .scanner import ScanSummary
from .settings import SecurityConfig
from .utils import directory_file_count, file_size_recursive, format_file_size, should_exclude_from_bin

logger = logging.getLogger(__name__)

_PRIVATE_KEY_NAMES = [
    re.compile(p)
    for p in (r"^id_rsa$", r"^id_dsa$", r"^id_ecdsa$", r"^id_ed25519$", r"^id_.*$",
              r"\.pem$", r"\.key$", r"^.*_key$")
]

_SENSITIVE_FILES = [
    re.compile(r"^\.netrc$"),
    re.compile(r"^\.aws/credentials$"),
    re.compile(r"^\.docker/config\.json$"),
    re.compile(r"^\.npmrc$"),
    re.compile(r"^\.pypirc$"),
    re.compile(r"^\.kube/config$"),
    re.compile(r"^\.ssh/config$"),
    re.compile(r"^\.gnupg/"),
    re.compile(r"credentials", re.IGNORECASE),
    re.compile(r"secrets?", re.IGNORECASE),
    re.compile(r"tokens?\.json$", re.IGNORECASE),
    re.compile(r"\.env$"),
    re.compile(r"\.env\."),
]


class SkipReason(str, Enum):
    ignored = "ignored"
    binary = "binary"
    size = "size"


class SecretAction(str, Enum):
    none = "none"
    bypass = "bypass"
    blocked_off = "blocked-off"
    redacted = "redacted"
    ignored = "ignored"
    proceeded = "proceeded"
    aborted = "aborted"


Choice = Tuple[str, str, str]


class Prompter(Protocol):
    def select(self, message: str, choices: Sequence[Choice]) -> str:
        ...

    def confirm(self, message: str, default: bool = False) -> bool:
        ...

    def confirm_dangerous(self, message: str, word: str) -> bool:
        ...

    def show(self, lines: Sequence[str]) -> None:
        ...


class NonInteractivePrompter:
    """Declines everything: selects cancel/abort when offered, never confirms."""

    SAFE_CHOICES = ("abort", "cancel")

    def select(self, message: str, choices: Sequence[Choice]) -> str:
        for value, _, _ in choices:
            if value in self.SAFE_CHOICES:
                return value
        raise OperationCancelledError("no interactive terminal to answer prompt")

    def confirm(self, message: str, default: bool = False) -> bool:
        return False

    def confirm_dangerous(self, message: str, word: str) -> bool:
        return False

    def show(self, lines: Sequence[str]) -> None:
        for line in lines:
            logger.info("%s", line)


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PreparedFile:
    source: str
    path: Path
    is_dir: bool
    file_count: int
    size: int
    sensitive: bool


@dataclass(frozen=True)
class SkippedFile:
    source: str
    reason: SkipReason


@dataclass
class TrackingOutcome:
    files: List[PreparedFile] = field(default_factory=list)
    skipped: List[SkippedFile] = field(default_factory=list)
    secret_action: SecretAction = SecretAction.none
    redacted_count: int = 0


@dataclass
class TrackingOptions:
    force: bool = False
    strict: bool = False
    allow_already_tracked: bool = False
    is_tracked: Optional[Callable[[str], bool]] = None
    prompter: Prompter = field(default_factory=NonInteractivePrompter)
    settings: Optional[SecurityConfig] = None
    force_bypass_command: str = "dotguard track --force"


# ---------------------------------------------------------------------------
# Classification helpers
# ---------------------------------------------------------------------------


def is_private_key(collapsed_path: str) -> bool:
    posix = collapsed_path.replace("\\", "/")
    name = PurePosixPath(posix).name
    if ".ssh/" in posix and not name.endswith(".pub"):
        return any(p.search(name) for p in _PRIVATE_KEY_NAMES)
    return name.endswith(".pem") or name.endswith(".key")


def is_sensitive_file(collapsed_path: str) -> bool:
    posix = collapsed_path.replace("\\", "/")
    relative = posix[2:] if posix.startswith("~/") else posix
    return any(p.search(relative) for p in _SENSITIVE_FILES)


def format_findings(summary: ScanSummary) -> List[str]:
    """Human-readable findings. Only redacted values appear."""
    lines = [f"Security Warning: Found {summary.total_secrets} potential secret(s)", ""]
    for result in summary.results:
        lines.append(f"  {result.display_path}")
        for match in result.matches:
            lines.append(f"    Line {match.line}: {match.redacted_value} [{match.severity.value}]")
        lines.append("")
    return lines


# ---------------------------------------------------------------------------
# Size policy
# ---------------------------------------------------------------------------


def _apply_size_policy(collapsed: str, size: int, repo_root: Path, options: TrackingOptions) -> bool:
    """Return True to keep the file. Raises OperationCancelledError to stop."""
    if size < SIZE_WARN_THRESHOLD:
        return True

    label = format_file_size(size)
    blocked = size >= SIZE_BLOCK_THRESHOLD

    if options.strict:
        if blocked:
            raise OperationCancelledError(f"{collapsed} is {label}, above the 100 MB limit")
        logger.warning("File %s is %s. Files under 50 MB are recommended.", collapsed, label)
        return True

    if blocked:
        logger.warning("File %s is %s (exceeds the 100 MB limit)", collapsed, label)
        choices = [
            ("ignore", "Add to .dotguardignore and skip", ""),
            ("cancel", "Cancel operation", ""),
        ]
    else:
        logger.warning("File %s is %s. Files under 50 MB are recommended.", collapsed, label)
        choices = [
            ("continue", "Track it anyway", ""),
            ("ignore", "Add to .dotguardignore and skip", ""),
            ("cancel", "Cancel operation", ""),
        ]

    action = options.prompter.select("How would you like to proceed?", choices)
    if action == "ignore":
        add_to_ignore_file(repo_root, collapsed)
        logger.info("Added %s to .dotguardignore", collapsed)
        return False
    if action == "continue" and not blocked:
        return True
    raise OperationCancelledError("file size limit" if blocked else "file size warning")


# ---------------------------------------------------------------------------
# Secret policy
# ---------------------------------------------------------------------------


def _scan_targets(files: Iterable[PreparedFile]) -> List[Path]:
    targets: List[Path] = []
    for prepared in files:
        if prepared.is_dir:
            targets.extend(sorted(p for p in prepared.path.rglob("*") if p.is_file()))
        else:
            targets.append(prepared.path)
    return targets


def _affected(files: Sequence[PreparedFile], summary: ScanSummary) -> List[PreparedFile]:
    hits = [Path(r.path) for r in summary.results]
    return [f for f in files if any(is_within(hit, f.path) for hit in hits)]


def _redact(summary: ScanSummary, repo_root: Path, security: SecurityConfig) -> int:
    store = secret_store_for(repo_root, security)
    maps = process_secrets_for_redaction(summary.results, repo_root, store)
    total = 0
    for result in summary.results:
        mapping = maps.get(result.path)
        if mapping:
            total += len(redact_file(result.path, result.matches, mapping).replacements)
    logger.info("Replaced %d secret(s) with placeholders; values stored in %s", total, store.path)
    return total


def _apply_secret_policy(
    files: List[PreparedFile],
    repo_root: Path,
    options: TrackingOptions,
    security: SecurityConfig,
    outcome: TrackingOutcome,
) -> List[PreparedFile]:
    if not files or not security.scan_secrets:
        return files

    if options.force:
        if not options.strict:
            confirmed = options.prompter.confirm_dangerous(
                "Using --force bypasses secret scanning.\n"
                "Any secrets in these files may be committed to git and potentially exposed.",
                "force",
            )
            if not confirmed:
                logger.info("Operation cancelled")
                outcome.secret_action = SecretAction.aborted
                return []
        logger.warning("Secret scanning bypassed with --force")
        log_force_secret_bypass(options.force_bypass_command, len(files))
        outcome.secret_action = SecretAction.bypass
        return files

    summary = scan_for_secrets(_scan_targets(files), repo_root, security)
    if summary.files_with_secrets == 0:
        return files

    affected = _affected(files, summary)
    flagged = [r.display_path for r in summary.results]

    if options.strict:
        if security.block_on_secrets:
            raise SecretsDetectedError(summary.total_secrets, flagged)
        logger.warning("Secrets detected but block_on_secrets is disabled, proceeding with tracking")
        logger.warning("Make sure your repository is private!")
        log_secrets_committed(flagged)
        outcome.secret_action = SecretAction.blocked_off
        return files

    options.prompter.show(format_findings(summary))
    action = options.prompter.select(
        "How would you like to proceed?",
        [
            ("abort", "Abort operation", "Do not track these files"),
            ("redact", "Replace with placeholders", "Store originals in secrets.local.json (never committed)"),
            ("ignore", "Add files to .dotguardignore", "Skip these files permanently"),
            ("proceed", "Proceed anyway", "Track files with secrets (dangerous!)"),
        ],
    )

    if action == "redact":
        outcome.redacted_count = _redact(summary, repo_root, security)
        outcome.secret_action = SecretAction.redacted
        return files

    if action == "ignore":
        for prepared in affected:
            add_to_ignore_file(repo_root, prepared.source)
            logger.info("Added %s to .dotguardignore", prepared.source)
        remaining = [f for f in files if f not in affected]
        if not remaining:
            logger.info("No files remaining to track")
        outcome.secret_action = SecretAction.ignored
        return remaining

    if action == "proceed":
        if options.prompter.confirm("Are you SURE you want to track files containing secrets?", False):
            logger.warning("Proceeding with secrets - be careful not to push to a public repository!")
            log_secrets_committed(flagged)
            outcome.secret_action = SecretAction.proceeded
            return files

    logger.info("Operation aborted")
    outcome.secret_action = SecretAction.aborted
    return []


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def evaluate_paths_for_tracking(
    candidates: Iterable[str | Path],
    repo_root: str | Path,
    options: Optional[TrackingOptions] = None,
) -> TrackingOutcome:
    """
    Run every candidate through the tracking policy.

    Raises:
        UnsafePathError: for traversal or paths outside the home directory.
        PrivateKeyError: for private key files.
        TrackedFileNotFoundError: if a candidate does not exist.
        FileAlreadyTrackedError: if a candidate is already tracked.
        OperationCancelledError: if a size limit or prompt cancels the run.
        SecretsDetectedError: in strict mode when secrets are found.
    """

    options = options or TrackingOptions()
    repo_root = Path(repo_root)
    security = options.settings or _security_or_default(repo_root, "tracking")
    ignore_rules = IgnoreRules.for_repo(repo_root)
    outcome = TrackingOutcome()
    prepared: List[PreparedFile] = []

    for candidate in candidates:
        validate_safe_source_path(candidate)
        expanded = expand_path(candidate)
        collapsed = collapse_path(expanded)

        if is_private_key(collapsed):
            raise PrivateKeyError(str(candidate))
        if not expanded.exists():
            raise TrackedFileNotFoundError(str(candidate))
        if options.is_tracked and not options.allow_already_tracked and options.is_tracked(collapsed):
            raise FileAlreadyTrackedError(str(candidate))

        if ignore_rules.evaluate(collapsed).ignored:
            logger.info("Skipping %s (in .dotguardignore)", collapsed)
            outcome.skipped.append(SkippedFile(collapsed, SkipReason.ignored))
            continue

        if should_exclude_from_bin(expanded):
            logger.info("Skipping binary executable: %s - add it to .dotguardignore to silence this", collapsed)
            outcome.skipped.append(SkippedFile(collapsed, SkipReason.binary))
            continue

        size = file_size_recursive(expanded)
        if not _apply_size_policy(collapsed, size, repo_root, options):
            outcome.skipped.append(SkippedFile(collapsed, SkipReason.size))
            continue

        is_dir = expanded.is_dir()
        prepared.append(
            PreparedFile(
                source=collapsed,
                path=expanded,
                is_dir=is_dir,
                file_count=directory_file_count(expanded) if is_dir else 1,
                size=size,
                sensitive=is_sensitive_file(collapsed),
            )
        )

    outcome.files = _apply_secret_policy(prepared, repo_root, options, security, outcome)
    return outcome


def prepare_paths_for_tracking(
    candidates: Iterable[str | Path],
    repo_root: str | Path,
    options: Optional[TrackingOptions] = None,
) -> List[PreparedFile]:
    return evaluate_paths_for_tracking(candidates, repo_root, options).files
