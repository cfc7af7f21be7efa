"""
Repository-level secret protection operations.

This module is responsible for:
- Scanning candidate files with the repository's configured scanner
- Turning scan results into stored secrets and per-file redaction maps
- Restoring placeholders in files through the configured backend

This module does NOT:
- Decide whether to proceed when secrets are found (see ``policy``)
- Prompt the user
"""

from __future__ import annotations

import fnmatch
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .backends import SecretResolver
from .backends.base import BackendName
from .errors import DotguardError
from .external import scan_with_configured_scanner
from .paths import collapse_path, expand_path, is_path_within_home, validate_path_within_root
from .redactor import PlaceholderAllocator, find_placeholders, restore_file
from .scanner import FileScanResult, ScanSummary
from .settings import SecurityConfig, Settings
from .store import SecretStore

logger = logging.getLogger(__name__)


@dataclass
class RestoreSummary:
    total_restored: int = 0
    files_modified: int = 0
    all_unresolved: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RestorePreview:
    would_restore: int
    unresolved: List[str]
    placeholders: List[str]


# ---------------------------------------------------------------------------
# Settings helpers
# ---------------------------------------------------------------------------


def load_security(repo_root: str | Path) -> SecurityConfig:
    return Settings.for_repo(repo_root).security


def _security_or_default(repo_root: str | Path, purpose: str) -> SecurityConfig:
    try:
        return load_security(repo_root)
    except DotguardError as exc:
        logger.warning("Failed to load settings for %s, using safe defaults: %s", purpose, exc.message)
        return SecurityConfig()


def is_secret_scanning_enabled(repo_root: str | Path) -> bool:
    return _security_or_default(repo_root, "scanning check").scan_secrets


def should_block_on_secrets(repo_root: str | Path) -> bool:
    return _security_or_default(repo_root, "blocking check").block_on_secrets


def secret_store_for(repo_root: str | Path, security: Optional[SecurityConfig] = None) -> SecretStore:
    security = security or _security_or_default(repo_root, "secret store")
    return SecretStore(repo_root, security.secrets_file)


# ---------------------------------------------------------------------------
# Scanning
# ---------------------------------------------------------------------------


def _excluded(path: str | Path, globs: Sequence[str]) -> bool:
    collapsed = collapse_path(expand_path(path))
    name = Path(collapsed).name
    return any(fnmatch.fnmatch(collapsed, g) or fnmatch.fnmatch(name, g) for g in globs)


def scan_for_secrets(
    paths: Sequence[str | Path],
    repo_root: str | Path,
    settings: Optional[SecurityConfig] = None,
) -> ScanSummary:
    """
    Scan ``paths`` using the repository's security settings.

    Paths matching ``security.exclude_files`` are dropped before scanning.
    """

    security = settings or load_security(repo_root)
    selected = [p for p in paths if not _excluded(p, security.exclude_files)]
    if len(selected) != len(paths):
        logger.info("Excluded %d file(s) from scanning", len(paths) - len(selected))
    return scan_with_configured_scanner(selected, security)


# ---------------------------------------------------------------------------
# Redaction
# ---------------------------------------------------------------------------


def process_secrets_for_redaction(
    results: Iterable[FileScanResult],
    repo_root: str | Path,
    store: Optional[SecretStore] = None,
) -> Dict[str, Dict[str, str]]:
    """
    Store every detected value and return ``{file path: {value: name}}``.

    Values already in the store keep their existing names. A value found in
    several files gets one name. Token names already present in the files are
    never given to a new value.
    """

    store = store or secret_store_for(repo_root)
    store.ensure_secrets_gitignored()

    results = list(results)
    allocator = PlaceholderAllocator(store.all_values())
    for result in results:
        if result.matches:
            allocator.reserve(_read_placeholders(Path(result.path), "redaction") or [])

    new_entries: Dict[str, Tuple[str, str, str, str]] = {}
    redaction_maps: Dict[str, Dict[str, str]] = {}

    for result in results:
        per_file: Dict[str, str] = {}
        for match in result.matches:
            name = allocator.allocate(match.value, match.placeholder)
            per_file[match.value] = name
            if name in allocator.allocated and name not in new_entries:
                new_entries[name] = (name, match.value, match.pattern_name, result.display_path)
        redaction_maps[result.path] = per_file

    if new_entries:
        store.set_many(new_entries.values())
        logger.info("Stored %d new secret(s) in %s", len(new_entries), store.path)
    return redaction_maps


# ---------------------------------------------------------------------------
# Restoration
# ---------------------------------------------------------------------------


def _read_placeholders(path: Path, purpose: str = "restoration") -> Optional[List[str]]:
    try:
        return find_placeholders(path.read_bytes().decode("utf-8"))
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Cannot read %s for %s (%s)", collapse_path(path), purpose, type(exc).__name__)
        return None


def _restore_target(raw: str | Path, repo_root: str | Path) -> Path:
    """Restore targets must live under the home directory or the repository."""
    if is_path_within_home(raw):
        return expand_path(raw)
    return validate_path_within_root(expand_path(raw), repo_root, "restore target")


def restore_secrets_in_files(
    paths: Sequence[str | Path],
    repo_root: str | Path,
    resolver: Optional[SecretResolver] = None,
) -> RestoreSummary:
    """
    Replace placeholders in ``paths`` with values from the configured backend.

    Names that cannot be resolved stay as placeholders and are listed in
    ``all_unresolved``; backend failures are listed in ``errors`` by name.

    Raises:
        UnsafePathError: if a path lies outside both the home directory and
            the repository. No file is written in that case.
    """

    resolver = resolver or SecretResolver(repo_root, _security_or_default(repo_root, "restore"))
    summary = RestoreSummary()

    files: List[Path] = []
    wanted: List[str] = []
    targets = [_restore_target(raw, repo_root) for raw in paths]
    for path in targets:
        if not path.is_file():
            continue
        names = _read_placeholders(path)
        if names is None:
            continue
        files.append(path)
        wanted.extend(n for n in names if n not in wanted)

    if not wanted:
        return summary

    batch = resolver.resolve_all(wanted, fail_on_auth_required=True)
    for name, exc in batch.errors.items():
        message = exc.message if isinstance(exc, DotguardError) else type(exc).__name__
        summary.errors[name] = message
        hints = exc.suggestions if isinstance(exc, DotguardError) else []
        logger.warning("Could not resolve %s: %s%s", name, message, f" ({hints[0]})" if hints else "")

    lookup = {name: secret.value for name, secret in batch.resolved.items()}
    for path in files:
        result = restore_file(path, lookup)
        if result.restored:
            summary.total_restored += result.restored
            summary.files_modified += 1
        for name in result.unresolved:
            if name not in summary.all_unresolved:
                summary.all_unresolved.append(name)

    local_names = [n for n, s in batch.resolved.items() if s.backend == BackendName.local.value]
    if local_names:
        resolver.store.touch(local_names)

    return summary


def preview_restoration(
    path: str | Path,
    repo_root: str | Path,
    resolver: Optional[SecretResolver] = None,
) -> RestorePreview:
    """
    Report which placeholders in ``path`` could be restored, without contacting
    external backends.

    A name counts as resolvable if it is in the local store or is mapped for
    the configured backend.
    """

    resolver = resolver or SecretResolver(repo_root, _security_or_default(repo_root, "preview"))
    expanded = expand_path(path)
    names = _read_placeholders(expanded) if expanded.is_file() else None
    if not names:
        return RestorePreview(0, [], [])

    available = set(resolver.store.all_values())
    if resolver.primary is not BackendName.local:
        available.update(resolver.mappings.secrets_for_backend(resolver.primary))

    unresolved = [n for n in names if n not in available]
    return RestorePreview(len(names) - len(unresolved), unresolved, names)
