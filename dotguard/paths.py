"""
Path safety validation.

This module is responsible for:
- Expanding ``~`` / ``$HOME`` paths and collapsing them back for display
- Rejecting source paths that traverse or point outside the home directory
- Rejecting destination paths that escape an allowed repository root

This module does NOT:
- Touch the filesystem beyond resolving the current directory
- Decide whether a file may be tracked (see ``policy``)
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import UnsafePathError

_DRIVE_PATH = re.compile(r"^[A-Za-z]:[\\/]")


@dataclass(frozen=True)
class PathValidationResult:
    """Result of validating a candidate source path.

    Attributes:
        valid: True if the path is safe to use.
        error_message: Reason the path was rejected, if any.
    """
    valid: bool
    error_message: Optional[str] = None


def home_dir() -> Path:
    return Path(os.path.normpath(str(Path.home())))


def expand_path(path: str | Path) -> Path:
    """Expand ``~`` and ``$HOME`` prefixes and make the path absolute (lexically)."""
    raw = str(path)
    home = str(home_dir())
    if raw == "~" or raw == "$HOME":
        raw = home
    elif raw.startswith("~/"):
        raw = os.path.join(home, raw[2:])
    elif raw.startswith("$HOME/"):
        raw = os.path.join(home, raw[6:])
    return Path(os.path.normpath(os.path.abspath(raw)))


def collapse_path(path: str | Path) -> str:
    """Replace the home directory prefix with ``~`` for display."""
    raw = str(path)
    home = str(home_dir())
    if raw == home:
        return "~"
    if raw.startswith(home + os.sep):
        return "~" + raw[len(home):]
    return raw


def _has_traversal(raw: str) -> bool:
    parts = re.split(r"[\\/]+", raw)
    return any(part == ".." for part in parts)


def _is_foreign_absolute(raw: str) -> bool:
    """UNC shares and drive-letter paths are never inside a POSIX home."""
    if raw.startswith("\\\\") or raw.startswith("//"):
        return True
    return bool(_DRIVE_PATH.match(raw)) and os.name != "nt"


def is_within(path: Path, root: Path) -> bool:
    """Lexical containment check: ``path`` equals ``root`` or lies below it."""
    try:
        common = os.path.commonpath([str(path), str(root)])
    except ValueError:
        return False
    return common == str(root)


def is_path_within_home(path: str | Path) -> bool:
    """Return True only if ``path`` stays inside the home directory."""
    raw = str(path)
    if "\x00" in raw or _is_foreign_absolute(raw) or _has_traversal(raw):
        return False
    return is_within(expand_path(raw), home_dir())


def check_source_path(path: str | Path) -> PathValidationResult:
    """Classify a candidate source path without raising."""
    raw = str(path)

    if not raw.strip():
        return PathValidationResult(False, "path is empty")
    if "\x00" in raw:
        return PathValidationResult(False, "null bytes are not allowed")
    if _has_traversal(raw):
        return PathValidationResult(False, "path traversal is not allowed")
    if _is_foreign_absolute(raw):
        return PathValidationResult(False, "absolute paths outside home directory are not allowed")
    if not is_within(expand_path(raw), home_dir()):
        return PathValidationResult(False, "absolute paths outside home directory are not allowed")

    return PathValidationResult(True)


def validate_safe_source_path(path: str | Path) -> None:
    """
    Raise UnsafePathError unless ``path`` is a safe source inside ``$HOME``.

    Raises:
        UnsafePathError: on traversal, foreign absolute paths, or paths
            outside the home directory.
    """

    result = check_source_path(path)
    if not result.valid:
        raise UnsafePathError(str(path), result.error_message or "rejected")


def validate_path_within_root(path: str | Path, root: str | Path, label: str = "path") -> Path:
    """
    Ensure ``path`` resolves inside ``root`` and return the resolved path.

    Relative paths are interpreted against ``root``.

    Raises:
        UnsafePathError: if the path escapes the root.
    """

    root_path = Path(os.path.normpath(os.path.abspath(str(root))))
    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = root_path / candidate
    resolved = Path(os.path.normpath(str(candidate)))

    if "\x00" in str(path) or not is_within(resolved, root_path):
        raise UnsafePathError(str(path), f"{label} must be within {root_path}")
    return resolved
