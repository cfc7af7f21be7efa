"""
Ignore-file evaluation.

Given a path and the entries of ``<repo>/.dotguardignore``, this module
decides whether the path is excluded from tracking.

An entry is a ``~``-collapsed path or an fnmatch glob. A path is ignored if
it equals an entry, lies below a directory entry, or matches a glob.
"""

from __future__ import annotations

import fnmatch
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from .config import IGNORE_FILENAME
from .paths import collapse_path, expand_path
from .utils import atomic_write_text

logger = logging.getLogger(__name__)

IGNORE_HEADER = """# .dotguardignore - files to exclude from tracking
# One path or glob per line (~ is your home directory)
# Lines starting with # are comments
#
# Example:
# ~/bin/large-binary
# ~/.cache/*
"""

_GLOB_CHARS = set("*?[")


def ignore_file_path(repo_root: str | Path) -> Path:
    return Path(repo_root) / IGNORE_FILENAME


def _normalize(entry: str) -> str:
    if _GLOB_CHARS & set(entry):
        return entry
    return collapse_path(expand_path(entry))


def load_ignore_patterns(repo_root: str | Path) -> List[str]:
    path = ignore_file_path(repo_root)
    if not path.exists():
        return []

    patterns: List[str] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        normalized = _normalize(stripped)
        if normalized not in patterns:
            patterns.append(normalized)
    return patterns


@dataclass(frozen=True)
class IgnoreDecision:
    ignored: bool
    pattern: Optional[str] = None


class IgnoreRules:
    def __init__(self, patterns: Iterable[str]):
        self.patterns = list(patterns)

    @classmethod
    def for_repo(cls, repo_root: str | Path) -> "IgnoreRules":
        return cls(load_ignore_patterns(repo_root))

    def evaluate(self, path: str | Path) -> IgnoreDecision:
        collapsed = collapse_path(expand_path(path))

        for pattern in self.patterns:
            if _GLOB_CHARS & set(pattern):
                if fnmatch.fnmatch(collapsed, pattern):
                    return IgnoreDecision(True, pattern)
                continue
            if collapsed == pattern or collapsed.startswith(pattern.rstrip("/") + "/"):
                return IgnoreDecision(True, pattern)

        return IgnoreDecision(False)


def is_ignored(repo_root: str | Path, path: str | Path) -> bool:
    return IgnoreRules.for_repo(repo_root).evaluate(path).ignored


def add_to_ignore_file(repo_root: str | Path, path: str | Path) -> bool:
    """Add ``path`` to the ignore file. Returns False if it was already there."""
    entry = _normalize(str(path))
    patterns = load_ignore_patterns(repo_root)
    if entry in patterns:
        return False

    ignore_path = ignore_file_path(repo_root)
    content = ignore_path.read_text(encoding="utf-8") if ignore_path.exists() else IGNORE_HEADER + "\n"
    if content and not content.endswith("\n"):
        content += "\n"
    atomic_write_text(ignore_path, content + entry + "\n")
    logger.info("Added %s to %s", entry, IGNORE_FILENAME)
    return True


def remove_from_ignore_file(repo_root: str | Path, path: str | Path) -> bool:
    entry = _normalize(str(path))
    patterns = load_ignore_patterns(repo_root)
    if entry not in patterns:
        return False

    remaining = sorted(p for p in patterns if p != entry)
    atomic_write_text(ignore_file_path(repo_root), IGNORE_HEADER + "\n" + "".join(p + "\n" for p in remaining))
    return True
