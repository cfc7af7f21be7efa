"""
Shared utility helpers.

This module contains small, reusable filesystem helpers that do not belong
to scanning, redaction or policy decisions.
"""

from __future__ import annotations

import logging
import os
import stat
import tempfile
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Filesystem writes
# ---------------------------------------------------------------------------


def ensure_parent_dir(path: Path) -> None:
    """Ensure the parent directory of a file exists."""
    path.parent.mkdir(parents=True, exist_ok=True)


def atomic_write_bytes(path: Path, data: bytes, mode: Optional[int] = None) -> None:
    """
    Write ``data`` to ``path`` via a temp file in the same directory.

    The temp file is renamed over the target, so readers see either the old
    or the new content, never a partial write. When ``mode`` is given it is
    applied to the temp file before the rename.
    """

    path = Path(path)
    ensure_parent_dir(path)
    if mode is None and path.exists():
        mode = stat.S_IMODE(path.stat().st_mode)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        if mode is not None:
            try:
                os.chmod(tmp_name, mode)
            except OSError:
                logger.debug("chmod not supported for %s", tmp_name)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def atomic_write_text(path: Path, text: str, mode: Optional[int] = None) -> None:
    """Text variant of :func:`atomic_write_bytes` (UTF-8, newlines untouched)."""
    atomic_write_bytes(path, text.encode("utf-8"), mode=mode)


# ---------------------------------------------------------------------------
# File inspection
# ---------------------------------------------------------------------------


def is_binary_file(path: Path, sample_size: int = 1024) -> bool:
    """Heuristically determine whether a file is binary."""
    try:
        with Path(path).open("rb") as fh:
            sample = fh.read(sample_size)
        return b"\x00" in sample
    except OSError:
        return False


def file_size_recursive(path: Path) -> int:
    """Return the size of a file, or the total size of a directory tree."""
    path = Path(path)
    if not path.is_dir():
        return path.stat().st_size

    total = 0
    for child in path.rglob("*"):
        if child.is_file() and not child.is_symlink():
            total += child.stat().st_size
    return total


def directory_file_count(path: Path) -> int:
    """Count regular files below ``path``."""
    return sum(1 for child in Path(path).rglob("*") if child.is_file())


def format_file_size(size: int) -> str:
    """Format a byte count for humans (``1.5 MB``)."""
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            if unit == "B":
                return f"{int(value)} {unit}"
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"


# ---------------------------------------------------------------------------
# Executable detection
# ---------------------------------------------------------------------------

_BINARY_MAGIC = (
    b"\x7fELF",            # ELF
    b"\xfe\xed\xfa\xce",   # Mach-O 32-bit
    b"\xfe\xed\xfa\xcf",   # Mach-O 64-bit
    b"\xce\xfa\xed\xfe",   # Mach-O 32-bit (reverse byte order)
    b"\xcf\xfa\xed\xfe",   # Mach-O 64-bit (reverse byte order)
    b"\xca\xfe\xba\xbe",   # Mach-O universal
    b"MZ",                 # PE
)

SCRIPT_EXTENSIONS = frozenset([
    ".sh", ".bash", ".zsh", ".fish", ".py", ".rb", ".pl", ".js", ".ts",
    ".lua", ".php", ".tcl", ".awk", ".sed",
])


def _read_head(path: Path, size: int = 4) -> bytes:
    with Path(path).open("rb") as fh:
        return fh.read(size)


def is_binary_executable(path: Path) -> bool:
    """True for compiled executables (magic number, or exec bit without shebang)."""
    path = Path(path)
    try:
        if path.is_dir():
            return False
        head = _read_head(path)
        executable = bool(path.stat().st_mode & (stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH))
    except OSError:
        return False

    if any(head.startswith(magic) for magic in _BINARY_MAGIC):
        return True
    if executable:
        return not head.startswith(b"#!")
    return False


def is_script_file(path: Path) -> bool:
    """True when ``path`` has a script extension or starts with a shebang."""
    path = Path(path)
    if path.suffix.lower() in SCRIPT_EXTENSIONS:
        return True
    try:
        if path.is_dir():
            return False
        return _read_head(path, 2) == b"#!"
    except OSError:
        return False


def should_exclude_from_bin(path: Path) -> bool:
    """
    Return True for binary executables living in a ``bin`` directory.

    Scripts and directories are never excluded.
    """

    path = Path(path)
    if "bin" not in path.parts[:-1] and path.name != "bin":
        return False
    try:
        if path.is_dir():
            return False
    except OSError:
        return False
    if is_script_file(path):
        return False
    return is_binary_executable(path)
