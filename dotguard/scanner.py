"""
Secret scanning engine.

This module is responsible for:
- Applying the pattern catalog to text with per-pattern and total time budgets
- Locating matches by line/column and masking them for display
- Scanning files and batches of files with resource limits

This module does NOT:
- Modify files (see ``redactor``)
- Decide whether to proceed when secrets are found (see ``policy``)

Timeouts are cooperative: the clock is checked between match iterations, so
a budget breach stops the offending pattern (or the whole scan) early and is
reported as a warning rather than an error.
"""

from __future__ import annotations

import bisect
import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .config import (
    MAX_FILE_SIZE,
    MAX_FILES_PER_SCAN,
    MIN_SECRET_LENGTH,
    PATTERN_TIMEOUT_SECONDS,
    SCAN_CONCURRENCY,
    SCAN_TIMEOUT_SECONDS,
    WARN_FILES_THRESHOLD,
)
from .errors import ScanLimitError
from .paths import collapse_path, expand_path
from .patterns import SecretPattern, Severity, get_patterns, should_skip_file
from .redactor import PLACEHOLDER_PATTERN
from .utils import is_binary_file

logger = logging.getLogger(__name__)

CONTEXT_MAX_LENGTH = 100
REDACTION_MARKER = "[REDACTED]"
LINE_REDACTED = "[Line contains secret - REDACTED]"
CONTEXT_REDACTED = "[Context redacted for security]"


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SecretMatch:
    pattern_id: str
    pattern_name: str
    severity: Severity
    value: str = field(repr=False)
    redacted_value: str
    line: int
    column: int
    context: str
    placeholder: str
    offset: int = 0


@dataclass
class FileScanResult:
    path: str
    display_path: str
    matches: List[SecretMatch] = field(default_factory=list)
    skipped: bool = False
    skip_reason: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def has_secrets(self) -> bool:
        return bool(self.matches)

    def _count(self, severity: Severity) -> int:
        return sum(1 for m in self.matches if m.severity is severity)

    @property
    def critical_count(self) -> int:
        return self._count(Severity.critical)

    @property
    def high_count(self) -> int:
        return self._count(Severity.high)

    @property
    def medium_count(self) -> int:
        return self._count(Severity.medium)

    @property
    def low_count(self) -> int:
        return self._count(Severity.low)

    @property
    def counts_by_severity(self) -> Dict[str, int]:
        return {s.value: self._count(s) for s in Severity}


@dataclass
class ScanSummary:
    total_files: int = 0
    scanned_files: int = 0
    skipped_files: int = 0
    files_with_secrets: int = 0
    total_secrets: int = 0
    by_severity: Dict[str, int] = field(default_factory=lambda: {s.value: 0 for s in Severity})
    results: List[FileScanResult] = field(default_factory=list)
    skipped_results: List[FileScanResult] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class ScanOptions:
    patterns: Optional[Sequence[SecretPattern]] = None
    custom_patterns: Sequence[SecretPattern] = ()
    exclude_pattern_ids: Sequence[str] = ()
    min_severity: Optional[Severity] = None
    max_file_size: int = MAX_FILE_SIZE
    pattern_timeout: float = PATTERN_TIMEOUT_SECONDS
    scan_timeout: float = SCAN_TIMEOUT_SECONDS
    concurrency: int = SCAN_CONCURRENCY
    clock: Callable[[], float] = time.monotonic

    def select_patterns(self) -> List[SecretPattern]:
        if self.patterns is not None:
            selected = list(self.patterns) + list(self.custom_patterns)
            excluded = set(self.exclude_pattern_ids)
            return [p for p in selected if p.id not in excluded]
        return get_patterns(self.min_severity, self.exclude_pattern_ids, self.custom_patterns)


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------


def redact_secret(value: str) -> str:
    """Return a display-safe stand-in that reveals no characters of ``value``."""
    if not value:
        return "[EMPTY]"

    if "\n" in value:
        first_line = value.split("\n", 1)[0]
        if first_line.startswith("-----BEGIN"):
            return first_line + "\n[REDACTED - Private Key]"
        return "[REDACTED MULTILINE SECRET]"

    if len(value) <= 20:
        return "[REDACTED]"
    if len(value) <= 50:
        return "[REDACTED SECRET]"
    return "[REDACTED LONG SECRET]"


def mask_context(line: str, value: str) -> str:
    """Return ``line`` with every occurrence of ``value`` masked."""
    needle = value.split("\n", 1)[0] if "\n" in value else value
    if not needle:
        return CONTEXT_REDACTED

    masked = re.sub(re.escape(needle), REDACTION_MARKER, line)

    if masked == line and len(needle) > 4 and needle[:8] in line:
        return LINE_REDACTED

    if len(masked) > CONTEXT_MAX_LENGTH:
        masked = masked[: CONTEXT_MAX_LENGTH - 3] + "..."
    return masked.strip()


class _LineIndex:
    """Offset → (line, column) lookup for one text."""

    def __init__(self, text: str):
        self.text = text
        self.starts = [0] + [m.end() for m in re.finditer("\n", text)]
        self._lines: Optional[List[str]] = None

    def position(self, offset: int) -> Tuple[int, int]:
        offset = max(0, min(offset, len(self.text)))
        line = bisect.bisect_right(self.starts, offset)
        return line, offset - self.starts[line - 1] + 1

    def line_text(self, line: int) -> Optional[str]:
        if self._lines is None:
            self._lines = self.text.split("\n")
        if 1 <= line <= len(self._lines):
            return self._lines[line - 1]
        return None


def _extract_value(match: re.Match) -> Tuple[Optional[str], int]:
    for index in range(1, (match.re.groups or 0) + 1):
        group = match.group(index)
        if group:
            return group, match.start(index)
    return match.group(0), match.start()


# ---------------------------------------------------------------------------
# Content scanning
# ---------------------------------------------------------------------------


def scan_content_with_warnings(
    text: str, options: Optional[ScanOptions] = None
) -> Tuple[List[SecretMatch], List[str]]:
    """
    Scan ``text`` and return ``(matches, warnings)``.

    Warnings describe timeout degradations; they never include secret text.
    """

    options = options or ScanOptions()
    clock = options.clock
    matches: List[SecretMatch] = []
    warnings: List[str] = []
    seen = set()

    if not text:
        return matches, warnings

    index = _LineIndex(text)
    placeholder_spans = [(m.start(), m.end()) for m in PLACEHOLDER_PATTERN.finditer(text)]
    scan_start = clock()
    scan_expired = False

    for pattern in options.select_patterns():
        if clock() - scan_start > options.scan_timeout:
            scan_expired = True
            break

        pattern_start = clock()
        for match in pattern.regex.finditer(text):
            now = clock()
            if now - scan_start > options.scan_timeout:
                scan_expired = True
                break
            if now - pattern_start > options.pattern_timeout:
                msg = f"Pattern {pattern.id} timed out, skipping remaining matches"
                logger.warning(msg)
                warnings.append(msg)
                break

            value, offset = _extract_value(match)
            if not value or len(value) < MIN_SECRET_LENGTH:
                continue

            key = (pattern.id, offset, len(value))
            if key in seen:
                continue
            seen.add(key)

            end = offset + len(value)
            if any(start < end and offset < stop for start, stop in placeholder_spans):
                continue

            line, column = index.position(offset)
            line_text = index.line_text(line)
            context = mask_context(line_text, value) if line_text is not None else CONTEXT_REDACTED

            matches.append(
                SecretMatch(
                    pattern_id=pattern.id,
                    pattern_name=pattern.name,
                    severity=pattern.severity,
                    value=value,
                    redacted_value=redact_secret(value),
                    line=line,
                    column=column,
                    context=context,
                    placeholder=pattern.placeholder,
                    offset=offset,
                )
            )

        if scan_expired:
            break

    if scan_expired:
        msg = "Scan timeout reached, some patterns may not have been checked"
        logger.warning(msg)
        warnings.append(msg)

    matches.sort(key=lambda m: (m.line, m.column))
    return matches, warnings


def scan_content(text: str, options: Optional[ScanOptions] = None) -> List[SecretMatch]:
    """Scan ``text`` with the selected patterns and return sorted matches."""
    matches, _ = scan_content_with_warnings(text, options)
    return matches


# ---------------------------------------------------------------------------
# File scanning
# ---------------------------------------------------------------------------


def _skipped(path: Path, reason: str) -> FileScanResult:
    return FileScanResult(
        path=str(path),
        display_path=collapse_path(path),
        skipped=True,
        skip_reason=reason,
    )


def _mb(size: int) -> int:
    return round(size / 1024 / 1024)


def scan_file(path: str | Path, options: Optional[ScanOptions] = None) -> FileScanResult:
    """Scan one file; unreadable or unsuitable files come back skipped with a reason."""
    options = options or ScanOptions()
    resolved = expand_path(path)

    if not resolved.exists():
        return _skipped(resolved, "File not found")
    if should_skip_file(resolved):
        return _skipped(resolved, "Binary file")

    try:
        st = resolved.stat()
    except OSError:
        return _skipped(resolved, "Cannot read file stats")

    if resolved.is_dir():
        return _skipped(resolved, "Is a directory")
    if st.st_size > options.max_file_size:
        return _skipped(
            resolved,
            f"File too large ({_mb(st.st_size)}MB > {_mb(options.max_file_size)}MB)",
        )

    try:
        if is_binary_file(resolved):
            raise UnicodeDecodeError("utf-8", b"", 0, 1, "null byte")
        text = resolved.read_bytes().decode("utf-8")
    except (OSError, UnicodeDecodeError):
        return _skipped(resolved, "Cannot read file (possibly binary)")

    matches, warnings = scan_content_with_warnings(text, options)
    return FileScanResult(
        path=str(resolved),
        display_path=collapse_path(resolved),
        matches=matches,
        warnings=warnings,
    )


def summarize(results: Sequence[FileScanResult], total: Optional[int] = None) -> ScanSummary:
    """Aggregate per-file results (in input order) into a ScanSummary."""
    summary = ScanSummary(total_files=len(results) if total is None else total)
    for result in results:
        if result.skipped:
            summary.skipped_files += 1
            summary.skipped_results.append(result)
        else:
            summary.scanned_files += 1
        if result.has_secrets:
            summary.files_with_secrets += 1
            summary.results.append(result)
        summary.total_secrets += len(result.matches)
        for severity, count in result.counts_by_severity.items():
            summary.by_severity[severity] += count
        summary.warnings.extend(f"{result.display_path}: {w}" for w in result.warnings)
    return summary


def check_file_count(count: int, limit: int = MAX_FILES_PER_SCAN) -> None:
    """
    Enforce the per-scan file cap.

    Raises:
        ScanLimitError: if ``count`` exceeds ``limit``.
    """

    if count > limit:
        raise ScanLimitError(count, limit)
    if count > WARN_FILES_THRESHOLD:
        logger.warning(
            "Scanning %d files may take a while. Consider excluding files to reduce scan scope.",
            count,
        )


def scan_files(paths: Sequence[str | Path], options: Optional[ScanOptions] = None) -> ScanSummary:
    """
    Scan many files with bounded concurrency.

    Raises:
        ScanLimitError: before any file is opened, if there are too many paths.
    """

    options = options or ScanOptions()
    paths = list(paths)
    check_file_count(len(paths))

    if not paths:
        return ScanSummary()

    workers = max(1, min(options.concurrency, len(paths)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        results = list(executor.map(lambda p: scan_file(p, options), paths))

    return summarize(results)
