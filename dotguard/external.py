"""
Optional external scanner integration.

gitleaks is run once per file, five files at a time, and its JSON report is
converted into the same ``FileScanResult`` shape the built-in scanner
produces. When the configured scanner is unavailable the built-in scanner is
used instead.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import tempfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Collection, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .backends.base import CommandRunner, run_command
from .config import EXTERNAL_SCAN_CONCURRENCY, SCAN_TIMEOUT_SECONDS
from .errors import sanitize_detail
from .paths import collapse_path, expand_path
from .patterns import Severity
from .scanner import (
    FileScanResult,
    ScanSummary,
    SecretMatch,
    check_file_count,
    mask_context,
    redact_secret,
    scan_files,
    summarize,
)
from .settings import SecurityConfig

logger = logging.getLogger(__name__)

_CRITICAL_KEYWORDS = (
    "aws", "gcp", "azure", "private-key", "stripe", "github",
    "gitlab", "npm", "pypi", "jwt", "oauth",
)
_HIGH_KEYWORDS = ("api", "token", "secret", "password", "credential")
_RULE_PREFIX = "gitleaks-"


class GitleaksFinding(BaseModel):
    model_config = ConfigDict(extra="ignore")

    description: str = Field(default="", alias="Description")
    start_line: int = Field(alias="StartLine")
    start_column: int = Field(default=1, alias="StartColumn")
    match: str = Field(default="", alias="Match", repr=False)
    secret: str = Field(default="", alias="Secret", repr=False)
    file: str = Field(default="", alias="File")
    rule_id: str = Field(alias="RuleID")


def severity_for_rule(rule_id: str) -> Severity:
    lowered = rule_id.lower()
    if any(k in lowered for k in _CRITICAL_KEYWORDS):
        return Severity.critical
    if any(k in lowered for k in _HIGH_KEYWORDS):
        return Severity.high
    return Severity.medium


def placeholder_for_rule(rule_id: str) -> str:
    return re.sub(r"[^A-Z0-9_]", "", rule_id.upper().replace("-", "_")) or "SECRET"


def find_gitleaks(configured: Optional[str] = None) -> Optional[str]:
    if configured:
        return configured if Path(configured).exists() or shutil.which(configured) else None
    return shutil.which("gitleaks")


def _finding_to_match(finding: GitleaksFinding) -> Optional[SecretMatch]:
    value = finding.secret or finding.match
    if not value:
        return None
    return SecretMatch(
        pattern_id=f"{_RULE_PREFIX}{finding.rule_id}",
        pattern_name=finding.description or finding.rule_id,
        severity=severity_for_rule(finding.rule_id),
        value=value,
        redacted_value=redact_secret(value),
        line=finding.start_line,
        column=finding.start_column,
        context=mask_context(finding.match, value),
        placeholder=placeholder_for_rule(finding.rule_id),
    )


def _keep_match(match: SecretMatch, min_severity: Optional[Severity], excluded: Collection[str]) -> bool:
    """Apply the built-in scanner's severity floor and pattern exclusions."""
    if match.pattern_id in excluded or match.pattern_id[len(_RULE_PREFIX):] in excluded:
        return False
    return min_severity is None or match.severity.rank <= min_severity.rank


def scan_file_with_gitleaks(
    path: str | Path,
    binary: str = "gitleaks",
    runner: Optional[CommandRunner] = None,
    timeout: float = SCAN_TIMEOUT_SECONDS,
    min_severity: Optional[Severity] = None,
    exclude_ids: Collection[str] = (),
) -> FileScanResult:
    """
    Run gitleaks on one file. Failures come back as a skipped result.

    ``exclude_ids`` accepts either the gitleaks rule id or the
    ``gitleaks-``-prefixed pattern id.
    """
    runner = runner or run_command
    resolved = expand_path(path)
    display = collapse_path(resolved)

    def skipped(reason: str) -> FileScanResult:
        return FileScanResult(path=str(resolved), display_path=display, skipped=True, skip_reason=reason)

    fd, report_path = tempfile.mkstemp(prefix="dotguard-gitleaks-", suffix=".json")
    os.close(fd)
    try:
        result = runner(
            [binary, "detect", "--source", str(resolved), "--no-git",
             "--report-format", "json", "--report-path", report_path, "--exit-code", "0"],
            timeout,
            None,
        )
        if not result.ok:
            logger.warning("gitleaks scan failed for %s: %s", display, sanitize_detail(result.stderr))
            return skipped("External scanner failed")

        report = Path(report_path).read_text(encoding="utf-8").strip()
    except OSError as exc:
        logger.warning("Cannot read gitleaks report for %s (%s)", display, type(exc).__name__)
        return skipped("External scanner failed")
    finally:
        Path(report_path).unlink(missing_ok=True)

    if not report:
        return FileScanResult(path=str(resolved), display_path=display)

    try:
        raw = json.loads(report)
        if not isinstance(raw, list):
            raise ValueError("report is not a list")
        findings = [GitleaksFinding.model_validate(item) for item in raw]
    except (ValueError, ValidationError) as exc:
        logger.warning("Invalid gitleaks output format for %s (%s)", display, type(exc).__name__)
        return skipped("Invalid external scanner output")

    excluded = set(exclude_ids)
    matches = [
        m for m in (_finding_to_match(f) for f in findings)
        if m is not None and _keep_match(m, min_severity, excluded)
    ]
    matches.sort(key=lambda m: (m.line, m.column))
    return FileScanResult(path=str(resolved), display_path=display, matches=matches)


def scan_with_gitleaks(
    paths: Sequence[str | Path],
    binary: str = "gitleaks",
    runner: Optional[CommandRunner] = None,
    min_severity: Optional[Severity] = None,
    exclude_ids: Collection[str] = (),
) -> ScanSummary:
    paths = list(paths)
    check_file_count(len(paths))

    results: List[FileScanResult] = []
    with ThreadPoolExecutor(max_workers=EXTERNAL_SCAN_CONCURRENCY) as executor:
        for start in range(0, len(paths), EXTERNAL_SCAN_CONCURRENCY):
            batch = paths[start:start + EXTERNAL_SCAN_CONCURRENCY]
            results.extend(executor.map(
                lambda p: scan_file_with_gitleaks(
                    p, binary, runner, min_severity=min_severity, exclude_ids=exclude_ids
                ),
                batch,
            ))
    return summarize(results)


def scan_with_configured_scanner(
    paths: Sequence[str | Path],
    settings: Optional[SecurityConfig] = None,
    runner: Optional[CommandRunner] = None,
) -> ScanSummary:
    """Scan with the scanner named in settings, falling back to the built-in one."""
    settings = settings or SecurityConfig()

    if settings.scanner == "gitleaks":
        binary = find_gitleaks(settings.gitleaks_path)
        if binary:
            return scan_with_gitleaks(
                paths, binary, runner,
                min_severity=settings.min_severity,
                exclude_ids=settings.exclude_patterns,
            )
        logger.warning("gitleaks not found, falling back to built-in scanner")
    elif settings.scanner == "trufflehog":
        logger.warning("trufflehog integration is not supported, using built-in scanner")

    return scan_files(paths, settings.scan_options())
