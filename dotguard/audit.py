"""
Audit trail for operations that bypass secret protection.

Entries are JSON lines in ``<state dir>/audit.log``. Writing an entry never
raises: the audit log must not break the operation being audited.
"""

from __future__ import annotations

import getpass
import json
import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence

from .config import AUDIT_FILENAME, get_state_dir

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    FORCE_SECRET_BYPASS = "FORCE_SECRET_BYPASS"
    SECRETS_COMMITTED = "SECRETS_COMMITTED"


@dataclass
class AuditEntry:
    timestamp: str
    action: str
    command: str
    details: Optional[str] = None
    user: Optional[str] = None
    cwd: Optional[str] = None


def audit_log_path() -> Path:
    return get_state_dir() / AUDIT_FILENAME


def _current_user() -> Optional[str]:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return os.environ.get("USER") or os.environ.get("USERNAME")


def log_audit_entry(action: AuditAction, command: str, details: Optional[str] = None) -> None:
    entry = AuditEntry(
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        action=AuditAction(action).value,
        command=command,
        details=details,
        user=_current_user(),
        cwd=os.getcwd(),
    )
    path = audit_log_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(asdict(entry)) + "\n")
    except OSError as exc:
        logger.warning("Failed to write audit log %s (%s)", path, type(exc).__name__)


def log_force_secret_bypass(command: str, files_count: int) -> None:
    log_audit_entry(
        AuditAction.FORCE_SECRET_BYPASS,
        command,
        f"Bypassed secret scanning for {files_count} file(s)",
    )


def log_secrets_committed(files: Sequence[str], command: str = "dotguard track") -> None:
    shown = ", ".join(files[:10])
    if len(files) > 10:
        shown += f" and {len(files) - 10} more"
    log_audit_entry(AuditAction.SECRETS_COMMITTED, command, f"Files with secrets: {shown}")


def get_recent_audit_entries(limit: int = 10) -> List[AuditEntry]:
    path = audit_log_path()
    if not path.exists():
        return []

    try:
        lines = [line for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]
    except OSError as exc:
        logger.warning("Cannot read audit log %s (%s)", path, type(exc).__name__)
        return []

    entries: List[AuditEntry] = []
    for line in lines[-limit:]:
        try:
            raw = json.loads(line)
            entries.append(AuditEntry(**{k: raw.get(k) for k in AuditEntry.__dataclass_fields__}))
        except (ValueError, TypeError, AttributeError):
            entries.append(AuditEntry(timestamp="unknown", action="UNKNOWN", command="unknown", details=line))
    return entries
