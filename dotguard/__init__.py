"""
dotguard

Secret protection for a dotfiles repository: detects credentials before
files are tracked, swaps them for {{SECRET:NAME}} placeholders, keeps the
values in a local store or a password manager, and restores them on demand.
"""

__version__ = "0.1.0"

from .backends import SecretResolver
from .policy import TrackingOptions, evaluate_paths_for_tracking, prepare_paths_for_tracking
from .protection import (
    process_secrets_for_redaction,
    restore_secrets_in_files,
    scan_for_secrets,
)
from .redactor import redact_content, restore_content
from .scanner import ScanOptions, scan_content, scan_file, scan_files
from .store import SecretStore

__all__ = [
    "SecretResolver",
    "TrackingOptions",
    "evaluate_paths_for_tracking",
    "prepare_paths_for_tracking",
    "process_secrets_for_redaction",
    "restore_secrets_in_files",
    "scan_for_secrets",
    "redact_content",
    "restore_content",
    "ScanOptions",
    "scan_content",
    "scan_file",
    "scan_files",
    "SecretStore",
]
