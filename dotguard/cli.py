"""
Command-line interface for dotguard.

This module wires the protection components into user-facing commands:
- scan
- secrets (list, set, unset, path, map, backends)
- restore
- track
- ignore
- encrypt / decrypt
- audit
- help
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import sys
from typing import List, Optional, Sequence

from .audit import get_recent_audit_entries
from .backends import SecretResolver
from .backends.base import DISPLAY_NAMES, BackendName
from .config import TOOL_VERSION, get_repo_root, load_password_from_env
from .crypto import EncryptionManager
from .errors import DotguardError, EncryptionError
from .ignore_file import add_to_ignore_file, load_ignore_patterns, remove_from_ignore_file
from .paths import collapse_path
from .patterns import Severity
from .policy import (
    Choice,
    NonInteractivePrompter,
    Prompter,
    SecretAction,
    TrackingOptions,
    evaluate_paths_for_tracking,
)
from .protection import restore_secrets_in_files, scan_for_secrets
from .settings import Settings
from .store import SecretStore
from .utils import format_file_size

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Color output helpers
# ---------------------------------------------------------------------------


class Colors:
    """ANSI color codes for terminal output."""
    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    MAGENTA = "\033[95m"
    CYAN = "\033[96m"
    RESET = "\033[0m"
    BOLD = "\033[1m"


def colored(text: str, color: str) -> str:
    """Return colored text for terminal output."""
    return f"{color}{text}{Colors.RESET}"


def print_error(msg: str) -> None:
    """Print error message to stderr."""
    print(colored(f"✗ Error: {msg}", Colors.RED), file=sys.stderr)


def print_success(msg: str) -> None:
    print(colored(f"✓ {msg}", Colors.GREEN))


def print_warning(msg: str) -> None:
    print(colored(f"⚠ Warning: {msg}", Colors.YELLOW))


def print_info(msg: str) -> None:
    print(colored(f"ℹ {msg}", Colors.CYAN))


# ---------------------------------------------------------------------------
# Prompting
# ---------------------------------------------------------------------------


class ConsolePrompter:
    """Prompter backed by ``input()``. End of input selects the safe choice."""

    def show(self, lines: Sequence[str]) -> None:
        for line in lines:
            print(colored(line, Colors.YELLOW) if line.startswith("Security") else line)

    def select(self, message: str, choices: Sequence[Choice]) -> str:
        print(colored(message, Colors.BOLD))
        for idx, (_, label, hint) in enumerate(choices, 1):
            print(f"  {idx}) {label}" + (colored(f"  {hint}", Colors.BLUE) if hint else ""))

        while True:
            try:
                answer = input(colored(f"Choose [1-{len(choices)}]: ", Colors.CYAN)).strip()
            except EOFError:
                return NonInteractivePrompter().select(message, choices)
            if answer.isdigit() and 1 <= int(answer) <= len(choices):
                return choices[int(answer) - 1][0]
            for value, _, _ in choices:
                if answer == value:
                    return value
            print_warning("Invalid choice")

    def confirm(self, message: str, default: bool = False) -> bool:
        suffix = "[Y/n]" if default else "[y/N]"
        try:
            answer = input(colored(f"{message} {suffix} ", Colors.YELLOW)).strip().lower()
        except EOFError:
            return False
        if not answer:
            return default
        return answer in ("y", "yes")

    def confirm_dangerous(self, message: str, word: str) -> bool:
        print(colored(f"⚠️  {message}", Colors.RED))
        try:
            answer = input(colored(f"Type '{word}' to confirm: ", Colors.YELLOW))
        except EOFError:
            return False
        return answer.strip() == word


def default_prompter() -> Prompter:
    return ConsolePrompter() if sys.stdin.isatty() else NonInteractivePrompter()


def read_secret_input(prompt: str) -> str:
    """Read a secret from the terminal without echo, or from piped stdin."""
    if sys.stdin.isatty():
        return getpass.getpass(prompt)
    return sys.stdin.readline().rstrip("\r\n")


# ---------------------------------------------------------------------------
# CLI context
# ---------------------------------------------------------------------------


class CLIContext:
    """Shared context for CLI commands."""

    def __init__(self, repo: Optional[str], verbose: bool, quiet: bool):
        self.repo = get_repo_root(repo)
        self.verbose = verbose
        self.quiet = quiet

        # Lazy-loaded
        self._settings: Optional[Settings] = None
        self._resolver: Optional[SecretResolver] = None

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = Settings.for_repo(self.repo)
        return self._settings

    @property
    def store(self) -> SecretStore:
        return self.resolver.store

    @property
    def resolver(self) -> SecretResolver:
        if self._resolver is None:
            self._resolver = SecretResolver(self.repo, self.settings.security)
        return self._resolver

    def log(self, msg: str) -> None:
        """Log message if not quiet."""
        if not self.quiet:
            print(msg)

    def log_verbose(self, msg: str) -> None:
        """Log message if verbose."""
        if self.verbose:
            print(colored(f"  → {msg}", Colors.BLUE))


# ---------------------------------------------------------------------------
# Command implementations
# ---------------------------------------------------------------------------


def cmd_scan(ctx: CLIContext, args: argparse.Namespace) -> int:
    """
    Scan files for secrets. Exits 1 when anything is found.
    """
    security = ctx.settings.security
    if args.min_severity:
        security.min_severity = Severity(args.min_severity)

    summary = scan_for_secrets(args.paths, ctx.repo, security)

    if args.json:
        output = {
            "total_files": summary.total_files,
            "files_with_secrets": summary.files_with_secrets,
            "total_secrets": summary.total_secrets,
            "by_severity": summary.by_severity,
            "files": [
                {
                    "path": r.display_path,
                    "skipped": r.skipped,
                    "skip_reason": r.skip_reason,
                    "warnings": r.warnings,
                    "matches": [
                        {
                            "pattern_id": m.pattern_id,
                            "pattern_name": m.pattern_name,
                            "severity": m.severity.value,
                            "line": m.line,
                            "column": m.column,
                            "redacted_value": m.redacted_value,
                            "placeholder": m.placeholder,
                        }
                        for m in r.matches
                    ],
                }
                for r in summary.results + summary.skipped_results
            ],
        }
        print(json.dumps(output, indent=2))
        return 1 if summary.total_secrets else 0

    for result in summary.skipped_results:
        ctx.log_verbose(f"Skipped {result.display_path}: {result.skip_reason}")

    if not summary.total_secrets:
        print_success(f"No secrets found in {summary.total_files} file(s)")
        return 0

    print_warning(
        f"Found {summary.total_secrets} potential secret(s) in {summary.files_with_secrets} file(s)"
    )
    for result in summary.results:
        ctx.log("")
        ctx.log(colored(result.display_path, Colors.BOLD))
        for match in result.matches:
            ctx.log(
                f"  Line {match.line}:{match.column}  {match.pattern_name}  "
                f"{colored(match.redacted_value, Colors.RED)}  [{match.severity.value}]"
            )
            ctx.log_verbose(match.context)
        for warning in result.warnings:
            ctx.log_verbose(warning)
    ctx.log("")
    return 1


def cmd_secrets(ctx: CLIContext, args: argparse.Namespace) -> int:
    """
    Manage the local secret store and backend mappings.
    """
    sub = args.secrets_command

    if sub == "path":
        print(ctx.store.path)
        return 0

    if sub == "list":
        secrets = ctx.store.list()
        if not secrets:
            ctx.log(colored("No secrets stored", Colors.YELLOW))
            return 0
        ctx.log(colored(f"Stored secrets ({len(secrets)})", Colors.BOLD))
        for info in secrets:
            ctx.log(f"  {colored(info.name, Colors.CYAN)}  {info.placeholder}")
            if info.description:
                ctx.log(f"    Description: {info.description}")
            if info.source:
                ctx.log(f"    Source:      {info.source}")
            ctx.log_verbose(f"added {info.added_at}, last used {info.last_used or 'never'}")
        return 0

    if sub == "set":
        value = args.value if args.value is not None else read_secret_input(f"Value for {args.name}: ")
        if not value:
            print_error("Secret value cannot be empty")
            return 1
        name = ctx.store.set(args.name, value, description=args.description)
        ctx.store.ensure_secrets_gitignored()
        print_success(f"Stored {name}")
        return 0

    if sub == "unset":
        if ctx.store.unset(args.name):
            ctx.resolver.invalidate_cache(args.name)
            print_success(f"Removed {args.name}")
            return 0
        print_error(f"No secret named {args.name}")
        return 1

    if sub == "map":
        if args.remove:
            removed = ctx.resolver.mappings.remove_mapping(args.name, args.backend)
            if removed:
                print_success(f"Removed {args.backend} mapping for {args.name}")
                return 0
            print_error(f"No {args.backend} mapping for {args.name}")
            return 1
        if not args.path:
            print_error("--path is required")
            return 1
        ctx.resolver.mappings.set_mapping(args.name, args.backend, args.path)
        print_success(f"Mapped {args.name} -> {args.backend}:{args.path}")
        return 0

    if sub == "mappings":
        mappings = ctx.resolver.list_mappings()
        if not mappings:
            ctx.log(colored("No mappings configured", Colors.YELLOW))
            return 0
        for name, mapping in sorted(mappings.items()):
            ctx.log(colored(name, Colors.CYAN))
            for backend, path in mapping.model_dump(by_alias=True, exclude_none=True).items():
                ctx.log(f"  {backend}: {path}")
        return 0

    if sub == "backends":
        primary = ctx.resolver.primary
        ctx.log(colored("Secret backends", Colors.BOLD))
        for status in ctx.resolver.backend_statuses():
            marker = colored("*", Colors.GREEN) if status.backend is primary else " "
            if status.authenticated:
                state = colored("ready", Colors.GREEN)
            elif status.available:
                state = colored("not signed in", Colors.YELLOW)
            else:
                state = colored("not installed", Colors.RED)
            ctx.log(f" {marker} {status.display_name:<12} {state}")
            if status.error:
                ctx.log_verbose(status.error)
        if args.detect:
            detected = ctx.resolver.auto_detect_backend()
            print_info(f"Detected backend: {DISPLAY_NAMES[detected]}")
        return 0

    print_error("Missing secrets subcommand")
    return 1


def cmd_restore(ctx: CLIContext, args: argparse.Namespace) -> int:
    """
    Replace placeholders in files with values from the configured backend.
    """
    summary = restore_secrets_in_files(args.paths, ctx.repo, ctx.resolver)

    for name, message in summary.errors.items():
        print_warning(f"{name}: {message}")

    if summary.total_restored:
        print_success(f"Restored {summary.total_restored} secret(s) in {summary.files_modified} file(s)")
    else:
        ctx.log(colored("No placeholders restored", Colors.YELLOW))

    if summary.all_unresolved:
        print_warning(f"Unresolved secrets: {', '.join(summary.all_unresolved)}")
        ctx.log(f"  Run 'dotguard secrets set <NAME>' or map them to {ctx.resolver.primary.value}")
        return 1
    return 0


def cmd_track(ctx: CLIContext, args: argparse.Namespace) -> int:
    """
    Run candidate paths through the tracking policy and report the result.
    """
    options = TrackingOptions(
        force=args.force,
        strict=args.strict,
        prompter=NonInteractivePrompter() if args.strict else default_prompter(),
        settings=ctx.settings.security,
        force_bypass_command="dotguard track --force",
    )
    outcome = evaluate_paths_for_tracking(args.paths, ctx.repo, options)

    for skipped in outcome.skipped:
        ctx.log(f"  {colored('-', Colors.YELLOW)} {skipped.source} (skipped: {skipped.reason.value})")

    if outcome.secret_action is SecretAction.redacted:
        print_info(f"Replaced {outcome.redacted_count} secret(s) with placeholders")
    elif outcome.secret_action is SecretAction.aborted:
        ctx.log("Aborted")
        return 1

    if not outcome.files:
        ctx.log(colored("No files to track", Colors.YELLOW))
        return 0

    for prepared in outcome.files:
        details = format_file_size(prepared.size)
        if prepared.is_dir:
            details = f"{prepared.file_count} files, {details}"
        line = f"  ✓ {prepared.source} ({details})"
        if prepared.sensitive:
            line += colored("  sensitive", Colors.YELLOW)
        ctx.log(line)

    print_success(f"{len(outcome.files)} path(s) ready to track")
    return 0


def cmd_ignore(ctx: CLIContext, args: argparse.Namespace) -> int:
    """
    Manage the ignore file.
    """
    sub = args.ignore_command

    if sub == "list":
        patterns = load_ignore_patterns(ctx.repo)
        if not patterns:
            ctx.log(colored("No ignore patterns", Colors.YELLOW))
        for pattern in patterns:
            print(pattern)
        return 0

    if sub == "add":
        if add_to_ignore_file(ctx.repo, args.path):
            print_success(f"Added {collapse_path(args.path)} to .dotguardignore")
        else:
            ctx.log(f"{collapse_path(args.path)} is already ignored")
        return 0

    if sub == "remove":
        if remove_from_ignore_file(ctx.repo, args.path):
            print_success(f"Removed {collapse_path(args.path)} from .dotguardignore")
            return 0
        print_error(f"{collapse_path(args.path)} is not in .dotguardignore")
        return 1

    print_error("Missing ignore subcommand")
    return 1


def _password(confirm: bool) -> str:
    password = load_password_from_env()
    if password is None:
        password = getpass.getpass("Encryption password: ")
        if confirm and getpass.getpass("Confirm password: ") != password:
            raise EncryptionError("Passwords do not match")
    return password


def cmd_encrypt(ctx: CLIContext, args: argparse.Namespace) -> int:
    """
    Encrypt SRC into DEST with the repository password.
    """
    manager = EncryptionManager(ctx.repo)
    if args.setup or not manager.is_enabled():
        password = _password(confirm=True)
        manager.setup(password)
        print_success("Encryption password configured")
    else:
        password = _password(confirm=False)

    manager.encrypt_file(args.src, args.dest, password)
    print_success(f"{args.src} → {args.dest}")
    return 0


def cmd_decrypt(ctx: CLIContext, args: argparse.Namespace) -> int:
    """
    Decrypt SRC into DEST. Tampered blobs and wrong passwords fail the same way.
    """
    manager = EncryptionManager(ctx.repo)
    manager.decrypt_file(args.src, args.dest, _password(confirm=False))
    print_success(f"{args.src} → {args.dest}")
    return 0


def cmd_audit(ctx: CLIContext, args: argparse.Namespace) -> int:
    entries = get_recent_audit_entries(args.limit)
    if not entries:
        ctx.log(colored("Audit log is empty", Colors.YELLOW))
        return 0
    for entry in entries:
        line = f"{entry.timestamp}  {colored(entry.action, Colors.MAGENTA)}  {entry.command}"
        if entry.details:
            line += f"  ({entry.details})"
        print(line)
    return 0


def cmd_help(ctx: Optional[CLIContext], args: argparse.Namespace) -> int:
    """
    Show help message.
    """
    help_text = f"""
{colored('dotguard', Colors.BOLD)} - keep secrets out of your dotfiles repository

{colored('USAGE:', Colors.CYAN)}
  dotguard [options] <command> [args...]

{colored('DESCRIPTION:', Colors.CYAN)}
  dotguard scans files for credentials before they are tracked, replaces
  them with {{{{SECRET:NAME}}}} placeholders, keeps the values in a local
  git-ignored store or an external password manager, and restores them
  on demand.

{colored('COMMANDS:', Colors.CYAN)}
  scan PATHS...            Scan files for secrets (exit 1 if any found)
  track PATHS...           Run files through the tracking policy
  restore PATHS...         Replace placeholders with secret values
  secrets list             List stored secrets (never shows values)
  secrets set NAME         Store a secret (value from --value or stdin)
  secrets unset NAME       Remove a stored secret
  secrets path             Print the secret store location
  secrets map NAME         Map a secret to a backend path
  secrets mappings         List backend mappings
  secrets backends         Show backend availability
  ignore add|remove PATH   Edit .dotguardignore
  ignore list              Show .dotguardignore entries
  encrypt SRC DEST         Encrypt a file with the repository password
  decrypt SRC DEST         Decrypt a file encrypted by dotguard
  audit                    Show recent audit log entries
  help                     Show this help message

{colored('GLOBAL OPTIONS:', Colors.CYAN)}
  -r, --repo PATH           Repository root
                            (default: $DOTGUARD_REPO or ~/.dotguard)
  -v, --verbose             Enable verbose output
  -q, --quiet               Suppress non-error output
  --debug                   Enable debug logging
  -h, --help                Show this help message and exit

{colored('ENVIRONMENT:', Colors.CYAN)}
  DOTGUARD_REPO             Repository root
  DOTGUARD_PASSWORD         Password for encrypt and decrypt
  DOTGUARD_STATE_DIR        Directory holding audit.log

{colored('EXAMPLES:', Colors.CYAN)}
  dotguard scan ~/.zshrc ~/.config/gh/hosts.yml
  dotguard track ~/.aws/config --strict
  dotguard secrets map GITHUB_TOKEN --backend 1password --path "Private/GitHub/token"
  dotguard restore ~/.dotguard/files/.zshrc

{colored('VERSION:', Colors.CYAN)}
  {TOOL_VERSION}
"""
    print(help_text)
    return 0


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="dotguard",
        description="Keep secrets out of your dotfiles repository",
        add_help=False,
    )

    # Global options
    parser.add_argument("-r", "--repo", default=None, help="Repository root")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress non-error output")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("-h", "--help", action="store_true", help="Show help message")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # scan command
    scan_parser = subparsers.add_parser("scan", help="Scan files for secrets")
    scan_parser.add_argument("paths", nargs="+", help="Files to scan")
    scan_parser.add_argument("--json", action="store_true", help="Output findings as JSON")
    scan_parser.add_argument(
        "--min-severity",
        choices=[s.value for s in Severity],
        help="Report only findings at or above this severity",
    )

    # secrets command
    secrets_parser = subparsers.add_parser("secrets", help="Manage stored secrets")
    secrets_sub = secrets_parser.add_subparsers(dest="secrets_command")
    secrets_sub.add_parser("list", help="List stored secrets")
    set_parser = secrets_sub.add_parser("set", help="Store a secret")
    set_parser.add_argument("name")
    set_parser.add_argument("--value", default=None, help="Secret value (prompted if omitted)")
    set_parser.add_argument("--description", default=None)
    unset_parser = secrets_sub.add_parser("unset", help="Remove a secret")
    unset_parser.add_argument("name")
    secrets_sub.add_parser("path", help="Print the secret store location")
    map_parser = secrets_sub.add_parser("map", help="Map a secret to a backend path")
    map_parser.add_argument("name")
    map_parser.add_argument("--backend", required=True, choices=[b.value for b in BackendName])
    map_parser.add_argument("--path", default=None, help="Backend path or reference")
    map_parser.add_argument("--remove", action="store_true", help="Remove the mapping instead")
    secrets_sub.add_parser("mappings", help="List backend mappings")
    backends_parser = secrets_sub.add_parser("backends", help="Show backend availability")
    backends_parser.add_argument("--detect", action="store_true", help="Also auto-detect a ready backend")

    # restore command
    restore_parser = subparsers.add_parser("restore", help="Restore placeholders")
    restore_parser.add_argument("paths", nargs="+", help="Files to restore")

    # track command
    track_parser = subparsers.add_parser("track", help="Check files against the tracking policy")
    track_parser.add_argument("paths", nargs="+", help="Files or directories to track")
    track_parser.add_argument("--force", action="store_true", help="Bypass secret scanning")
    track_parser.add_argument("--strict", action="store_true", help="Never prompt; fail on secrets")

    # ignore command
    ignore_parser = subparsers.add_parser("ignore", help="Manage .dotguardignore")
    ignore_sub = ignore_parser.add_subparsers(dest="ignore_command")
    ignore_sub.add_parser("list", help="List ignore entries")
    ignore_add = ignore_sub.add_parser("add", help="Add a path")
    ignore_add.add_argument("path")
    ignore_remove = ignore_sub.add_parser("remove", help="Remove a path")
    ignore_remove.add_argument("path")

    # encrypt / decrypt commands
    encrypt_parser = subparsers.add_parser("encrypt", help="Encrypt a file")
    encrypt_parser.add_argument("src")
    encrypt_parser.add_argument("dest")
    encrypt_parser.add_argument("--setup", action="store_true", help="Set a new repository password")
    decrypt_parser = subparsers.add_parser("decrypt", help="Decrypt a file")
    decrypt_parser.add_argument("src")
    decrypt_parser.add_argument("dest")

    # audit command
    audit_parser = subparsers.add_parser("audit", help="Show recent audit entries")
    audit_parser.add_argument("-n", "--limit", type=int, default=10)

    # help command
    subparsers.add_parser("help", help="Show help message")

    return parser


def configure_logging(verbose: bool, debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Show help if requested or no command
    if args.help or not args.command:
        return cmd_help(None, args)

    configure_logging(args.verbose, args.debug)

    ctx = CLIContext(repo=args.repo, verbose=args.verbose, quiet=args.quiet)

    commands = {
        "scan": cmd_scan,
        "secrets": cmd_secrets,
        "restore": cmd_restore,
        "track": cmd_track,
        "ignore": cmd_ignore,
        "encrypt": cmd_encrypt,
        "decrypt": cmd_decrypt,
        "audit": cmd_audit,
        "help": cmd_help,
    }

    cmd_func = commands.get(args.command)
    if not cmd_func:
        print_error(f"Unknown command: {args.command}")
        return 1

    try:
        return cmd_func(ctx, args)
    except KeyboardInterrupt:
        print_error("Interrupted")
        return 130
    except DotguardError as e:
        print_error(e.format())
        return 1
    except Exception as e:
        print_error(f"Unexpected error: {type(e).__name__}: {e}")
        if args.debug:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
