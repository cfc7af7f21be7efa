import json
import logging

from dotguard.audit import (
    AuditAction,
    audit_log_path,
    get_recent_audit_entries,
    log_audit_entry,
    log_force_secret_bypass,
    log_secrets_committed,
)


def test_entries_are_json_lines(tmp_path):
    log_force_secret_bypass("dotguard track --force", 3)
    log_secrets_committed(["~/.zshrc", "~/.npmrc"])

    path = audit_log_path()
    assert path == tmp_path / "state" / "audit.log"
    lines = [json.loads(line) for line in path.read_text().splitlines()]
    assert [line["action"] for line in lines] == [
        "FORCE_SECRET_BYPASS",
        "SECRETS_COMMITTED",
    ]
    assert lines[0]["details"] == "Bypassed secret scanning for 3 file(s)"
    assert lines[1]["details"] == "Files with secrets: ~/.zshrc, ~/.npmrc"
    assert lines[1]["command"] == "dotguard track"
    assert lines[0]["timestamp"].endswith("Z")
    assert lines[0]["cwd"]


def test_long_file_lists_are_truncated():
    log_secrets_committed([f"~/f{i}" for i in range(12)])
    (entry,) = get_recent_audit_entries()
    assert entry.details.endswith("~/f9 and 2 more")


def test_recent_entries_limit_and_bad_lines():
    for i in range(5):
        log_audit_entry(AuditAction.SECRETS_COMMITTED, f"cmd {i}")
    with audit_log_path().open("a") as fh:
        fh.write("not json\n")

    entries = get_recent_audit_entries(limit=3)
    assert [e.command for e in entries] == ["cmd 3", "cmd 4", "unknown"]
    assert entries[-1].action == "UNKNOWN"
    assert entries[-1].details == "not json"


def test_missing_log_is_empty():
    assert get_recent_audit_entries() == []


def test_write_failure_only_warns(tmp_path, monkeypatch, caplog):
    blocker = tmp_path / "blocker"
    blocker.write_text("a file where a directory should be")
    monkeypatch.setenv("DOTGUARD_STATE_DIR", str(blocker / "state"))

    with caplog.at_level(logging.WARNING):
        log_force_secret_bypass("dotguard track --force", 1)
    assert "Failed to write audit log" in caplog.text
