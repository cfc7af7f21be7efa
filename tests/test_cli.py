import json
from unittest import mock

import pytest

from dotguard import cli
from dotguard.crypto import EncryptionManager, KdfParams, is_encrypted_file
from dotguard.store import SecretStore

from fakes import FakeRunner


@pytest.fixture
def run(repo, capsys):
    def invoke(*argv):
        code = cli.main(["-r", str(repo), *argv])
        out, err = capsys.readouterr()
        return code, out, err

    return invoke


@pytest.fixture(autouse=True)
def no_external_commands(monkeypatch):
    monkeypatch.setattr("dotguard.backends.base.run_command", FakeRunner())


def test_help(capsys):
    assert cli.main([]) == 0
    assert "USAGE" in capsys.readouterr().out
    assert cli.main(["help"]) == 0


def test_scan_clean_and_dirty(run, home, dotfile, live_key):
    (home / ".vimrc").write_text("set nu\n")
    code, out, _ = run("scan", str(home / ".vimrc"))
    assert code == 0
    assert "No secrets found in 1 file(s)" in out

    code, out, _ = run("scan", str(dotfile))
    assert code == 1
    assert "Found 1 potential secret(s) in 1 file(s)" in out
    assert "[REDACTED SECRET]" in out
    assert live_key not in out


def test_scan_json(run, dotfile, live_key):
    code, out, _ = run("scan", "--json", str(dotfile))
    assert code == 1
    report = json.loads(out)
    assert report["total_secrets"] == 1
    (match,) = report["files"][0]["matches"]
    assert match["pattern_id"] == "api-key-assignment"
    assert match["line"] == 2
    assert live_key not in out


def test_secrets_lifecycle(run, repo):
    code, out, _ = run("secrets", "set", "my-token", "--value", "abc123", "--description", "demo")
    assert code == 0
    assert "Stored MY_TOKEN" in out
    assert SecretStore(repo).get("MY_TOKEN") == "abc123"

    code, out, _ = run("secrets", "list")
    assert "MY_TOKEN" in out and "demo" in out
    assert "abc123" not in out

    code, out, _ = run("secrets", "path")
    assert out.strip() == str(repo / "secrets.local.json")

    assert run("secrets", "unset", "MY_TOKEN")[0] == 0
    code, _, err = run("secrets", "unset", "MY_TOKEN")
    assert code == 1
    assert "No secret named MY_TOKEN" in err


def test_secret_mappings(run):
    code, out, _ = run("secrets", "map", "GH", "--backend", "1password", "--path", "op://P/GitHub/token")
    assert code == 0
    code, out, _ = run("secrets", "mappings")
    assert "GH" in out and "1password: op://P/GitHub/token" in out

    assert run("secrets", "map", "GH", "--backend", "1password")[0] == 1
    assert run("secrets", "map", "GH", "--backend", "1password", "--remove")[0] == 0
    assert run("secrets", "map", "GH", "--backend", "1password", "--remove")[0] == 1


def test_secret_backends(run):
    code, out, _ = run("secrets", "backends", "--detect")
    assert code == 0
    assert "Local Store" in out
    assert "not installed" in out
    assert "Detected backend: Local Store" in out


def test_restore(run, repo, home):
    path = home / ".npmrc"
    path.write_text("//registry/:_authToken={{SECRET:NPM_TOKEN}}\n")

    code, out, _ = run("restore", str(path))
    assert code == 1
    assert "Unresolved secrets: NPM_TOKEN" in out

    SecretStore(repo).set("NPM_TOKEN", "npm-value")
    code, out, _ = run("restore", str(path))
    assert code == 0
    assert "Restored 1 secret(s) in 1 file(s)" in out
    assert path.read_text() == "//registry/:_authToken=npm-value\n"


def test_track_strict(run, home, dotfile, live_key):
    (home / ".vimrc").write_text("set nu\n")
    code, out, _ = run("track", "--strict", "~/.vimrc")
    assert code == 0
    assert "1 path(s) ready to track" in out

    code, _, err = run("track", "--strict", "~/.zshrc")
    assert code == 1
    assert "Found 1 potential secret(s) in: ~/.zshrc" in err
    assert live_key not in err

    code, _, err = run("track", "--strict", "/etc/passwd")
    assert code == 1
    assert "Unsafe path" in err



def test_track_force_strict_bypass(run, dotfile):
    code, out, _ = run("track", "--strict", "--force", "~/.zshrc")
    assert code == 0
    code, out, _ = run("audit")
    assert "FORCE_SECRET_BYPASS" in out
    assert "Bypassed secret scanning for 1 file(s)" in out


def test_audit_empty(run):
    code, out, _ = run("audit", "-n", "5")
    assert code == 0
    assert "Audit log is empty" in out


def test_ignore_commands(run, repo):
    assert run("ignore", "add", "~/.cache")[0] == 0
    code, out, _ = run("ignore", "add", "~/.cache")
    assert "already ignored" in out
    code, out, _ = run("ignore", "list")
    assert out.strip().splitlines() == ["~/.cache"]
    assert run("ignore", "remove", "~/.cache")[0] == 0
    assert run("ignore", "remove", "~/.cache")[0] == 1


def test_encrypt_and_decrypt(run, repo, tmp_path, monkeypatch):
    monkeypatch.setattr(cli, "EncryptionManager", lambda root: EncryptionManager(root, KdfParams(n=2 ** 4)))
    monkeypatch.setenv("DOTGUARD_PASSWORD", "correct horse battery")
    src = tmp_path / "notes.txt"
    src.write_text("private notes\n")

    code, out, _ = run("encrypt", str(src), str(tmp_path / "notes.enc"))
    assert code == 0
    assert "Encryption password configured" in out
    assert is_encrypted_file(tmp_path / "notes.enc")

    code, _, _ = run("decrypt", str(tmp_path / "notes.enc"), str(tmp_path / "notes.out"))
    assert code == 0
    assert (tmp_path / "notes.out").read_text() == "private notes\n"

    monkeypatch.setenv("DOTGUARD_PASSWORD", "a different password")
    code, _, err = run("decrypt", str(tmp_path / "notes.enc"), str(tmp_path / "other.out"))
    assert code == 1
    assert "does not match" in err
    assert not (tmp_path / "other.out").exists()


def test_encrypt_prompt_mismatch(run, repo, tmp_path, monkeypatch):
    monkeypatch.delenv("DOTGUARD_PASSWORD", raising=False)
    src = tmp_path / "notes.txt"
    src.write_text("private notes\n")

    with mock.patch("dotguard.cli.getpass.getpass", side_effect=["password1", "password2"]) as prompt:
        code, _, err = run("encrypt", str(src), str(tmp_path / "notes.enc"))

    assert code == 1
    assert prompt.call_count == 2
    assert "Passwords do not match" in err
    assert not (tmp_path / "notes.enc").exists()
    assert not EncryptionManager(repo).is_enabled()
