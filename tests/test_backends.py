import json
import sys

import pytest

from dotguard.backends.base import (
    BackendName,
    SecretReference,
    classify_cli_error,
    run_command,
)
from dotguard.backends.bitwarden import BitwardenBackend
from dotguard.backends.local import LocalBackend
from dotguard.backends.onepassword import OnePasswordBackend
from dotguard.backends.pass_store import PassBackend
from dotguard.errors import (
    BackendAuthenticationError,
    BackendErrorKind,
    SecretBackendError,
)
from dotguard.settings import BitwardenConfig, OnePasswordConfig, PassConfig
from dotguard.store import SecretStore

from fakes import FakeRunner, fail, ok, timed_out


# ---------------------------------------------------------------------------
# Command execution and error classification
# ---------------------------------------------------------------------------


def test_run_command_captures_output():
    result = run_command([sys.executable, "-c", "print('hi')"])
    assert result.ok
    assert result.stdout.strip() == "hi"


def test_run_command_reports_missing_executable():
    result = run_command(["dotguard-no-such-binary-xyz"])
    assert result.not_found
    assert not result.ok


def test_run_command_reports_timeout():
    result = run_command([sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.2)
    assert result.timed_out
    assert not result.ok


@pytest.mark.parametrize(
    "backend, stderr, kind",
    [
        ("1password", '[ERROR] "GitHub" isn\'t an item in the "Personal" vault', BackendErrorKind.NOT_FOUND),
        ("1password", "You are not currently signed in", BackendErrorKind.AUTH_REQUIRED),
        ("bitwarden", "Vault is locked.", BackendErrorKind.LOCKED),
        ("bitwarden", "You are not logged in.", BackendErrorKind.AUTH_REQUIRED),
        ("bitwarden", "Not found.", BackendErrorKind.NOT_FOUND),
        ("pass", "Error: x/y is not in the password store.", BackendErrorKind.NOT_FOUND),
        ("pass", "gpg: decryption failed: No secret key", BackendErrorKind.DECRYPTION_FAILED),
        ("pass", "something odd", BackendErrorKind.UNKNOWN),
        ("nope", "whatever", BackendErrorKind.UNKNOWN),
    ],
)
def test_classify_cli_error(backend, stderr, kind):
    assert classify_cli_error(backend, stderr) is kind


def test_timeouts_classify_first():
    assert classify_cli_error("pass", "not in the password store", timed_out=True) is BackendErrorKind.TIMEOUT


# ---------------------------------------------------------------------------
# Local
# ---------------------------------------------------------------------------


def test_local_backend(repo):
    store = SecretStore(repo)
    store.set("TOKEN", "value-1")
    backend = LocalBackend(store)

    assert backend.is_available() and backend.is_authenticated()
    assert backend.get_secret(SecretReference("TOKEN")) == "value-1"
    assert backend.get_secret(SecretReference("MISSING")) is None
    assert backend.list_secrets() == ["TOKEN"]
    assert backend.status().authenticated


# ---------------------------------------------------------------------------
# 1Password
# ---------------------------------------------------------------------------


def test_onepassword_reads_reference():
    runner = FakeRunner({("op", "read"): ok("s3cret")})
    backend = OnePasswordBackend(runner=runner)

    value = backend.get_secret(SecretReference("GH", "op://Personal/GitHub/token"))

    assert value == "s3cret"
    assert runner.calls == [["op", "read", "op://Personal/GitHub/token", "--no-newline"]]


def test_onepassword_default_vault_prefix():
    runner = FakeRunner({("op", "read"): ok("v")})
    backend = OnePasswordBackend(OnePasswordConfig(vault="Work"), runner=runner)
    backend.get_secret(SecretReference("GH", "GitHub/token"))
    assert runner.calls[0][2] == "op://Work/GitHub/token"


def test_onepassword_path_without_vault_is_invalid():
    backend = OnePasswordBackend(runner=FakeRunner())
    with pytest.raises(SecretBackendError) as excinfo:
        backend.get_secret(SecretReference("GH", "GitHub/token"))
    assert excinfo.value.kind is BackendErrorKind.INVALID_PATH


def test_onepassword_missing_mapping():
    backend = OnePasswordBackend(runner=FakeRunner())
    with pytest.raises(SecretBackendError) as excinfo:
        backend.get_secret(SecretReference("GH"))
    assert excinfo.value.kind is BackendErrorKind.INVALID_PATH
    assert "GH" in excinfo.value.message


def test_onepassword_not_found_returns_none():
    runner = FakeRunner({("op", "read"): fail('"X" isn\'t an item in any vault')})
    backend = OnePasswordBackend(runner=runner)
    assert backend.get_secret(SecretReference("X", "op://v/X/f")) is None


def test_onepassword_auth_and_timeout_errors():
    backend = OnePasswordBackend(runner=FakeRunner({("op", "read"): fail("not currently signed in")}))
    with pytest.raises(BackendAuthenticationError):
        backend.get_secret(SecretReference("X", "op://v/X/f"))

    backend = OnePasswordBackend(runner=FakeRunner({("op", "read"): timed_out()}), timeout=3)
    with pytest.raises(SecretBackendError) as excinfo:
        backend.get_secret(SecretReference("X", "op://v/X/f"))
    assert excinfo.value.kind is BackendErrorKind.TIMEOUT
    assert "3s" in excinfo.value.message


def test_onepassword_status():
    runner = FakeRunner({("op", "--version"): ok("2.24.0"), ("op", "account", "get"): ok("{}")})
    status = OnePasswordBackend(runner=runner).status()
    assert status.available and status.authenticated

    status = OnePasswordBackend(runner=FakeRunner()).status()
    assert not status.available and not status.authenticated


def test_onepassword_service_account(monkeypatch):
    monkeypatch.setenv("OP_SERVICE_ACCOUNT_TOKEN", "ops_token")
    runner = FakeRunner({
        ("op", "account", "get"): fail("no account"),
        ("op", "vault", "list"): ok(json.dumps([{"name": "CI"}])),
    })
    backend = OnePasswordBackend(runner=runner)
    assert backend.is_authenticated()
    assert backend.list_vaults() == ["CI"]
    backend.authenticate()
    backend.lock()
    assert ["op", "signout"] not in runner.calls


# ---------------------------------------------------------------------------
# Bitwarden
# ---------------------------------------------------------------------------

ITEM = {
    "name": "GitHub",
    "login": {"username": "octocat", "password": "pw-123"},
    "notes": "some notes",
    "fields": [{"name": "API Token", "value": "tok-456"}],
}


@pytest.mark.parametrize(
    "path, expected",
    [
        ("GitHub", "pw-123"),
        ("GitHub/password", "pw-123"),
        ("GitHub/username", "octocat"),
        ("GitHub/notes", "some notes"),
        ("GitHub/api token", "tok-456"),
        ("GitHub/unknown", None),
    ],
)
def test_bitwarden_field_selection(path, expected):
    runner = FakeRunner({("bw", "get", "item"): ok(json.dumps(ITEM))})
    backend = BitwardenBackend(runner=runner)
    assert backend.get_secret(SecretReference("GH", path)) == expected
    assert runner.calls[0] == ["bw", "get", "item", "GitHub"]


def test_bitwarden_locked_vault():
    runner = FakeRunner({
        ("bw", "get", "item"): fail("Vault is locked."),
        ("bw", "status"): ok(json.dumps({"status": "locked"})),
    })
    backend = BitwardenBackend(runner=runner)
    with pytest.raises(BackendAuthenticationError):
        backend.get_secret(SecretReference("GH", "GitHub"))
    assert not backend.is_authenticated()
    with pytest.raises(BackendAuthenticationError) as excinfo:
        backend.authenticate()
    assert any("bw unlock" in hint for hint in excinfo.value.suggestions)


def test_bitwarden_session_and_server_are_passed(monkeypatch):
    monkeypatch.setenv("BW_SESSION", "session-key")
    runner = FakeRunner({("bw", "status"): ok(json.dumps({"status": "unlocked"}))})
    backend = BitwardenBackend(BitwardenConfig(server_url="https://vault.example"), runner=runner)
    assert backend.is_authenticated()
    env = runner.envs[0]
    assert env["BW_SESSION"] == "session-key"
    assert env["BW_URL"] == "https://vault.example"


def test_bitwarden_garbage_output():
    runner = FakeRunner({("bw", "get", "item"): ok("not json"), ("bw", "status"): ok("garbage")})
    backend = BitwardenBackend(runner=runner)
    with pytest.raises(SecretBackendError):
        backend.get_secret(SecretReference("GH", "GitHub"))
    assert backend.status_name() is None


def test_bitwarden_lock_clears_session(monkeypatch):
    monkeypatch.setenv("BW_SESSION", "session-key")
    backend = BitwardenBackend(runner=FakeRunner({("bw", "lock"): ok()}))
    backend.lock()
    assert backend.session_key is None


# ---------------------------------------------------------------------------
# pass
# ---------------------------------------------------------------------------


def test_pass_returns_first_line():
    runner = FakeRunner({("pass", "show"): ok("hunter2\nuser: me\n")})
    backend = PassBackend(runner=runner)
    assert backend.get_secret(SecretReference("DB", "db/prod")) == "hunter2"
    assert runner.calls == [["pass", "show", "db/prod"]]


def test_pass_wildcard_returns_whole_output():
    runner = FakeRunner({("pass", "show"): ok("line1\nline2\n")})
    backend = PassBackend(runner=runner)
    assert backend.get_secret(SecretReference("DB", "db/*")) == "line1\nline2"


def test_pass_errors():
    runner = FakeRunner({("pass", "show", "missing"): fail("Error: missing is not in the password store.")})
    assert PassBackend(runner=runner).get_secret(SecretReference("X", "missing")) is None

    runner = FakeRunner({("pass", "show"): fail("gpg: decryption failed: No secret key", 2)})
    with pytest.raises(SecretBackendError) as excinfo:
        PassBackend(runner=runner).get_secret(SecretReference("X", "db"))
    assert excinfo.value.kind is BackendErrorKind.DECRYPTION_FAILED
    assert "gpg: decryption" not in excinfo.value.message


def test_pass_store_detection_and_listing(home):
    store_dir = home / "pw"
    store_dir.mkdir()
    listing = "Password Store\n├── db\n│   └── prod\n└── github\n"
    runner = FakeRunner({("pass", "version"): ok("v1.7"), ("pass", "ls"): ok(listing)})
    backend = PassBackend(PassConfig(store_path="~/pw", gpg_id="ABC123"), runner=runner)

    assert backend.is_available()
    assert not backend.is_authenticated()
    with pytest.raises(BackendAuthenticationError):
        backend.authenticate()

    (store_dir / ".gpg-id").write_text("ABC123\n")
    assert backend.is_authenticated()
    assert backend.list_secrets() == ["db", "prod", "github"]
    env = runner.envs[-1]
    assert env["PASSWORD_STORE_DIR"] == str(store_dir)
    assert "ABC123" in env["PASSWORD_STORE_GPG_OPTS"]


def test_backend_names():
    assert BackendName("1password") is BackendName.onepassword
    assert BackendName("pass") is BackendName.pass_store
