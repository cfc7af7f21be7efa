import json

import pytest

from dotguard.backends.base import BackendName
from dotguard.backends.cache import SecretCache
from dotguard.backends.resolver import SecretResolver, create_backend
from dotguard.errors import (
    BackendAuthenticationError,
    BackendNotAvailableError,
    UnresolvedSecretsError,
)
from dotguard.settings import SecurityConfig

from fakes import FakeRunner, ManualClock, fail, ok

SIGNED_IN_OP = {
    ("op", "--version"): ok("2.24.0"),
    ("op", "account", "get"): ok("{}"),
}


def _resolver(repo, backend="local", runner=None, **kwargs):
    settings = SecurityConfig(secret_backend=backend, **kwargs)
    return SecretResolver(repo, settings, cache=SecretCache(clock=ManualClock()), runner=runner or FakeRunner())


def test_local_resolution(repo):
    resolver = _resolver(repo)
    resolver.store.set("TOKEN", "value")

    secret = resolver.resolve_secret("TOKEN")
    assert secret.value == "value"
    assert secret.backend == "local"
    assert not secret.cached
    assert resolver.resolve_secret("TOKEN").cached
    assert resolver.resolve_secret("MISSING") is None


def test_auto_primary_is_local(repo):
    assert _resolver(repo, "auto").primary is BackendName.local


def test_onepassword_resolution_and_cache(repo):
    calls = {"read": 0}

    def read(argv):
        calls["read"] += 1
        return ok("from-op")

    runner = FakeRunner({**SIGNED_IN_OP, ("op", "read"): read})
    resolver = _resolver(repo, "1password", runner)
    resolver.mappings.set_mapping("GH", "1password", "op://Personal/GitHub/token")

    assert resolver.resolve_secret("GH").value == "from-op"
    assert resolver.resolve_secret("GH").cached
    assert resolver.resolve_secret("GH", skip_cache=True).value == "from-op"
    assert calls["read"] == 2


def test_cache_can_be_disabled(repo):
    resolver = _resolver(repo, cache_secrets=False)
    resolver.store.set("A", "1")
    resolver.resolve_secret("A")
    assert len(resolver.cache) == 0


def test_missing_cli_is_not_available(repo):
    resolver = _resolver(repo, "bitwarden")
    with pytest.raises(BackendNotAvailableError):
        resolver.resolve_secret("GH")


def test_auth_required(repo):
    runner = FakeRunner({("op", "--version"): ok("2"), ("op", "account", "get"): fail("not signed in")})
    resolver = _resolver(repo, "1password", runner)
    with pytest.raises(BackendAuthenticationError):
        resolver.resolve_secret("GH", fail_on_auth_required=True)
    with pytest.raises(BackendAuthenticationError):
        resolver.resolve_secret("GH")


def test_resolve_all_collects_failures(repo):
    runner = FakeRunner({
        **SIGNED_IN_OP,
        ("op", "read", "op://v/a/f"): ok("a-value"),
        ("op", "read", "op://v/b/f"): fail('"b" isn\'t an item'),
    })
    resolver = _resolver(repo, "1password", runner)
    resolver.mappings.set_mapping("A", "1password", "op://v/a/f")
    resolver.mappings.set_mapping("B", "1password", "op://v/b/f")

    result = resolver.resolve_all(["A", "B", "C"])

    assert list(result.resolved) == ["A"]
    assert result.unresolved == ["B", "C"]
    assert list(result.errors) == ["C"]
    assert resolver.resolve_to_map(["A"]) == {"A": "a-value"}

    with pytest.raises(UnresolvedSecretsError) as excinfo:
        resolver.resolve_all_or_throw(["A", "B"])
    assert excinfo.value.names == ["B"]
    assert "a-value" not in excinfo.value.format()


def test_explicit_backend_overrides_primary(repo):
    runner = FakeRunner({("pass", "version"): ok("1.7"), ("pass", "show"): ok("from-pass\n")})
    resolver = _resolver(repo, "local", runner)
    store_dir = resolver.backends[BackendName.pass_store].store_path
    store_dir.mkdir(parents=True)
    (store_dir / ".gpg-id").write_text("KEY\n")
    resolver.mappings.set_mapping("DB", "pass", "db/prod")

    assert resolver.resolve_secret("DB", backend="pass").value == "from-pass"


def test_auto_detect_prefers_signed_in_backends(repo, monkeypatch):
    bw_status = ok(json.dumps({"status": "unlocked"}))
    runner = FakeRunner({("bw", "--version"): ok("1"), ("bw", "status"): bw_status})
    resolver = _resolver(repo, "auto", runner)
    assert resolver.auto_detect_backend() is BackendName.bitwarden

    runner = FakeRunner({**SIGNED_IN_OP, ("bw", "--version"): ok("1"), ("bw", "status"): bw_status})
    monkeypatch.setenv("BW_SESSION", "key")
    assert _resolver(repo, "auto", runner).auto_detect_backend() is BackendName.bitwarden

    monkeypatch.delenv("BW_SESSION")
    assert _resolver(repo, "auto", runner).auto_detect_backend() is BackendName.onepassword
    assert _resolver(repo, "auto").auto_detect_backend() is BackendName.local


def test_statuses_and_available_backends(repo):
    resolver = _resolver(repo, runner=FakeRunner(SIGNED_IN_OP))
    statuses = {s.backend: s for s in resolver.backend_statuses()}
    assert statuses[BackendName.local].authenticated
    assert statuses[BackendName.onepassword].authenticated
    assert not statuses[BackendName.bitwarden].available
    assert resolver.available_backends() == [BackendName.local, BackendName.onepassword]


def test_lock_all_clears_cache(repo):
    resolver = _resolver(repo)
    resolver.store.set("A", "1")
    resolver.resolve_secret("A")
    resolver.lock_all()
    assert len(resolver.cache) == 0


def test_create_backend_rejects_unknown_names(repo):
    with pytest.raises(BackendNotAvailableError):
        create_backend("keychain")
    with pytest.raises(ValueError):
        create_backend("local")
    assert create_backend("pass").name is BackendName.pass_store
