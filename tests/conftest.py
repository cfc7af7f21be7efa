"""Shared fixtures: every test runs with an isolated HOME and state directory."""

import pytest


@pytest.fixture(autouse=True)
def home(tmp_path, monkeypatch):
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("DOTGUARD_STATE_DIR", str(tmp_path / "state"))
    for var in ("DOTGUARD_REPO", "DOTGUARD_PASSWORD", "OP_SERVICE_ACCOUNT_TOKEN", "BW_SESSION"):
        monkeypatch.delenv(var, raising=False)
    return home


@pytest.fixture
def repo(home):
    root = home / ".dotguard"
    root.mkdir()
    return root


@pytest.fixture
def live_key():
    return "sk_live_abcdef1234567890abcdef"


@pytest.fixture
def dotfile(home, live_key):
    path = home / ".zshrc"
    path.write_text(f"alias ll='ls -la'\nexport API_KEY={live_key}\n")
    return path
