import pytest

from dotguard.errors import UnsafePathError
from dotguard.paths import (
    check_source_path,
    collapse_path,
    expand_path,
    is_path_within_home,
    validate_path_within_root,
    validate_safe_source_path,
)


def test_expand_and_collapse(home):
    assert expand_path("~/.zshrc") == home / ".zshrc"
    assert expand_path("$HOME/.config/git") == home / ".config" / "git"
    assert expand_path("~") == home
    assert collapse_path(home / ".zshrc") == "~/.zshrc"
    assert collapse_path(home) == "~"
    assert collapse_path("/etc/hosts") == "/etc/hosts"


def test_collapse_does_not_match_sibling_prefix(home):
    sibling = str(home) + "-other/file"
    assert collapse_path(sibling) == sibling


@pytest.mark.parametrize(
    "candidate, reason",
    [
        ("", "empty"),
        ("~/../etc/passwd", "traversal"),
        ("~/.config/../../x", "traversal"),
        ("/etc/passwd", "outside home"),
        ("//server/share/file", "outside home"),
        ("~/bad\x00name", "null bytes"),
    ],
)
def test_unsafe_sources_are_rejected(candidate, reason):
    result = check_source_path(candidate)
    assert not result.valid
    assert reason in result.error_message
    with pytest.raises(UnsafePathError):
        validate_safe_source_path(candidate)


def test_safe_sources(home):
    assert check_source_path("~/.zshrc").valid
    assert check_source_path(str(home / ".config" / "nvim")).valid
    validate_safe_source_path("~/.gitconfig")


def test_is_path_within_home(home):
    assert is_path_within_home("~/.ssh/config")
    assert not is_path_within_home("/tmp/x")
    assert not is_path_within_home("~/../x")


def test_validate_path_within_root(tmp_path):
    root = tmp_path / "repo"
    assert validate_path_within_root("files/.zshrc", root) == root / "files" / ".zshrc"
    with pytest.raises(UnsafePathError, match="must be within"):
        validate_path_within_root("../escape", root, label="destination")
    with pytest.raises(UnsafePathError):
        validate_path_within_root(str(tmp_path / "elsewhere"), root)
