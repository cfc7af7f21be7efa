from dotguard.ignore_file import (
    IGNORE_HEADER,
    IgnoreRules,
    add_to_ignore_file,
    ignore_file_path,
    is_ignored,
    load_ignore_patterns,
    remove_from_ignore_file,
)


def test_no_ignore_file(repo):
    assert load_ignore_patterns(repo) == []
    assert not is_ignored(repo, "~/.zshrc")


def test_entries_are_normalized(repo, home):
    ignore_file_path(repo).write_text(
        f"# comment\n\n{home}/.cache\n~/.local/share/*\n  ~/.zshrc  \n~/.zshrc\n"
    )
    assert load_ignore_patterns(repo) == ["~/.cache", "~/.local/share/*", "~/.zshrc"]


def test_matching_rules():
    rules = IgnoreRules(["~/.cache", "~/.local/share/*", "*.log"])

    assert rules.evaluate("~/.cache").ignored
    decision = rules.evaluate("~/.cache/pip/http")
    assert decision.ignored and decision.pattern == "~/.cache"
    assert not rules.evaluate("~/.cachedir").ignored
    assert rules.evaluate("~/.local/share/fonts").pattern == "~/.local/share/*"
    assert rules.evaluate("~/logs/app.log").pattern == "*.log"
    assert not rules.evaluate("~/.zshrc").ignored


def test_add_and_remove(repo, home):
    assert add_to_ignore_file(repo, home / ".cache")
    assert not add_to_ignore_file(repo, "~/.cache")
    assert add_to_ignore_file(repo, "~/bin/*")

    content = ignore_file_path(repo).read_text()
    assert content.startswith(IGNORE_HEADER)
    assert content.endswith("~/.cache\n~/bin/*\n")
    assert is_ignored(repo, home / ".cache" / "x")

    assert remove_from_ignore_file(repo, "~/.cache")
    assert not remove_from_ignore_file(repo, "~/.cache")
    assert load_ignore_patterns(repo) == ["~/bin/*"]
    assert ignore_file_path(repo).read_text().startswith("# .dotguardignore")
