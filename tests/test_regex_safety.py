import re

import pytest

from dotguard.errors import UnsafePatternError
from dotguard.regex_safety import (
    MAX_CUSTOM_PATTERN_LENGTH,
    assert_safe_custom_regex,
    find_safety_issue,
    translate_flags,
)


@pytest.mark.parametrize(
    "source, fragment",
    [
        (r"(a+)+", "nested"),
        (r"(\w*)*x", "nested"),
        (r"(a|b)*", "alternation"),
        (r"(foo|bar)+", "alternation"),
        (r"(\w)\1", "backreference"),
        (r"(?P<x>a)(?P=x)", "backreference"),
        (r"(?<=secret)value", "lookbehind"),
        (r"(?<!x)y", "lookbehind"),
        ("(" * 17 + "a" + ")" * 17, "too deep"),
    ],
)
def test_unsafe_constructs_are_reported(source, fragment):
    issue = find_safety_issue(source)
    assert issue is not None
    assert fragment in issue


@pytest.mark.parametrize(
    "source",
    [
        r"corp_[a-z0-9]{32}",
        r"(?:key|token)\s*=\s*([A-Za-z0-9]{16,64})",
        r"(ab){2,5}",
        r"(a+){2}",
        r"[(a+)+]",
        r"\(a+\)+",
    ],
)
def test_safe_patterns_pass(source):
    assert find_safety_issue(source) is None
    assert_safe_custom_regex(source)


def test_empty_and_oversized_patterns_are_rejected():
    with pytest.raises(UnsafePatternError):
        assert_safe_custom_regex("   ")
    with pytest.raises(UnsafePatternError, match="too long"):
        assert_safe_custom_regex("a" * (MAX_CUSTOM_PATTERN_LENGTH + 1))


def test_translate_flags():
    assert translate_flags("im") == re.IGNORECASE | re.MULTILINE
    assert translate_flags("gu") == 0
    assert translate_flags(None) == 0
    with pytest.raises(UnsafePatternError, match="unsupported regex flag"):
        translate_flags("x")
