"""
Complexity checks for user-supplied regular expressions.

Custom patterns come from configuration, so they are checked for the
constructs that cause catastrophic backtracking before they are compiled.
The checker is a single left-to-right pass over the pattern source tracking
group nesting; it is deliberately conservative.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .errors import UnsafePatternError

MAX_CUSTOM_PATTERN_LENGTH = 500
MAX_GROUP_DEPTH = 16

# JavaScript-style flags accepted in configuration. ``g``, ``d`` and ``y``
# have no Python equivalent and are accepted as no-ops.
_FLAG_MAP = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "u": 0,
    "g": 0,
    "d": 0,
    "y": 0,
}


@dataclass
class _Group:
    has_variable_quantifier: bool = False
    has_alternation: bool = False


@dataclass
class _Token:
    kind: str = "none"  # none | literal | group | quantifier
    group: Optional[_Group] = field(default=None)


def _parse_brace_quantifier(source: str, start: int) -> Optional[Tuple[int, bool, bool]]:
    """Parse ``{m}``, ``{m,}`` or ``{m,n}`` at ``start``.

    Returns (end_index, variable, unbounded) or None if not a quantifier.
    """
    match = re.compile(r"\{(\d+)(,(\d*))?\}").match(source, start)
    if not match:
        return None
    low, comma, high = match.group(1), match.group(2), match.group(3)
    unbounded = comma is not None and not high
    variable = comma is not None and (not high or high != low)
    return match.end() - 1, variable, unbounded


def _check_quantified_group(token: _Token, unbounded: bool) -> Optional[str]:
    if token.kind != "group" or not unbounded or token.group is None:
        return None
    if token.group.has_variable_quantifier:
        return "nested quantified groups are not allowed"
    if token.group.has_alternation:
        return "unbounded quantifiers on alternation groups are not allowed"
    return None


def find_safety_issue(source: str) -> Optional[str]:
    """Return a description of the first unsafe construct, or None."""
    stack: List[_Group] = [_Group()]
    last = _Token()
    in_class = False
    i = 0

    while i < len(source):
        char = source[i]

        if char == "\\":
            nxt = source[i + 1] if i + 1 < len(source) else ""
            if nxt.isdigit() and nxt != "0":
                return "backreferences are not allowed"
            if nxt == "k" and source[i + 2:i + 3] == "<":
                return "named backreferences are not allowed"
            last = _Token("literal")
            i += 2
            continue

        if in_class:
            if char == "]":
                in_class = False
            i += 1
            continue

        if char == "[":
            in_class = True
            last = _Token("literal")
            i += 1
            continue

        if char == "(":
            if source.startswith("(?<=", i) or source.startswith("(?<!", i):
                return "lookbehind assertions are not allowed"
            if source.startswith("(?P=", i):
                return "named backreferences are not allowed"
            stack.append(_Group())
            if len(stack) > MAX_GROUP_DEPTH:
                return f"pattern nesting is too deep (max {MAX_GROUP_DEPTH} groups)"
            last = _Token()
            i += 1
            continue

        if char == ")":
            if len(stack) > 1:
                last = _Token("group", stack.pop())
            else:
                last = _Token("literal")
            i += 1
            continue

        if char == "|":
            stack[-1].has_alternation = True
            last = _Token()
            i += 1
            continue

        brace = _parse_brace_quantifier(source, i) if char == "{" else None
        if brace and last.kind in ("literal", "group"):
            end, variable, unbounded = brace
            if variable:
                stack[-1].has_variable_quantifier = True
            issue = _check_quantified_group(last, unbounded)
            if issue:
                return issue
            last = _Token("quantifier")
            i = end + 1
            if source[i:i + 1] in ("?", "+"):
                i += 1
            continue

        if char in "*+?" and last.kind in ("literal", "group"):
            stack[-1].has_variable_quantifier = True
            issue = _check_quantified_group(last, char in "*+")
            if issue:
                return issue
            last = _Token("quantifier")
            i += 1
            if source[i:i + 1] in ("?", "+"):
                i += 1
            continue

        last = _Token("literal")
        i += 1

    return None


def assert_safe_custom_regex(source: str) -> None:
    """
    Reject empty, oversized or backtracking-prone custom patterns.

    Raises:
        UnsafePatternError: describing the first problem found.
    """

    if not source or not source.strip():
        raise UnsafePatternError("custom pattern cannot be empty")
    if len(source) > MAX_CUSTOM_PATTERN_LENGTH:
        raise UnsafePatternError(
            f"custom pattern is too long ({len(source)} > {MAX_CUSTOM_PATTERN_LENGTH})"
        )

    issue = find_safety_issue(source)
    if issue:
        raise UnsafePatternError(issue)


def translate_flags(flags: Optional[str]) -> int:
    """
    Translate JavaScript-style flag letters into ``re`` flags.

    Raises:
        UnsafePatternError: on an unsupported flag letter.
    """

    result = 0
    for letter in flags or "":
        if letter not in _FLAG_MAP:
            raise UnsafePatternError(f'unsupported regex flag "{letter}" in custom pattern')
        result |= _FLAG_MAP[letter]
    return result
