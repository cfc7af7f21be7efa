"""
Placeholder redaction and restoration.

This module is responsible for:
- Replacing secret values in content with ``{{SECRET:NAME}}`` tokens
- Replacing tokens with resolved values again
- Allocating stable, collision-free placeholder names for a session

This module does NOT:
- Detect secrets (see ``scanner``)
- Persist values (see ``store``) or fetch them (see ``backends``)

Both directions are a single left-to-right pass, so bytes outside the
substituted spans are never touched and ``restore(redact(x)) == x`` whenever
every token resolves and no two secret values overlap.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import (
    TYPE_CHECKING,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Tuple,
    Union,
)

from .config import PLACEHOLDER_PREFIX, PLACEHOLDER_SUFFIX, SECRET_NAME_MAX_LENGTH
from .store import is_valid_secret_name, normalize_secret_name
from .utils import atomic_write_bytes

if TYPE_CHECKING:
    from .scanner import SecretMatch

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{SECRET:([A-Z][A-Z0-9_]*)\}\}")

Lookup = Union[Mapping[str, str], Callable[[str], Optional[str]]]


def format_placeholder(name: str) -> str:
    return f"{PLACEHOLDER_PREFIX}{name}{PLACEHOLDER_SUFFIX}"


def parse_placeholder(token: str) -> Optional[str]:
    """Return the name inside a complete token, or None for anything else."""
    match = PLACEHOLDER_PATTERN.fullmatch(token)
    return match.group(1) if match else None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Replacement:
    placeholder: str
    pattern_name: str
    line: int


@dataclass
class RedactionResult:
    content: str
    replacements: List[Replacement] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.replacements)


@dataclass
class RestorationResult:
    content: str
    restored: int = 0
    unresolved: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Name allocation
# ---------------------------------------------------------------------------


class PlaceholderAllocator:
    """
    Session-scoped value → name function.

    The same value always gets the same name. A name already held by a
    different value gets a numeric suffix (``_1``, ``_2`` ...). Seeding with
    an existing ``{name: value}`` store makes stored values keep their names.
    Names reserved with ``reserve()`` are never handed out.
    """

    def __init__(self, existing: Optional[Mapping[str, str]] = None):
        self._names: Dict[str, str] = {}
        self._reserved: Set[str] = set()
        self._values: Dict[str, str] = {}
        self._allocated: Dict[str, str] = {}
        for name, value in (existing or {}).items():
            self._names[name] = value
            self._values.setdefault(value, name)

    def reserve(self, names: Iterable[str]) -> None:
        """Block names already used by tokens in content about to be redacted."""
        for name in names:
            if name not in self._names:
                self._reserved.add(name)

    def allocate(self, value: str, base_name: str) -> str:
        existing = self._values.get(value)
        if existing is not None:
            return existing

        base = base_name if is_valid_secret_name(base_name) else normalize_secret_name(base_name)
        name = base
        counter = 1
        while name in self._names or name in self._reserved:
            suffix = f"_{counter}"
            name = base[: SECRET_NAME_MAX_LENGTH - len(suffix)] + suffix
            counter += 1

        self._names[name] = value
        self._values[value] = name
        self._allocated[name] = value
        return name

    def allocate_matches(self, matches: Iterable["SecretMatch"]) -> Dict[str, str]:
        """Allocate names for every match and return ``{value: name}``."""
        return {m.value: self.allocate(m.value, m.placeholder) for m in matches}

    @property
    def mapping(self) -> Dict[str, str]:
        """``{value: name}`` for every value known to this session."""
        return dict(self._values)

    @property
    def allocated(self) -> Dict[str, str]:
        """``{name: value}`` for names created in this session only."""
        return dict(self._allocated)


# ---------------------------------------------------------------------------
# Redaction
# ---------------------------------------------------------------------------


def _line_at(content: str, offset: int) -> int:
    return content.count("\n", 0, offset) + 1


@dataclass
class _Span:
    start: int
    end: int
    value: str


def _occurrences(content: str, value: str) -> Iterator[Tuple[int, int]]:
    start = content.find(value)
    while start != -1:
        yield start, start + len(value)
        start = content.find(value, start + 1)


def _covered(span: _Span, chosen: Sequence[_Span]) -> bool:
    overlap = sum(max(0, min(span.end, c.end) - max(span.start, c.start)) for c in chosen)
    return overlap == span.end - span.start


def _cover_detected(chosen: List[_Span], detected: Iterable[_Span]) -> Tuple[List[_Span], bool]:
    """
    Widen ``chosen`` until every detected span is fully replaced.

    A detected span left partly uncovered is merged with the chosen spans it
    overlaps; the merged span keeps the longest value among them.
    """

    merged = False
    for span in detected:
        if _covered(span, chosen):
            continue
        overlapping = [c for c in chosen if c.start < span.end and span.start < c.end]
        members = overlapping + [span]
        widened = _Span(
            min(m.start for m in members),
            max(m.end for m in members),
            max(members, key=lambda m: len(m.value)).value,
        )
        kept = [c for c in chosen if not (c.start < span.end and span.start < c.end)]
        chosen = sorted(kept + [widened], key=lambda c: c.start)
        merged = True
    return chosen, merged


def redact_content(
    content: str,
    matches: Iterable["SecretMatch"],
    value_to_placeholder: Mapping[str, str],
) -> RedactionResult:
    """
    Replace every occurrence of each matched value with its placeholder token.

    ``value_to_placeholder`` maps raw values to placeholder *names*. Values
    without a name are left alone. Existing tokens are kept verbatim, so
    running this on already-redacted content changes nothing.

    Occurrences are taken leftmost first, longest first at the same offset.
    When two detected values overlap so that one would keep some of its bytes,
    both are replaced by a single token named after the longer value; that
    token restores to the longer value only.
    """

    matches = list(matches)
    pattern_names: Dict[str, str] = {}
    for match in matches:
        if match.value in value_to_placeholder:
            pattern_names.setdefault(match.value, match.pattern_name)
        else:
            logger.debug("No placeholder assigned for a %s match, leaving it", match.pattern_name)

    if not pattern_names:
        return RedactionResult(content=content)

    tokens = [(m.start(), m.end()) for m in PLACEHOLDER_PATTERN.finditer(content)]

    def _inside_token(start: int, end: int) -> bool:
        return any(start < t_end and t_start < end for t_start, t_end in tokens)

    occurrences = sorted(
        (
            _Span(start, end, value)
            for value in pattern_names
            for start, end in _occurrences(content, value)
            if not _inside_token(start, end)
        ),
        key=lambda s: (s.start, -(s.end - s.start)),
    )
    chosen: List[_Span] = []
    position = 0
    for span in occurrences:
        if span.start >= position:
            chosen.append(span)
            position = span.end

    detected = [
        _Span(m.offset, m.offset + len(m.value), m.value)
        for m in matches
        if m.value in pattern_names
        and content.startswith(m.value, m.offset)
        and not _inside_token(m.offset, m.offset + len(m.value))
    ]
    chosen, merged = _cover_detected(chosen, detected)
    if merged:
        logger.warning("Overlapping secret values were redacted as a single placeholder")

    parts: List[str] = []
    replacements: List[Replacement] = []
    position = 0
    for span in chosen:
        name = value_to_placeholder[span.value]
        parts.append(content[position:span.start])
        parts.append(format_placeholder(name))
        replacements.append(
            Replacement(
                placeholder=name,
                pattern_name=pattern_names[span.value],
                line=_line_at(content, span.start),
            )
        )
        position = span.end
    parts.append(content[position:])

    return RedactionResult(content="".join(parts), replacements=replacements)


# ---------------------------------------------------------------------------
# Restoration
# ---------------------------------------------------------------------------


def _as_callable(lookup: Lookup) -> Callable[[str], Optional[str]]:
    if callable(lookup):
        return lookup
    return lookup.get


def restore_content(content: str, lookup: Lookup) -> RestorationResult:
    """
    Substitute every token whose name resolves.

    Unresolved tokens stay verbatim and their names are reported (unique,
    in order of first appearance).
    """

    resolve = _as_callable(lookup)
    unresolved: List[str] = []
    restored = 0

    def _substitute(m: re.Match) -> str:
        nonlocal restored
        name = m.group(1)
        value = resolve(name)
        if value is None:
            if name not in unresolved:
                unresolved.append(name)
            return m.group(0)
        restored += 1
        return value

    result = PLACEHOLDER_PATTERN.sub(_substitute, content)
    return RestorationResult(content=result, restored=restored, unresolved=unresolved)


def find_placeholders(content: str) -> List[str]:
    """Unique placeholder names in order of first appearance."""
    names: List[str] = []
    for match in PLACEHOLDER_PATTERN.finditer(content):
        if match.group(1) not in names:
            names.append(match.group(1))
    return names


def has_placeholders(content: str) -> bool:
    return PLACEHOLDER_PATTERN.search(content) is not None


def count_placeholders(content: str) -> int:
    return sum(1 for _ in PLACEHOLDER_PATTERN.finditer(content))


def find_unresolved_placeholders(content: str, available: Iterable[str]) -> List[str]:
    known = set(available)
    return [name for name in find_placeholders(content) if name not in known]


# ---------------------------------------------------------------------------
# File helpers
# ---------------------------------------------------------------------------


def _read_text(path: Path) -> str:
    return path.read_bytes().decode("utf-8")


def redact_file(
    path: str | Path,
    matches: Iterable["SecretMatch"],
    value_to_placeholder: Mapping[str, str],
) -> RedactionResult:
    """Redact a file in place; the file is only rewritten if something changed."""
    path = Path(path)
    original = _read_text(path)
    result = redact_content(original, matches, value_to_placeholder)
    if result.content != original:
        atomic_write_bytes(path, result.content.encode("utf-8"), mode=path.stat().st_mode & 0o7777)
        logger.info("Redacted %d secret(s) in %s", len(result.replacements), path)
    return result


def restore_file(path: str | Path, lookup: Lookup) -> RestorationResult:
    """Restore tokens in a file in place; unchanged files are not rewritten."""
    path = Path(path)
    original = _read_text(path)
    result = restore_content(original, lookup)
    if result.content != original:
        atomic_write_bytes(path, result.content.encode("utf-8"), mode=path.stat().st_mode & 0o7777)
        logger.info("Restored %d placeholder(s) in %s", result.restored, path)
    return result
