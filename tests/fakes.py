"""Test doubles for command runners, prompters and clocks."""

from typing import Callable, Dict, List, Sequence, Tuple, Union

from dotguard.backends.base import CommandResult
from dotguard.patterns import Severity
from dotguard.scanner import SecretMatch, redact_secret

Response = Union[CommandResult, Callable[[List[str]], CommandResult]]


def ok(stdout: str = "") -> CommandResult:
    return CommandResult(returncode=0, stdout=stdout)


def fail(stderr: str, returncode: int = 1) -> CommandResult:
    return CommandResult(returncode=returncode, stdout="", stderr=stderr)


def timed_out() -> CommandResult:
    return CommandResult(returncode=-1, stdout="", stderr="timed out", timed_out=True)


class FakeRunner:
    """Answers commands by argv prefix; anything unknown is "command not found"."""

    def __init__(self, responses: Dict[Tuple[str, ...], Response] = None):
        self.responses = dict(responses or {})
        self.calls: List[List[str]] = []
        self.envs: List[object] = []

    def __call__(self, argv: Sequence[str], timeout: float, env=None) -> CommandResult:
        argv = list(argv)
        self.calls.append(argv)
        self.envs.append(env)
        for prefix in sorted(self.responses, key=len, reverse=True):
            if tuple(argv[: len(prefix)]) == prefix:
                response = self.responses[prefix]
                return response(argv) if callable(response) else response
        return CommandResult(returncode=127, stdout="", stderr="command not found", not_found=True)


class FakePrompter:
    def __init__(self, select: str = "abort", confirm: bool = False, dangerous: bool = False):
        self.select_answer = select
        self.confirm_answer = confirm
        self.dangerous_answer = dangerous
        self.shown: List[str] = []
        self.selections: List[List[str]] = []
        self.confirmations: List[str] = []

    def select(self, message, choices):
        self.selections.append([value for value, _, _ in choices])
        return self.select_answer

    def confirm(self, message, default=False):
        self.confirmations.append(message)
        return self.confirm_answer

    def confirm_dangerous(self, message, word):
        self.confirmations.append(message)
        return self.dangerous_answer

    def show(self, lines):
        self.shown.extend(lines)


class StepClock:
    """Monotonic clock that advances by ``step`` on every read."""

    def __init__(self, step: float = 1.0):
        self.step = step
        self.now = 0.0
        self.reads = 0

    def __call__(self) -> float:
        self.reads += 1
        current = self.now
        self.now += self.step
        return current


class ManualClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def make_match(value: str, placeholder: str = "TOKEN", line: int = 1, offset: int = 0) -> SecretMatch:
    return SecretMatch(
        pattern_id="test-token",
        pattern_name="Test Token",
        severity=Severity.high,
        value=value,
        redacted_value=redact_secret(value),
        line=line,
        column=1,
        context="[REDACTED]",
        placeholder=placeholder,
        offset=offset,
    )
