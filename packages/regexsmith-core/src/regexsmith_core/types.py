from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any, Literal

from regexsmith_core.errors import RequestValidationError

Runtime = Literal["javascript", "python"]
TestMode = Literal["match", "capture"]

# ── Requests ─────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class MatchRequest:
    """Strings the pattern must and must not match."""
    description: str
    should_match: tuple[str, ...] = ()
    should_not_match: tuple[str, ...] = ()

    @property
    def test_mode(self) -> TestMode:
        return "match"

    def validate(self) -> None:
        if not self.should_match and not self.should_not_match:
            raise RequestValidationError(
                "Match mode requires at least one shouldMatch or "
                "shouldNotMatch example"
            )


@dataclass(frozen=True, slots=True)
class CaptureTest:
    """One extraction case: the groups the first match must capture."""
    input: str
    expected_groups: tuple[str | None, ...]
    expected_named_groups: dict[str, str | None] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "input": self.input,
            "expectedGroups": list(self.expected_groups),
        }
        if self.expected_named_groups is not None:
            data["expectedNamedGroups"] = dict(self.expected_named_groups)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CaptureTest:
        named = data.get("expectedNamedGroups")
        return cls(
            input=data["input"],
            expected_groups=tuple(data.get("expectedGroups") or ()),
            expected_named_groups=dict(named) if named is not None else None,
        )


@dataclass(frozen=True, slots=True)
class CaptureRequest:
    """Inputs paired with the capture groups the pattern must extract."""
    description: str
    capture_tests: tuple[CaptureTest, ...] = ()

    @property
    def test_mode(self) -> TestMode:
        return "capture"

    def validate(self) -> None:
        if not self.capture_tests:
            raise RequestValidationError(
                "Capture mode requires at least one captureTest"
            )


RegexRequest = MatchRequest | CaptureRequest


# ── Candidates & Verification ────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class RegexCandidate:
    """A generated pattern proposed for verification."""
    pattern: str
    flags: str = ""
    reasoning: str = ""


PLACEHOLDER_CANDIDATE = RegexCandidate(pattern=".*", flags="")


@dataclass(frozen=True, slots=True)
class MatchCaseResult:
    input: str
    expected: bool
    actual: bool
    passed: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "input": self.input,
            "expected": self.expected,
            "actual": self.actual,
            "passed": self.passed,
        }


@dataclass(frozen=True, slots=True)
class CaptureCaseResult:
    input: str
    expected: tuple[str | None, ...]
    actual: tuple[str | None, ...] | None
    passed: bool
    expected_named_groups: dict[str, str | None] | None = None
    actual_named_groups: dict[str, str | None] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "input": self.input,
            "expected": list(self.expected),
            "actual": list(self.actual) if self.actual is not None else None,
            "passed": self.passed,
        }
        if self.expected_named_groups is not None:
            data["expectedNamedGroups"] = self.expected_named_groups
            data["actualNamedGroups"] = self.actual_named_groups
        return data


CaseResult = MatchCaseResult | CaptureCaseResult


def _case_from_dict(data: dict[str, Any], test_mode: TestMode) -> CaseResult:
    if test_mode == "match":
        return MatchCaseResult(
            input=data["input"],
            expected=bool(data["expected"]),
            actual=bool(data["actual"]),
            passed=bool(data["passed"]),
        )
    actual = data.get("actual")
    return CaptureCaseResult(
        input=data["input"],
        expected=tuple(data.get("expected") or ()),
        actual=tuple(actual) if actual is not None else None,
        passed=bool(data["passed"]),
        expected_named_groups=data.get("expectedNamedGroups"),
        actual_named_groups=data.get("actualNamedGroups"),
    )


@dataclass(frozen=True, slots=True)
class TestResult:
    """Outcome of running one candidate against every example."""
    __test__ = False

    passed: bool
    total: int
    passed_count: int
    failed_count: int
    results: tuple[CaseResult, ...]
    test_mode: TestMode
    compile_error: str | None = None
    stdout: str | None = None

    @classmethod
    def failure(
        cls,
        test_mode: TestMode,
        message: str,
        stdout: str | None = None,
    ) -> TestResult:
        """A degraded result carrying an error message and no cases."""
        return cls(
            passed=False,
            total=0,
            passed_count=0,
            failed_count=0,
            results=(),
            test_mode=test_mode,
            compile_error=message,
            stdout=stdout,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TestResult:
        test_mode: TestMode = (
            "capture" if data.get("testMode") == "capture" else "match"
        )
        results = tuple(
            _case_from_dict(r, test_mode) for r in data.get("results", [])
        )
        passed_count = int(data.get("passedCount", sum(r.passed for r in results)))
        compile_error = data.get("compileError") or None
        return cls(
            passed=bool(data.get("passed"))
            and compile_error is None
            and passed_count == len(results),
            total=int(data.get("total", len(results))),
            passed_count=passed_count,
            failed_count=int(data.get("failedCount", len(results) - passed_count)),
            results=results,
            test_mode=test_mode,
            compile_error=compile_error,
            stdout=data.get("stdout"),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "passed": self.passed,
            "total": self.total,
            "passedCount": self.passed_count,
            "failedCount": self.failed_count,
            "results": [r.to_dict() for r in self.results],
            "testMode": self.test_mode,
        }
        if self.compile_error is not None:
            data["compileError"] = self.compile_error
        if self.stdout is not None:
            data["stdout"] = self.stdout
        return data


@dataclass(frozen=True, slots=True)
class IterationResult:
    """One completed, non-passing iteration of the synthesis loop."""
    candidate: RegexCandidate
    test_results: TestResult
    reflection: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "pattern": self.candidate.pattern,
            "flags": self.candidate.flags,
            "reasoning": self.candidate.reasoning,
            "testResults": self.test_results.to_dict(),
            "reflection": self.reflection,
        }


@dataclass(frozen=True, slots=True)
class RegexGenerationResult:
    """Terminal value of a synthesis run."""
    pattern: str
    flags: str
    success: bool
    iterations: int
    sandbox_id: str
    runtime: Runtime
    aborted: bool = False
    error: str | None = None
    test_results: TestResult | None = None
    history: tuple[IterationResult, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "pattern": self.pattern,
            "flags": self.flags,
            "success": self.success,
            "iterations": self.iterations,
            "sandboxId": self.sandbox_id,
            "runtime": self.runtime,
        }
        if self.aborted:
            data["aborted"] = True
        if self.error is not None:
            data["error"] = self.error
        if self.test_results is not None:
            data["testResults"] = self.test_results.to_dict()
        if self.history is not None:
            data["history"] = [h.to_dict() for h in self.history]
        return data


class StatusPhase(enum.Enum):
    GENERATING = "generating"
    EXECUTING = "executing"
    EVALUATING = "evaluating"


@dataclass(frozen=True, slots=True)
class StatusEvent:
    """Progress notification emitted by the synthesis loop."""
    phase: StatusPhase
    iteration: int
    max_iterations: int
    message: str = ""


# ── Sandbox Types ────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class SandboxSpec:
    """Parameters for creating a sandbox."""
    runtime: Runtime = "python"
    network_block_all: bool = True
    ephemeral: bool = True
    auto_stop_minutes: int = 2


@dataclass(frozen=True, slots=True)
class SandboxHandle:
    """Opaque handle to an isolated execution environment."""
    id: str
    runtime: Runtime
    backend: str
    network_blocked: bool = True
    created_at: float = field(default_factory=time.time)


@dataclass(frozen=True, slots=True)
class SandboxRunResult:
    """Raw output of one script run inside a sandbox."""
    exit_code: int
    stdout: str
    artifacts: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ExecutionResponse:
    """Run output plus the replacement sandbox, if one had to be created."""
    exit_code: int
    stdout: str
    artifacts: dict[str, Any] = field(default_factory=dict)
    recreated_sandbox: SandboxHandle | None = None


# ── Code Fallback Types ──────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class CodeTest:
    input: Any
    expected_output: Any

    def to_dict(self) -> dict[str, Any]:
        return {"input": self.input, "expectedOutput": self.expected_output}


@dataclass(frozen=True, slots=True)
class CodeRequest:
    """A transformation too complex for a regex, expressed by examples."""
    description: str
    runtime: Runtime = "python"
    tests: tuple[CodeTest, ...] = ()

    def validate(self) -> None:
        if not self.tests:
            raise RequestValidationError(
                "Code generation requires at least one test case"
            )


@dataclass(frozen=True, slots=True)
class CodeCandidate:
    reasoning: str
    code: str


@dataclass(frozen=True, slots=True)
class CodeCaseResult:
    input: Any
    expected: Any
    actual: Any
    passed: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "input": self.input,
            "expected": self.expected,
            "actual": self.actual,
            "passed": self.passed,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True, slots=True)
class CodeResult:
    """Outcome of the code-fallback path."""
    success: bool
    code: str
    reasoning: str
    passed: bool = False
    total: int = 0
    passed_count: int = 0
    failed_count: int = 0
    results: tuple[CodeCaseResult, ...] = ()
    error: str | None = None
    aborted: bool = False
    denied: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "code": self.code,
            "reasoning": self.reasoning,
            "passed": self.passed,
            "total": self.total,
            "passedCount": self.passed_count,
            "failedCount": self.failed_count,
            "results": [r.to_dict() for r in self.results],
        }
        if self.error is not None:
            data["error"] = self.error
        if self.aborted:
            data["aborted"] = True
        if self.denied:
            data["denied"] = True
        return data


@dataclass(frozen=True, slots=True)
class ApprovalRequest:
    """What the operator is asked to approve before code runs."""
    tool_call_id: str
    description: str
    proposed_runtime: Runtime
    test_cases: tuple[CodeTest, ...]
    code: str | None = None


# ── Session Types ────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class TokenUsage:
    total: int = 0
    prompt: int = 0
    completion: int = 0

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            total=self.total + other.total,
            prompt=self.prompt + other.prompt,
            completion=self.completion + other.completion,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "prompt": self.prompt,
            "completion": self.completion,
        }


@dataclass(slots=True)
class SessionState:
    """Per-conversation state, persisted between turns."""
    session_id: str
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    sandbox_id: str | None = None
    last_usage: TokenUsage | None = None
    updated_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "token_usage": self.token_usage.to_dict(),
            "sandbox_id": self.sandbox_id,
            "last_usage": (
                self.last_usage.to_dict() if self.last_usage else None
            ),
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionState:
        last = data.get("last_usage")
        return cls(
            session_id=data["session_id"],
            token_usage=TokenUsage(**data.get("token_usage", {})),
            sandbox_id=data.get("sandbox_id"),
            last_usage=TokenUsage(**last) if last else None,
            updated_at=data.get("updated_at", time.time()),
        )
