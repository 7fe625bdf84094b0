from __future__ import annotations

import pytest
from regexsmith_core.errors import (
    RegexsmithError,
    RequestValidationError,
    SessionError,
    TokenBudgetExceededError,
)
from regexsmith_core.types import (
    CaptureCaseResult,
    CaptureRequest,
    CaptureTest,
    CodeRequest,
    MatchRequest,
    RegexGenerationResult,
    SessionState,
    TestResult,
    TokenUsage,
)


class TestRequests:
    def test_match_requires_an_example(self):
        with pytest.raises(RequestValidationError):
            MatchRequest(description="digits").validate()

    def test_match_with_only_negatives_is_valid(self):
        MatchRequest(description="digits", should_not_match=("abc",)).validate()

    def test_capture_requires_a_test(self):
        with pytest.raises(RequestValidationError):
            CaptureRequest(description="date").validate()

    def test_code_requires_a_test(self):
        with pytest.raises(RequestValidationError):
            CodeRequest(description="reverse").validate()

    def test_test_modes(self):
        assert MatchRequest(description="").test_mode == "match"
        assert CaptureRequest(description="").test_mode == "capture"

    def test_capture_test_from_dict(self):
        test = CaptureTest.from_dict({
            "input": "2024-01-15",
            "expectedGroups": ["2024", "01", None],
            "expectedNamedGroups": {"year": "2024"},
        })
        assert test.expected_groups == ("2024", "01", None)
        assert test.expected_named_groups == {"year": "2024"}
        assert test.to_dict()["expectedGroups"] == ["2024", "01", None]

    def test_capture_test_without_named_groups(self):
        test = CaptureTest.from_dict({"input": "a", "expectedGroups": []})
        assert test.expected_named_groups is None
        assert "expectedNamedGroups" not in test.to_dict()


class TestTestResult:
    def test_from_dict_match(self):
        result = TestResult.from_dict({
            "passed": True,
            "total": 2,
            "passedCount": 2,
            "failedCount": 0,
            "results": [
                {"input": "123", "expected": True, "actual": True, "passed": True},
                {"input": "abc", "expected": False, "actual": False, "passed": True},
            ],
            "testMode": "match",
        })
        assert result.passed
        assert result.total == 2
        assert result.results[1].input == "abc"

    def test_passed_requires_all_cases(self):
        # A script that claims success with a failing case is not trusted
        result = TestResult.from_dict({
            "passed": True,
            "results": [
                {"input": "x", "expected": True, "actual": False, "passed": False},
            ],
            "testMode": "match",
        })
        assert not result.passed
        assert result.failed_count == 1

    def test_compile_error_is_never_passed(self):
        result = TestResult.from_dict({
            "passed": True, "results": [], "testMode": "match",
            "compileError": "Invalid regular expression",
        })
        assert not result.passed
        assert result.total == 0

    def test_capture_results(self):
        result = TestResult.from_dict({
            "passed": False,
            "results": [
                {"input": "x", "expected": ["1"], "actual": None, "passed": False},
            ],
            "testMode": "capture",
        })
        case = result.results[0]
        assert isinstance(case, CaptureCaseResult)
        assert case.actual is None
        assert result.test_mode == "capture"

    def test_failure(self):
        result = TestResult.failure("match", "SANDBOX ERROR: boom")
        assert not result.passed
        assert result.results == ()
        assert result.to_dict()["compileError"] == "SANDBOX ERROR: boom"


class TestResults:
    def test_generation_result_wire_shape(self):
        result = RegexGenerationResult(
            pattern=r"\d+", flags="g", success=True, iterations=1,
            sandbox_id="sb-1", runtime="javascript",
        )
        data = result.to_dict()
        assert data == {
            "pattern": r"\d+",
            "flags": "g",
            "success": True,
            "iterations": 1,
            "sandboxId": "sb-1",
            "runtime": "javascript",
        }

    def test_aborted_result_flags(self):
        result = RegexGenerationResult(
            pattern=".*", flags="", success=False, iterations=0,
            sandbox_id="", runtime="python", aborted=True,
            error="Operation aborted by user",
        )
        data = result.to_dict()
        assert data["aborted"] is True
        assert data["error"] == "Operation aborted by user"


class TestSessionState:
    def test_token_usage_adds(self):
        total = TokenUsage(10, 6, 4) + TokenUsage(5, 3, 2)
        assert total == TokenUsage(15, 9, 6)

    def test_state_dict_round_trip(self):
        state = SessionState(
            session_id="s1",
            token_usage=TokenUsage(100, 60, 40),
            sandbox_id="sb-1",
            last_usage=TokenUsage(10, 6, 4),
        )
        restored = SessionState.from_dict(state.to_dict())
        assert restored == state


class TestSessionErrors:
    def test_budget_error_is_the_only_session_error(self):
        assert SessionError.__subclasses__() == [TokenBudgetExceededError]

    def test_budget_error_message(self):
        exc = TokenBudgetExceededError(260_000, 250_000)
        assert isinstance(exc, RegexsmithError)
        assert (exc.used, exc.limit) == (260_000, 250_000)
        assert "260,000 of 250,000" in str(exc)
