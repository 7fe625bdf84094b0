from __future__ import annotations

import json

import pytest
from regexsmith_agent.executor import (
    execute_regex_test,
    parse_test_output,
    validate_regex_syntax,
)
from regexsmith_agent.scripts import (
    build_free_code_script,
    build_regex_test_script,
    compare_groups,
    compare_named_groups,
)
from regexsmith_core.errors import SandboxTimeoutError
from regexsmith_core.types import (
    CaptureRequest,
    CaptureTest,
    CodeTest,
    ExecutionResponse,
    MatchRequest,
    RegexCandidate,
)

DIGITS = MatchRequest(
    description="digits", should_match=("123",), should_not_match=("abc",)
)
DATE = CaptureRequest(
    description="date parts",
    capture_tests=(CaptureTest("2024-01-15", ("2024", "01", "15")),),
)
DATE_PATTERN = RegexCandidate(pattern=r"(\d{4})-(\d{2})-(\d{2})")


class TestGroupComparison:
    def test_positional_and_ordered(self):
        assert compare_groups(["a", "b"], ["a", "b"])
        assert not compare_groups(["a", "b"], ["b", "a"])
        assert not compare_groups(["a"], ["a", "b"])

    def test_null_is_not_empty_string(self):
        assert compare_groups([None], [None])
        assert not compare_groups([None], [""])
        assert not compare_groups([""], [None])

    def test_missing_match(self):
        assert not compare_groups(["a"], None)
        assert compare_groups(None, None)

    def test_named_groups(self):
        assert compare_named_groups(None, {"y": "1"})
        assert compare_named_groups({"y": "1"}, {"y": "1"})
        assert not compare_named_groups({"y": "1"}, {"y": "1", "m": "2"})
        assert not compare_named_groups({"y": "1"}, None)


class TestScriptBuilders:
    def test_data_is_embedded_as_json(self):
        tricky = MatchRequest(
            description="", should_match=('"); process.exit(1); ("',),
        )
        script = build_regex_test_script(RegexCandidate(pattern="a"), tricky, "javascript")
        assert json.dumps('"); process.exit(1); ("') in script

    def test_code_markers(self):
        script = build_free_code_script(
            "def process_input(inp):\n    return inp", [CodeTest("a", "a")], "python"
        )
        assert "# ==== GENERATED CODE START ====" in script
        assert "# ==== GENERATED CODE END ====" in script
        js = build_free_code_script(
            "function processInput(s) { return s; }", [CodeTest("a", "a")], "javascript"
        )
        assert "// ==== GENERATED CODE START ====" in js


class TestValidateRegexSyntax:
    def test_valid_python(self):
        assert validate_regex_syntax(r"\d+", "g", "python") is None

    def test_invalid_python_pattern(self):
        error = validate_regex_syntax("([", "", "python")
        assert error is not None
        assert error.startswith("Invalid regex")

    def test_invalid_flag(self):
        assert "Invalid flag" in validate_regex_syntax("a", "q", "javascript")
        assert "Invalid flag" in validate_regex_syntax("a", "y", "python")

    def test_duplicate_flags(self):
        assert "Duplicate" in validate_regex_syntax("a", "gg", "javascript")

    def test_javascript_grammar_not_checked_locally(self):
        assert validate_regex_syntax("(?<year>\\d{4})", "gu", "javascript") is None


class TestParseTestOutput:
    def test_nonzero_exit_is_sandbox_error(self):
        response = ExecutionResponse(
            exit_code=1, stdout="", artifacts={"stderr": "SyntaxError: bad"}
        )
        result = parse_test_output(response, "match")
        assert not result.passed
        assert result.compile_error == "SANDBOX ERROR: SyntaxError: bad"

    def test_garbage_is_parse_error(self):
        result = parse_test_output(ExecutionResponse(0, "not json"), "capture")
        assert result.compile_error == "PARSE ERROR: not json"
        assert result.test_mode == "capture"

    def test_non_object_is_parse_error(self):
        result = parse_test_output(ExecutionResponse(0, "[1, 2]"), "match")
        assert result.compile_error.startswith("PARSE ERROR")


class TestExecuteWithFakeSandbox:
    async def test_timeout_becomes_result(self, sandbox_manager, fake_service):
        sandbox = await sandbox_manager.create("javascript")
        fake_service.outputs.append(SandboxTimeoutError("Execution timed out after 10s"))
        result = await execute_regex_test(
            sandbox_manager, sandbox, RegexCandidate(pattern="(a+)+$"), DIGITS,
            runtime="javascript",
        )
        assert not result.passed
        assert result.compile_error.startswith("TIMEOUT ERROR")

    async def test_timeout_passed_through(self, sandbox_manager, fake_service, make_output):
        sandbox = await sandbox_manager.create("javascript")
        fake_service.outputs.append(make_output(True))
        await execute_regex_test(
            sandbox_manager, sandbox, RegexCandidate(pattern="a"), DIGITS,
            runtime="javascript", timeout=4,
        )
        assert fake_service.runs[-1][2] == 4


class TestPythonRuntime:
    """End-to-end verification in a local python sandbox."""

    async def test_match(self, local_manager):
        sandbox = await local_manager.create("python")
        result = await execute_regex_test(
            local_manager, sandbox, RegexCandidate(pattern=r"\d+", flags="g"),
            DIGITS, runtime="python",
        )
        assert result.passed, result
        assert result.total == 2
        assert [r.actual for r in result.results] == [True, False]

    async def test_match_failure(self, local_manager):
        sandbox = await local_manager.create("python")
        result = await execute_regex_test(
            local_manager, sandbox, RegexCandidate(pattern=".*"), DIGITS,
            runtime="python",
        )
        assert not result.passed
        assert result.failed_count == 1
        assert result.results[1].input == "abc"

    async def test_ascii_flag_applied(self, local_manager):
        candidate = RegexCandidate(pattern=r"^\d+$", flags="a")
        assert validate_regex_syntax(candidate.pattern, candidate.flags, "python") is None

        sandbox = await local_manager.create("python")
        request = MatchRequest(
            description="ascii digits",
            should_match=("123",),
            should_not_match=("١٢٣",),
        )
        result = await execute_regex_test(
            local_manager, sandbox, candidate, request, runtime="python",
        )
        assert result.passed, result
        assert [r.actual for r in result.results] == [True, False]

    async def test_capture(self, local_manager):
        sandbox = await local_manager.create("python")
        result = await execute_regex_test(
            local_manager, sandbox, DATE_PATTERN, DATE, runtime="python",
        )
        assert result.passed, result
        assert result.results[0].actual == ("2024", "01", "15")

    async def test_unmatched_optional_group_is_null(self, local_manager):
        sandbox = await local_manager.create("python")
        request = CaptureRequest(
            description="", capture_tests=(CaptureTest("b", (None,)),)
        )
        result = await execute_regex_test(
            local_manager, sandbox, RegexCandidate(pattern="(a)?b"), request,
            runtime="python",
        )
        assert result.passed, result

        wrong = CaptureRequest(
            description="", capture_tests=(CaptureTest("b", ("",)),)
        )
        result = await execute_regex_test(
            local_manager, sandbox, RegexCandidate(pattern="(a)?b"), wrong,
            runtime="python",
        )
        assert not result.passed

    async def test_named_groups(self, local_manager):
        sandbox = await local_manager.create("python")
        request = CaptureRequest(
            description="",
            capture_tests=(
                CaptureTest("2024-01", ("2024", "01"), {"year": "2024", "month": "01"}),
            ),
        )
        result = await execute_regex_test(
            local_manager, sandbox,
            RegexCandidate(pattern=r"(?P<year>\d{4})-(?P<month>\d{2})"),
            request, runtime="python",
        )
        assert result.passed, result

    async def test_compile_error(self, local_manager):
        sandbox = await local_manager.create("python")
        result = await execute_regex_test(
            local_manager, sandbox, RegexCandidate(pattern="(["), DIGITS,
            runtime="python",
        )
        assert not result.passed
        assert result.compile_error
        assert result.results == ()

    async def test_free_code(self, local_manager):
        sandbox = await local_manager.create("python")
        script = build_free_code_script(
            "def process_input(inp):\n    return inp[::-1]",
            [CodeTest("abc", "cba"), CodeTest("xy", "xy")],
            "python",
        )
        response = await local_manager.execute(sandbox, script, timeout=10)
        data = json.loads(response.stdout)
        assert data["total"] == 2
        assert data["passedCount"] == 1
        assert [r["passed"] for r in data["results"]] == [True, False]


class TestJavaScriptRuntime:
    """End-to-end verification in a local node sandbox."""

    @pytest.fixture(autouse=True)
    def _node(self, node_available):
        pass

    async def test_match_with_global_flag(self, local_manager):
        sandbox = await local_manager.create("javascript")
        request = MatchRequest(
            description="", should_match=("123", "456"), should_not_match=("abc",)
        )
        result = await execute_regex_test(
            local_manager, sandbox, RegexCandidate(pattern=r"\d+", flags="g"),
            request, runtime="javascript",
        )
        # lastIndex is reset between cases, so "g" does not skip inputs
        assert result.passed, result

    async def test_capture(self, local_manager):
        sandbox = await local_manager.create("javascript")
        result = await execute_regex_test(
            local_manager, sandbox, DATE_PATTERN, DATE, runtime="javascript",
        )
        assert result.passed, result

    async def test_named_groups(self, local_manager):
        sandbox = await local_manager.create("javascript")
        request = CaptureRequest(
            description="",
            capture_tests=(CaptureTest("2024", ("2024",), {"year": "2024"}),),
        )
        result = await execute_regex_test(
            local_manager, sandbox, RegexCandidate(pattern=r"(?<year>\d{4})"),
            request, runtime="javascript",
        )
        assert result.passed, result

    async def test_compile_error(self, local_manager):
        sandbox = await local_manager.create("javascript")
        result = await execute_regex_test(
            local_manager, sandbox, RegexCandidate(pattern="(["), DIGITS,
            runtime="javascript",
        )
        assert not result.passed
        assert "Invalid regular expression" in result.compile_error

    async def test_free_code(self, local_manager):
        sandbox = await local_manager.create("javascript")
        script = build_free_code_script(
            "function processInput(s) { return s.split(',').map(Number); }",
            [CodeTest("1,2", [1, 2])],
            "javascript",
        )
        response = await local_manager.execute(sandbox, script, timeout=10)
        data = json.loads(response.stdout)
        assert data["passed"] is True
