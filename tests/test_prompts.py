from __future__ import annotations

from regexsmith_agent.prompts import (
    build_code_instructions,
    build_code_prompt,
    build_generate_instructions,
    build_generate_prompt,
    build_reflect_prompt,
)
from regexsmith_core.types import (
    CaptureRequest,
    CaptureTest,
    CodeRequest,
    CodeTest,
    IterationResult,
    MatchRequest,
    RegexCandidate,
    TestResult,
)

DIGITS = MatchRequest(
    description="digits only", should_match=("123",), should_not_match=("abc",)
)


def _failed_match(pattern: str) -> IterationResult:
    results = TestResult.from_dict({
        "passed": False,
        "results": [
            {"input": "123", "expected": True, "actual": True, "passed": True},
            {"input": "abc", "expected": False, "actual": True, "passed": False},
        ],
        "testMode": "match",
    })
    return IterationResult(
        candidate=RegexCandidate(pattern=pattern, reasoning="anything"),
        test_results=results,
        reflection="too greedy",
    )


class TestGeneratePrompt:
    def test_match_prompt_lists_examples(self):
        prompt = build_generate_prompt(DIGITS, [], "javascript")
        assert "digits only" in prompt
        assert '"123"' in prompt
        assert '"abc"' in prompt
        assert "PREVIOUS ATTEMPTS" not in prompt

    def test_deterministic(self):
        history = [_failed_match(".*")]
        assert build_generate_prompt(DIGITS, history, "python") == (
            build_generate_prompt(DIGITS, history, "python")
        )

    def test_history_included(self):
        prompt = build_generate_prompt(DIGITS, [_failed_match(".*")], "javascript")
        assert "PREVIOUS ATTEMPTS" in prompt
        assert "/.*/" in prompt
        assert "too greedy" in prompt
        assert 'Failed on: "abc"' in prompt

    def test_capture_prompt_uses_runtime_group_syntax(self):
        request = CaptureRequest(
            description="date parts",
            capture_tests=(
                CaptureTest("2024-01-15", ("2024", "01", "15")),
            ),
        )
        assert "(?P<name>...)" in build_generate_prompt(request, [], "python")
        js = build_generate_prompt(request, [], "javascript")
        assert "(?<name>...)" in js
        assert '["2024","01","15"]' in js

    def test_instructions_vary_by_mode(self):
        assert "capturing groups" in build_generate_instructions("javascript", True)
        assert "capturing groups" not in build_generate_instructions("javascript", False)
        assert "Python's re module" in build_generate_instructions("python", False)


class TestReflectPrompt:
    def test_lists_passed_and_failed(self):
        entry = _failed_match(".*")
        prompt = build_reflect_prompt(entry.candidate, entry.test_results, DIGITS)
        assert "Pattern: /.*/" in prompt
        assert "Test Results: 1/2 passed" in prompt
        assert '"abc" → expected no match, got match' in prompt
        assert "anything" in prompt

    def test_compile_error_included(self):
        results = TestResult.failure("match", "Unterminated group")
        prompt = build_reflect_prompt(RegexCandidate(pattern="(["), results, DIGITS)
        assert "Compile Error: Unterminated group" in prompt


class TestCodePrompt:
    def test_entry_point_per_runtime(self):
        request = CodeRequest(
            description="reverse", runtime="python",
            tests=(CodeTest("abc", "cba"),),
        )
        prompt = build_code_prompt(request)
        assert "process_input" in prompt
        assert '"abc"' in prompt
        assert "processInput" in build_code_instructions("javascript")
