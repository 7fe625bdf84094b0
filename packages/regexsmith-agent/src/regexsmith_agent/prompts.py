"""Deterministic prompt text for generation, reflection and code fallback.

Every builder is a pure function of its arguments, so identical requests
and histories always produce identical prompts.
"""
from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from regexsmith_core.types import CaptureRequest, MatchRequest

if TYPE_CHECKING:
    from collections.abc import Sequence

    from regexsmith_core.types import (
        CodeRequest,
        IterationResult,
        RegexCandidate,
        RegexRequest,
        Runtime,
        TestResult,
    )


def _json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def _runtime_label(runtime: Runtime) -> str:
    engine = "Python re module" if runtime == "python" else "JavaScript RegExp"
    return f"{runtime} ({engine})"


def entry_point(runtime: Runtime) -> str:
    return "process_input" if runtime == "python" else "processInput"


# ── Generation ───────────────────────────────────────────────────────

def _match_prompt(request: MatchRequest, runtime: Runtime) -> str:
    should = "\n".join(f'  ✓ "{s}"' for s in request.should_match) or "  (none)"
    should_not = (
        "\n".join(f'  ✗ "{s}"' for s in request.should_not_match) or "  (none)"
    )
    return (
        f"Create a regex for: {request.description}\n\n"
        f"Target runtime: {_runtime_label(runtime)}\n\n"
        f"Should match:\n{should}\n\n"
        f"Should NOT match:\n{should_not}"
    )


def _capture_prompt(request: CaptureRequest, runtime: Runtime) -> str:
    syntax = "(?P<name>...)" if runtime == "python" else "(?<name>...)"
    lines = [
        f"Create a regex with capture groups for: {request.description}",
        "",
        f"Target runtime: {_runtime_label(runtime)}",
        f"Use {syntax} syntax for named capture groups.",
        "",
        "Expected capture results:",
    ]
    for test in request.capture_tests:
        lines.append(
            f'  Input: "{test.input}" → Groups: '
            f"{_json(list(test.expected_groups))}"
        )
        if test.expected_named_groups:
            lines.append(
                f"    Named groups: {_json(test.expected_named_groups)}"
            )
    return "\n".join(lines)


def _format_attempt(entry: IterationResult) -> str:
    results = entry.test_results
    failed = [r for r in results.results if not r.passed]
    lines = [
        f"Attempt: /{entry.candidate.pattern}/{entry.candidate.flags}",
        f"Reasoning: {entry.candidate.reasoning or '(none)'}",
        f"Result: {results.passed_count}/{results.total} passed",
    ]
    if results.compile_error:
        lines.append(f"Compile error: {results.compile_error}")
    if results.test_mode == "capture":
        lines.append("Failed on:")
        for case in failed:
            actual = list(case.actual) if case.actual is not None else None
            lines.append(
                f'  - Input: "{case.input}" expected '
                f"{_json(list(case.expected))}, got {_json(actual)}"
            )
    else:
        inputs = ", ".join(f'"{case.input}"' for case in failed)
        lines.append(f"Failed on: {inputs or '(none)'}")
    lines.append(f"Analysis: {entry.reflection}")
    return "\n".join(lines)


def build_generate_prompt(
    request: RegexRequest,
    history: Sequence[IterationResult],
    runtime: Runtime,
) -> str:
    match request:
        case MatchRequest():
            prompt = _match_prompt(request, runtime)
        case CaptureRequest():
            prompt = _capture_prompt(request, runtime)
        case _:
            raise TypeError(f"Unsupported request type: {type(request).__name__}")

    if history:
        attempts = "\n\n".join(_format_attempt(h) for h in history)
        prompt += (
            "\n\n--- PREVIOUS ATTEMPTS (learn from these) ---\n\n"
            f"{attempts}\n\n"
            "Fix the issues. Do NOT repeat the same pattern."
        )
    return prompt


def build_generate_instructions(runtime: Runtime, capture_mode: bool) -> str:
    if runtime == "python":
        runtime_note = (
            "Generate a pattern compatible with Python's re module. Use "
            "(?P<name>...) for named groups. For flags like "
            "case-insensitive, embed them inline in the pattern using "
            "(?i), (?m), (?s) syntax. Leave the flags field empty."
        )
    else:
        runtime_note = (
            "Generate a pattern compatible with JavaScript's RegExp "
            "constructor. Use (?<name>...) for named groups."
        )
    capture_note = (
        "\nUse capturing groups (parentheses) to extract the expected "
        "values. The captured groups must equal the expected groups array "
        "exactly, in order."
        if capture_mode else ""
    )
    return (
        "You are a regex expert. Generate a regex pattern that satisfies "
        "all requirements.\n"
        f"{runtime_note}{capture_note}\n"
        "Be precise and avoid overly greedy patterns.\n"
        "Explain your reasoning: why you chose this pattern and how it "
        "handles the test cases.\n"
        "Return the pattern without delimiters like / /."
    )


# ── Reflection ───────────────────────────────────────────────────────

def build_reflect_prompt(
    candidate: RegexCandidate,
    test_results: TestResult,
    request: RegexRequest,
) -> str:
    passed = [r for r in test_results.results if r.passed]
    failed = [r for r in test_results.results if not r.passed]
    capture_mode = test_results.test_mode == "capture"

    def describe_passed(case: Any) -> str:
        if capture_mode:
            actual = list(case.actual) if case.actual is not None else None
            return f'  "{case.input}" → captured {_json(actual)}'
        expectation = "should match" if case.expected else "should NOT match"
        return f'  "{case.input}" → {expectation}'

    def describe_failed(case: Any) -> str:
        if capture_mode:
            actual = list(case.actual) if case.actual is not None else None
            return (
                f'  "{case.input}" → expected {_json(list(case.expected))}, '
                f"got {_json(actual)}"
            )
        expected = "match" if case.expected else "no match"
        actual = "match" if case.actual else "no match"
        return f'  "{case.input}" → expected {expected}, got {actual}'

    compile_error = (
        f"\nCompile Error: {test_results.compile_error}\n"
        if test_results.compile_error else ""
    )
    question = (
        "What's wrong with the capture groups, and what's the smallest fix?"
        if capture_mode
        else "What's wrong with the reasoning or pattern, and what's the "
        "smallest fix?"
    )
    return (
        f"Pattern: /{candidate.pattern}/{candidate.flags}\n"
        f"Goal: {request.description}\n\n"
        "Generator's Reasoning:\n"
        f"{candidate.reasoning or '(no reasoning provided)'}\n\n"
        f"Test Results: {test_results.passed_count}/{test_results.total} passed\n"
        f"{compile_error}\n"
        f"✅ Passed ({len(passed)}):\n"
        f"{chr(10).join(describe_passed(c) for c in passed) or '  (none)'}\n\n"
        f"❌ Failed ({len(failed)}):\n"
        f"{chr(10).join(describe_failed(c) for c in failed) or '  (none)'}\n\n"
        f"{question}"
    )


def build_reflect_instructions(capture_mode: bool) -> str:
    if capture_mode:
        return (
            "You are a regex debugger. Analyze the capture group test "
            "results and identify why the wrong groups were captured. "
            "Suggest the smallest fix to capture the expected groups. "
            "Be concise (2-3 sentences max)."
        )
    return (
        "You are a regex debugger. Analyze the test results and the "
        "generator's reasoning to identify what went wrong. Suggest the "
        "smallest fix. Be concise (2-3 sentences max)."
    )


# ── Code Fallback ────────────────────────────────────────────────────

def build_code_instructions(runtime: Runtime) -> str:
    if runtime == "python":
        return (
            "You are an expert Python programmer. Generate clean, efficient "
            "Python code.\n\n"
            "Rules:\n"
            "1. Define a function called `process_input(inp)` that takes a "
            "single string input and returns the processed result.\n"
            "2. The function MUST be named exactly `process_input`.\n"
            "3. Keep the code simple and focused on the specific problem.\n"
            "4. Use only Python's standard library.\n"
            "5. Do NOT make network requests or access the filesystem.\n"
            "6. Handle edge cases gracefully.\n"
            "7. Return JSON-compatible values (str, list, dict, int, float, "
            "bool, None)."
        )
    return (
        "You are an expert JavaScript programmer. Generate clean, efficient "
        "JavaScript code.\n\n"
        "Rules:\n"
        "1. Define a function called `processInput(input)` that takes a "
        "single string input and returns the processed result.\n"
        "2. The function MUST be named exactly `processInput`.\n"
        "3. Keep the code simple and focused on the specific problem.\n"
        "4. Use only vanilla JavaScript, no external libraries.\n"
        "5. Do NOT make network requests or access the filesystem.\n"
        "6. Handle edge cases gracefully.\n"
        "7. Return JSON-compatible values (string, array, object, number, "
        "boolean, null)."
    )


def build_code_prompt(request: CodeRequest) -> str:
    lines = [f"Generate code to: {request.description}", "", "Test cases that must pass:"]
    for test in request.tests:
        lines.append(
            f"  Input: {_json(test.input)} → Expected output: "
            f"{_json(test.expected_output)}"
        )
    lines.append("")
    lines.append(
        f"Generate the {entry_point(request.runtime)} function that handles "
        "all these test cases correctly."
    )
    return "\n".join(lines)
