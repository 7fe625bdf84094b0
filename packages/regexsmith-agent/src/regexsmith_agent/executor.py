"""Verification of regex candidates inside a sandbox.

The executor only builds the script, runs it through the lifecycle
manager and turns whatever comes back into a :class:`TestResult`.
Compile errors, crashes and garbage output are all data here; only
infrastructure failures (and aborts) propagate to the caller.
"""
from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING

from regexsmith_core.errors import SandboxTimeoutError
from regexsmith_core.logging import get_logger
from regexsmith_core.types import TestResult

from regexsmith_agent.scripts import build_regex_test_script

if TYPE_CHECKING:
    from collections.abc import Callable

    from regexsmith_core.cancellation import CancellationToken
    from regexsmith_core.types import (
        ExecutionResponse,
        RegexCandidate,
        RegexRequest,
        Runtime,
        SandboxHandle,
        TestMode,
    )
    from regexsmith_runtime.sandbox_manager import SandboxLifecycleManager

logger = get_logger("agent.executor")

REGEX_TIMEOUT_SECONDS = 10

VALID_FLAGS: dict[str, str] = {
    "javascript": "dgimsuvy",
    # g and u are accepted and ignored; the rest map onto re flags.
    "python": "aimsxgu",
}

_PY_FLAG_BITS = {
    "a": re.ASCII,
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "x": re.VERBOSE,
}


def validate_regex_syntax(
    pattern: str, flags: str, runtime: Runtime
) -> str | None:
    """Cheap local check run before a sandbox is involved.

    Returns an error message, or ``None`` when nothing is wrong.  Flag
    letters are checked for both runtimes; the pattern grammar can only
    be checked locally for the ``python`` runtime.
    """
    allowed = VALID_FLAGS.get(runtime)
    if allowed is None:
        return f"Unsupported runtime: {runtime!r}"
    for letter in flags:
        if letter not in allowed:
            return f"Invalid flag {letter!r} for {runtime} (allowed: {allowed})"
    if len(set(flags)) != len(flags):
        return f"Duplicate flags in {flags!r}"

    if runtime != "python":
        return None

    bits = 0
    for letter in flags:
        bits |= _PY_FLAG_BITS.get(letter, 0)
    try:
        re.compile(pattern, bits)
    except (re.error, OverflowError, ValueError) as exc:
        return f"Invalid regex: {exc}"
    return None


def parse_test_output(response: ExecutionResponse, test_mode: TestMode) -> TestResult:
    """Turn raw sandbox output into a ``TestResult``.

    A non-zero exit becomes ``SANDBOX ERROR`` and output that is not the
    expected JSON object becomes ``PARSE ERROR``; neither raises.
    """
    stdout = response.stdout or ""
    if response.exit_code != 0:
        stderr = str(response.artifacts.get("stderr") or "")
        output = stderr or stdout
        logger.info("Test script exited with code %d", response.exit_code)
        return TestResult.failure(
            test_mode, f"SANDBOX ERROR: {output.strip()}", stdout=stdout
        )

    try:
        data = json.loads(stdout.strip())
        if not isinstance(data, dict):
            raise TypeError(f"expected a JSON object, got {type(data).__name__}")
        return TestResult.from_dict(data)
    except (ValueError, TypeError, KeyError) as exc:
        logger.info("Could not parse test output: %s", exc)
        return TestResult.failure(
            test_mode, f"PARSE ERROR: {stdout.strip()}", stdout=stdout
        )


async def execute_regex_test(
    manager: SandboxLifecycleManager,
    sandbox: SandboxHandle,
    regex: RegexCandidate,
    test_input: RegexRequest,
    *,
    runtime: Runtime,
    timeout: int = REGEX_TIMEOUT_SECONDS,
    cancel_token: CancellationToken | None = None,
    on_recreated: Callable[[SandboxHandle], None] | None = None,
) -> TestResult:
    """Run one candidate against every example of *test_input*."""
    script = build_regex_test_script(regex, test_input, runtime)
    logger.debug(
        "Testing /%s/%s (%s, %s mode)",
        regex.pattern, regex.flags, runtime, test_input.test_mode,
    )
    try:
        response = await manager.execute(
            sandbox,
            script,
            timeout=timeout,
            cancel_token=cancel_token,
            runtime=runtime,
            on_recreated=on_recreated,
        )
    except SandboxTimeoutError as exc:
        return TestResult.failure(test_input.test_mode, f"TIMEOUT ERROR: {exc}")

    return parse_test_output(response, test_input.test_mode)
