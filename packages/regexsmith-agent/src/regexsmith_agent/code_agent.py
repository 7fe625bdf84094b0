"""Code fallback: generate a ``process_input`` function, approve, verify.

Used when a regex cannot express the transformation.  Unlike the regex
loop this path makes a single attempt and never runs code without an
explicit approval.
"""
from __future__ import annotations

import json
import uuid
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from regexsmith_core.cancellation import race
from regexsmith_core.errors import OperationAbortedError, SandboxTimeoutError
from regexsmith_core.logging import get_logger
from regexsmith_core.types import ApprovalRequest, CodeCaseResult, CodeResult

from regexsmith_agent.approval import ApprovalGate
from regexsmith_agent.scripts import build_free_code_script

if TYPE_CHECKING:
    from regexsmith_core.cancellation import CancellationToken
    from regexsmith_core.types import (
        CodeCandidate,
        CodeRequest,
        ExecutionResponse,
        SandboxHandle,
    )
    from regexsmith_runtime.sandbox_manager import SandboxLifecycleManager

    from regexsmith_agent.approval import OnApprovalRequest
    from regexsmith_agent.generator import CodeGenerator

logger = get_logger("agent.code")

CODE_TIMEOUT_SECONDS = 10
_MAX_ERROR_OUTPUT = 500

ABORTED_MESSAGE = "Operation aborted by user"
DENIED_MESSAGE = "Code execution denied by user"


def _failed(
    request: CodeRequest,
    candidate: CodeCandidate | None,
    error: str,
    **flags: bool,
) -> CodeResult:
    n = len(request.tests)
    return CodeResult(
        success=False,
        code=candidate.code if candidate else "",
        reasoning=candidate.reasoning if candidate else "",
        passed=False,
        total=n,
        passed_count=0,
        failed_count=n,
        error=error,
        **flags,
    )


def _case_from_dict(data: dict[str, Any]) -> CodeCaseResult:
    return CodeCaseResult(
        input=data.get("input"),
        expected=data.get("expected"),
        actual=data.get("actual"),
        passed=bool(data.get("passed")),
        error=data.get("error"),
    )


def parse_code_output(
    response: ExecutionResponse,
    request: CodeRequest,
    candidate: CodeCandidate,
) -> CodeResult:
    """Turn harness output into a ``CodeResult``; failures become data."""
    if response.exit_code != 0:
        output = response.stdout or str(response.artifacts.get("stderr") or "")
        return _failed(
            request,
            candidate,
            f"Code execution failed with exit code {response.exit_code}. "
            f"Output: {output[:_MAX_ERROR_OUTPUT]}",
        )

    try:
        data = json.loads(response.stdout.strip())
        results = tuple(_case_from_dict(r) for r in data["results"])
        passed_count = int(data.get("passedCount", sum(r.passed for r in results)))
    except (ValueError, TypeError, KeyError, AttributeError) as exc:
        logger.info("Failed to parse test results: %s", exc)
        return _failed(
            request,
            candidate,
            "Failed to parse test results. Raw output: "
            f"{response.stdout[:_MAX_ERROR_OUTPUT]}",
        )

    passed = bool(data.get("passed")) and passed_count == len(results)
    return CodeResult(
        success=passed,
        code=candidate.code,
        reasoning=candidate.reasoning,
        passed=passed,
        total=int(data.get("total", len(results))),
        passed_count=passed_count,
        failed_count=int(data.get("failedCount", len(results) - passed_count)),
        results=results,
    )


class CodeAgent:
    """Generate, approve and verify one code candidate.

    *approver* is called with the attempt's fresh :class:`ApprovalGate`
    and the :class:`ApprovalRequest`; it must eventually call
    ``gate.respond(...)``.
    """

    def __init__(
        self,
        generator: CodeGenerator,
        sandbox_manager: SandboxLifecycleManager,
        *,
        timeout: int = CODE_TIMEOUT_SECONDS,
    ) -> None:
        self._generator = generator
        self._sandboxes = sandbox_manager
        self._timeout = timeout

    async def run(
        self,
        request: CodeRequest,
        approver: OnApprovalRequest | None,
        *,
        sandbox_id: str | None = None,
        cancel_token: CancellationToken | None = None,
        tool_call_id: str | None = None,
        on_sandbox: Callable[[SandboxHandle], None] | None = None,
    ) -> CodeResult:
        request.validate()
        candidate: CodeCandidate | None = None

        if cancel_token is not None and cancel_token.cancelled:
            return _failed(request, None, ABORTED_MESSAGE, aborted=True)

        try:
            candidate = await self._generator.generate(request, cancel_token)
            logger.info(
                "Generated %s code (%d chars) for %d tests",
                request.runtime, len(candidate.code), len(request.tests),
            )

            gate = ApprovalGate(approver)
            approved = await gate.request(
                ApprovalRequest(
                    tool_call_id=tool_call_id or uuid.uuid4().hex[:12],
                    description=request.description,
                    proposed_runtime=request.runtime,
                    test_cases=request.tests,
                    code=candidate.code,
                ),
                cancel_token,
            )
            if not approved:
                return _failed(request, candidate, DENIED_MESSAGE, denied=True)

            sandbox = await race(
                self._sandboxes.get_or_create(request.runtime, sandbox_id),
                cancel_token,
            )
            if on_sandbox is not None:
                on_sandbox(sandbox)

            script = build_free_code_script(
                candidate.code, request.tests, request.runtime
            )
            try:
                response = await self._sandboxes.execute(
                    sandbox,
                    script,
                    timeout=self._timeout,
                    cancel_token=cancel_token,
                    runtime=request.runtime,
                    on_recreated=on_sandbox,
                )
            except SandboxTimeoutError as exc:
                gate.mark_executed()
                return _failed(request, candidate, f"Code execution timed out: {exc}")
            gate.mark_executed()
        except OperationAbortedError:
            logger.info("Code generation aborted")
            return _failed(request, candidate, ABORTED_MESSAGE, aborted=True)

        logger.debug(
            "Code run finished: exit=%d, stdout length=%d",
            response.exit_code, len(response.stdout),
        )
        return parse_code_output(response, request, candidate)
