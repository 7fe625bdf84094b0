"""Tool entry points exposed to a conversational agent.

Tool arguments arrive as camelCase JSON objects and results go back as
JSON-ready dicts.  Errors never escape a tool call: an abort becomes
``{"success": False, "aborted": True}`` and any other failure becomes
``{"success": False, "error": ...}``.
"""
from __future__ import annotations

import json
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from regexsmith_core.errors import (
    OperationAbortedError,
    RegexsmithError,
    RequestValidationError,
    SessionError,
    TokenBudgetExceededError,
)
from regexsmith_core.logging import bind_session, get_logger
from regexsmith_core.types import (
    CaptureRequest,
    CaptureTest,
    CodeRequest,
    CodeTest,
    MatchRequest,
    TokenUsage,
)

from regexsmith_agent.loop import SynthesisOptions

if TYPE_CHECKING:
    from regexsmith_core.cancellation import CancellationToken
    from regexsmith_core.types import (
        RegexGenerationResult,
        RegexRequest,
        Runtime,
        SandboxHandle,
        StatusEvent,
    )
    from regexsmith_runtime.session import SessionLifecycleManager

    from regexsmith_agent.approval import OnApprovalRequest
    from regexsmith_agent.code_agent import CodeAgent
    from regexsmith_agent.loop import SynthesisLoop

logger = get_logger("agent.tools")

TOOL_ABORTED = {"success": False, "aborted": True, "error": "Operation aborted"}

OnToolStatus = Callable[[str, "StatusEvent"], None]

_RUNTIME_SCHEMA = {
    "type": "string",
    "enum": ["javascript", "python"],
    "default": "javascript",
}

TOOL_SCHEMAS: dict[str, dict[str, Any]] = {
    "generateMatchRegex": {
        "description": (
            "Generate a regex pattern for VALIDATING/MATCHING strings. "
            "Provide example strings that should match and should NOT "
            "match; the pattern is refined until all tests pass."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "description": {"type": "string"},
                "shouldMatch": {"type": "array", "items": {"type": "string"}, "minItems": 1},
                "shouldNotMatch": {"type": "array", "items": {"type": "string"}, "minItems": 1},
                "runtime": _RUNTIME_SCHEMA,
            },
            "required": ["description", "shouldMatch", "shouldNotMatch"],
        },
    },
    "generateCaptureRegex": {
        "description": (
            "Generate a regex pattern for EXTRACTING/CAPTURING parts of "
            "strings. Provide inputs with the expected captured groups."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "description": {"type": "string"},
                "captureTests": {
                    "type": "array",
                    "minItems": 1,
                    "items": {
                        "type": "object",
                        "properties": {
                            "input": {"type": "string"},
                            "expectedGroups": {
                                "type": "array",
                                "items": {"type": ["string", "null"]},
                            },
                            "expectedNamedGroups": {
                                "type": "object",
                                "additionalProperties": {"type": "string"},
                            },
                        },
                        "required": ["input", "expectedGroups"],
                    },
                },
                "runtime": _RUNTIME_SCHEMA,
            },
            "required": ["description", "captureTests"],
        },
    },
    "generateCode": {
        "description": (
            "Generate custom code when regex patterns cannot solve the "
            "problem. Runs in a sandbox with NO network access and "
            "requires user approval before execution."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "description": {"type": "string"},
                "runtime": _RUNTIME_SCHEMA,
                "tests": {
                    "type": "array",
                    "minItems": 1,
                    "items": {
                        "type": "object",
                        "properties": {
                            "input": {"type": "string"},
                            "expectedOutput": {},
                        },
                        "required": ["input", "expectedOutput"],
                    },
                },
            },
            "required": ["description", "tests"],
        },
    },
}


# ── Usage examples ────────────────────────────────────────────


def _py_pattern_literal(pattern: str) -> str:
    if '"' not in pattern and not pattern.endswith("\\") and "\n" not in pattern:
        return f'r"{pattern}"'
    return repr(pattern)


def usage_example(result: RegexGenerationResult, capture: bool) -> str:
    """A short snippet showing how to use the pattern in its runtime."""
    if result.runtime == "python":
        head = f"import re\npattern = {_py_pattern_literal(result.pattern)}\n"
        if capture:
            return head + (
                "match = re.search(pattern, text)\n"
                "if match:\n"
                "    groups = match.groups()  # Captured values"
            )
        return head + 'if re.search(pattern, text):\n    print("Match!")'

    ctor = f"const regex = new RegExp({json.dumps(result.pattern)}, {json.dumps(result.flags)});\n"
    if capture:
        return ctor + (
            "const match = regex.exec(text);\n"
            "if (match) console.log(match.slice(1));  // Captured values"
        )
    return ctor + 'if (regex.test(text)) console.log("Match!");'


# ── Argument parsing ──────────────────────────────────────────


def _runtime(args: dict[str, Any]) -> Runtime:
    runtime = args.get("runtime") or "javascript"
    if runtime not in ("javascript", "python"):
        raise RequestValidationError(
            'runtime must be "javascript" or "python"'
        )
    return runtime


def _strings(args: dict[str, Any], key: str) -> tuple[str, ...]:
    values = args.get(key) or []
    if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
        raise RequestValidationError(f"{key} must be an array of strings")
    return tuple(values)


def parse_match_args(args: dict[str, Any]) -> MatchRequest:
    return MatchRequest(
        description=str(args.get("description", "")),
        should_match=_strings(args, "shouldMatch"),
        should_not_match=_strings(args, "shouldNotMatch"),
    )


def parse_capture_args(args: dict[str, Any]) -> CaptureRequest:
    tests = args.get("captureTests") or []
    if not isinstance(tests, list):
        raise RequestValidationError("captureTests must be an array")
    try:
        capture_tests = tuple(CaptureTest.from_dict(t) for t in tests)
    except (KeyError, TypeError, AttributeError) as exc:
        raise RequestValidationError(f"Invalid captureTests entry: {exc}") from exc
    return CaptureRequest(
        description=str(args.get("description", "")),
        capture_tests=capture_tests,
    )


def parse_code_args(args: dict[str, Any]) -> CodeRequest:
    tests = args.get("tests") or []
    if not isinstance(tests, list):
        raise RequestValidationError("tests must be an array")
    try:
        code_tests = tuple(
            CodeTest(input=t["input"], expected_output=t["expectedOutput"])
            for t in tests
        )
    except (KeyError, TypeError) as exc:
        raise RequestValidationError(f"Invalid tests entry: {exc}") from exc
    return CodeRequest(
        description=str(args.get("description", "")),
        runtime=_runtime(args),
        tests=code_tests,
    )


# ── Dispatcher ────────────────────────────────────────────────


class UsageMeter:
    """Sum the token usage predictors report while a turn runs.

    Pass the meter as ``on_usage`` to the generators and the reflector,
    and to :class:`ToolDispatcher` so it can charge the session.
    """

    def __init__(self) -> None:
        self.usage = TokenUsage()

    def __call__(self, usage: TokenUsage) -> None:
        self.usage = self.usage + usage

    def take(self) -> TokenUsage:
        usage, self.usage = self.usage, TokenUsage()
        return usage


class ToolDispatcher:
    """Route tool calls to the synthesis loop and the code agent.

    When a *session* is given every call runs as one session turn: it is
    refused once the token budget is spent, it reuses the retained
    sandbox, and on completion the metered usage and the sandbox the
    call ended up on are persisted through the session.
    """

    def __init__(
        self,
        loop: SynthesisLoop,
        code_agent: CodeAgent | None = None,
        *,
        session: SessionLifecycleManager | None = None,
        usage_meter: UsageMeter | None = None,
        max_iterations: int = 5,
        on_status: OnToolStatus | None = None,
        approver: OnApprovalRequest | None = None,
    ) -> None:
        self._loop = loop
        self._code_agent = code_agent
        self._session = session
        self._usage_meter = usage_meter or UsageMeter()
        self._max_iterations = max_iterations
        self._on_status = on_status
        self._approver = approver
        self._sandbox_id: str | None = None

    @property
    def usage_meter(self) -> UsageMeter:
        return self._usage_meter

    @property
    def sandbox_id(self) -> str | None:
        if self._session is not None:
            return self._session.state.sandbox_id
        return self._sandbox_id

    def _remember_sandbox(self, sandbox_id: str) -> None:
        if not sandbox_id:
            return
        if self._session is not None:
            self._session.state.sandbox_id = sandbox_id
        else:
            self._sandbox_id = sandbox_id

    async def dispatch(
        self,
        name: str,
        args: dict[str, Any],
        *,
        tool_call_id: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> dict[str, Any]:
        handlers = {
            "generateMatchRegex": self.generate_match_regex,
            "generateCaptureRegex": self.generate_capture_regex,
            "generateCode": self.generate_code,
        }
        handler = handlers.get(name)
        if handler is None:
            return {"success": False, "error": f"Unknown tool: {name}"}
        session = self._session
        if session is None:
            return await handler(
                args, tool_call_id=tool_call_id, cancel_token=cancel_token
            )

        with bind_session(session.session_id):
            try:
                turn_token = session.begin_turn()
            except TokenBudgetExceededError as exc:
                logger.warning("%s refused: %s", name, exc)
                return {"success": False, "error": str(exc), "budgetExceeded": True}
            except SessionError as exc:
                return {"success": False, "error": str(exc)}

            if cancel_token is not None:
                cancel_token.on_cancel(turn_token.cancel)
            self._usage_meter.take()
            try:
                return await handler(
                    args, tool_call_id=tool_call_id, cancel_token=turn_token
                )
            finally:
                await session.complete_turn(
                    self._usage_meter.take(), sandbox_id=self.sandbox_id
                )

    async def generate_match_regex(
        self,
        args: dict[str, Any],
        *,
        tool_call_id: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> dict[str, Any]:
        return await self._generate_regex(
            args, parse_match_args, tool_call_id, cancel_token
        )

    async def generate_capture_regex(
        self,
        args: dict[str, Any],
        *,
        tool_call_id: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> dict[str, Any]:
        return await self._generate_regex(
            args, parse_capture_args, tool_call_id, cancel_token
        )

    async def generate_code(
        self,
        args: dict[str, Any],
        *,
        tool_call_id: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> dict[str, Any]:
        if self._code_agent is None:
            return {"success": False, "error": "Code generation is not available"}
        n = len(args.get("tests") or [])
        try:
            request = parse_code_args(args)
            logger.info(
                "generateCode: %s (%s, %d tests)",
                request.description[:80], request.runtime, len(request.tests),
            )
            result = await self._code_agent.run(
                request,
                self._approver,
                sandbox_id=self.sandbox_id,
                cancel_token=cancel_token,
                tool_call_id=tool_call_id,
                on_sandbox=self._on_sandbox,
            )
        except OperationAbortedError:
            return self._code_failure(n, "Operation aborted by user", aborted=True)
        except RegexsmithError as exc:
            logger.error("Error generating code: %s", exc)
            return self._code_failure(n, f"Code generation failed: {exc}")
        return result.to_dict()

    # ── Internals ─────────────────────────────────────────────

    def _on_sandbox(self, handle: SandboxHandle) -> None:
        if self._session is not None:
            self._session.record_sandbox(handle)
        else:
            self._remember_sandbox(handle.id)

    @staticmethod
    def _code_failure(n: int, error: str, **flags: bool) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": False,
            "error": error,
            "code": "",
            "reasoning": "",
            "passed": False,
            "total": n,
            "passedCount": 0,
            "failedCount": n,
            "results": [],
        }
        data.update(flags)
        return data

    async def _generate_regex(
        self,
        args: dict[str, Any],
        parse: Callable[[dict[str, Any]], RegexRequest],
        tool_call_id: str | None,
        cancel_token: CancellationToken | None,
    ) -> dict[str, Any]:
        if cancel_token is not None and cancel_token.cancelled:
            return dict(TOOL_ABORTED)
        try:
            request = parse(args)
            runtime = _runtime(args)
            result = await self._loop.run(request, SynthesisOptions(
                max_iterations=self._max_iterations,
                runtime=runtime,
                existing_sandbox_id=self.sandbox_id,
                include_history=False,
                cancel_token=cancel_token,
                on_status=self._status_sink(tool_call_id),
                on_sandbox_recreated=self._on_sandbox,
            ))
        except OperationAbortedError:
            return dict(TOOL_ABORTED)
        except RegexsmithError as exc:
            logger.error("Error generating regex: %s", exc)
            return {"success": False, "error": f"Regex generation failed: {exc}"}

        self._remember_sandbox(result.sandbox_id)
        data: dict[str, Any] = {"success": result.success}
        if result.aborted:
            data["aborted"] = True
        data.update({
            "pattern": result.pattern,
            "flags": result.flags,
            "iterations": result.iterations,
            "runtime": result.runtime,
            "example": usage_example(result, request.test_mode == "capture"),
        })
        return data

    def _status_sink(
        self, tool_call_id: str | None
    ) -> Callable[[StatusEvent], None] | None:
        if tool_call_id is None or self._on_status is None:
            return None
        on_status = self._on_status

        def sink(event: StatusEvent) -> None:
            on_status(tool_call_id, event)

        return sink
