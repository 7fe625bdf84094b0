"""HTTP endpoint for testing a regex against examples in a sandbox.

``POST /api/regex/test`` runs one pattern (no generation) in match or
capture mode and returns the ``TestResult`` plus the sandbox id, so a
client can pass ``sandboxId`` back and reuse the same sandbox.

Usage::

    regexsmith serve --port 8787

or embedded::

    from regexsmith_cli.server import create_app
    app = create_app(context=runtime_ctx)
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from regexsmith_agent.executor import execute_regex_test, validate_regex_syntax
from regexsmith_core._version import __version__
from regexsmith_core.config import RUNTIMES, RegexsmithConfig
from regexsmith_core.errors import RequestValidationError
from regexsmith_core.logging import get_logger
from regexsmith_core.types import (
    CaptureRequest,
    CaptureTest,
    MatchRequest,
    RegexCandidate,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from regexsmith_core.types import RegexRequest, Runtime, SandboxHandle
    from regexsmith_runtime.context import RuntimeContext

logger = get_logger("server")


# ── Validation ───────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class RegexTestCall:
    pattern: str
    flags: str
    runtime: Runtime
    sandbox_id: str | None
    timeout: int
    test_input: RegexRequest


def _error(
    status: int, error: str, code: str, details: str | None = None
) -> JSONResponse:
    body: dict[str, Any] = {"error": error, "code": code}
    if details is not None:
        body["details"] = details
    return JSONResponse(body, status_code=status)


def _string_list(body: dict[str, Any], key: str) -> tuple[str, ...]:
    value = body.get(key)
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise RequestValidationError("shouldMatch and shouldNotMatch must be arrays of strings")
    return tuple(value)


def _capture_tests(body: dict[str, Any]) -> tuple[CaptureTest, ...]:
    tests = body.get("captureTests")
    if not isinstance(tests, list) or not tests:
        raise RequestValidationError("captureTests is required and must be a non-empty array")
    parsed = []
    for i, test in enumerate(tests):
        if not isinstance(test, dict):
            raise RequestValidationError(f"captureTests[{i}] must be an object")
        if not test.get("input") or not isinstance(test["input"], str):
            raise RequestValidationError(
                f"captureTests[{i}].input is required and must be a string"
            )
        if not isinstance(test.get("expectedGroups"), list):
            raise RequestValidationError(
                f"captureTests[{i}].expectedGroups is required and must be an array"
            )
        named = test.get("expectedNamedGroups")
        if named is not None and not isinstance(named, dict):
            raise RequestValidationError(
                f"captureTests[{i}].expectedNamedGroups must be an object"
            )
        parsed.append(CaptureTest.from_dict(test))
    return tuple(parsed)


def parse_regex_test_body(body: Any, config: RegexsmithConfig) -> RegexTestCall:
    """Validate a request body into a ``RegexTestCall``."""
    if not isinstance(body, dict):
        raise RequestValidationError("Request body must be a JSON object")

    pattern = body.get("pattern")
    if not pattern or not isinstance(pattern, str):
        raise RequestValidationError("pattern is required and must be a string")

    mode = body.get("mode")
    if mode not in ("match", "capture"):
        raise RequestValidationError("mode is required and must be 'match' or 'capture'")

    flags = body.get("flags", "")
    if flags is None:
        flags = ""
    if not isinstance(flags, str):
        raise RequestValidationError("flags must be a string")

    runtime = body.get("runtime") or "javascript"
    if runtime not in RUNTIMES:
        raise RequestValidationError("runtime must be 'javascript' or 'python'")

    sandbox_id = body.get("sandboxId")
    if sandbox_id is not None and not isinstance(sandbox_id, str):
        raise RequestValidationError("sandboxId must be a string")

    timeout = body.get("timeout")
    if timeout is None:
        timeout = config.server.default_timeout_seconds
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
        raise RequestValidationError("timeout must be a number")
    timeout = max(1, min(int(timeout), config.server.max_timeout_seconds))

    test_input: RegexRequest
    if mode == "match":
        test_input = MatchRequest(
            description="",
            should_match=_string_list(body, "shouldMatch"),
            should_not_match=_string_list(body, "shouldNotMatch"),
        )
        if not test_input.should_match and not test_input.should_not_match:
            raise RequestValidationError(
                "at least one test case is required "
                "(shouldMatch or shouldNotMatch)"
            )
    else:
        test_input = CaptureRequest(
            description="", capture_tests=_capture_tests(body)
        )

    return RegexTestCall(
        pattern=pattern,
        flags=flags,
        runtime=runtime,
        sandbox_id=sandbox_id or None,
        timeout=timeout,
        test_input=test_input,
    )


# ── Handler ──────────────────────────────────────────────────


async def handle_regex_test(
    context: RuntimeContext, body: Any
) -> JSONResponse:
    config = context.config
    try:
        call = parse_regex_test_body(body, config)
    except RequestValidationError as exc:
        return _error(400, str(exc), "VALIDATION_ERROR")

    syntax_error = validate_regex_syntax(call.pattern, call.flags, call.runtime)
    if syntax_error:
        return _error(400, "Invalid regex syntax", "SYNTAX_ERROR", syntax_error)

    manager = context.sandbox_manager
    try:
        sandbox = await manager.get_or_create(call.runtime, call.sandbox_id)
    except Exception as exc:
        logger.error("Failed to create sandbox: %s", exc)
        return _error(500, "Failed to create sandbox", "EXECUTION_ERROR", str(exc))

    current = {"id": sandbox.id}

    def on_recreated(handle: SandboxHandle) -> None:
        current["id"] = handle.id

    try:
        result = await execute_regex_test(
            manager,
            sandbox,
            RegexCandidate(pattern=call.pattern, flags=call.flags),
            call.test_input,
            runtime=call.runtime,
            timeout=call.timeout,
            on_recreated=on_recreated,
        )
    except Exception as exc:
        message = str(exc)
        if "timeout" in message.lower() or "timed out" in message.lower():
            return _error(408, "Execution timeout", "TIMEOUT_ERROR", message)
        logger.error("Regex test failed: %s", exc)
        return _error(500, "Execution failed", "EXECUTION_ERROR", message)

    if result.compile_error and result.compile_error.startswith("TIMEOUT ERROR"):
        return _error(408, "Execution timeout", "TIMEOUT_ERROR", result.compile_error)

    payload = result.to_dict()
    payload["sandboxId"] = current["id"]
    payload["runtime"] = call.runtime
    return JSONResponse(payload)


# ── App ──────────────────────────────────────────────────────


def create_app(
    config: RegexsmithConfig | None = None,
    context: RuntimeContext | None = None,
) -> FastAPI:
    """Create the FastAPI app.

    Args:
        config: Configuration used to build a runtime at startup when no
                *context* is given.
        context: An existing runtime to serve from.  The caller keeps
                 ownership and closes it.
    """
    if context is not None:
        config = context.config
    config = config or RegexsmithConfig.load()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        owned = None
        if getattr(app.state, "runtime", None) is None:
            from regexsmith_runtime.builder import RuntimeBuilder

            owned = await RuntimeBuilder(config).build()
            app.state.runtime = owned
        try:
            yield
        finally:
            if owned is not None:
                await owned.close()
                app.state.runtime = None

    app = FastAPI(title="Regexsmith", version=__version__, lifespan=lifespan)
    app.state.runtime = context
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.server.cors_origins),
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "version": __version__}

    @app.post("/api/regex/test")
    async def regex_test(request: Request) -> JSONResponse:
        try:
            body = await request.json()
        except ValueError:
            return _error(400, "Invalid JSON body", "VALIDATION_ERROR")
        return await handle_regex_test(request.app.state.runtime, body)

    @app.api_route("/api/regex/test", methods=["GET", "PUT", "PATCH", "DELETE"])
    async def regex_test_wrong_method() -> JSONResponse:
        return _error(405, "Method not allowed", "VALIDATION_ERROR")

    return app


def serve(config: RegexsmithConfig, host: str, port: int) -> None:
    """Run the endpoint with uvicorn until interrupted."""
    import uvicorn

    logger.info("Serving on http://%s:%d", host, port)
    uvicorn.run(create_app(config), host=host, port=port, log_level="info")
