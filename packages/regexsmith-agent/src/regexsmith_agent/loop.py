"""The generate → execute → reflect loop that synthesizes one regex.

Lifecycle of a run:
1. VALIDATE  -- reject requests without examples
2. ACQUIRE   -- reuse the session sandbox or create a new one
3. GENERATE  -- ask the generator for a candidate (bounded history)
4. EXECUTE   -- verify the candidate in the sandbox
5. REFLECT   -- diagnose a failing candidate, then back to 3

The run ends with DONE (all tests passed), EXHAUSTED (iteration budget
used up) or ABORTED (the cancel token fired).
"""
from __future__ import annotations

import contextlib
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from regexsmith_core.cancellation import race
from regexsmith_core.errors import OperationAbortedError, RequestValidationError
from regexsmith_core.logging import get_logger
from regexsmith_core.types import (
    PLACEHOLDER_CANDIDATE,
    IterationResult,
    RegexGenerationResult,
    StatusEvent,
    StatusPhase,
)
from regexsmith_runtime.sandbox_manager import SandboxRef

from regexsmith_agent.executor import REGEX_TIMEOUT_SECONDS, execute_regex_test
from regexsmith_agent.history import MAX_FULL_HISTORY_SIZE, compact_history

if TYPE_CHECKING:
    from regexsmith_core.cancellation import CancellationToken
    from regexsmith_core.types import (
        RegexCandidate,
        RegexRequest,
        Runtime,
        SandboxHandle,
        TestResult,
    )
    from regexsmith_runtime.sandbox_manager import SandboxLifecycleManager

    from regexsmith_agent.generator import CandidateGenerator
    from regexsmith_agent.reflector import Reflector

logger = get_logger("agent.loop")

ABORTED_MESSAGE = "Operation aborted by user"


class LoopState(Enum):
    VALIDATING = "validating"
    ACQUIRING_SANDBOX = "acquiring_sandbox"
    GENERATING = "generating"
    EXECUTING = "executing"
    REFLECTING = "reflecting"
    DONE = "done"
    EXHAUSTED = "exhausted"
    ABORTED = "aborted"


OnStatus = Callable[[StatusEvent], None]
OnSandboxRecreated = Callable[["SandboxHandle"], None]


@dataclass(slots=True)
class SynthesisOptions:
    max_iterations: int = 5
    runtime: Runtime = "javascript"
    existing_sandbox_id: str | None = None
    include_history: bool = False
    cancel_token: CancellationToken | None = None
    on_status: OnStatus | None = None
    on_sandbox_recreated: OnSandboxRecreated | None = None
    timeout: int = REGEX_TIMEOUT_SECONDS
    history_window: int = MAX_FULL_HISTORY_SIZE


@dataclass(slots=True)
class _Run:
    """Mutable bookkeeping for a single ``SynthesisLoop.run`` call."""
    options: SynthesisOptions
    sandbox: SandboxRef
    history: list[IterationResult]
    candidate: RegexCandidate | None = None
    state: LoopState = LoopState.VALIDATING

    @property
    def cancelled(self) -> bool:
        token = self.options.cancel_token
        return token is not None and token.cancelled

    @property
    def sandbox_id(self) -> str:
        return self.sandbox.id or self.options.existing_sandbox_id or ""


class SynthesisLoop:
    """Drive a generator, a sandbox and a reflector until a regex passes.

    The loop owns the sandbox reference for the duration of a run; a
    replacement created by the lifecycle manager updates the reference
    and is forwarded to ``options.on_sandbox_recreated``.
    """

    def __init__(
        self,
        generator: CandidateGenerator,
        reflector: Reflector,
        sandbox_manager: SandboxLifecycleManager,
    ) -> None:
        self._generator = generator
        self._reflector = reflector
        self._sandboxes = sandbox_manager

    async def run(
        self,
        request: RegexRequest,
        options: SynthesisOptions | None = None,
    ) -> RegexGenerationResult:
        options = options or SynthesisOptions()
        run = _Run(options=options, sandbox=SandboxRef(), history=[])

        self._transition(run, LoopState.VALIDATING)
        request.validate()
        if options.max_iterations < 1:
            raise RequestValidationError("max_iterations must be >= 1")

        if run.cancelled:
            return self._aborted(run, iterations=0)

        try:
            return await self._iterate(run, request)
        except OperationAbortedError:
            return self._aborted(run, iterations=len(run.history))

    # ── Internal pipeline ─────────────────────────────────────

    async def _iterate(
        self, run: _Run, request: RegexRequest
    ) -> RegexGenerationResult:
        options = run.options
        token = options.cancel_token

        self._transition(run, LoopState.ACQUIRING_SANDBOX)
        run.sandbox.replace(await race(
            self._sandboxes.get_or_create(
                options.runtime, options.existing_sandbox_id
            ),
            token,
        ))
        logger.info(
            "Using sandbox %s (%s), mode: %s",
            run.sandbox.id, options.runtime, request.test_mode,
        )

        def on_recreated(handle: SandboxHandle) -> None:
            logger.info("Sandbox recreated: %s -> %s", run.sandbox.id, handle.id)
            run.sandbox.replace(handle)
            if options.on_sandbox_recreated is not None:
                options.on_sandbox_recreated(handle)

        test_results: TestResult | None = None
        for i in range(options.max_iterations):
            if run.cancelled:
                return self._aborted(run, iterations=i)

            logger.debug("Iteration %d/%d", i + 1, options.max_iterations)
            self._transition(run, LoopState.GENERATING)
            self._emit(run, StatusPhase.GENERATING, i)
            run.candidate = await self._generator.generate(
                request,
                compact_history(run.history, options.history_window),
                options.runtime,
                token,
            )
            if run.cancelled:
                return self._aborted(run, iterations=i + 1)

            self._transition(run, LoopState.EXECUTING)
            self._emit(run, StatusPhase.EXECUTING, i)
            test_results = await execute_regex_test(
                self._sandboxes,
                run.sandbox.handle,
                run.candidate,
                request,
                runtime=options.runtime,
                timeout=options.timeout,
                cancel_token=token,
                on_recreated=on_recreated,
            )
            if run.cancelled:
                return self._aborted(run, iterations=i + 1)

            if test_results.passed:
                self._transition(run, LoopState.DONE)
                if options.include_history:
                    run.history.append(
                        IterationResult(run.candidate, test_results, "")
                    )
                return RegexGenerationResult(
                    pattern=run.candidate.pattern,
                    flags=run.candidate.flags,
                    success=True,
                    iterations=i + 1,
                    sandbox_id=run.sandbox.id,
                    runtime=options.runtime,
                    test_results=test_results,
                    history=self._history(run),
                )

            self._transition(run, LoopState.REFLECTING)
            self._emit(run, StatusPhase.EVALUATING, i)
            reflection = await self._reflector.reflect(
                run.candidate, test_results, request, token
            )
            run.history.append(
                IterationResult(run.candidate, test_results, reflection)
            )

        self._transition(run, LoopState.EXHAUSTED)
        logger.info(
            "Max iterations (%d) reached, returning best effort",
            options.max_iterations,
        )
        candidate = run.candidate or PLACEHOLDER_CANDIDATE
        return RegexGenerationResult(
            pattern=candidate.pattern,
            flags=candidate.flags,
            success=False,
            iterations=options.max_iterations,
            sandbox_id=run.sandbox.id,
            runtime=options.runtime,
            test_results=test_results,
            history=self._history(run),
        )

    def _aborted(self, run: _Run, *, iterations: int) -> RegexGenerationResult:
        self._transition(run, LoopState.ABORTED)
        candidate = run.candidate or PLACEHOLDER_CANDIDATE
        return RegexGenerationResult(
            pattern=candidate.pattern,
            flags=candidate.flags,
            success=False,
            iterations=iterations,
            sandbox_id=run.sandbox_id,
            runtime=run.options.runtime,
            aborted=True,
            error=ABORTED_MESSAGE,
            history=self._history(run),
        )

    @staticmethod
    def _history(run: _Run) -> tuple[IterationResult, ...] | None:
        if not run.options.include_history:
            return None
        return tuple(run.history)

    # ── Callback helpers ──────────────────────────────────────

    @staticmethod
    def _transition(run: _Run, state: LoopState) -> None:
        logger.debug("Loop state %s -> %s", run.state.value, state.value)
        run.state = state

    @staticmethod
    def _emit(run: _Run, phase: StatusPhase, iteration: int) -> None:
        sink = run.options.on_status
        if sink is None:
            return
        event = StatusEvent(
            phase=phase,
            iteration=iteration + 1,
            max_iterations=run.options.max_iterations,
        )
        with contextlib.suppress(Exception):
            sink(event)
