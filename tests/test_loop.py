from __future__ import annotations

import pytest
from regexsmith_agent.loop import ABORTED_MESSAGE, SynthesisLoop, SynthesisOptions
from regexsmith_core.cancellation import CancellationToken
from regexsmith_core.errors import (
    OperationAbortedError,
    RequestValidationError,
    SandboxUnavailableError,
)
from regexsmith_core.types import (
    CaptureRequest,
    CaptureTest,
    MatchRequest,
    StatusPhase,
)

DIGITS = MatchRequest(
    description="digits", should_match=("123",), should_not_match=("abc",)
)


@pytest.fixture
def make_loop(sandbox_manager, fake_reflector, fake_generator_cls):
    def _make(patterns=None, **kwargs):
        generator = fake_generator_cls(patterns, **kwargs)
        return SynthesisLoop(generator, fake_reflector, sandbox_manager), generator
    return _make


class TestSynthesisLoop:
    """Tests for the generate, execute, reflect cycle."""

    async def test_passes_first_iteration(self, make_loop, fake_service, make_output, fake_reflector):
        loop, _ = make_loop([r"\d+"])
        fake_service.outputs.append(make_output(True))

        result = await loop.run(DIGITS)

        assert result.success
        assert result.pattern == r"\d+"
        assert result.iterations == 1
        assert result.sandbox_id == "sb-1"
        assert result.runtime == "javascript"
        assert result.test_results.passed
        assert result.history is None
        assert fake_reflector.calls == 0

    async def test_refines_until_passing(self, make_loop, fake_service, make_output, fake_reflector):
        loop, _ = make_loop(["a", "b", r"\d+"])
        fake_service.outputs.extend([
            make_output(False), make_output(False), make_output(True),
        ])

        result = await loop.run(DIGITS, SynthesisOptions(include_history=True))

        assert result.success
        assert result.iterations == 3
        assert fake_reflector.calls == 2
        assert [h.candidate.pattern for h in result.history] == ["a", "b", r"\d+"]
        assert result.history[0].reflection == "/a/ failed 2 cases"
        assert result.history[-1].reflection == ""

    async def test_exhaustion_returns_last_candidate(self, make_loop, fake_service, make_output):
        loop, _ = make_loop(["a", "b"])
        fake_service.default = make_output(False)

        result = await loop.run(DIGITS, SynthesisOptions(max_iterations=2))

        assert not result.success
        assert not result.aborted
        assert result.iterations == 2
        assert result.pattern == "b"
        assert result.test_results is not None
        assert not result.test_results.passed

    async def test_history_is_compacted(self, make_loop, fake_service, make_output):
        loop, generator = make_loop(["p1", "p2", "p3", "p4", "p5"])
        fake_service.default = make_output(False)

        await loop.run(DIGITS, SynthesisOptions(max_iterations=5))

        assert generator.histories[0] == []
        assert generator.histories[3] == ["p1", "p2", "p3"]
        assert generator.histories[4] == ["p2", "p3", "p4"]
        assert all(len(h) <= 3 for h in generator.histories)

    async def test_compile_error_is_a_failed_iteration(self, make_loop, fake_service, make_output):
        loop, _ = make_loop(["([", r"\d+"])
        fake_service.outputs.extend([
            make_output(False, compile_error="Unterminated group"),
            make_output(True),
        ])

        result = await loop.run(DIGITS)

        assert result.success
        assert result.iterations == 2

    async def test_capture_mode(self, make_loop, fake_service, make_output):
        loop, _ = make_loop([r"(\d{4})-(\d{2})-(\d{2})"])
        fake_service.outputs.append(make_output(True, test_mode="capture", total=1))
        request = CaptureRequest(
            description="date",
            capture_tests=(CaptureTest("2024-01-15", ("2024", "01", "15")),),
        )

        result = await loop.run(request, SynthesisOptions(runtime="python"))

        assert result.success
        assert result.runtime == "python"
        assert fake_service.created[0].runtime == "python"


class TestValidation:
    async def test_request_without_examples(self, make_loop, fake_service):
        loop, _ = make_loop()
        with pytest.raises(RequestValidationError):
            await loop.run(MatchRequest(description="nothing"))
        assert fake_service.created == []

    async def test_zero_iterations(self, make_loop):
        loop, _ = make_loop()
        with pytest.raises(RequestValidationError):
            await loop.run(DIGITS, SynthesisOptions(max_iterations=0))


class TestAbort:
    async def test_abort_before_start(self, make_loop, fake_service):
        loop, generator = make_loop()
        token = CancellationToken()
        token.cancel()

        result = await loop.run(DIGITS, SynthesisOptions(cancel_token=token))

        assert result.aborted
        assert not result.success
        assert result.iterations == 0
        assert result.sandbox_id == ""
        assert result.pattern == ".*"
        assert result.error == ABORTED_MESSAGE
        assert fake_service.created == []
        assert generator.histories == []

    async def test_abort_before_start_keeps_existing_id(self, make_loop):
        loop, _ = make_loop()
        token = CancellationToken()
        token.cancel()

        result = await loop.run(DIGITS, SynthesisOptions(
            cancel_token=token, existing_sandbox_id="sb-old",
        ))

        assert result.sandbox_id == "sb-old"

    async def test_abort_during_generation(self, make_loop, fake_service, make_output):
        token = CancellationToken()

        def cancel_on_second(index):
            if index == 1:
                token.cancel()

        loop, generator = make_loop(["a", "b"], on_generate=cancel_on_second)
        fake_service.default = make_output(False)

        result = await loop.run(DIGITS, SynthesisOptions(cancel_token=token))

        assert result.aborted
        assert result.iterations == 2
        assert result.pattern == "b"
        assert result.sandbox_id == "sb-1"
        # The second candidate was never executed
        assert len(fake_service.runs) == 1

    async def test_abort_during_execution(self, make_loop, fake_service, make_output, fake_reflector):
        token = CancellationToken()
        run = fake_service.run

        async def run_then_cancel(handle, script, timeout_seconds):
            result = await run(handle, script, timeout_seconds)
            if len(fake_service.runs) == 2:
                token.cancel()
            return result

        fake_service.run = run_then_cancel
        fake_service.default = make_output(False)
        loop, _ = make_loop(["a", "b", "c"])

        result = await loop.run(DIGITS, SynthesisOptions(cancel_token=token))

        assert result.aborted
        assert result.iterations == 2
        assert result.pattern == "b"
        # The finished run is not reflected on
        assert fake_reflector.calls == 1

    async def test_abort_raised_by_reflector(
        self, sandbox_manager, fake_service, make_output, fake_generator_cls
    ):
        class AbortingReflector:
            calls = 0

            async def reflect(self, candidate, test_results, request, cancel_token=None):
                self.calls += 1
                if self.calls == 2:
                    raise OperationAbortedError()
                return "try again"

        reflector = AbortingReflector()
        loop = SynthesisLoop(fake_generator_cls(["a", "b", "c"]), reflector, sandbox_manager)
        fake_service.default = make_output(False)

        result = await loop.run(DIGITS, SynthesisOptions(include_history=True))

        assert result.aborted
        assert result.iterations == 1
        assert result.pattern == "b"
        assert [h.candidate.pattern for h in result.history] == ["a"]
        assert result.sandbox_id == "sb-1"


class TestSandboxHandling:
    async def test_reuses_existing_sandbox(self, make_loop, sandbox_manager, fake_service, make_output):
        existing = await sandbox_manager.create("javascript")
        loop, _ = make_loop()
        fake_service.outputs.append(make_output(True))

        result = await loop.run(DIGITS, SynthesisOptions(existing_sandbox_id=existing.id))

        assert result.sandbox_id == existing.id
        assert len(fake_service.created) == 1

    async def test_recreated_sandbox_is_reported(self, make_loop, fake_service, make_output):
        loop, _ = make_loop()
        fake_service.outputs.extend([
            SandboxUnavailableError("Sandbox expired"),
            make_output(True),
        ])
        recreated = []

        result = await loop.run(DIGITS, SynthesisOptions(
            on_sandbox_recreated=recreated.append,
        ))

        assert result.success
        assert result.sandbox_id == "sb-2"
        assert [h.id for h in recreated] == ["sb-2"]


class TestStatusEvents:
    async def test_phases_in_order(self, make_loop, fake_service, make_output):
        loop, _ = make_loop(["a", "b"])
        fake_service.outputs.extend([make_output(False), make_output(True)])
        events = []

        await loop.run(DIGITS, SynthesisOptions(on_status=events.append, max_iterations=4))

        assert [(e.phase, e.iteration) for e in events] == [
            (StatusPhase.GENERATING, 1),
            (StatusPhase.EXECUTING, 1),
            (StatusPhase.EVALUATING, 1),
            (StatusPhase.GENERATING, 2),
            (StatusPhase.EXECUTING, 2),
        ]
        assert all(e.max_iterations == 4 for e in events)

    async def test_failing_callback_is_ignored(self, make_loop, fake_service, make_output):
        loop, _ = make_loop()
        fake_service.outputs.append(make_output(True))

        def broken(event):
            raise RuntimeError("listener crashed")

        result = await loop.run(DIGITS, SynthesisOptions(on_status=broken))
        assert result.success
