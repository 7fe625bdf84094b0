from __future__ import annotations

import asyncio
import threading
from types import SimpleNamespace

import pytest
from regexsmith_agent.generator import CandidateGenerator, CodeGenerator
from regexsmith_agent.reflector import Reflector
from regexsmith_core.cancellation import CancellationToken
from regexsmith_core.errors import (
    GenerationError,
    GenerationSchemaError,
    OperationAbortedError,
)
from regexsmith_core.types import (
    CodeRequest,
    CodeTest,
    MatchRequest,
    RegexCandidate,
    TestResult,
)

DIGITS = MatchRequest(
    description="digits", should_match=("123",), should_not_match=("abc",)
)


class TestCandidateGenerator:
    async def test_returns_candidate(self):
        prompts = []

        def predict(**inputs):
            prompts.append(inputs["task"])
            return SimpleNamespace(reasoning="digits", pattern=r"^\d+$", flags=" g ")

        candidate = await CandidateGenerator(predict=predict).generate(
            DIGITS, [], "javascript"
        )
        assert candidate == RegexCandidate(pattern=r"^\d+$", flags="g", reasoning="digits")
        assert "digits" in prompts[0]

    async def test_missing_field_is_schema_error(self):
        generator = CandidateGenerator(
            predict=lambda **_: SimpleNamespace(reasoning="r", pattern=None, flags="")
        )
        with pytest.raises(GenerationSchemaError):
            await generator.generate(DIGITS, [], "python")

    async def test_empty_pattern_is_schema_error(self):
        generator = CandidateGenerator(
            predict=lambda **_: SimpleNamespace(reasoning="r", pattern="", flags="")
        )
        with pytest.raises(GenerationSchemaError):
            await generator.generate(DIGITS, [], "python")

    async def test_service_failure(self):
        def predict(**_):
            raise ConnectionError("provider down")

        with pytest.raises(GenerationError, match="provider down"):
            await CandidateGenerator(predict=predict).generate(DIGITS, [], "python")

    async def test_abort_does_not_wait_for_worker(self):
        release = threading.Event()
        token = CancellationToken()

        def predict(**_):
            release.wait(timeout=5)
            return SimpleNamespace(reasoning="r", pattern="a", flags="")

        generator = CandidateGenerator(predict=predict)
        asyncio.get_running_loop().call_later(0.01, token.cancel)
        try:
            with pytest.raises(OperationAbortedError):
                await generator.generate(DIGITS, [], "python", token)
        finally:
            release.set()


class TestReflector:
    async def test_diagnosis(self):
        reflector = Reflector(
            predict=lambda **inputs: SimpleNamespace(diagnosis="  too greedy  ")
        )
        diagnosis = await reflector.reflect(
            RegexCandidate(pattern=".*"), TestResult.failure("match", "x"), DIGITS
        )
        assert diagnosis == "too greedy"


class TestCodeGenerator:
    async def test_strips_fences(self):
        generator = CodeGenerator(predict=lambda **_: SimpleNamespace(
            reasoning="r",
            code="```python\ndef process_input(s):\n    return s\n```",
        ))
        request = CodeRequest(description="id", tests=(CodeTest("a", "a"),))
        candidate = await generator.generate(request)
        assert candidate.code == "def process_input(s):\n    return s"
