from __future__ import annotations

from typing import TYPE_CHECKING, Any

import dspy

from regexsmith_core.errors import GenerationSchemaError
from regexsmith_core.logging import get_logger
from regexsmith_core.types import CodeCandidate, RegexCandidate

from regexsmith_agent._predict import require_str_fields, run_predictor
from regexsmith_agent.prompts import (
    build_code_instructions,
    build_code_prompt,
    build_generate_instructions,
    build_generate_prompt,
)
from regexsmith_agent.signatures import CodeGeneration, RegexGeneration

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from regexsmith_core.cancellation import CancellationToken
    from regexsmith_core.types import (
        CodeRequest,
        IterationResult,
        RegexRequest,
        Runtime,
        TokenUsage,
    )

logger = get_logger("agent.generator")


def _strip_fences(code: str) -> str:
    """Remove a surrounding markdown code fence, if the model added one."""
    text = code.strip()
    if not text.startswith("```"):
        return text
    lines = text.splitlines()[1:]
    if lines and lines[-1].strip().startswith("```"):
        lines = lines[:-1]
    return "\n".join(lines).strip()


class CandidateGenerator:
    """Turn a request plus prior attempts into one regex candidate.

    Stateless apart from a cache of predictors keyed by instructions.
    *predict* replaces the DSPy predictor and is called with
    ``task=<prompt>``; it must return an object with ``reasoning``,
    ``pattern`` and ``flags`` attributes.
    """

    def __init__(
        self,
        *,
        lm: Any = None,
        predict: Callable[..., Any] | None = None,
        on_usage: Callable[[TokenUsage], None] | None = None,
    ) -> None:
        self._lm = lm
        self._predict = predict
        self._on_usage = on_usage
        self._predictors: dict[str, dspy.Predict] = {}

    def _predictor(self, instructions: str) -> Callable[..., Any]:
        if self._predict is not None:
            return self._predict
        if instructions not in self._predictors:
            self._predictors[instructions] = dspy.Predict(
                RegexGeneration.with_instructions(instructions)
            )
        return self._predictors[instructions]

    async def generate(
        self,
        request: RegexRequest,
        history: Sequence[IterationResult],
        runtime: Runtime,
        cancel_token: CancellationToken | None = None,
    ) -> RegexCandidate:
        instructions = build_generate_instructions(
            runtime, request.test_mode == "capture"
        )
        prompt = build_generate_prompt(request, history, runtime)

        prediction = await run_predictor(
            self._predictor(instructions),
            lm=self._lm,
            cancel_token=cancel_token,
            on_usage=self._on_usage,
            task=prompt,
        )
        fields = require_str_fields(prediction, "reasoning", "pattern", "flags")
        if not fields["pattern"]:
            raise GenerationSchemaError("Generation output has an empty pattern")

        candidate = RegexCandidate(
            pattern=fields["pattern"],
            flags=fields["flags"].strip(),
            reasoning=fields["reasoning"],
        )
        logger.debug(
            "Generated candidate /%s/%s", candidate.pattern, candidate.flags
        )
        return candidate


class CodeGenerator:
    """Generate a free-form code candidate for the code fallback path."""

    def __init__(
        self,
        *,
        lm: Any = None,
        predict: Callable[..., Any] | None = None,
        on_usage: Callable[[TokenUsage], None] | None = None,
    ) -> None:
        self._lm = lm
        self._predict = predict
        self._on_usage = on_usage
        self._predictors: dict[str, dspy.Predict] = {}

    def _predictor(self, runtime: Runtime) -> Callable[..., Any]:
        if self._predict is not None:
            return self._predict
        if runtime not in self._predictors:
            self._predictors[runtime] = dspy.Predict(
                CodeGeneration.with_instructions(build_code_instructions(runtime))
            )
        return self._predictors[runtime]

    async def generate(
        self,
        request: CodeRequest,
        cancel_token: CancellationToken | None = None,
    ) -> CodeCandidate:
        prediction = await run_predictor(
            self._predictor(request.runtime),
            lm=self._lm,
            cancel_token=cancel_token,
            on_usage=self._on_usage,
            task=build_code_prompt(request),
        )
        fields = require_str_fields(prediction, "reasoning", "code")
        code = _strip_fences(fields["code"])
        if not code:
            raise GenerationSchemaError("Generation output has empty code")
        return CodeCandidate(reasoning=fields["reasoning"], code=code)
