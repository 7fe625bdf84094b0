from __future__ import annotations

from typing import TYPE_CHECKING, Any

import dspy

from regexsmith_core.logging import get_logger

from regexsmith_agent._predict import require_str_fields, run_predictor
from regexsmith_agent.prompts import build_reflect_instructions, build_reflect_prompt
from regexsmith_agent.signatures import RegexReflection

if TYPE_CHECKING:
    from collections.abc import Callable

    from regexsmith_core.cancellation import CancellationToken
    from regexsmith_core.types import (
        RegexCandidate,
        RegexRequest,
        TestResult,
        TokenUsage,
    )

logger = get_logger("agent.reflector")


class Reflector:
    """Ask the generation service why a candidate failed its tests.

    Only ever called for failing verifications.  The diagnosis is free
    text, kept short by the instructions.
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
        self._predictors: dict[bool, dspy.Predict] = {}

    def _predictor(self, capture_mode: bool) -> Callable[..., Any]:
        if self._predict is not None:
            return self._predict
        if capture_mode not in self._predictors:
            self._predictors[capture_mode] = dspy.Predict(
                RegexReflection.with_instructions(
                    build_reflect_instructions(capture_mode)
                )
            )
        return self._predictors[capture_mode]

    async def reflect(
        self,
        candidate: RegexCandidate,
        test_results: TestResult,
        request: RegexRequest,
        cancel_token: CancellationToken | None = None,
    ) -> str:
        capture_mode = test_results.test_mode == "capture"
        prediction = await run_predictor(
            self._predictor(capture_mode),
            lm=self._lm,
            cancel_token=cancel_token,
            on_usage=self._on_usage,
            report=build_reflect_prompt(candidate, test_results, request),
        )
        diagnosis = require_str_fields(prediction, "diagnosis")["diagnosis"]
        logger.debug("Reflection: %s", diagnosis)
        return diagnosis.strip()
