from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import dspy
from dspy.utils.exceptions import AdapterParseError

from regexsmith_core.cancellation import race
from regexsmith_core.errors import (
    GenerationError,
    GenerationSchemaError,
    OperationAbortedError,
)
from regexsmith_core.logging import get_logger
from regexsmith_core.types import TokenUsage

if TYPE_CHECKING:
    from collections.abc import Callable

    from regexsmith_core.cancellation import CancellationToken

logger = get_logger("agent.predict")


def _last_usage(lm: Any) -> TokenUsage | None:
    """Token usage of the most recent call on *lm*, if it recorded one."""
    history = getattr(lm, "history", None)
    if not history:
        return None
    last = history[-1]
    usage: Any = {}
    if isinstance(last, dict):
        usage = last.get("usage") or {}
        if not usage:
            resp = last.get("response")
            if resp is not None and hasattr(resp, "usage"):
                usage = resp.usage or {}
    if not isinstance(usage, dict):
        usage = {
            "prompt_tokens": getattr(usage, "prompt_tokens", 0),
            "completion_tokens": getattr(usage, "completion_tokens", 0),
            "total_tokens": getattr(usage, "total_tokens", 0),
        }
    prompt = int(usage.get("prompt_tokens") or 0)
    completion = int(usage.get("completion_tokens") or 0)
    total = int(usage.get("total_tokens") or prompt + completion)
    if not total:
        return None
    return TokenUsage(total=total, prompt=prompt, completion=completion)


async def run_predictor(
    predictor: Callable[..., Any],
    *,
    lm: Any = None,
    cancel_token: CancellationToken | None = None,
    on_usage: Callable[[TokenUsage], None] | None = None,
    **inputs: Any,
) -> Any:
    """Call a DSPy predictor in a worker thread, raced against *cancel_token*.

    Never retries.  Output the adapter cannot parse into the signature's
    fields raises :class:`GenerationSchemaError`; any other failure of the
    generation service raises :class:`GenerationError`.
    """
    if cancel_token is not None:
        cancel_token.raise_if_cancelled()

    def _call() -> tuple[Any, TokenUsage | None]:
        if lm is not None:
            with dspy.context(lm=lm):
                prediction = predictor(**inputs)
        else:
            prediction = predictor(**inputs)
        try:
            usage = _last_usage(lm if lm is not None else dspy.settings.lm)
        except Exception:
            logger.debug("Could not read token usage", exc_info=True)
            usage = None
        return prediction, usage

    try:
        prediction, usage = await race(asyncio.to_thread(_call), cancel_token)
    except AdapterParseError as exc:
        raise GenerationSchemaError(
            f"Generation output did not match the expected fields: {exc}"
        ) from exc
    except (GenerationError, OperationAbortedError, asyncio.CancelledError):
        raise
    except Exception as exc:
        raise GenerationError(f"Generation service failed: {exc}") from exc

    if usage is not None and on_usage is not None:
        on_usage(usage)
    return prediction


def require_str_fields(prediction: Any, *names: str) -> dict[str, str]:
    """Pull string output fields off *prediction* or raise a schema error."""
    values: dict[str, str] = {}
    for name in names:
        value = getattr(prediction, name, None)
        if not isinstance(value, str):
            raise GenerationSchemaError(
                f"Generation output field {name!r} missing or not a string "
                f"(got {type(value).__name__})"
            )
        values[name] = value
    return values
