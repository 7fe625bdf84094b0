from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from regexsmith_core.types import IterationResult

MAX_FULL_HISTORY_SIZE = 3


def compact_history(
    history: Sequence[IterationResult],
    keep: int = MAX_FULL_HISTORY_SIZE,
) -> list[IterationResult]:
    """Bound the history shown to the generator to the last *keep* entries.

    Older iterations are dropped outright, not summarised.  Pure and
    idempotent; call it fresh on every iteration.
    """
    if keep < 1:
        raise ValueError("keep must be >= 1")
    if len(history) <= keep:
        return list(history)
    return list(history[-keep:])
