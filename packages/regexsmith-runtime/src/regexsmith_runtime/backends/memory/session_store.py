from __future__ import annotations

import dataclasses

from regexsmith_core.types import SessionState


class InProcessSessionStore:
    """Session state kept in a dict; lost on restart."""

    def __init__(self) -> None:
        self._states: dict[str, SessionState] = {}

    async def load(self, session_id: str) -> SessionState | None:
        state = self._states.get(session_id)
        # Hand out copies so callers cannot mutate stored state in place.
        return dataclasses.replace(state) if state is not None else None

    async def save(self, state: SessionState) -> None:
        self._states[state.session_id] = dataclasses.replace(state)

    async def delete(self, session_id: str) -> None:
        self._states.pop(session_id, None)

    async def close(self) -> None:
        self._states.clear()
