from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from regexsmith_core.types import SessionState


@runtime_checkable
class SessionStore(Protocol):
    """Persistence for the small per-conversation state record."""

    async def load(self, session_id: str) -> SessionState | None: ...
    async def save(self, state: SessionState) -> None: ...
    async def delete(self, session_id: str) -> None: ...
    async def close(self) -> None: ...
