from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from regexsmith_core.config import RegexsmithConfig

    from regexsmith_runtime.protocols.session_store import SessionStore
    from regexsmith_runtime.sandbox_manager import SandboxLifecycleManager
    from regexsmith_runtime.session import SessionLifecycleManager


@dataclass(slots=True)
class RuntimeContext:
    """Everything a turn handler needs, created once at startup.

    Built by :class:`~regexsmith_runtime.builder.RuntimeBuilder`.
    """
    sandbox_manager: SandboxLifecycleManager
    session_store: SessionStore
    config: RegexsmithConfig

    async def open_session(
        self, session_id: str, **kwargs: Any
    ) -> SessionLifecycleManager:
        """Open *session_id* with limits taken from the session config."""
        from regexsmith_runtime.session import SessionLifecycleManager

        cfg = self.config.session
        options: dict[str, Any] = {
            "sandbox_manager": self.sandbox_manager,
            "token_budget": cfg.token_budget,
            "inactivity_timeout": cfg.inactivity_timeout_seconds,
            "grace_period": cfg.grace_period_seconds,
        }
        options.update(kwargs)
        return await SessionLifecycleManager.open(
            session_id, store=self.session_store, **options
        )

    async def close(self) -> None:
        await self.session_store.close()
