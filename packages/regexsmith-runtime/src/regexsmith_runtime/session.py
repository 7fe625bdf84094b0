"""Per-conversation session lifecycle.

A :class:`SessionLifecycleManager` owns one :class:`SessionState`: the
cumulative token usage that gates new turns, and the id of the sandbox
reused across turns.  It also owns teardown scheduling:

* every turn and every new connection re-arms the inactivity timer;
* when the last connection closes a shorter grace timer replaces it;
* a timer that fires while connections are open re-arms the inactivity
  timer instead of tearing down.

Teardown deletes the retained sandbox and the persisted state.
"""
from __future__ import annotations

import asyncio
import math
import time
from typing import TYPE_CHECKING, Any

from regexsmith_core.cancellation import CancellationToken
from regexsmith_core.errors import SessionError, TokenBudgetExceededError
from regexsmith_core.logging import get_logger
from regexsmith_core.types import SessionState, TokenUsage

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from regexsmith_core.types import SandboxHandle

    from regexsmith_runtime.protocols.session_store import SessionStore
    from regexsmith_runtime.sandbox_manager import SandboxLifecycleManager

logger = get_logger("session")

TOKEN_LIMIT = 250_000
INACTIVITY_TIMEOUT_SECONDS = 60 * 60
DISCONNECT_GRACE_PERIOD_SECONDS = 5 * 60


def _as_count(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return int(value)


def normalize_token_usage(usage: Mapping[str, Any] | None) -> TokenUsage | None:
    """Read a usage mapping in either camelCase or snake_case.

    Accepts ``totalTokens``/``total_tokens`` and the prompt/completion
    equivalents.  Missing counts are zero; returns ``None`` when the
    mapping carries no usable count at all.
    """
    if not usage:
        return None

    def pick(camel: str, snake: str) -> int | None:
        value = _as_count(usage.get(camel))
        return value if value is not None else _as_count(usage.get(snake))

    total = pick("totalTokens", "total_tokens")
    prompt = pick("promptTokens", "prompt_tokens")
    completion = pick("completionTokens", "completion_tokens")
    if total is None and prompt is None and completion is None:
        return None
    return TokenUsage(
        total=total or 0, prompt=prompt or 0, completion=completion or 0
    )


class SessionLifecycleManager:
    """Owns one session's state, turn gating, and teardown timers."""

    def __init__(
        self,
        state: SessionState,
        *,
        store: SessionStore,
        sandbox_manager: SandboxLifecycleManager | None = None,
        token_budget: int = TOKEN_LIMIT,
        inactivity_timeout: float = INACTIVITY_TIMEOUT_SECONDS,
        grace_period: float = DISCONNECT_GRACE_PERIOD_SECONDS,
        on_teardown: Callable[[str], Awaitable[None] | None] | None = None,
    ) -> None:
        self._state = state
        self._store = store
        self._sandbox_manager = sandbox_manager
        self._token_budget = token_budget
        self._inactivity_timeout = inactivity_timeout
        self._grace_period = grace_period
        self._on_teardown = on_teardown

        self._connections = 0
        self._cleanup_handle: asyncio.TimerHandle | None = None
        self._cleanup_task: asyncio.Task[None] | None = None
        self._turn_token: CancellationToken | None = None
        self._torn_down = False

    @classmethod
    async def open(
        cls,
        session_id: str,
        *,
        store: SessionStore,
        **kwargs: Any,
    ) -> SessionLifecycleManager:
        """Restore *session_id* from *store*, or start it fresh."""
        state = await store.load(session_id)
        if state is None:
            state = SessionState(session_id=session_id)
            await store.save(state)
            logger.info("Session %s started", session_id)
        else:
            logger.info(
                "Session %s restored (%d tokens used)",
                session_id, state.token_usage.total,
            )
        return cls(state, store=store, **kwargs)

    # ── Properties ──────────────────────────────────────────────────

    @property
    def session_id(self) -> str:
        return self._state.session_id

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def token_budget(self) -> int:
        return self._token_budget

    @property
    def connections(self) -> int:
        return self._connections

    @property
    def turn_in_progress(self) -> bool:
        return self._turn_token is not None

    @property
    def cleanup_pending(self) -> bool:
        return self._cleanup_handle is not None

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    @property
    def budget_exhausted(self) -> bool:
        return self._state.token_usage.total >= self._token_budget

    # ── Connections ─────────────────────────────────────────────────

    def connect(self) -> None:
        """A client connected: cancel pending teardown, re-arm inactivity."""
        self._ensure_open()
        self._connections += 1
        self._schedule_cleanup(self._inactivity_timeout)

    def disconnect(self) -> None:
        """A client left; the last one out starts the grace period."""
        if self._connections == 0:
            return
        self._connections -= 1
        if self._connections == 0 and not self._torn_down:
            logger.info(
                "Session %s: all connections closed, starting grace period",
                self.session_id,
            )
            self._schedule_cleanup(self._grace_period)

    # ── Turns ───────────────────────────────────────────────────────

    def begin_turn(self) -> CancellationToken:
        """Admit a new turn and return its cancellation token.

        Raises :class:`TokenBudgetExceededError` once cumulative usage
        reaches the budget, and :class:`SessionError` while another turn
        is still running.
        """
        self._ensure_open()
        used = self._state.token_usage.total
        if used >= self._token_budget:
            raise TokenBudgetExceededError(used, self._token_budget)
        if self._turn_token is not None:
            raise SessionError(
                f"Session {self.session_id} already has a turn in progress"
            )

        self._schedule_cleanup(self._inactivity_timeout)
        self._turn_token = CancellationToken()
        return self._turn_token

    async def complete_turn(
        self,
        usage: TokenUsage | Mapping[str, Any] | None = None,
        *,
        sandbox_id: str | None = None,
    ) -> SessionState:
        """Account the turn's token usage and persist the session state."""
        normalized = (
            usage if isinstance(usage, TokenUsage)
            else normalize_token_usage(usage)
        )
        if normalized is not None:
            self._state.token_usage = self._state.token_usage + normalized
            self._state.last_usage = normalized
        if sandbox_id:
            self._state.sandbox_id = sandbox_id
        self._turn_token = None

        await self._store.save(self._state)
        logger.debug(
            "Session %s turn complete: %d/%d tokens",
            self.session_id, self._state.token_usage.total, self._token_budget,
        )
        return self._state

    def abort_turn(self) -> bool:
        """Fire the running turn's cancellation token, if any."""
        if self._turn_token is None:
            return False
        logger.info("Session %s: turn aborted", self.session_id)
        self._turn_token.cancel()
        return True

    def record_sandbox(self, handle: SandboxHandle) -> None:
        """Replacement callback: remember the sandbox now in use."""
        if handle.id != self._state.sandbox_id:
            logger.info(
                "Session %s now uses sandbox %s", self.session_id, handle.id
            )
        self._state.sandbox_id = handle.id

    async def reset(self) -> SessionState:
        """Clear token accounting so the session can generate again."""
        self._ensure_open()
        self.abort_turn()
        self._turn_token = None
        self._state.token_usage = TokenUsage()
        self._state.last_usage = None
        await self._store.save(self._state)
        logger.info("Session %s reset", self.session_id)
        return self._state

    # ── Teardown ────────────────────────────────────────────────────

    async def teardown(self) -> None:
        """Delete all session state and the retained sandbox."""
        if self._torn_down:
            return
        self._torn_down = True
        self._cancel_cleanup()
        self.abort_turn()

        sandbox_id = self._state.sandbox_id
        if sandbox_id and self._sandbox_manager is not None:
            try:
                await self._sandbox_manager.delete(sandbox_id)
            except Exception:
                logger.warning(
                    "Session %s: failed to delete sandbox %s",
                    self.session_id, sandbox_id, exc_info=True,
                )

        await self._store.delete(self.session_id)
        logger.info("Session %s torn down", self.session_id)

        if self._on_teardown is not None:
            result = self._on_teardown(self.session_id)
            if asyncio.iscoroutine(result):
                await result

    async def close(self) -> None:
        """Stop timers without deleting anything (process shutdown)."""
        self._cancel_cleanup()
        if self._cleanup_task is not None and not self._cleanup_task.done():
            self._cleanup_task.cancel()

    # ── Internal helpers ────────────────────────────────────────────

    def _ensure_open(self) -> None:
        if self._torn_down:
            raise SessionError(f"Session {self.session_id} was torn down")

    def _schedule_cleanup(self, delay: float) -> None:
        self._cancel_cleanup()
        loop = asyncio.get_running_loop()
        self._cleanup_handle = loop.call_later(delay, self._on_cleanup_timer)
        logger.debug(
            "Session %s: cleanup scheduled in %.0fs at %.0f",
            self.session_id, delay, time.time() + delay,
        )

    def _cancel_cleanup(self) -> None:
        if self._cleanup_handle is not None:
            self._cleanup_handle.cancel()
            self._cleanup_handle = None

    def _on_cleanup_timer(self) -> None:
        self._cleanup_handle = None
        self._cleanup_task = asyncio.get_running_loop().create_task(
            self._execute_cleanup()
        )

    async def _execute_cleanup(self) -> None:
        if self._connections > 0:
            logger.info(
                "Session %s cleanup skipped: %d active connection(s)",
                self.session_id, self._connections,
            )
            self._schedule_cleanup(self._inactivity_timeout)
            return
        logger.info("Session %s idle, tearing down", self.session_id)
        await self.teardown()
