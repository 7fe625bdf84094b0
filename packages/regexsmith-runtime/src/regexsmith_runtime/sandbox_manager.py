"""Sandbox lifecycle: acquire, reuse, execute, and transparently recreate.

The manager sits between the verification code and a
:class:`~regexsmith_runtime.protocols.sandbox.SandboxService`.  It never
looks at script output; it only guarantees that the script ran in a
network-disabled sandbox, that cancellation is observed promptly, and
that a sandbox which vanished underneath a session is replaced at most
once per execution.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from regexsmith_core.cancellation import race
from regexsmith_core.errors import (
    OperationAbortedError,
    SandboxTimeoutError,
    SandboxUnavailableError,
)
from regexsmith_core.logging import get_logger
from regexsmith_core.types import ExecutionResponse, SandboxSpec

if TYPE_CHECKING:
    from collections.abc import Callable

    from regexsmith_core.cancellation import CancellationToken
    from regexsmith_core.types import Runtime, SandboxHandle

    from regexsmith_runtime.protocols.sandbox import SandboxService

logger = get_logger("sandbox.manager")

DEFAULT_EXECUTION_TIMEOUT = 30

# Lowercased message fragments that mean "the sandbox is gone".
_UNAVAILABLE_MARKERS = ("unavailable", "not found", "expired", "does not exist")


def is_sandbox_unavailable(error: BaseException) -> bool:
    """Best-effort classification of an execution failure as "sandbox gone".

    Typed :class:`SandboxUnavailableError` always qualifies.  For errors
    raised by third-party clients the message is matched against a short
    list of fragments, or against the pair "sandbox" + "error".  This is
    a heuristic: a backend that words its errors differently will not be
    recognised and the error propagates instead of being retried.
    """
    if isinstance(error, SandboxUnavailableError):
        return True
    if isinstance(error, (OperationAbortedError, SandboxTimeoutError)):
        return False
    message = str(error).lower()
    if any(marker in message for marker in _UNAVAILABLE_MARKERS):
        return True
    return "sandbox" in message and "error" in message


@dataclass(slots=True)
class SandboxRef:
    """Mutable, explicitly owned reference to the current sandbox.

    Whoever holds the ref observes replacements made by the manager.
    """
    handle: SandboxHandle | None = None

    @property
    def id(self) -> str:
        return self.handle.id if self.handle is not None else ""

    def replace(self, handle: SandboxHandle) -> None:
        self.handle = handle


class SandboxLifecycleManager:
    """Create, reuse and recreate sandboxes on top of a sandbox service."""

    def __init__(
        self,
        service: SandboxService,
        *,
        auto_stop_minutes: int = 2,
    ) -> None:
        self._service = service
        self._auto_stop_minutes = auto_stop_minutes

    @property
    def service(self) -> SandboxService:
        return self._service

    async def create(self, runtime: Runtime) -> SandboxHandle:
        """Create a fresh, ephemeral sandbox with all egress blocked."""
        handle = await self._service.create(SandboxSpec(
            runtime=runtime,
            network_block_all=True,
            ephemeral=True,
            auto_stop_minutes=self._auto_stop_minutes,
        ))
        logger.info(
            "Sandbox %s created (%s, %s backend)",
            handle.id, runtime, self._service.name,
        )
        return handle

    async def get_or_create(
        self, runtime: Runtime, existing_id: str | None = None
    ) -> SandboxHandle:
        """Reuse *existing_id* when it is alive and network-isolated."""
        if existing_id:
            try:
                handle = await self._service.get(existing_id)
            except Exception as exc:
                logger.info(
                    "Existing sandbox %s not found or expired (%s), "
                    "creating new one",
                    existing_id, exc,
                )
            else:
                if not handle.network_blocked:
                    logger.warning(
                        "Existing sandbox %s does not block network "
                        "access; creating a new sandbox",
                        existing_id,
                    )
                elif handle.runtime != runtime:
                    logger.info(
                        "Existing sandbox %s runs %s, need %s; "
                        "creating a new sandbox",
                        existing_id, handle.runtime, runtime,
                    )
                else:
                    logger.debug("Reusing existing sandbox %s", existing_id)
                    return handle

        return await self.create(runtime)

    async def execute(
        self,
        sandbox: SandboxHandle,
        script: str,
        *,
        timeout: int = DEFAULT_EXECUTION_TIMEOUT,
        cancel_token: CancellationToken | None = None,
        runtime: Runtime | None = None,
        on_recreated: Callable[[SandboxHandle], None] | None = None,
    ) -> ExecutionResponse:
        """Run *script* in *sandbox*, racing the run against *cancel_token*.

        When the run fails because the sandbox is unavailable and a
        *runtime* hint is given, exactly one replacement sandbox is
        created, *on_recreated* is notified, and the script is retried
        once.  A failure of the retry propagates.
        """
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        try:
            result = await race(
                self._service.run(sandbox, script, timeout), cancel_token
            )
            logger.debug(
                "Sandbox %s run finished with exit code %d",
                sandbox.id, result.exit_code,
            )
            return ExecutionResponse(
                exit_code=result.exit_code,
                stdout=result.stdout,
                artifacts=result.artifacts,
            )
        except OperationAbortedError:
            raise
        except Exception as exc:
            if not (is_sandbox_unavailable(exc) and runtime is not None):
                raise
            logger.warning(
                "Sandbox %s unavailable (%s); creating new %s sandbox "
                "and retrying",
                sandbox.id, exc, runtime,
            )

        replacement = await race(self.create(runtime), cancel_token)
        if on_recreated is not None:
            on_recreated(replacement)

        result = await race(
            self._service.run(replacement, script, timeout), cancel_token
        )
        return ExecutionResponse(
            exit_code=result.exit_code,
            stdout=result.stdout,
            artifacts=result.artifacts,
            recreated_sandbox=replacement,
        )

    async def delete(self, sandbox: SandboxHandle | str) -> None:
        """Delete a sandbox by handle or id.  Unknown sandboxes are ignored."""
        if isinstance(sandbox, str):
            try:
                sandbox = await self._service.get(sandbox)
            except SandboxUnavailableError:
                logger.debug("Sandbox %s already gone", sandbox)
                return
        await self._service.delete(sandbox)
        logger.info("Sandbox %s deleted", sandbox.id)
