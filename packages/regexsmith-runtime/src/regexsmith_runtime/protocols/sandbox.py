from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from regexsmith_core.types import SandboxHandle, SandboxRunResult, SandboxSpec


@runtime_checkable
class SandboxService(Protocol):
    """Backend that owns isolated, network-disabled execution environments.

    ``get`` and ``run`` raise :class:`~regexsmith_core.errors.SandboxUnavailableError`
    (or an error whose message says the sandbox is gone) when the sandbox
    has expired or was deleted, and
    :class:`~regexsmith_core.errors.SandboxTimeoutError` when a run
    exceeds its timeout.
    """

    name: str

    async def create(self, spec: SandboxSpec) -> SandboxHandle: ...
    async def get(self, sandbox_id: str) -> SandboxHandle: ...
    async def delete(self, handle: SandboxHandle) -> None: ...
    async def run(
        self, handle: SandboxHandle, script: str, timeout_seconds: int
    ) -> SandboxRunResult: ...
