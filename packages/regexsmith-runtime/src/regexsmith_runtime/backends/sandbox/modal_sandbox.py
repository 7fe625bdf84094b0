from __future__ import annotations

import asyncio
import time
from typing import Any

from regexsmith_core.errors import (
    SandboxCreationError,
    SandboxTimeoutError,
    SandboxUnavailableError,
)
from regexsmith_core.logging import get_logger
from regexsmith_core.types import SandboxHandle, SandboxRunResult, SandboxSpec

from regexsmith_runtime.backends.sandbox._output import (
    INTERPRETERS,
    build_run_result,
    clamp_timeout,
)

logger = get_logger("sandbox.modal")

_GONE_MARKERS = ("terminated", "finished", "not found", "permission_denied")
_TAG_RUNTIME = "regexsmith-runtime"
_TAG_NETWORK = "regexsmith-network-block-all"


def _modal_available() -> bool:
    """Check whether the ``modal`` package is importable."""
    try:
        import modal  # noqa: F401
        return True
    except ImportError:
        return False


def _is_gone(exc: Exception) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _GONE_MARKERS)


class ModalSandboxService:
    """Run scripts inside Modal cloud sandboxes.

    Requires the ``modal`` package and valid Modal authentication
    (``modal token set`` or ``MODAL_TOKEN_ID`` / ``MODAL_TOKEN_SECRET``).
    Sandboxes are created with ``block_network=True`` and an
    ``idle_timeout`` so Modal stops them even if teardown never runs.
    The runtime and network policy are recorded as sandbox tags and read
    back when a session reattaches by id.
    """

    name = "modal"

    def __init__(
        self,
        *,
        app_name: str = "regexsmith-sandbox",
        memory_limit_mb: int = 256,
    ) -> None:
        self._app_name = app_name
        self._memory_limit_mb = memory_limit_mb
        self._app: Any = None
        # sandbox id -> modal Sandbox object
        self._sandboxes: dict[str, Any] = {}

    # ── Protocol methods ────────────────────────────────────────────

    async def create(self, spec: SandboxSpec) -> SandboxHandle:
        if not _modal_available():
            raise SandboxCreationError(
                "The 'modal' package is not installed. Install it with "
                "'pip install modal' to use the modal sandbox backend, or "
                "switch to the local backend."
            )

        try:
            sb = await asyncio.to_thread(self._create_modal_sandbox, spec)
        except Exception as exc:
            raise SandboxCreationError(
                f"Failed to create Modal sandbox: {exc}"
            ) from exc

        handle = SandboxHandle(
            id=sb.object_id,
            runtime=spec.runtime,
            backend=self.name,
            network_blocked=spec.network_block_all,
        )
        self._sandboxes[handle.id] = sb
        logger.info("Created modal %s sandbox %s", spec.runtime, handle.id)
        return handle

    async def get(self, sandbox_id: str) -> SandboxHandle:
        import modal

        try:
            sb = await asyncio.to_thread(modal.Sandbox.from_id, sandbox_id)
            tags = await asyncio.to_thread(sb.get_tags)
            exit_code = await asyncio.to_thread(sb.poll)
        except Exception as exc:
            raise SandboxUnavailableError(
                f"Sandbox {sandbox_id} not found: {exc}"
            ) from exc

        if exit_code is not None:
            raise SandboxUnavailableError(f"Sandbox {sandbox_id} expired")

        self._sandboxes[sandbox_id] = sb
        runtime = tags.get(_TAG_RUNTIME, "python")
        return SandboxHandle(
            id=sandbox_id,
            runtime="javascript" if runtime == "javascript" else "python",
            backend=self.name,
            network_blocked=tags.get(_TAG_NETWORK) == "true",
        )

    async def delete(self, handle: SandboxHandle) -> None:
        sb = self._sandboxes.pop(handle.id, None)
        if sb is None:
            return
        try:
            await asyncio.to_thread(sb.terminate)
        except Exception:
            logger.debug("Failed to terminate modal sandbox", exc_info=True)
            return
        logger.info("Deleted modal sandbox %s", handle.id)

    async def run(
        self, handle: SandboxHandle, script: str, timeout_seconds: int
    ) -> SandboxRunResult:
        sb = self._sandboxes.get(handle.id)
        if sb is None:
            raise SandboxUnavailableError(f"Sandbox {handle.id} not found")

        timeout = clamp_timeout(timeout_seconds)
        flag = "-c" if handle.runtime == "python" else "-e"

        def _exec() -> tuple[int, bytes, bytes]:
            process = sb.exec(
                *INTERPRETERS[handle.runtime], flag, script, timeout=timeout,
            )
            process.wait()
            return (
                process.returncode,
                process.stdout.read().encode("utf-8", errors="replace"),
                process.stderr.read().encode("utf-8", errors="replace"),
            )

        t0 = time.monotonic()
        try:
            exit_code, stdout_bytes, stderr_bytes = await asyncio.wait_for(
                asyncio.to_thread(_exec), timeout=timeout + 5,
            )
        except TimeoutError:
            raise SandboxTimeoutError(
                f"Execution timed out after {timeout}s"
            ) from None
        except Exception as exc:
            if _is_gone(exc):
                self._sandboxes.pop(handle.id, None)
                raise SandboxUnavailableError(
                    f"Sandbox {handle.id} unavailable: {exc}"
                ) from exc
            raise

        return build_run_result(
            exit_code, stdout_bytes, stderr_bytes,
            (time.monotonic() - t0) * 1000,
        )

    # ── Modal helpers ───────────────────────────────────────────────

    def _create_modal_sandbox(self, spec: SandboxSpec) -> Any:
        import modal

        if self._app is None:
            self._app = modal.App.lookup(self._app_name, create_if_missing=True)

        if spec.runtime == "javascript":
            image = modal.Image.from_registry("node:22-slim")
        else:
            image = modal.Image.debian_slim(python_version="3.12")

        sb = modal.Sandbox.create(
            "sleep", "infinity",
            app=self._app,
            image=image,
            block_network=spec.network_block_all,
            idle_timeout=spec.auto_stop_minutes * 60,
            memory=self._memory_limit_mb,
        )
        sb.set_tags({
            _TAG_RUNTIME: spec.runtime,
            _TAG_NETWORK: str(spec.network_block_all).lower(),
        })
        return sb
