from __future__ import annotations

import asyncio
import os
import platform
import shutil
import sys
import tempfile
import time
import uuid
from dataclasses import dataclass, field

from regexsmith_core.errors import (
    SandboxCreationError,
    SandboxTimeoutError,
    SandboxUnavailableError,
)
from regexsmith_core.logging import get_logger
from regexsmith_core.types import SandboxHandle, SandboxRunResult, SandboxSpec

from regexsmith_runtime.backends.sandbox._output import (
    SCRIPT_SUFFIX,
    build_run_result,
    clamp_timeout,
)

logger = get_logger("sandbox.local")


def _build_resource_limit_code(memory_limit_mb: int, cpu_seconds: int) -> str:
    """Return Python source that sets resource limits (Unix only)."""
    if platform.system() == "Windows":
        return ""
    mem_bytes = memory_limit_mb * 1024 * 1024
    return (
        "import resource as __rl\n"
        "try:\n"
        f"    __rl.setrlimit(__rl.RLIMIT_AS, ({mem_bytes}, {mem_bytes}))\n"
        "except (ValueError, OSError):\n"
        "    pass\n"
        "try:\n"
        f"    __rl.setrlimit(__rl.RLIMIT_CPU, ({cpu_seconds}, {cpu_seconds}))\n"
        "except (ValueError, OSError):\n"
        "    pass\n"
        "del __rl\n"
    )


def _interpreter(runtime: str) -> list[str] | None:
    if runtime == "python":
        return [sys.executable]
    node = shutil.which("node")
    return [node] if node else None


@dataclass(slots=True)
class _LocalSandbox:
    handle: SandboxHandle
    spec: SandboxSpec
    work_dir: str
    timer: asyncio.TimerHandle | None = field(default=None)


class LocalSandboxService:
    """Run scripts in throwaway subprocesses on the host.

    Each sandbox is a private temporary directory.  Network isolation is
    best-effort: proxies are pointed at an unroutable address.  Idle
    sandboxes are stopped after ``auto_stop_minutes`` so a forgotten
    handle behaves like an expired remote sandbox.
    """

    name = "local"

    def __init__(self, *, memory_limit_mb: int = 256) -> None:
        self._memory_limit_mb = memory_limit_mb
        self._sandboxes: dict[str, _LocalSandbox] = {}

    # ── Protocol methods ────────────────────────────────────────────

    async def create(self, spec: SandboxSpec) -> SandboxHandle:
        if _interpreter(spec.runtime) is None:
            raise SandboxCreationError(
                f"No interpreter found for runtime {spec.runtime!r}; "
                "install Node.js or use the python runtime"
            )

        work_dir = tempfile.mkdtemp(prefix="regexsmith_sandbox_")
        handle = SandboxHandle(
            id=uuid.uuid4().hex,
            runtime=spec.runtime,
            backend=self.name,
            network_blocked=spec.network_block_all,
        )
        entry = _LocalSandbox(handle=handle, spec=spec, work_dir=work_dir)
        self._sandboxes[handle.id] = entry
        self._arm_auto_stop(entry)
        logger.info(
            "Created local %s sandbox %s at %s",
            spec.runtime, handle.id[:8], work_dir,
        )
        return handle

    async def get(self, sandbox_id: str) -> SandboxHandle:
        entry = self._sandboxes.get(sandbox_id)
        if entry is None:
            raise SandboxUnavailableError(f"Sandbox {sandbox_id} not found")
        return entry.handle

    async def delete(self, handle: SandboxHandle) -> None:
        entry = self._sandboxes.pop(handle.id, None)
        if entry is None:
            return
        if entry.timer is not None:
            entry.timer.cancel()
        shutil.rmtree(entry.work_dir, ignore_errors=True)
        logger.info("Deleted local sandbox %s", handle.id[:8])

    async def run(
        self, handle: SandboxHandle, script: str, timeout_seconds: int
    ) -> SandboxRunResult:
        entry = self._sandboxes.get(handle.id)
        if entry is None:
            raise SandboxUnavailableError(f"Sandbox {handle.id} not found")
        self._arm_auto_stop(entry)

        timeout = clamp_timeout(timeout_seconds)
        runtime = entry.spec.runtime
        command = _interpreter(runtime)
        if command is None:
            raise SandboxUnavailableError(
                f"Sandbox {handle.id} runtime {runtime} is unavailable"
            )

        if runtime == "python":
            script = (
                _build_resource_limit_code(self._memory_limit_mb, timeout)
                + script
            )
        else:
            command = [*command, f"--max-old-space-size={self._memory_limit_mb}"]

        script_path = os.path.join(
            entry.work_dir, f"_regexsmith_run{SCRIPT_SUFFIX[runtime]}"
        )
        # Write script file in a thread to avoid blocking the event loop.
        await asyncio.to_thread(self._write_file, script_path, script)

        env = os.environ.copy()
        if entry.spec.network_block_all:
            env["http_proxy"] = "http://0.0.0.0:0"
            env["https_proxy"] = "http://0.0.0.0:0"
            env["HTTP_PROXY"] = "http://0.0.0.0:0"
            env["HTTPS_PROXY"] = "http://0.0.0.0:0"
            env["no_proxy"] = ""

        t0 = time.monotonic()
        proc = await asyncio.create_subprocess_exec(
            *command, script_path,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=entry.work_dir,
            env=env,
        )
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(), timeout=timeout,
            )
        except TimeoutError:
            # Kill the child and reap it to avoid zombies.
            try:
                proc.kill()
                await proc.wait()
            except (OSError, ProcessLookupError):
                pass
            raise SandboxTimeoutError(
                f"Execution timed out after {timeout}s"
            ) from None
        except asyncio.CancelledError:
            try:
                proc.kill()
            except (OSError, ProcessLookupError):
                pass
            raise

        return build_run_result(
            proc.returncode or 0,
            stdout_bytes,
            stderr_bytes,
            (time.monotonic() - t0) * 1000,
        )

    # ── Internal helpers ────────────────────────────────────────────

    def _arm_auto_stop(self, entry: _LocalSandbox) -> None:
        if entry.timer is not None:
            entry.timer.cancel()
        loop = asyncio.get_running_loop()
        entry.timer = loop.call_later(
            entry.spec.auto_stop_minutes * 60, self._auto_stop, entry.handle.id
        )

    def _auto_stop(self, sandbox_id: str) -> None:
        entry = self._sandboxes.pop(sandbox_id, None)
        if entry is None:
            return
        shutil.rmtree(entry.work_dir, ignore_errors=True)
        logger.info("Local sandbox %s stopped after idling", sandbox_id[:8])

    @staticmethod
    def _write_file(path: str, content: str) -> None:
        with open(path, "w", encoding="utf-8") as fh:
            fh.write(content)

    # ── Cleanup on garbage-collection ───────────────────────────────

    def __del__(self) -> None:
        for entry in self._sandboxes.values():
            shutil.rmtree(entry.work_dir, ignore_errors=True)
        self._sandboxes.clear()
