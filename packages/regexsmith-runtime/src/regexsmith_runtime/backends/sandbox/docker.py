from __future__ import annotations

import asyncio
import json
import shutil
import time

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

logger = get_logger("sandbox.docker")

_LABEL_RUNTIME = "regexsmith.runtime"
_LABEL_NETWORK = "regexsmith.network-block-all"


def _docker_available() -> bool:
    """Check whether the ``docker`` CLI is on PATH."""
    return shutil.which("docker") is not None


async def _docker(*args: str) -> tuple[int, bytes, bytes]:
    proc = await asyncio.create_subprocess_exec(
        "docker", *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await proc.communicate()
    return proc.returncode or 0, stdout, stderr


class DockerSandboxService:
    """Run scripts inside long-lived Docker containers.

    Uses the ``docker`` CLI via ``asyncio.create_subprocess_exec`` so that
    the only hard dependency is a working Docker installation.  Sandbox
    ids are container ids, so a session can reattach to its container
    after a restart.  Containers run with ``--network none`` and remove
    themselves once ``auto_stop_minutes`` have elapsed.
    """

    name = "docker"

    def __init__(
        self,
        *,
        python_image: str = "python:3.12-slim",
        javascript_image: str = "node:22-slim",
        memory_limit_mb: int = 256,
    ) -> None:
        self._images = {"python": python_image, "javascript": javascript_image}
        self._memory_limit_mb = memory_limit_mb

    # ── Protocol methods ────────────────────────────────────────────

    async def create(self, spec: SandboxSpec) -> SandboxHandle:
        if not _docker_available():
            raise SandboxCreationError(
                "Docker CLI not found on PATH. Install Docker to use the "
                "docker sandbox backend, or switch to the local backend."
            )

        cmd: list[str] = [
            "create",
            "--label", f"{_LABEL_RUNTIME}={spec.runtime}",
            "--label", f"{_LABEL_NETWORK}={str(spec.network_block_all).lower()}",
            "--memory", f"{self._memory_limit_mb}m",
            "--pids-limit", "64",
        ]
        if spec.network_block_all:
            cmd.extend(["--network", "none"])
        if spec.ephemeral:
            cmd.append("--rm")
        cmd.extend([
            self._images[spec.runtime],
            "sleep", str(spec.auto_stop_minutes * 60),
        ])

        code, stdout, stderr = await _docker(*cmd)
        if code != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise SandboxCreationError(
                f"Failed to create Docker container: {detail}"
            )
        container_id = stdout.decode().strip()

        code, _, stderr = await _docker("start", container_id)
        if code != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise SandboxCreationError(
                f"Failed to start Docker container {container_id[:12]}: "
                f"{detail}"
            )

        logger.info(
            "Created docker %s sandbox %s", spec.runtime, container_id[:12]
        )
        return SandboxHandle(
            id=container_id,
            runtime=spec.runtime,
            backend=self.name,
            network_blocked=spec.network_block_all,
        )

    async def get(self, sandbox_id: str) -> SandboxHandle:
        code, stdout, stderr = await _docker("inspect", sandbox_id)
        if code != 0:
            raise SandboxUnavailableError(
                f"Sandbox {sandbox_id} not found: "
                f"{stderr.decode('utf-8', errors='replace').strip()}"
            )

        info = json.loads(stdout)[0]
        if not info.get("State", {}).get("Running", False):
            raise SandboxUnavailableError(f"Sandbox {sandbox_id} expired")

        labels = info.get("Config", {}).get("Labels") or {}
        network_mode = info.get("HostConfig", {}).get("NetworkMode", "")
        runtime = labels.get(_LABEL_RUNTIME, "python")
        return SandboxHandle(
            id=info["Id"],
            runtime="javascript" if runtime == "javascript" else "python",
            backend=self.name,
            network_blocked=(
                network_mode == "none" and labels.get(_LABEL_NETWORK) == "true"
            ),
        )

    async def delete(self, handle: SandboxHandle) -> None:
        code, _, stderr = await _docker("rm", "--force", handle.id)
        if code != 0:
            logger.debug(
                "docker rm %s failed: %s",
                handle.id[:12], stderr.decode("utf-8", errors="replace").strip(),
            )
            return
        logger.info("Deleted docker sandbox %s", handle.id[:12])

    async def run(
        self, handle: SandboxHandle, script: str, timeout_seconds: int
    ) -> SandboxRunResult:
        timeout = clamp_timeout(timeout_seconds)
        flag = "-c" if handle.runtime == "python" else "-e"

        t0 = time.monotonic()
        proc = await asyncio.create_subprocess_exec(
            "docker", "exec", "-i", handle.id,
            *INTERPRETERS[handle.runtime], flag, script,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(), timeout=timeout,
            )
        except TimeoutError:
            # Kill the exec process to avoid lingering work.
            try:
                proc.kill()
                await proc.wait()
            except (OSError, ProcessLookupError):
                pass
            raise SandboxTimeoutError(
                f"Execution timed out after {timeout}s"
            ) from None

        exit_code = proc.returncode or 0
        stderr_text = stderr_bytes.decode("utf-8", errors="replace")
        # docker exits with 1 and this message when the container is gone.
        if exit_code != 0 and "No such container" in stderr_text:
            raise SandboxUnavailableError(
                f"Sandbox {handle.id[:12]} does not exist"
            )
        if exit_code != 0 and "is not running" in stderr_text:
            raise SandboxUnavailableError(
                f"Sandbox {handle.id[:12]} expired"
            )

        return build_run_result(
            exit_code, stdout_bytes, stderr_bytes,
            (time.monotonic() - t0) * 1000,
        )
