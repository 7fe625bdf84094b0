from __future__ import annotations

from regexsmith_core.types import SandboxRunResult

MAX_OUTPUT_BYTES = 100 * 1024  # 100 KB
MAX_TIMEOUT_SECONDS = 300      # 5 minutes hard cap

# Command used to run a script file for each runtime.
INTERPRETERS = {
    "python": ("python3",),
    "javascript": ("node",),
}
SCRIPT_SUFFIX = {"python": ".py", "javascript": ".js"}


def clamp_timeout(timeout: int) -> int:
    return max(1, min(timeout, MAX_TIMEOUT_SECONDS))


def build_run_result(
    exit_code: int,
    stdout_bytes: bytes,
    stderr_bytes: bytes,
    duration_ms: float,
) -> SandboxRunResult:
    """Decode and truncate process output into a :class:`SandboxRunResult`."""
    truncated = False
    if len(stdout_bytes) > MAX_OUTPUT_BYTES:
        stdout_bytes = stdout_bytes[:MAX_OUTPUT_BYTES]
        truncated = True
    if len(stderr_bytes) > MAX_OUTPUT_BYTES:
        stderr_bytes = stderr_bytes[:MAX_OUTPUT_BYTES]
        truncated = True

    return SandboxRunResult(
        exit_code=exit_code,
        stdout=stdout_bytes.decode("utf-8", errors="replace"),
        artifacts={
            "stderr": stderr_bytes.decode("utf-8", errors="replace"),
            "duration_ms": duration_ms,
            "truncated": truncated,
        },
    )
