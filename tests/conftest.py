from __future__ import annotations

import json
import shutil
from collections.abc import Callable
from typing import Any

import pytest
import pytest_asyncio
from regexsmith_core.errors import SandboxUnavailableError
from regexsmith_core.types import (
    RegexCandidate,
    SandboxHandle,
    SandboxRunResult,
    SandboxSpec,
)

# ---------------------------------------------------------------------------
# Fake sandbox service
# ---------------------------------------------------------------------------


class FakeSandboxService:
    """In-memory SandboxService with scripted run outcomes.

    ``outputs`` is consumed first-in first-out; each entry is either a
    ``SandboxRunResult`` to return or an exception to raise.  When it is
    empty ``default`` is returned.
    """

    name = "fake"

    def __init__(self) -> None:
        self.sandboxes: dict[str, SandboxHandle] = {}
        self.created: list[SandboxHandle] = []
        self.deleted: list[str] = []
        self.runs: list[tuple[str, str, int]] = []
        self.outputs: list[SandboxRunResult | BaseException] = []
        self.default = SandboxRunResult(exit_code=0, stdout="{}")
        self.network_blocked = True

    async def create(self, spec: SandboxSpec) -> SandboxHandle:
        handle = SandboxHandle(
            id=f"sb-{len(self.created) + 1}",
            runtime=spec.runtime,
            backend=self.name,
            network_blocked=spec.network_block_all and self.network_blocked,
        )
        self.sandboxes[handle.id] = handle
        self.created.append(handle)
        return handle

    async def get(self, sandbox_id: str) -> SandboxHandle:
        handle = self.sandboxes.get(sandbox_id)
        if handle is None:
            raise SandboxUnavailableError(f"Sandbox {sandbox_id} not found")
        return handle

    async def delete(self, handle: SandboxHandle) -> None:
        self.sandboxes.pop(handle.id, None)
        self.deleted.append(handle.id)

    async def run(
        self, handle: SandboxHandle, script: str, timeout_seconds: int
    ) -> SandboxRunResult:
        self.runs.append((handle.id, script, timeout_seconds))
        if handle.id not in self.sandboxes:
            raise SandboxUnavailableError(f"Sandbox {handle.id} not found")
        if self.outputs:
            outcome = self.outputs.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return self.default

    def expire(self, sandbox_id: str) -> None:
        """Make a sandbox vanish, as if its backend stopped it."""
        self.sandboxes.pop(sandbox_id, None)


def regex_output(
    passed: bool,
    *,
    test_mode: str = "match",
    total: int = 2,
    compile_error: str | None = None,
) -> SandboxRunResult:
    """Stdout of a regex test script that passed or failed every case."""
    if compile_error is not None:
        results: list[dict[str, Any]] = []
    elif test_mode == "match":
        results = [
            {"input": f"case-{i}", "expected": True, "actual": passed, "passed": passed}
            for i in range(total)
        ]
    else:
        results = [
            {
                "input": f"case-{i}",
                "expected": ["x"],
                "actual": ["x"] if passed else None,
                "passed": passed,
            }
            for i in range(total)
        ]
    passed_count = sum(r["passed"] for r in results)
    data: dict[str, Any] = {
        "passed": compile_error is None and passed_count == len(results),
        "total": len(results),
        "passedCount": passed_count,
        "failedCount": len(results) - passed_count,
        "results": results,
        "testMode": test_mode,
    }
    if compile_error is not None:
        data["compileError"] = compile_error
    return SandboxRunResult(exit_code=0, stdout=json.dumps(data))


# ---------------------------------------------------------------------------
# Fake generation
# ---------------------------------------------------------------------------


class FakeGenerator:
    """CandidateGenerator stand-in returning scripted candidates in order."""

    def __init__(
        self,
        patterns: list[str] | None = None,
        *,
        on_generate: Callable[[int], None] | None = None,
    ) -> None:
        self.patterns = patterns or [r"\d+"]
        self.on_generate = on_generate
        self.histories: list[list[str]] = []

    async def generate(self, request, history, runtime, cancel_token=None):
        index = len(self.histories)
        self.histories.append([h.candidate.pattern for h in history])
        if self.on_generate is not None:
            self.on_generate(index)
        pattern = self.patterns[min(index, len(self.patterns) - 1)]
        return RegexCandidate(pattern=pattern, flags="", reasoning=f"attempt {index + 1}")


class FakeReflector:
    def __init__(self) -> None:
        self.calls = 0

    async def reflect(self, candidate, test_results, request, cancel_token=None):
        self.calls += 1
        return f"/{candidate.pattern}/ failed {test_results.failed_count} cases"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_service():
    return FakeSandboxService()


@pytest.fixture
def sandbox_manager(fake_service):
    from regexsmith_runtime.sandbox_manager import SandboxLifecycleManager
    return SandboxLifecycleManager(fake_service)


@pytest.fixture
def make_output():
    return regex_output


@pytest.fixture
def fake_generator_cls():
    return FakeGenerator


@pytest.fixture
def fake_reflector():
    return FakeReflector()


@pytest.fixture
def memory_session_store():
    from regexsmith_runtime.backends.memory import InProcessSessionStore
    return InProcessSessionStore()


@pytest_asyncio.fixture
async def sqlite_session_store(tmp_path):
    from regexsmith_runtime.backends.sqlite import SQLiteSessionStore
    store = await SQLiteSessionStore.create(str(tmp_path / "sessions.db"))
    yield store
    await store.close()


@pytest.fixture
def runtime_context(sandbox_manager, memory_session_store):
    from regexsmith_core.config import RegexsmithConfig
    from regexsmith_runtime.context import RuntimeContext
    return RuntimeContext(
        sandbox_manager=sandbox_manager,
        session_store=memory_session_store,
        config=RegexsmithConfig(),
    )


@pytest_asyncio.fixture
async def local_manager():
    from regexsmith_runtime.backends.sandbox.local import LocalSandboxService
    from regexsmith_runtime.sandbox_manager import SandboxLifecycleManager

    service = LocalSandboxService()
    manager = SandboxLifecycleManager(service)
    yield manager
    for handle in [entry.handle for entry in service._sandboxes.values()]:
        await service.delete(handle)


@pytest.fixture
def node_available():
    if shutil.which("node") is None:
        pytest.skip("Node.js not installed")
