from __future__ import annotations

import pytest
from regexsmith_core.config import RegexsmithConfig, SandboxConfig, SessionConfig
from regexsmith_core.errors import ConfigError
from regexsmith_runtime.backends.memory import InProcessSessionStore
from regexsmith_runtime.backends.sandbox.local import LocalSandboxService
from regexsmith_runtime.backends.sqlite import SQLiteSessionStore
from regexsmith_runtime.builder import RuntimeBuilder
from regexsmith_runtime.protocols import SandboxService, SessionStore


class TestRuntimeBuilder:
    async def test_default_build(self):
        ctx = await RuntimeBuilder(RegexsmithConfig()).build()
        try:
            assert isinstance(ctx.sandbox_manager.service, LocalSandboxService)
            assert isinstance(ctx.sandbox_manager.service, SandboxService)
            assert isinstance(ctx.session_store, InProcessSessionStore)
            assert isinstance(ctx.session_store, SessionStore)
        finally:
            await ctx.close()

    async def test_sqlite_store(self, tmp_path):
        config = RegexsmithConfig(session=SessionConfig(
            store="sqlite", sqlite_path=str(tmp_path / "db" / "sessions.db"),
        ))
        ctx = await RuntimeBuilder(config).build()
        try:
            assert isinstance(ctx.session_store, SQLiteSessionStore)
        finally:
            await ctx.close()

    async def test_unknown_store(self):
        config = RegexsmithConfig(session=SessionConfig(store="redis"))
        with pytest.raises(ConfigError):
            await RuntimeBuilder(config).build()

    def test_unknown_backend(self):
        config = RegexsmithConfig(sandbox=SandboxConfig(backend="vm"))
        with pytest.raises(ConfigError):
            RuntimeBuilder(config).build_sandbox_service()
