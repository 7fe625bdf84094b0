from __future__ import annotations

from typing import TYPE_CHECKING

from regexsmith_core.errors import ConfigError
from regexsmith_core.logging import get_logger

from regexsmith_runtime.context import RuntimeContext
from regexsmith_runtime.sandbox_manager import SandboxLifecycleManager

if TYPE_CHECKING:
    from regexsmith_core.config import RegexsmithConfig

    from regexsmith_runtime.protocols.sandbox import SandboxService
    from regexsmith_runtime.protocols.session_store import SessionStore

logger = get_logger("builder")


class RuntimeBuilder:
    """Build a RuntimeContext from configuration.

    Usage:
        config = RegexsmithConfig.load()
        ctx = await RuntimeBuilder(config).build()
    """

    def __init__(self, config: RegexsmithConfig) -> None:
        self._config = config

    async def build(self) -> RuntimeContext:
        service = self.build_sandbox_service()
        logger.info(
            "Building runtime with %s sandboxes and %s session store",
            service.name, self._config.session.store,
        )
        return RuntimeContext(
            sandbox_manager=SandboxLifecycleManager(
                service,
                auto_stop_minutes=self._config.sandbox.auto_stop_minutes,
            ),
            session_store=await self._build_session_store(),
            config=self._config,
        )

    def build_sandbox_service(self) -> SandboxService:
        cfg = self._config.sandbox

        if cfg.backend == "docker":
            from regexsmith_runtime.backends.sandbox.docker import (
                DockerSandboxService,
            )
            return DockerSandboxService(
                python_image=cfg.docker_image_python,
                javascript_image=cfg.docker_image_javascript,
                memory_limit_mb=cfg.memory_limit_mb,
            )
        elif cfg.backend == "modal":
            from regexsmith_runtime.backends.sandbox.modal_sandbox import (
                ModalSandboxService,
            )
            return ModalSandboxService(
                app_name=cfg.modal_app_name,
                memory_limit_mb=cfg.memory_limit_mb,
            )
        elif cfg.backend == "local":
            from regexsmith_runtime.backends.sandbox.local import (
                LocalSandboxService,
            )
            return LocalSandboxService(memory_limit_mb=cfg.memory_limit_mb)
        else:
            raise ConfigError(f"Unknown sandbox backend: {cfg.backend!r}")

    async def _build_session_store(self) -> SessionStore:
        cfg = self._config.session
        if cfg.store == "sqlite":
            from regexsmith_runtime.backends.sqlite import SQLiteSessionStore
            return await SQLiteSessionStore.create(cfg.sqlite_path)
        elif cfg.store == "memory":
            from regexsmith_runtime.backends.memory import InProcessSessionStore
            return InProcessSessionStore()
        else:
            raise ConfigError(f"Unknown session store: {cfg.store!r}")
