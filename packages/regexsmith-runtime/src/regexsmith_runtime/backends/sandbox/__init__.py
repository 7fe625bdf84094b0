from __future__ import annotations

from regexsmith_runtime.backends.sandbox.docker import DockerSandboxService
from regexsmith_runtime.backends.sandbox.local import LocalSandboxService
from regexsmith_runtime.backends.sandbox.modal_sandbox import ModalSandboxService

__all__ = ["DockerSandboxService", "LocalSandboxService", "ModalSandboxService"]
