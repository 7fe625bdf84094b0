"""Regexsmith Runtime: sandbox services, sandbox lifecycle, and sessions."""
from __future__ import annotations

from regexsmith_runtime.builder import RuntimeBuilder
from regexsmith_runtime.context import RuntimeContext
from regexsmith_runtime.protocols import SandboxService, SessionStore
from regexsmith_runtime.sandbox_manager import (
    SandboxLifecycleManager,
    SandboxRef,
    is_sandbox_unavailable,
)
from regexsmith_runtime.session import (
    SessionLifecycleManager,
    normalize_token_usage,
)

__all__ = [
    "RuntimeBuilder",
    "RuntimeContext",
    "SandboxLifecycleManager",
    "SandboxRef",
    "SandboxService",
    "SessionLifecycleManager",
    "SessionStore",
    "is_sandbox_unavailable",
    "normalize_token_usage",
]
