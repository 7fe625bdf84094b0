"""Protocol interfaces for the regexsmith runtime."""
from __future__ import annotations

from regexsmith_runtime.protocols.sandbox import SandboxService
from regexsmith_runtime.protocols.session_store import SessionStore

__all__ = [
    "SandboxService",
    "SessionStore",
]
