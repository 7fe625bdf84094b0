"""In-process backend: state lives as long as the process."""
from __future__ import annotations

from regexsmith_runtime.backends.memory.session_store import InProcessSessionStore

__all__ = ["InProcessSessionStore"]
