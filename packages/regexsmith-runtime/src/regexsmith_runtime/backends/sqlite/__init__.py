"""SQLite backend: persistent, zero external infrastructure."""
from __future__ import annotations

from regexsmith_runtime.backends.sqlite.session_store import SQLiteSessionStore

__all__ = ["SQLiteSessionStore"]
