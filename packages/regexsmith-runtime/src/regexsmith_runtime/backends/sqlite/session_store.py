from __future__ import annotations

import json
import time
from pathlib import Path

import aiosqlite
from regexsmith_core.types import SessionState

_CREATE_SESSION_STATE = """
CREATE TABLE IF NOT EXISTS session_state (
    session_id TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    updated_at REAL NOT NULL
);
"""


class SQLiteSessionStore:
    """Session state stored as one JSON row per session."""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    @classmethod
    async def create(cls, db_path: str) -> SQLiteSessionStore:
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(db_path)
        conn.row_factory = aiosqlite.Row
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA busy_timeout=5000")
        await conn.executescript(_CREATE_SESSION_STATE)
        await conn.commit()
        return cls(conn)

    async def load(self, session_id: str) -> SessionState | None:
        async with self._conn.execute(
            "SELECT data FROM session_state WHERE session_id = ?",
            (session_id,),
        ) as cursor:
            row = await cursor.fetchone()
            if not row:
                return None
            return SessionState.from_dict(json.loads(row["data"]))

    async def save(self, state: SessionState) -> None:
        state.updated_at = time.time()
        await self._conn.execute(
            "INSERT INTO session_state (session_id, data, updated_at)"
            " VALUES (?, ?, ?)"
            " ON CONFLICT(session_id) DO UPDATE SET"
            " data = excluded.data, updated_at = excluded.updated_at",
            (state.session_id, json.dumps(state.to_dict()), state.updated_at),
        )
        await self._conn.commit()

    async def delete(self, session_id: str) -> None:
        await self._conn.execute(
            "DELETE FROM session_state WHERE session_id = ?", (session_id,)
        )
        await self._conn.commit()

    async def close(self) -> None:
        await self._conn.close()
