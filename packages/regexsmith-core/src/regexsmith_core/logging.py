from __future__ import annotations

import contextlib
import json
import logging
import os
import sys
from contextvars import ContextVar
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

LOG_LEVEL_ENV = "REGEXSMITH_LOG_LEVEL"

_session: ContextVar[str | None] = ContextVar("regexsmith_session", default=None)


class _SessionFilter(logging.Filter):
    """Stamp each record with the session bound to the current task."""

    def filter(self, record: logging.LogRecord) -> bool:
        session = _session.get()
        record.session_id = session
        record.session = f" [{session}]" if session else ""
        return True


class _JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": record.created,
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        session = getattr(record, "session_id", None)
        if session:
            payload["session"] = session
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging(
    level: str | None = None, json_output: bool = False
) -> logging.Logger:
    """Configure and return the root regexsmith logger.

    *level* falls back to ``$REGEXSMITH_LOG_LEVEL`` and then INFO.  Only
    the first call installs a handler.
    """
    logger = logging.getLogger("regexsmith")

    if logger.handlers:
        return logger

    level = level or os.environ.get(LOG_LEVEL_ENV) or "INFO"
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(_SessionFilter())
    if json_output:
        handler.setFormatter(_JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)-7s %(name)s%(session)s | %(message)s",
            datefmt="%H:%M:%S",
        ))

    logger.addHandler(handler)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a child logger under the regexsmith namespace."""
    return logging.getLogger(f"regexsmith.{name}")


@contextlib.contextmanager
def bind_session(session_id: str | None) -> Iterator[None]:
    """Tag log lines emitted inside the block with *session_id*."""
    token = _session.set(session_id)
    try:
        yield
    finally:
        _session.reset(token)


def current_session() -> str | None:
    return _session.get()
