from __future__ import annotations


class RegexsmithError(Exception):
    """Base exception for all regexsmith errors."""


# ── Request Errors ───────────────────────────────────────────────────

class RequestValidationError(RegexsmithError):
    """Malformed synthesis or verification request.

    Raised synchronously and never retried.
    """


# ── Sandbox Errors ───────────────────────────────────────────────────

class SandboxError(RegexsmithError):
    """Base for sandbox-related errors."""


class SandboxCreationError(SandboxError):
    """The sandbox service refused to create a sandbox."""


class SandboxUnavailableError(SandboxError):
    """Sandbox is gone: expired, deleted, or the backend is unreachable."""


class SandboxTimeoutError(SandboxError):
    """Script execution exceeded its timeout."""


# ── Cancellation ─────────────────────────────────────────────────────

class OperationAbortedError(RegexsmithError):
    """The cancellation token fired while an operation was in flight.

    Aborts are an outcome, not a failure: the synthesis loop converts
    this into an ``aborted=True`` result.
    """

    def __init__(self, message: str = "Operation aborted by user") -> None:
        super().__init__(message)


# ── Generation Errors ────────────────────────────────────────────────

class GenerationError(RegexsmithError):
    """Base for errors raised by the text-generation service."""


class GenerationSchemaError(GenerationError):
    """Generation output did not match the expected structured shape."""


# ── Session Errors ───────────────────────────────────────────────────

class SessionError(RegexsmithError):
    """Base for session-related errors."""


class TokenBudgetExceededError(SessionError):
    """The session has spent its token budget and must be reset."""

    def __init__(self, used: int, limit: int) -> None:
        self.used = used
        self.limit = limit
        super().__init__(
            f"Token limit reached. You've used {used:,} of {limit:,} "
            "tokens. Please clear the chat to start a new session."
        )


# ── Approval Errors ──────────────────────────────────────────────────

class ApprovalError(RegexsmithError):
    """Invalid transition of the code-execution approval gate."""


# ── Config Errors ────────────────────────────────────────────────────

class ConfigError(RegexsmithError):
    """Invalid or missing configuration."""
