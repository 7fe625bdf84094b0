"""Regexsmith Core: shared types, config, errors, cancellation, and logging."""
from __future__ import annotations

from regexsmith_core._version import __version__
from regexsmith_core.cancellation import CancellationToken, race
from regexsmith_core.config import (
    LLMConfig,
    RegexsmithConfig,
    SandboxConfig,
    ServerConfig,
    SessionConfig,
    SynthesisConfig,
)
from regexsmith_core.errors import (
    ApprovalError,
    ConfigError,
    GenerationError,
    GenerationSchemaError,
    OperationAbortedError,
    RegexsmithError,
    RequestValidationError,
    SandboxCreationError,
    SandboxError,
    SandboxTimeoutError,
    SandboxUnavailableError,
    SessionError,
    TokenBudgetExceededError,
)
from regexsmith_core.logging import bind_session, get_logger, setup_logging
from regexsmith_core.types import (
    PLACEHOLDER_CANDIDATE,
    ApprovalRequest,
    CaptureCaseResult,
    CaptureRequest,
    CaptureTest,
    CodeCandidate,
    CodeCaseResult,
    CodeRequest,
    CodeResult,
    CodeTest,
    ExecutionResponse,
    IterationResult,
    MatchCaseResult,
    MatchRequest,
    RegexCandidate,
    RegexGenerationResult,
    RegexRequest,
    Runtime,
    SandboxHandle,
    SandboxRunResult,
    SandboxSpec,
    SessionState,
    StatusEvent,
    StatusPhase,
    TestMode,
    TestResult,
    TokenUsage,
)

__all__ = [
    "PLACEHOLDER_CANDIDATE",
    # Errors
    "ApprovalError",
    # Types
    "ApprovalRequest",
    # Cancellation
    "CancellationToken",
    "CaptureCaseResult",
    "CaptureRequest",
    "CaptureTest",
    "CodeCandidate",
    "CodeCaseResult",
    "CodeRequest",
    "CodeResult",
    "CodeTest",
    "ConfigError",
    "ExecutionResponse",
    "GenerationError",
    "GenerationSchemaError",
    "IterationResult",
    # Config
    "LLMConfig",
    "MatchCaseResult",
    "MatchRequest",
    "OperationAbortedError",
    "RegexCandidate",
    "RegexGenerationResult",
    "RegexRequest",
    "RegexsmithConfig",
    "RegexsmithError",
    "RequestValidationError",
    "Runtime",
    "SandboxConfig",
    "SandboxCreationError",
    "SandboxError",
    "SandboxHandle",
    "SandboxRunResult",
    "SandboxSpec",
    "SandboxTimeoutError",
    "SandboxUnavailableError",
    "ServerConfig",
    "SessionConfig",
    "SessionError",
    "SessionState",
    "StatusEvent",
    "StatusPhase",
    "SynthesisConfig",
    "TestMode",
    "TestResult",
    "TokenBudgetExceededError",
    "TokenUsage",
    # Version
    "__version__",
    "bind_session",
    # Logging
    "get_logger",
    "race",
    "setup_logging",
]
