"""Regexsmith Agent: regex synthesis loop and code fallback.

Public API:
- ``SynthesisLoop`` / ``SynthesisOptions`` / ``LoopState`` -- the
  generate, execute and reflect loop.
- ``CandidateGenerator`` / ``Reflector`` / ``CodeGenerator`` -- DSPy
  backed generation and diagnosis.
- ``execute_regex_test`` / ``validate_regex_syntax`` -- verification.
- ``compact_history`` -- bounded iteration history.
- ``ApprovalGate`` / ``CodeAgent`` -- approved code fallback.
- ``ToolDispatcher`` -- tool entry points for a chat agent.
"""
from __future__ import annotations

from regexsmith_agent.approval import (
    APPROVAL_NO,
    APPROVAL_YES,
    ApprovalGate,
    ApprovalState,
    approval_summary,
)
from regexsmith_agent.code_agent import CodeAgent, parse_code_output
from regexsmith_agent.executor import (
    execute_regex_test,
    parse_test_output,
    validate_regex_syntax,
)
from regexsmith_agent.generator import CandidateGenerator, CodeGenerator
from regexsmith_agent.history import MAX_FULL_HISTORY_SIZE, compact_history
from regexsmith_agent.loop import LoopState, SynthesisLoop, SynthesisOptions
from regexsmith_agent.reflector import Reflector
from regexsmith_agent.scripts import (
    build_free_code_script,
    build_regex_test_script,
    compare_groups,
)
from regexsmith_agent.signatures import (
    CodeGeneration,
    RegexGeneration,
    RegexReflection,
)
from regexsmith_agent.tools import (
    TOOL_SCHEMAS,
    ToolDispatcher,
    UsageMeter,
    usage_example,
)

__all__ = [
    "APPROVAL_NO",
    "APPROVAL_YES",
    "MAX_FULL_HISTORY_SIZE",
    "TOOL_SCHEMAS",
    "ApprovalGate",
    "ApprovalState",
    "CandidateGenerator",
    "CodeAgent",
    "CodeGeneration",
    "CodeGenerator",
    "LoopState",
    "RegexGeneration",
    "RegexReflection",
    "Reflector",
    "SynthesisLoop",
    "SynthesisOptions",
    "ToolDispatcher",
    "UsageMeter",
    "approval_summary",
    "build_free_code_script",
    "build_regex_test_script",
    "compact_history",
    "compare_groups",
    "execute_regex_test",
    "parse_code_output",
    "parse_test_output",
    "usage_example",
    "validate_regex_syntax",
]
