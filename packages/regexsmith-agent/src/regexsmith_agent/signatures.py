"""DSPy signatures for regex synthesis.

Instructions that depend on the target runtime are attached per call
with ``Signature.with_instructions`` (see :mod:`regexsmith_agent.prompts`);
the docstrings below are the defaults.
"""
from __future__ import annotations

import dspy

# ── Regex Generation ───────────────────────────────────────────


class RegexGeneration(dspy.Signature):
    """You are a regex expert. Generate a regex pattern that satisfies all requirements."""

    task: str = dspy.InputField(
        desc="What the regex must do, the examples it is tested against, "
        "and any previous failed attempts"
    )
    reasoning: str = dspy.OutputField(
        desc="Why this pattern was chosen and how it handles the test cases"
    )
    pattern: str = dspy.OutputField(
        desc="The regex pattern, without delimiters like / /"
    )
    flags: str = dspy.OutputField(
        desc='Regex flags such as "g", "i" or "gi"; empty for Python'
    )


# ── Reflection ─────────────────────────────────────────────────


class RegexReflection(dspy.Signature):
    """You are a regex debugger. Suggest the smallest fix. Be concise (2-3 sentences max)."""

    report: str = dspy.InputField(
        desc="The failed pattern, the generator's reasoning and the test results"
    )
    diagnosis: str = dspy.OutputField(
        desc="What went wrong and the smallest fix, in 2-3 sentences"
    )


# ── Code Generation ────────────────────────────────────────────


class CodeGeneration(dspy.Signature):
    """You are an expert programmer. Generate clean, efficient code."""

    task: str = dspy.InputField(
        desc="The transformation to implement and the test cases it must pass"
    )
    reasoning: str = dspy.OutputField(
        desc="How the code solves the problem"
    )
    code: str = dspy.OutputField(
        desc="Complete source defining the entry-point function, no markdown fences"
    )
