"""Synthesis CLI commands: match, capture, code, test.

Bridges the synchronous Typer CLI to the async synthesis loop by loading
configuration, configuring DSPy and building a RuntimeContext.
"""
from __future__ import annotations

import asyncio
import json
import os
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

import typer
from InquirerPy import inquirer
from regexsmith_core.config import RegexsmithConfig
from regexsmith_core.errors import ConfigError, RegexsmithError
from regexsmith_core.logging import get_logger
from regexsmith_core.types import (
    CaptureRequest,
    CaptureTest,
    CodeRequest,
    CodeTest,
    MatchRequest,
    RegexCandidate,
)
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

if TYPE_CHECKING:
    from regexsmith_agent.approval import ApprovalGate
    from regexsmith_core.types import (
        ApprovalRequest,
        CodeResult,
        RegexGenerationResult,
        RegexRequest,
        Runtime,
        StatusEvent,
        TestResult,
    )
    from regexsmith_runtime.context import RuntimeContext

console = Console()
logger = get_logger("cli")

# Strong references to in-flight approval prompts.
_prompts: set[asyncio.Task[None]] = set()


# ── Helpers ────────────────────────────────────────────────────────


def load_config() -> RegexsmithConfig:
    """Load global + project configuration or exit with the error."""
    try:
        return RegexsmithConfig.load(Path.cwd())
    except ConfigError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        raise typer.Exit(1) from exc


def load_credentials() -> None:
    """Load API keys from credentials.json files into the environment."""
    for creds_path in [
        Path.home() / ".regexsmith" / "credentials.json",
        Path.cwd() / ".regexsmith" / "credentials.json",
    ]:
        if not creds_path.exists():
            continue
        try:
            creds = json.loads(creds_path.read_text())
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable %s: %s", creds_path, exc)
            continue
        if isinstance(creds, dict):
            for key, value in creds.items():
                if isinstance(key, str) and isinstance(value, str) and value:
                    os.environ[key] = value


def _lm_model(provider: str, model: str) -> str:
    if provider in ("openrouter", "anthropic", "openai"):
        return f"{provider}/{model}"
    if provider == "ollama":
        return f"ollama_chat/{model}"
    return model


def configure_dspy(config: RegexsmithConfig) -> tuple[Any, Any]:
    """Configure DSPy from the [llm] section.

    Returns ``(lm, code_lm)``.  The regex LM is also installed as the
    DSPy default.
    """
    import dspy

    provider = config.llm.provider
    api_key = os.environ.get(config.llm.api_key_env, "")

    if not api_key and provider != "ollama":
        console.print(
            f"[red]No API key for {provider} "
            f"(set {config.llm.api_key_env})[/red]"
        )
        raise typer.Exit(1)

    kwargs: dict[str, Any] = {
        "temperature": config.llm.temperature,
        "max_tokens": config.llm.max_tokens,
    }
    if provider == "ollama":
        kwargs["api_key"] = "ollama"
    elif api_key:
        kwargs["api_key"] = api_key
    if config.llm.base_url:
        kwargs["api_base"] = config.llm.base_url

    lm = dspy.LM(_lm_model(provider, config.llm.model), **kwargs)
    code_lm = dspy.LM(_lm_model(provider, config.llm.code_model), **kwargs)
    dspy.configure(lm=lm)
    return lm, code_lm


def _check_runtime(runtime: str) -> Runtime:
    if runtime not in ("javascript", "python"):
        console.print("[red]--runtime must be 'javascript' or 'python'[/red]")
        raise typer.Exit(2)
    return runtime  # type: ignore[return-value]


def _parse_json_values(values: list[str], option: str) -> list[Any]:
    parsed = []
    for raw in values:
        try:
            parsed.append(json.loads(raw))
        except ValueError as exc:
            console.print(f"[red]{option} value is not valid JSON: {raw}[/red]")
            raise typer.Exit(2) from exc
    return parsed


def _capture_tests(inputs: list[str], groups: list[str]) -> tuple[CaptureTest, ...]:
    if len(inputs) != len(groups):
        console.print("[red]Give exactly one --groups for every --input[/red]")
        raise typer.Exit(2)
    tests = []
    for text, expected in zip(inputs, _parse_json_values(groups, "--groups")):
        if not isinstance(expected, list):
            console.print("[red]--groups must be a JSON array[/red]")
            raise typer.Exit(2)
        tests.append(CaptureTest(input=text, expected_groups=tuple(expected)))
    return tuple(tests)


def _print_status(event: StatusEvent) -> None:
    console.print(
        f"[dim][{event.iteration}/{event.max_iterations}] "
        f"{event.phase.value}...[/dim]"
    )


# ── Runners ────────────────────────────────────────────────────────


async def run_synthesis(
    config: RegexsmithConfig,
    request: RegexRequest,
    runtime: Runtime,
    max_iterations: int,
) -> RegexGenerationResult:
    """Build the runtime, run one synthesis loop and clean up."""
    from regexsmith_agent.generator import CandidateGenerator
    from regexsmith_agent.loop import SynthesisLoop, SynthesisOptions
    from regexsmith_agent.reflector import Reflector
    from regexsmith_core.cancellation import CancellationToken
    from regexsmith_runtime.builder import RuntimeBuilder

    lm, _ = configure_dspy(config)
    ctx = await RuntimeBuilder(config).build()
    token = CancellationToken()
    sandbox_id = None
    try:
        loop = SynthesisLoop(
            CandidateGenerator(lm=lm), Reflector(lm=lm), ctx.sandbox_manager
        )
        try:
            result = await loop.run(request, SynthesisOptions(
                max_iterations=max_iterations,
                runtime=runtime,
                include_history=True,
                cancel_token=token,
                on_status=_print_status,
                timeout=config.sandbox.regex_timeout_seconds,
                history_window=config.synthesis.history_window,
            ))
        except asyncio.CancelledError:
            token.cancel()
            raise
        sandbox_id = result.sandbox_id
        return result
    finally:
        if sandbox_id:
            await ctx.sandbox_manager.delete(sandbox_id)
        await ctx.close()


def _confirm_code(gate: ApprovalGate, request: ApprovalRequest) -> None:
    from regexsmith_agent.approval import approval_summary

    console.print(Panel(
        Syntax(
            request.code or "",
            "python" if request.proposed_runtime == "python" else "javascript",
            theme="monokai",
        ),
        title="Generated code",
        border_style="yellow",
    ))
    console.print(approval_summary(replace(request, code=None)))

    async def ask() -> None:
        approved = await inquirer.confirm(
            message="Run this code?", default=False
        ).execute_async()
        gate.respond(request.tool_call_id, bool(approved))

    task = asyncio.get_running_loop().create_task(ask())
    _prompts.add(task)
    task.add_done_callback(_prompts.discard)


async def run_code(config: RegexsmithConfig, request: CodeRequest) -> CodeResult:
    from regexsmith_agent.code_agent import CodeAgent
    from regexsmith_agent.generator import CodeGenerator
    from regexsmith_runtime.builder import RuntimeBuilder

    _, code_lm = configure_dspy(config)
    ctx = await RuntimeBuilder(config).build()
    handles = []
    try:
        agent = CodeAgent(
            CodeGenerator(lm=code_lm),
            ctx.sandbox_manager,
            timeout=config.sandbox.code_timeout_seconds,
        )
        return await agent.run(request, _confirm_code, on_sandbox=handles.append)
    finally:
        if handles:
            await ctx.sandbox_manager.delete(handles[-1])
        await ctx.close()


async def run_pattern_test(
    ctx: RuntimeContext,
    candidate: RegexCandidate,
    request: RegexRequest,
    runtime: Runtime,
) -> TestResult:
    from regexsmith_agent.executor import execute_regex_test

    manager = ctx.sandbox_manager
    sandbox = await manager.create(runtime)
    try:
        return await execute_regex_test(
            manager,
            sandbox,
            candidate,
            request,
            runtime=runtime,
            timeout=ctx.config.sandbox.regex_timeout_seconds,
        )
    finally:
        await manager.delete(sandbox)


# ── Display helpers ────────────────────────────────────────────────


def display_test_result(result: TestResult) -> None:
    if result.compile_error:
        console.print(f"[red]{result.compile_error}[/red]")
    table = Table(show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("Input")
    table.add_column("Expected")
    table.add_column("Actual")
    for case in result.results:
        d = case.to_dict()
        table.add_row(
            "[green]✓[/green]" if case.passed else "[red]✗[/red]",
            repr(case.input),
            json.dumps(d["expected"]),
            json.dumps(d["actual"]),
        )
    if result.results:
        console.print(table)
    colour = "green" if result.passed else "red"
    console.print(
        f"[{colour}]{result.passed_count}/{result.total} passed[/{colour}]"
    )


def display_generation(result: RegexGenerationResult) -> None:
    if result.success:
        title = f"Pattern found in {result.iterations} iteration(s)"
        style = "green"
    elif result.aborted:
        title = "Aborted"
        style = "yellow"
    else:
        title = f"No passing pattern after {result.iterations} iteration(s)"
        style = "red"
    console.print(Panel(
        f"/{result.pattern}/{result.flags}  [dim]({result.runtime})[/dim]",
        title=title,
        border_style=style,
    ))
    if result.test_results is not None:
        display_test_result(result.test_results)


def display_code_result(result: CodeResult) -> None:
    if result.denied or result.aborted or result.error:
        console.print(Panel(
            f"[red]{result.error}[/red]", title="Error", border_style="red"
        ))
        return
    for case in result.results:
        mark = "[green]✓[/green]" if case.passed else "[red]✗[/red]"
        detail = f"  [red]{case.error}[/red]" if case.error else ""
        console.print(
            f"{mark} {json.dumps(case.input)} -> {json.dumps(case.actual)}"
            f" (expected {json.dumps(case.expected)}){detail}"
        )
    colour = "green" if result.passed else "red"
    console.print(
        f"[{colour}]{result.passed_count}/{result.total} passed[/{colour}]"
    )


def _emit(data: dict[str, Any], as_json: bool) -> bool:
    if as_json:
        console.print_json(json.dumps(data))
    return as_json


# ── Commands ───────────────────────────────────────────────────────


def match_command(
    description: str = typer.Argument(..., help="What the regex should match"),
    should_match: list[str] = typer.Option(
        [], "--match", "-m", help="A string that must match (repeatable)"
    ),
    should_not_match: list[str] = typer.Option(
        [], "--no-match", "-n", help="A string that must not match (repeatable)"
    ),
    runtime: str | None = typer.Option(None, "--runtime", "-r", help="javascript or python"),
    max_iterations: int | None = typer.Option(None, "--max-iterations", help="Iteration budget"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw result as JSON"),
) -> None:
    """Synthesize a regex that matches and rejects the given examples."""
    load_credentials()
    config = load_config()
    request = MatchRequest(
        description=description,
        should_match=tuple(should_match),
        should_not_match=tuple(should_not_match),
    )
    _run_and_display(config, request, runtime, max_iterations, as_json)


def capture_command(
    description: str = typer.Argument(..., help="What the groups should capture"),
    inputs: list[str] = typer.Option(
        [], "--input", "-i", help="An input string (repeatable)"
    ),
    groups: list[str] = typer.Option(
        [], "--groups", "-g", help='Expected groups as JSON, e.g. \'["2024","01"]\''
    ),
    runtime: str | None = typer.Option(None, "--runtime", "-r", help="javascript or python"),
    max_iterations: int | None = typer.Option(None, "--max-iterations", help="Iteration budget"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw result as JSON"),
) -> None:
    """Synthesize a regex whose capture groups extract the expected values."""
    load_credentials()
    config = load_config()
    request = CaptureRequest(
        description=description, capture_tests=_capture_tests(inputs, groups)
    )
    _run_and_display(config, request, runtime, max_iterations, as_json)


def _run_and_display(
    config: RegexsmithConfig,
    request: RegexRequest,
    runtime: str | None,
    max_iterations: int | None,
    as_json: bool,
) -> None:
    try:
        request.validate()
        result = asyncio.run(run_synthesis(
            config,
            request,
            _check_runtime(runtime or config.synthesis.default_runtime),
            max_iterations or config.synthesis.max_iterations,
        ))
    except RegexsmithError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc

    if not _emit(result.to_dict(), as_json):
        display_generation(result)
    if not result.success:
        raise typer.Exit(1)


def code_command(
    description: str = typer.Argument(..., help="What the code should do"),
    inputs: list[str] = typer.Option(
        [], "--input", "-i", help="An input string (repeatable)"
    ),
    expected: list[str] = typer.Option(
        [], "--expect", "-e", help="Expected output as JSON (repeatable)"
    ),
    runtime: str = typer.Option("python", "--runtime", "-r", help="javascript or python"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw result as JSON"),
) -> None:
    """Generate code for a transformation a regex cannot express."""
    if len(inputs) != len(expected):
        console.print("[red]Give exactly one --expect for every --input[/red]")
        raise typer.Exit(2)
    load_credentials()
    config = load_config()
    request = CodeRequest(
        description=description,
        runtime=_check_runtime(runtime),
        tests=tuple(
            CodeTest(input=i, expected_output=e)
            for i, e in zip(inputs, _parse_json_values(expected, "--expect"))
        ),
    )
    try:
        request.validate()
        result = asyncio.run(run_code(config, request))
    except RegexsmithError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc

    if not _emit(result.to_dict(), as_json):
        display_code_result(result)
    if not result.success:
        raise typer.Exit(1)


def verify_command(
    pattern: str = typer.Argument(..., help="Pattern without delimiters"),
    flags: str = typer.Option("", "--flags", "-f", help="Regex flags"),
    should_match: list[str] = typer.Option(
        [], "--match", "-m", help="A string that must match (repeatable)"
    ),
    should_not_match: list[str] = typer.Option(
        [], "--no-match", "-n", help="A string that must not match (repeatable)"
    ),
    inputs: list[str] = typer.Option(
        [], "--input", "-i", help="Capture mode: input string (repeatable)"
    ),
    groups: list[str] = typer.Option(
        [], "--groups", "-g", help="Capture mode: expected groups as JSON"
    ),
    runtime: str | None = typer.Option(None, "--runtime", "-r", help="javascript or python"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw result as JSON"),
) -> None:
    """Verify an existing pattern against examples, without generation."""
    from regexsmith_agent.executor import validate_regex_syntax
    from regexsmith_runtime.builder import RuntimeBuilder

    config = load_config()
    rt = _check_runtime(runtime or config.synthesis.default_runtime)
    request: RegexRequest
    if inputs:
        request = CaptureRequest(
            description="", capture_tests=_capture_tests(inputs, groups)
        )
    else:
        request = MatchRequest(
            description="",
            should_match=tuple(should_match),
            should_not_match=tuple(should_not_match),
        )

    syntax_error = validate_regex_syntax(pattern, flags, rt)
    if syntax_error:
        console.print(f"[red]{syntax_error}[/red]")
        raise typer.Exit(1)

    async def _run() -> TestResult:
        ctx = await RuntimeBuilder(config).build()
        try:
            return await run_pattern_test(
                ctx, RegexCandidate(pattern=pattern, flags=flags), request, rt
            )
        finally:
            await ctx.close()

    try:
        request.validate()
        result = asyncio.run(_run())
    except RegexsmithError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc

    if not _emit(result.to_dict(), as_json):
        display_test_result(result)
    if not result.passed:
        raise typer.Exit(1)
