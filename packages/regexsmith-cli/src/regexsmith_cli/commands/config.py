from __future__ import annotations

import json
import os
from dataclasses import asdict
from pathlib import Path

import typer
from InquirerPy import inquirer
from rich.console import Console
from rich.syntax import Syntax

console = Console()

config_app = typer.Typer(
    name="config",
    help="View and manage Regexsmith configuration",
    invoke_without_command=True,
)

GLOBAL_CONFIG = Path.home() / ".regexsmith" / "config.toml"
PROJECT_CONFIG_NAME = "regexsmith.toml"


@config_app.callback(invoke_without_command=True)
def config_command(
    ctx: typer.Context,
    show_global: bool = typer.Option(
        False,
        "--global",
        "-g",
        help="Show global config only",
    ),
) -> None:
    """View configuration files."""
    if ctx.invoked_subcommand is not None:
        return

    paths = [GLOBAL_CONFIG]
    if not show_global:
        paths.append(Path.cwd() / PROJECT_CONFIG_NAME)

    found = False
    for path in paths:
        if not path.exists():
            continue
        found = True
        label = "Global" if path == GLOBAL_CONFIG else "Project"
        console.print(f"[bold]{label}[/bold] ({path}):")
        console.print(Syntax(path.read_text(), "toml", theme="monokai"))
        console.print()

    if not found:
        console.print(
            "[yellow]No config files found; defaults are in effect."
            " Run `regexsmith config show` to see them.[/yellow]"
        )


@config_app.command("show")
def config_show() -> None:
    """Show the merged configuration in effect for this directory."""
    from regexsmith_cli.commands.synth import load_config

    config = load_config()
    console.print_json(json.dumps(asdict(config)))


@config_app.command("key")
def config_key(
    use_global: bool = typer.Option(
        True,
        "--global/--project",
        help="Store in global or project credentials",
    ),
) -> None:
    """Add or change the LLM API key interactively."""
    from regexsmith_cli.commands.synth import load_config

    config = load_config()
    env_var = config.llm.api_key_env
    if config.llm.provider == "ollama":
        console.print("[yellow]Provider 'ollama' doesn't use an API key.[/yellow]")
        return

    console.print(f"[bold]Provider:[/bold] {config.llm.provider} ({env_var})")

    key = inquirer.secret(message="Paste your API key").execute()
    if not key or not key.strip():
        console.print("[yellow]No key provided.[/yellow]")
        return
    key = key.strip()

    base = Path.home() if use_global else Path.cwd()
    creds_path = base / ".regexsmith" / "credentials.json"

    existing: dict = {}
    if creds_path.exists():
        try:
            existing = json.loads(creds_path.read_text())
        except ValueError:
            console.print(
                f"[yellow]{creds_path} was not valid JSON; rewriting it.[/yellow]"
            )

    existing[env_var] = key
    creds_path.parent.mkdir(parents=True, exist_ok=True)
    creds_path.write_text(json.dumps(existing, indent=2))
    creds_path.chmod(0o600)

    os.environ[env_var] = key
    console.print("[green]✓[/green] API key saved")
