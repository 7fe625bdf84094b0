from __future__ import annotations

import logging
import os

import typer
from regexsmith_core.logging import LOG_LEVEL_ENV, setup_logging

from regexsmith_cli.commands.config import config_app
from regexsmith_cli.commands.synth import (
    capture_command,
    code_command,
    match_command,
    verify_command,
)

app = typer.Typer(
    name="regexsmith",
    help="Regexsmith: synthesize and verify regular expressions from examples",
    no_args_is_help=True,
)

app.command("match")(match_command)
app.command("capture")(capture_command)
app.command("code")(code_command)
app.command("test")(verify_command)
app.add_typer(
    config_app,
    name="config",
    help="View and manage configuration",
)


@app.callback()
def _global_options(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Log debug output to stderr"
    ),
    json_logs: bool = typer.Option(
        False, "--json-logs", help="Emit logs as JSON lines"
    ),
) -> None:
    level = "DEBUG" if verbose else os.environ.get(LOG_LEVEL_ENV, "WARNING")
    setup_logging(level, json_output=json_logs)


@app.command()
def serve(
    host: str | None = typer.Option(None, "--host", help="Bind address"),
    port: int | None = typer.Option(None, "--port", "-p", help="Port"),
) -> None:
    """Serve the regex test endpoint over HTTP."""
    from regexsmith_cli.commands.synth import load_config
    from regexsmith_cli.server import serve as run_server

    root_logger = setup_logging()
    if root_logger.level > logging.INFO:
        root_logger.setLevel(logging.INFO)
    config = load_config()
    run_server(
        config,
        host or config.server.host,
        port or config.server.port,
    )


@app.command()
def version() -> None:
    """Show the Regexsmith version."""
    from regexsmith_core._version import __version__
    from rich.console import Console

    Console().print(f"regexsmith {__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
