"""Main CLI entry point for Agregator."""

import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from agregator_cli import __app_name__, __version__
from agregator_cli.cli import config, jobs, run, scrapers, status
from agregator_cli.cli.exit_codes import ExitCode

app = typer.Typer(
    name=__app_name__,
    help="Agregator CLI - Scheduled event scraping and event lifecycle management.",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

app.add_typer(status.app, name="status")
app.add_typer(jobs.app, name="jobs")
app.add_typer(scrapers.app, name="scrapers")
app.add_typer(run.app, name="run")
app.add_typer(config.app, name="config")

_global_state: dict[str, bool] = {
    "verbose": False,
    "debug": False,
    "quiet": False,
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"{__app_name__} v{__version__}")
        raise typer.Exit(code=ExitCode.SUCCESS)


def _setup_logging(
    verbose: bool = False,
    debug: bool = False,
    quiet: bool = False,
    log_file: Optional[Path] = None,
) -> None:
    """Set up logging configuration based on CLI options.

    Args:
        verbose: Enable INFO level logging
        debug: Enable DEBUG level logging
        quiet: Only log errors
        log_file: Optional log file path (always DEBUG)
    """
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING

    if debug:
        format_str = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
    else:
        format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    handlers: list[logging.Handler] = []

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        handlers.append(file_handler)

    if not quiet:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        handlers.append(console_handler)
    elif not log_file:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=logging.DEBUG if log_file else level,
        format=format_str,
        handlers=handlers,
        force=True,
    )

    # APScheduler logs every job run at INFO
    logging.getLogger("apscheduler").setLevel(max(level, logging.WARNING))

    logging.getLogger(__name__).debug(
        f"Logging configured: level={logging.getLevelName(level)}, debug={debug}"
    )


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-V",
        help="Enable verbose output (INFO level logging).",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug mode (DEBUG level logging).",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Suppress non-error output.",
    ),
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        help="Log to file (logs DEBUG level regardless of console settings).",
    ),
) -> None:
    """Agregator CLI - Scheduled event scraping and event lifecycle management.

    [bold]Commands:[/bold]

    • [cyan]status[/cyan] - Expire past events, moderate event statuses
    • [cyan]jobs[/cyan] - Manage recurring jobs and job instances
    • [cyan]scrapers[/cyan] - List and run event scrapers
    • [cyan]run[/cyan] - Start the daemon (scheduler and workers)
    • [cyan]config[/cyan] - Inspect configuration

    [bold]Examples:[/bold]

        agregator status update
        agregator jobs register-defaults
        agregator run --daemon

    For more help on a specific command, use: [cyan]agregator <command> --help[/cyan]
    """
    _global_state["verbose"] = verbose
    _global_state["debug"] = debug
    _global_state["quiet"] = quiet

    if quiet and (verbose or debug):
        console.print("[red]Error:[/red] --quiet cannot be combined with --verbose or --debug")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    _setup_logging(verbose=verbose, debug=debug, quiet=quiet, log_file=log_file)
    logging.getLogger(__name__).debug(f"Agregator CLI v{__version__} starting")


def is_verbose() -> bool:
    """True if verbose or debug mode is enabled."""
    return _global_state.get("verbose", False) or _global_state.get("debug", False)


def is_quiet() -> bool:
    return _global_state.get("quiet", False)


__all__ = ["app", "is_verbose", "is_quiet"]


if __name__ == "__main__":
    app()
