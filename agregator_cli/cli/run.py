"""Agregator run command - Start the daemon with scheduler and worker pool."""

import asyncio
import atexit
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from agregator_cli.cli.error_handler import to_agregator_error
from agregator_cli.cli.exit_codes import ExitCode
from agregator_cli.cli.output import print_key_value

app = typer.Typer(help="Start the Agregator daemon (scheduler and workers).")
console = Console()

logger = logging.getLogger(__name__)

PID_FILENAME = "agregator.pid"


def _pid_file(config_file: Optional[Path]):
    from agregator_cli.config import load_config
    from agregator_cli.daemon.pid import PIDFile

    config = load_config(config_file)
    return config, PIDFile(config.data_dir / PID_FILENAME)


@app.callback(invoke_without_command=True)
def run(
    ctx: typer.Context,
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    daemon: bool = typer.Option(
        False,
        "--daemon",
        "-d",
        help="Run in background as daemon.",
    ),
    concurrency: Optional[int] = typer.Option(
        None,
        "--concurrency",
        "-w",
        help="Number of worker threads (default: worker.concurrency).",
        min=1,
        max=64,
    ),
) -> None:
    """Start the daemon: register recurring jobs, run the clock and the workers.

    Runs until SIGTERM or Ctrl+C, then drains running jobs before exiting.

    Example:
        agregator run
        agregator run --daemon --concurrency 8
    """
    if ctx.invoked_subcommand is not None:
        return

    from agregator_cli.config import ensure_directories
    from agregator_cli.daemon.service import daemonize, run_daemon

    config, pid_file = _pid_file(config_file)
    ensure_directories(config)

    if pid_file.is_running():
        console.print("[red]Error: Daemon is already running[/red]")
        console.print(f"[yellow]PID: {pid_file.read()}[/yellow]")
        raise typer.Exit(code=ExitCode.GENERAL_ERROR)

    pid_file.clear_if_stale()

    console.print("[bold green]Starting Agregator daemon...[/bold green]")
    console.print(f"  Workers: {concurrency or config.worker.concurrency}")
    console.print(f"  Database: {config.database_url}")

    if daemon:
        if sys.platform == "win32":
            console.print("[yellow]Warning: Daemon mode not supported on Windows, running in foreground[/yellow]")
        else:
            console.print("[dim]Forking to background...[/dim]")
            daemonize(config.logging.file or config.data_dir / "daemon.log")

    try:
        pid_file.create()
    except OSError as e:
        console.print(f"[red]Error: Failed to create PID file: {e}[/red]")
        raise typer.Exit(code=ExitCode.GENERAL_ERROR)

    atexit.register(pid_file.remove)

    try:
        asyncio.run(run_daemon(config, {"concurrency": concurrency}))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
    except Exception as e:
        logger.exception("Daemon error")
        error = to_agregator_error(e)
        console.print(f"[red]Daemon error: {e}[/red]")
        raise typer.Exit(code=error.exit_code if error else ExitCode.GENERAL_ERROR)


@app.command()
def status(
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
    ),
) -> None:
    """Check whether the daemon is running.

    Example:
        agregator run status
    """
    config, pid_file = _pid_file(config_file)

    if pid_file.is_running():
        console.print(f"[green]● Daemon is running[/green] (PID: {pid_file.read()})")
        print_key_value({
            "Data directory": config.data_dir,
            "Database": config.database_url,
            "Workers": config.worker.concurrency,
        })
        return

    console.print("[yellow]○ Daemon is not running[/yellow]")
    if pid_file.clear_if_stale():
        console.print("[dim]  (removed stale PID file)[/dim]")


@app.command()
def stop(
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Kill the daemon immediately (SIGKILL) instead of draining.",
    ),
) -> None:
    """Stop the daemon.

    SIGTERM lets running jobs finish within the drain timeout; jobs still
    running after it go back to pending for the next run.

    Example:
        agregator run stop
        agregator run stop --force
    """
    _, pid_file = _pid_file(config_file)
    pid = pid_file.read()

    if pid is None:
        console.print("[yellow]Daemon is not running (no PID file found)[/yellow]")
        raise typer.Exit()

    if not pid_file.is_running():
        console.print("[yellow]Daemon is not running (stale PID file)[/yellow]")
        pid_file.remove()
        raise typer.Exit()

    sig = signal.SIGKILL if force else signal.SIGTERM
    try:
        os.kill(pid, sig)
    except ProcessLookupError:
        console.print("[yellow]Daemon process not found (already stopped)[/yellow]")
        pid_file.remove()
        return
    except OSError as e:
        console.print(f"[red]Error signaling daemon {pid}: {e}[/red]")
        raise typer.Exit(code=ExitCode.GENERAL_ERROR)

    if force:
        console.print(f"[red]Force killed daemon (PID: {pid})[/red]")
        pid_file.remove()
    else:
        console.print(f"[green]Shutdown signal sent to daemon (PID: {pid})[/green]")
        console.print("[dim]Daemon will drain running jobs and exit...[/dim]")
