"""Agregator status command - Event lifecycle operations.

Every command prints a one-line summary and exits 0 on success, non-zero
otherwise, so they can be driven from cron or shell scripts.
"""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from agregator_cli.cli.error_handler import NotFoundError, TransitionError, handle_errors
from agregator_cli.cli.exit_codes import ExitCode
from agregator_cli.cli.output import print_json, print_result

app = typer.Typer(help="Manage event statuses (expiry sweep, moderation).")
console = Console()

CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to configuration file.",
)


def _job_system(config_file: Optional[Path]):
    from agregator_cli.config import load_config
    from agregator_cli.runtime import build_job_system

    return build_job_system(load_config(config_file))


def _apply(config_file: Optional[Path], event_id: int, action: str, verb: str) -> None:
    """Run one manual transition and report it."""
    from agregator_cli.database.connection import session_scope
    from agregator_cli.database.repositories import EventRepository

    system = _job_system(config_file)
    if getattr(system.status_manager, action)(event_id):
        print_result(True, f"Event {event_id} {verb}")
        return

    with session_scope(system.session_factory) as session:
        event = EventRepository(session).get_by_id(event_id)
    if event is None:
        raise NotFoundError(f"Event {event_id} not found")
    raise TransitionError(
        f"Event {event_id} cannot be {verb} from status {event.status}"
    )


@app.command("update")
@handle_errors
def update(
    config_file: Optional[Path] = CONFIG_OPTION,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Expire every ACTIVE or DRAFT event whose end date has passed.

    Example:
        agregator status update
    """
    result = _job_system(config_file).status_manager.sweep_expired()

    if json_output:
        print_json(result.to_dict())
    else:
        print_result(result.complete, result.details)

    if not result.complete:
        console.print(f"[yellow]Failed to update events: {result.failed_ids}[/yellow]")
        raise typer.Exit(code=ExitCode.SWEEP_INCOMPLETE)


@app.command("stats")
@handle_errors
def stats(
    config_file: Optional[Path] = CONFIG_OPTION,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Show the number of events in each status.

    Example:
        agregator status stats
    """
    statistics = _job_system(config_file).status_manager.get_statistics()

    if json_output:
        print_json(statistics.to_dict())
        return

    console.print(
        f"Active: {statistics.active}, Expired: {statistics.expired}, "
        f"Draft: {statistics.draft}, Archived: {statistics.archived}, "
        f"Total: {statistics.total}"
    )


@app.command("expire")
@handle_errors
def expire(
    event_id: int = typer.Argument(..., help="ID of the event to expire."),
    config_file: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Expire an event now, regardless of its dates.

    Example:
        agregator status expire 42
    """
    _apply(config_file, event_id, "force_expire", "expired")


@app.command("reactivate")
@handle_errors
def reactivate(
    event_id: int = typer.Argument(..., help="ID of the expired event to reactivate."),
    config_file: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Move an EXPIRED event back to ACTIVE.

    Example:
        agregator status reactivate 42
    """
    _apply(config_file, event_id, "force_reactivate", "reactivated")


@app.command("approve")
@handle_errors
def approve(
    event_id: int = typer.Argument(..., help="ID of the draft event to publish."),
    config_file: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Publish a DRAFT event.

    Example:
        agregator status approve 42
    """
    _apply(config_file, event_id, "approve", "approved")


@app.command("archive")
@handle_errors
def archive(
    event_id: int = typer.Argument(..., help="ID of the event to archive."),
    config_file: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Archive an event. Archived events never change status again.

    Example:
        agregator status archive 42
    """
    _apply(config_file, event_id, "archive", "archived")


@app.command("help")
def show_help() -> None:
    """Show the available status commands."""
    console.print("[bold]Event status commands[/bold]")
    console.print("  [cyan]update[/cyan]            Expire events whose end date has passed")
    console.print("  [cyan]stats[/cyan]             Count events by status")
    console.print("  [cyan]expire <id>[/cyan]       Expire a DRAFT or ACTIVE event now")
    console.print("  [cyan]reactivate <id>[/cyan]   Move an EXPIRED event back to ACTIVE")
    console.print("  [cyan]approve <id>[/cyan]      Publish a DRAFT event")
    console.print("  [cyan]archive <id>[/cyan]      Archive an event permanently")
