"""Agregator jobs command - Manage recurring jobs and their instances."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from agregator_cli.cli.error_handler import NotFoundError, ValidationError, handle_errors
from agregator_cli.cli.exit_codes import ExitCode
from agregator_cli.cli.output import print_json, print_result, print_table

app = typer.Typer(help="Manage recurring jobs and job instances.")
console = Console()

CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to configuration file.",
)

# Upper bound on inline executions for one `jobs run --execute`
MAX_INLINE_RUNS = 10


def _job_system(config_file: Optional[Path]):
    from agregator_cli.config import load_config
    from agregator_cli.runtime import build_job_system

    return build_job_system(load_config(config_file))


@app.command("list")
@handle_errors
def list_jobs(
    config_file: Optional[Path] = CONFIG_OPTION,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """List recurring job definitions.

    Example:
        agregator jobs list
    """
    definitions = _job_system(config_file).scheduler.definitions

    rows = [
        {
            "id": d.logical_id,
            "type": d.job_type.value,
            "schedule": d.schedule,
            "enabled": d.enabled,
            "last_enqueued": d.last_enqueued_at,
            "next_run": d.next_run,
        }
        for d in definitions
    ]

    if json_output:
        print_json(rows)
        return

    if not rows:
        console.print("[yellow]No recurring jobs registered.[/yellow]")
        console.print("Run [cyan]agregator jobs register-defaults[/cyan] to add them.")
        return

    print_table(
        rows,
        ["id", "type", "schedule", "enabled", "last_enqueued", "next_run"],
        title="Recurring Jobs",
        column_styles={"id": "cyan", "type": "magenta", "schedule": "green"},
    )


@app.command("register-defaults")
@handle_errors
def register_defaults(
    config_file: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Register the status sweep and one scrape job per configured source.

    Running it again changes nothing unless the configuration changed.

    Example:
        agregator jobs register-defaults
    """
    results = _job_system(config_file).register_defaults()

    for logical_id, result in results.items():
        console.print(f"  [cyan]{logical_id}[/cyan]: {result.value}")
    print_result(True, f"Registered {len(results)} recurring jobs")


@app.command("remove")
@handle_errors
def remove_job(
    logical_id: str = typer.Argument(..., help="ID of the recurring job to remove."),
    config_file: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Remove a recurring job definition. Enqueued instances are kept.

    Example:
        agregator jobs remove scheduled-test-scraper
    """
    if not _job_system(config_file).scheduler.unregister(logical_id):
        raise NotFoundError(f"Recurring job not found: {logical_id}")
    print_result(True, f"Removed recurring job {logical_id}")


@app.command("run")
@handle_errors
def run_job(
    logical_id: str = typer.Argument(..., help="ID of the recurring job to run."),
    execute: bool = typer.Option(
        False,
        "--execute",
        "-x",
        help="Execute the job in this process instead of leaving it to the daemon.",
    ),
    config_file: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Enqueue a run of a recurring job outside its schedule.

    Example:
        agregator jobs run status-update
        agregator jobs run scheduled-test-scraper --execute
    """
    from agregator_cli.scheduler.job_store import JobState

    system = _job_system(config_file)
    instance = system.scheduler.enqueue_now(logical_id)
    if instance is None:
        raise NotFoundError(f"Recurring job not found: {logical_id}")

    if not execute:
        print_result(True, f"Enqueued job {instance.id} for {logical_id}")
        return

    worker_id = f"cli:{instance.id}"
    for _ in range(MAX_INLINE_RUNS):
        current = system.store.get(instance.id)
        if current is None or current.state in (JobState.COMPLETED.value, JobState.FAILED.value):
            break
        if not system.pool.run_once(worker_id):
            break

    current = system.store.get(instance.id)
    if current is None:
        raise NotFoundError(f"Job {instance.id} disappeared")

    if current.state == JobState.COMPLETED.value:
        print_result(True, f"Job {current.id} completed", current.result)
    elif current.state == JobState.FAILED.value:
        print_result(False, f"Job {current.id} failed: {current.error}")
        raise typer.Exit(code=ExitCode.JOB_ERROR)
    else:
        print_result(False, f"Job {current.id} is still {current.state}")
        raise typer.Exit(code=ExitCode.JOB_ERROR)


@app.command("instances")
@handle_errors
def list_instances(
    state: Optional[str] = typer.Option(
        None,
        "--state",
        "-s",
        help="Filter by state (pending, active, completed, failed).",
    ),
    definition: Optional[str] = typer.Option(
        None,
        "--job",
        "-j",
        help="Only instances of this recurring job.",
    ),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum rows to show."),
    config_file: Optional[Path] = CONFIG_OPTION,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """List job instances, most recent first.

    Example:
        agregator jobs instances --state failed
    """
    from agregator_cli.scheduler.job_store import JobState

    if state is not None:
        try:
            JobState(state)
        except ValueError:
            valid = ", ".join(s.value for s in JobState)
            raise ValidationError(f"Invalid state '{state}'. Choose from: {valid}")

    store = _job_system(config_file).store
    instances = store.list_instances(state=state, definition_id=definition, limit=limit)

    if json_output:
        print_json([i.to_dict() for i in instances])
        return

    rows = [
        {
            "id": i.id,
            "job": i.definition_id or "-",
            "type": i.job_type,
            "state": i.state,
            "attempt": f"{i.attempt + 1}/{i.max_attempts}",
            "run_at": i.run_at,
            "finished_at": i.finished_at,
            "error": (i.error or "")[:60],
        }
        for i in instances
    ]
    print_table(
        rows,
        ["id", "job", "type", "state", "attempt", "run_at", "finished_at", "error"],
        title="Job Instances",
        column_styles={"id": "cyan", "state": "bold"},
    )

    counts = store.counts()
    console.print(", ".join(f"{name}: {count}" for name, count in counts.items()))


@app.command("purge")
@handle_errors
def purge(
    config_file: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Reclaim expired leases and delete finished instances past retention.

    Example:
        agregator jobs purge
    """
    stats = _job_system(config_file).scheduler.run_maintenance()
    print_result(
        True,
        f"Reclaimed {stats['reclaimed']} expired leases, purged {stats['purged']} finished jobs",
    )
