"""Agregator scrapers command - Inspect and run event scrapers."""

import asyncio
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console

from agregator_cli.cli.error_handler import ScraperCommandError, ValidationError, handle_errors
from agregator_cli.cli.output import print_json, print_result, print_table

app = typer.Typer(help="List and run event scrapers.")
console = Console()

CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to configuration file.",
)


def _parse_options(values: List[str]) -> dict:
    """Parse repeated ``key=value`` options."""
    options = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ValidationError(f"Invalid option '{item}', expected key=value")
        options[key.strip()] = value.strip()
    return options


@app.command("list")
@handle_errors
def list_scrapers(
    config_file: Optional[Path] = CONFIG_OPTION,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """List available scrapers.

    Example:
        agregator scrapers list
    """
    from agregator_cli.config import load_config
    from agregator_cli.scrapers.manager import ScraperManager
    from agregator_cli.scrapers.registry import ScraperRegistry

    config = load_config(config_file)
    manager = ScraperManager(
        ScraperRegistry(plugin_dirs=config.scrapers.plugin_dirs),
        settings=config.scrapers.settings,
    )

    rows = [
        {
            "name": info.name,
            "display_name": info.display_name,
            "version": info.version,
            "scheduled": info.name in config.scheduler.scraper_sources,
            "description": info.description,
        }
        for info in manager.get_all_info()
    ]

    if json_output:
        print_json(rows)
        return

    if not rows:
        console.print("[yellow]No scrapers found.[/yellow]")
        return

    print_table(
        rows,
        ["name", "display_name", "version", "scheduled", "description"],
        title="Scrapers",
        column_styles={"name": "cyan"},
    )


@app.command("run")
@handle_errors
def run_scraper(
    source: Optional[str] = typer.Argument(
        None,
        help="Name of the scraper to run (default: every registered scraper).",
    ),
    option: List[str] = typer.Option(
        [],
        "--option",
        "-o",
        help="Scraper option as key=value (repeatable).",
    ),
    save: bool = typer.Option(
        False,
        "--save",
        help="Store the events found as drafts.",
    ),
    config_file: Optional[Path] = CONFIG_OPTION,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Run one scraper, or all of them, once in this process.

    Without --save the events found are only printed.

    Example:
        agregator scrapers run test-scraper
        agregator scrapers run test-scraper --save
        agregator scrapers run --save
    """
    from agregator_cli.config import load_config
    from agregator_cli.runtime import build_job_system
    from agregator_cli.scheduler.job_store import JobType

    options = _parse_options(option)
    system = build_job_system(load_config(config_file))

    if source is None:
        _run_all(system, options, save, json_output)
        return

    if save:
        summary = system.handlers.dispatch(
            JobType.SCRAPE.value, {"source": source, "options": options}
        )
        if json_output:
            print_json(summary)
            return
        print_result(
            True,
            f"{source}: found {summary['events_found']} events, "
            f"{summary['new_events']} new, {summary['updated_events']} updated",
        )
        return

    result = asyncio.run(system.scraper_manager.run(source, options))

    rows = [
        {
            "title": e.title,
            "start_date": e.start_date,
            "end_date": e.end_date,
            "location": e.location_name,
        }
        for e in result.events
    ]

    if json_output:
        print_json(rows)
        return

    print_table(rows, ["title", "start_date", "end_date", "location"], title=f"Events from {source}")
    print_result(True, f"{source}: found {result.events_count} events")


def _run_all(system, options: dict, save: bool, json_output: bool) -> None:
    """Run every registered scraper and report a per-source summary."""
    from agregator_cli.scheduler.handlers import store_scrape_result

    summary = asyncio.run(system.scraper_manager.run_all(options))

    rows = []
    for name, result in summary.results.items():
        row = {"source": name, "status": "ok", "events_found": result.events_count}
        if save:
            row["new_events"], row["updated_events"] = store_scrape_result(
                system.session_factory, result
            )
        rows.append(row)
    for name, error in summary.errors.items():
        rows.append({"source": name, "status": "failed", "error": error})

    if json_output:
        print_json({
            "total": summary.total,
            "successful": summary.successful,
            "failed": summary.failed,
            "scrapers": rows,
        })
    else:
        for row in rows:
            if row["status"] == "failed":
                print_result(False, f"{row['source']}: {row['error']}")
            elif save:
                print_result(
                    True,
                    f"{row['source']}: found {row['events_found']} events, "
                    f"{row['new_events']} new, {row['updated_events']} updated",
                )
            else:
                print_result(True, f"{row['source']}: found {row['events_found']} events")
        console.print(
            f"Scrapers: {summary.total} total, {summary.successful} successful, "
            f"{summary.failed} failed"
        )

    if summary.failed:
        raise ScraperCommandError(
            f"{summary.failed} of {summary.total} scrapers failed",
            details={"failed": ", ".join(sorted(summary.errors))},
        )
