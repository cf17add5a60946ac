"""Agregator config command - Configuration inspection."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from agregator_cli.cli.exit_codes import ExitCode

app = typer.Typer(help="Inspect Agregator configuration.")
console = Console()

CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to configuration file.",
)


@app.command("show")
def show_config(
    section: Optional[str] = typer.Argument(
        None,
        help="Configuration section to show (scheduler, worker, status, scrapers, logging, paths).",
    ),
    format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format (table, yaml, json).",
    ),
    unmask: bool = typer.Option(
        False,
        "--unmask",
        help="Show credentials in the database URL.",
    ),
    config_file: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Show the effective configuration (file plus environment overrides).

    Example:
        agregator config show
        agregator config show worker
        agregator config show --format yaml
    """
    from agregator_cli.config import (
        _config_to_dict,
        export_config_json,
        export_config_yaml,
        load_config,
    )

    config = load_config(config_file)

    if format == "yaml":
        console.print(Syntax(export_config_yaml(config, mask_secrets=not unmask), "yaml", theme="monokai"))
        return
    if format == "json":
        console.print(Syntax(export_config_json(config, mask_secrets=not unmask), "json", theme="monokai"))
        return
    if format != "table":
        console.print(f"[red]Unknown format: {format}[/red]")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    data = _config_to_dict(config, mask_secrets=not unmask)
    sections = {
        "paths": {key: data[key] for key in ("config_dir", "data_dir", "database_url")},
        "scheduler": data["scheduler"],
        "worker": data["worker"],
        "status": data["status"],
        "scrapers": data["scrapers"],
        "logging": data["logging"],
    }

    if section is not None and section not in sections:
        console.print(f"[red]Unknown section: {section}[/red]")
        console.print(f"Available: {', '.join(sections)}")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    for name in [section] if section else sections:
        table = Table(title=name.capitalize())
        table.add_column("Key", style="cyan")
        table.add_column("Value", style="green")
        for key, value in sections[name].items():
            if isinstance(value, list):
                value = ", ".join(str(v) for v in value) or "None"
            table.add_row(key, "" if value is None else str(value))
        console.print(table)
        console.print()


@app.command("validate")
def validate_config(
    config_file: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Validate the configuration.

    Exits non-zero if any error is found; warnings are only reported.

    Example:
        agregator config validate
    """
    from agregator_cli.config import load_config, validate_config as do_validate

    config = load_config(config_file)

    console.print("[bold]Validating configuration...[/bold]")

    errors = do_validate(config)
    has_errors = any(e.severity == "error" for e in errors)

    for error in errors:
        status = "[red]✗[/red]" if error.severity == "error" else "[yellow]![/yellow]"
        console.print(f"  {status} {error.field}: {error.message}")

    if has_errors:
        console.print("[red]Configuration is invalid.[/red]")
        raise typer.Exit(code=ExitCode.CONFIGURATION_ERROR)

    console.print("[green]✓ Configuration is valid.[/green]")
