"""Output formatting utilities for Agregator CLI.

Human-readable tables and key/value blocks for interactive use, JSON for
scripts (``--json``).
"""

import json
from datetime import datetime
from typing import Any, Dict, List

from rich.console import Console
from rich.json import JSON as RichJSON
from rich.table import Table

console = Console()


def print_json(data: Any, console_instance: Console | None = None) -> None:
    """Print data as formatted JSON.

    Args:
        data: Data to print; datetimes and other objects are stringified
        console_instance: Optional custom console instance
    """
    prog_console = console_instance or console
    json_str = json.dumps(data, indent=2, default=str)
    prog_console.print(RichJSON(json_str))


def format_timestamp(value: datetime | None) -> str:
    """Format a stored timestamp for table cells."""
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M:%S")


def print_table(
    data: List[Dict[str, Any]],
    columns: List[str],
    title: str | None = None,
    column_styles: Dict[str, str] | None = None,
    console_instance: Console | None = None,
) -> None:
    """Print data as a formatted table.

    Args:
        data: List of dictionaries containing row data
        columns: List of column keys to display
        title: Optional table title
        column_styles: Optional dict mapping column names to Rich styles
        console_instance: Optional custom console instance

    Example:
        print_table(
            [{"state": "pending", "count": 3}, {"state": "active", "count": 1}],
            ["state", "count"],
            title="Job Instances",
        )
    """
    prog_console = console_instance or console
    column_styles = column_styles or {}

    table = Table(title=title)
    for col in columns:
        table.add_column(col.replace("_", " ").title(), style=column_styles.get(col))

    for row in data:
        values = []
        for col in columns:
            value = row.get(col, "")
            if value is None:
                value = ""
            elif isinstance(value, bool):
                value = "[green]Yes[/green]" if value else "[red]No[/red]"
            elif isinstance(value, datetime):
                value = format_timestamp(value)
            values.append(str(value))
        table.add_row(*values)

    prog_console.print(table)


def print_result(
    success: bool,
    message: str,
    details: Dict[str, Any] | None = None,
    console_instance: Console | None = None,
) -> None:
    """Print an operation result as a single styled line plus optional details.

    Example:
        print_result(True, "Updated 3 events to EXPIRED")
        print_result(False, "Event 7 cannot be archived", {"status": "ARCHIVED"})
    """
    prog_console = console_instance or console

    icon = "[green]✓[/green]" if success else "[red]✗[/red]"
    prog_console.print(f"{icon} {message}")

    if details:
        for key, value in details.items():
            if value is not None:
                prog_console.print(f"  [dim]{key}:[/dim] {value}")


def print_key_value(
    data: Dict[str, Any],
    title: str | None = None,
    key_style: str = "cyan",
    console_instance: Console | None = None,
) -> None:
    """Print data as aligned key-value pairs."""
    prog_console = console_instance or console

    if title:
        prog_console.print(f"[bold]{title}[/bold]")
        prog_console.print()

    max_key_len = max(len(str(k)) for k in data.keys()) if data else 0

    for key, value in data.items():
        if isinstance(value, bool):
            formatted = "[green]Yes[/green]" if value else "[red]No[/red]"
        elif isinstance(value, (int, float)):
            formatted = f"[yellow]{value}[/yellow]"
        elif isinstance(value, datetime):
            formatted = format_timestamp(value)
        else:
            formatted = str(value) if value is not None else "[dim]N/A[/dim]"

        padded_key = str(key).ljust(max_key_len)
        prog_console.print(f"  [{key_style}]{padded_key}[/{key_style}] : {formatted}")
