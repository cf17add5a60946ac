"""CLI command modules for Agregator.

Each module exposes a Typer ``app`` mounted by ``agregator_cli.main``.
"""

from agregator_cli.cli import config, jobs, run, scrapers, status

from agregator_cli.cli.exit_codes import ExitCode
from agregator_cli.cli.error_handler import (
    AgregatorError,
    ConfigurationError,
    IncompleteError,
    JobError,
    NotFoundError,
    ScraperCommandError,
    StoreError,
    TransitionError,
    ValidationError,
    handle_errors,
)
from agregator_cli.cli.output import (
    print_json,
    print_key_value,
    print_result,
    print_table,
)

__all__ = [
    # Command modules
    "config",
    "jobs",
    "run",
    "scrapers",
    "status",
    # Exit codes
    "ExitCode",
    # Error handling
    "AgregatorError",
    "ConfigurationError",
    "IncompleteError",
    "JobError",
    "NotFoundError",
    "ScraperCommandError",
    "StoreError",
    "TransitionError",
    "ValidationError",
    "handle_errors",
    # Output
    "print_json",
    "print_key_value",
    "print_result",
    "print_table",
]
