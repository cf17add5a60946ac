"""Global exception handling for Agregator CLI.

Commands raise ``AgregatorError`` subclasses (or let scheduler and database
errors escape) and the ``handle_errors`` decorator turns them into a one-line
message on stderr and a matching exit code.
"""

from functools import wraps
from typing import Any, Callable, TypeVar
import logging

import typer
from rich.console import Console
from sqlalchemy.exc import OperationalError

from agregator_cli.cli.exit_codes import ExitCode
from agregator_cli.scheduler.exceptions import (
    ScheduleInvalid,
    SchedulerError,
    StoreUnavailable,
    SweepIncomplete,
)
from agregator_cli.scrapers.base import ScraperError, ScraperNotFound

console = Console(stderr=True)

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class AgregatorError(Exception):
    """Base exception for Agregator CLI.

    Attributes:
        message: Error message
        exit_code: Exit code to use when exiting
        details: Optional dictionary of additional error details
    """

    exit_code: int = ExitCode.GENERAL_ERROR

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if exit_code is not None:
            self.exit_code = exit_code
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigurationError(AgregatorError):
    """Invalid config file, environment override or cron pattern."""

    exit_code = ExitCode.CONFIGURATION_ERROR


class ScraperCommandError(AgregatorError):
    """A scraper could not be loaded or failed while running."""

    exit_code = ExitCode.SCRAPER_ERROR


class JobError(AgregatorError):
    """A job definition or instance operation failed."""

    exit_code = ExitCode.JOB_ERROR


class StoreError(AgregatorError):
    """The database could not be reached."""

    exit_code = ExitCode.STORE_UNAVAILABLE


class IncompleteError(AgregatorError):
    """A sweep finished with events left unprocessed."""

    exit_code = ExitCode.SWEEP_INCOMPLETE


class ValidationError(AgregatorError):
    """User input failed validation."""

    exit_code = ExitCode.INVALID_ARGUMENT


class NotFoundError(AgregatorError):
    """Requested event, job or scraper does not exist."""

    exit_code = ExitCode.NOT_FOUND


class TransitionError(AgregatorError):
    """The event's current status does not allow the requested change."""

    exit_code = ExitCode.INVALID_TRANSITION


def to_agregator_error(error: Exception) -> AgregatorError | None:
    """Map a domain exception to its CLI counterpart, or None if unmapped."""
    if isinstance(error, AgregatorError):
        return error
    if isinstance(error, StoreUnavailable):
        return StoreError(str(error))
    if isinstance(error, OperationalError):
        return StoreError(f"Database unavailable: {error.orig}")
    if isinstance(error, ScheduleInvalid):
        return ConfigurationError(str(error))
    if isinstance(error, SweepIncomplete):
        return IncompleteError(str(error), details={"failed_ids": error.failed_ids})
    if isinstance(error, ScraperNotFound):
        return NotFoundError(str(error))
    if isinstance(error, ScraperError):
        return ScraperCommandError(str(error))
    if isinstance(error, SchedulerError):
        return JobError(str(error))
    return None


def handle_errors(func: F) -> F:
    """Decorator for consistent error handling across CLI commands.

    Example:
        @app.command()
        @handle_errors
        def my_command():
            raise ConfigurationError("Invalid config")
    """
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)

        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user.[/yellow]")
            logger.info("Operation cancelled by user (KeyboardInterrupt)")
            raise typer.Exit(code=ExitCode.CANCELLED)

        except typer.Exit:
            raise

        except Exception as e:
            error = to_agregator_error(e)
            if error is None:
                logger.exception("Unexpected error occurred")
                console.print(f"[red]Unexpected error:[/red] {e}")
                console.print("[dim]Run with --verbose for more details[/dim]")
                raise typer.Exit(code=ExitCode.GENERAL_ERROR)

            logger.error(
                f"{type(error).__name__}: {error.message}",
                extra={"exit_code": error.exit_code, "details": error.details},
            )
            console.print(f"[red]Error:[/red] {error.message}")
            for key, value in error.details.items():
                console.print(f"  [dim]{key}:[/dim] {value}")
            raise typer.Exit(code=error.exit_code)

    return wrapper  # type: ignore[return-value]
