"""Exceptions for job scheduling and execution."""


class SchedulerError(Exception):
    """Base exception for scheduler errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ScheduleInvalid(SchedulerError):
    """Raised when a cron pattern cannot be parsed."""

    def __init__(self, schedule: str, reason: str | None = None) -> None:
        message = f"Invalid cron schedule: '{schedule}'"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.schedule = schedule
        self.reason = reason


class StoreUnavailable(SchedulerError):
    """Raised when the job or event store cannot be reached."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message} (cause: {self.cause})"
        return self.message


class NonRetryableJobError(SchedulerError):
    """Raised by handlers for failures that must not be retried."""
    pass


class UnknownJobType(NonRetryableJobError):
    """Raised when no handler is registered for a job type."""

    def __init__(self, job_type: str) -> None:
        super().__init__(f"No handler registered for job type '{job_type}'")
        self.job_type = job_type


class InvalidJobPayload(NonRetryableJobError):
    """Raised when a job payload is missing fields or has the wrong shape."""

    def __init__(self, job_type: str, reason: str) -> None:
        super().__init__(f"Invalid payload for '{job_type}' job: {reason}")
        self.job_type = job_type
        self.reason = reason


class SweepIncomplete(SchedulerError):
    """Raised when a status sweep could not update every eligible event.

    Retryable: the sweep is idempotent, so running it again only touches
    the events that failed.
    """

    def __init__(self, failed_ids: list[int], updated_count: int = 0) -> None:
        super().__init__(
            f"Status sweep left {len(failed_ids)} event(s) unchanged "
            f"({updated_count} updated)"
        )
        self.failed_ids = list(failed_ids)
        self.updated_count = updated_count
