"""Background job orchestration.

The scheduler enqueues instances of recurring definitions into the durable
job store; the worker pool claims and runs them through the handler table.
"""

from agregator_cli.scheduler.handlers import HandlerRegistry, build_handlers
from agregator_cli.scheduler.job_scheduler import (
    JobDefinition,
    JobScheduler,
    RegistrationResult,
    default_definitions,
)
from agregator_cli.scheduler.job_store import JobState, JobStore, JobType
from agregator_cli.scheduler.worker_pool import RetryPolicy, WorkerPool

__all__ = [
    "HandlerRegistry",
    "build_handlers",
    "JobDefinition",
    "JobScheduler",
    "RegistrationResult",
    "default_definitions",
    "JobState",
    "JobStore",
    "JobType",
    "RetryPolicy",
    "WorkerPool",
]
