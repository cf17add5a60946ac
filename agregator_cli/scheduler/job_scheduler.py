"""Job scheduler for recurring job definitions.

Definitions are persisted in the ``recurring_jobs`` table, keyed by a stable
logical id, so registering the same definition again never creates a
second series. While running, each enabled definition is mirrored into an
APScheduler cron job; when it fires, the scheduler enqueues a job instance
keyed by the time slot it fired for. Several processes can run the
scheduler against one database: the job store drops duplicate slots.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MISSED,
)
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from agregator_cli.database.connection import session_scope
from agregator_cli.database.models import JobInstance, RecurringJob, to_utc_naive, utcnow
from agregator_cli.database.repositories import RecurringJobRepository
from agregator_cli.scheduler.cron import (
    current_slot,
    next_fire_time,
    parse_cron_trigger,
    slot_key,
    validate_schedule,
)
from agregator_cli.scheduler.exceptions import StoreUnavailable
from agregator_cli.scheduler.job_store import JobStore, JobType, RetentionPolicy

logger = logging.getLogger(__name__)

# APScheduler id of the lease reclaim / retention purge job
MAINTENANCE_JOB_ID = "__maintenance__"

STATUS_SWEEP_ID = "status-update"


class RegistrationResult(Enum):
    """Outcome of ``JobScheduler.register``."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass
class JobDefinition:
    """Definition of a recurring job.

    Attributes:
        logical_id: Stable identifier; one series per id
        job_type: What the job does
        schedule: Cron expression (5 or 6 parts, UTC)
        payload: Payload passed to the handler
        enabled: Whether the definition fires
        next_run: Next fire time (filled in by the scheduler)
        last_enqueued_at: When an instance was last enqueued
    """

    logical_id: str
    job_type: JobType
    schedule: str
    payload: Dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    next_run: Optional[datetime] = None
    last_enqueued_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.job_type = JobType(self.job_type)

    @classmethod
    def from_record(cls, record: RecurringJob) -> "JobDefinition":
        return cls(
            logical_id=record.logical_id,
            job_type=JobType(record.job_type),
            schedule=record.schedule,
            payload=dict(record.payload or {}),
            enabled=record.enabled,
            next_run=record.next_run,
            last_enqueued_at=record.last_enqueued_at,
        )

    def matches(self, record: RecurringJob) -> bool:
        """True if ``record`` already stores this definition."""
        return (
            record.job_type == self.job_type.value
            and record.schedule == self.schedule
            and (record.payload or {}) == self.payload
            and record.enabled == self.enabled
        )


def default_definitions(
    status_cron: str,
    scraper_cron: str,
    scraper_sources: Iterable[str],
) -> List[JobDefinition]:
    """The status sweep plus one scrape definition per source."""
    definitions = [
        JobDefinition(
            logical_id=STATUS_SWEEP_ID,
            job_type=JobType.STATUS_UPDATE,
            schedule=status_cron,
        )
    ]
    for source in scraper_sources:
        definitions.append(JobDefinition(
            logical_id=f"scheduled-{source}",
            job_type=JobType.SCRAPE,
            schedule=scraper_cron,
            payload={"source": source, "options": {}},
        ))
    return definitions


class JobScheduler:
    """Registers recurring definitions and enqueues their instances on time.

    Example:
        scheduler = JobScheduler(store, get_session_maker())
        scheduler.register(JobDefinition("status-update", JobType.STATUS_UPDATE, "0 * * * *"))
        scheduler.start()
    """

    def __init__(
        self,
        store: JobStore,
        session_factory: sessionmaker,
        max_attempts: int = 3,
        maintenance_interval: float = 300.0,
        retention: Optional[RetentionPolicy] = None,
    ) -> None:
        """Initialize the job scheduler.

        Args:
            store: Job store receiving enqueued instances
            session_factory: Session factory for the definition table
            max_attempts: Attempts allowed per scheduled instance
            maintenance_interval: Seconds between lease reclaim / purge runs
            retention: Retention window for finished instances
        """
        self._store = store
        self._session_factory = session_factory
        self._max_attempts = max_attempts
        self._maintenance_interval = maintenance_interval
        self._retention = retention or RetentionPolicy()
        self._scheduler: Optional[BackgroundScheduler] = None

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._scheduler is not None

    @property
    def definitions(self) -> List[JobDefinition]:
        """All registered definitions."""
        try:
            with session_scope(self._session_factory) as session:
                records = RecurringJobRepository(session).get_all()
                return [JobDefinition.from_record(r) for r in records]
        except OperationalError as e:
            raise StoreUnavailable("Could not load job definitions", e) from e

    def get_definition(self, logical_id: str) -> Optional[JobDefinition]:
        try:
            with session_scope(self._session_factory) as session:
                record = RecurringJobRepository(session).get_by_logical_id(logical_id)
                return JobDefinition.from_record(record) if record else None
        except OperationalError as e:
            raise StoreUnavailable(f"Could not load job definition {logical_id}", e) from e

    def register(self, definition: JobDefinition) -> RegistrationResult:
        """
        Register or update a recurring definition.

        Idempotent by logical id: an unchanged definition is a no-op and a
        changed one updates the existing series in place.

        Args:
            definition: Definition to register

        Returns:
            Whether the definition was created, updated or left unchanged

        Raises:
            ScheduleInvalid: If the cron pattern cannot be parsed
            StoreUnavailable: If the definition table cannot be reached
        """
        validate_schedule(definition.schedule)
        next_run = next_fire_time(definition.schedule, datetime.now(timezone.utc))

        try:
            with session_scope(self._session_factory) as session:
                repo = RecurringJobRepository(session)
                existing = repo.get_by_logical_id(definition.logical_id)

                if existing is None:
                    repo.create(
                        logical_id=definition.logical_id,
                        job_type=definition.job_type.value,
                        schedule=definition.schedule,
                        payload=definition.payload,
                        enabled=definition.enabled,
                        next_run=to_utc_naive(next_run),
                    )
                    result = RegistrationResult.CREATED
                elif definition.matches(existing):
                    result = RegistrationResult.UNCHANGED
                else:
                    repo.update(
                        definition.logical_id,
                        job_type=definition.job_type.value,
                        schedule=definition.schedule,
                        payload=definition.payload,
                        enabled=definition.enabled,
                        next_run=to_utc_naive(next_run),
                    )
                    result = RegistrationResult.UPDATED
        except OperationalError as e:
            raise StoreUnavailable(
                f"Could not register job definition {definition.logical_id}", e
            ) from e

        definition.next_run = to_utc_naive(next_run)

        if result is not RegistrationResult.UNCHANGED:
            logger.info(
                f"Job definition {definition.logical_id} {result.value} "
                f"with schedule '{definition.schedule}'"
            )
        else:
            logger.debug(f"Job definition {definition.logical_id} unchanged")

        if self._scheduler is not None:
            self._sync_to_apscheduler(definition)

        return result

    def unregister(self, logical_id: str) -> bool:
        """
        Remove a definition. Already enqueued instances are left alone.

        Returns:
            True if the definition existed
        """
        try:
            with session_scope(self._session_factory) as session:
                removed = RecurringJobRepository(session).delete(logical_id)
        except OperationalError as e:
            raise StoreUnavailable(f"Could not remove job definition {logical_id}", e) from e

        if self._scheduler is not None and self._scheduler.get_job(logical_id):
            self._scheduler.remove_job(logical_id)

        if removed:
            logger.info(f"Removed job definition {logical_id}")
        return removed

    def enqueue_now(self, logical_id: str) -> Optional[JobInstance]:
        """
        Enqueue an ad-hoc run of a definition outside its schedule.

        Returns:
            The new instance, or None if the definition does not exist
        """
        definition = self.get_definition(logical_id)
        if definition is None:
            return None

        return self._store.enqueue(
            definition.job_type,
            definition.payload,
            definition_id=definition.logical_id,
            max_attempts=self._max_attempts,
        )

    def fire(self, logical_id: str, at: Optional[datetime] = None) -> Optional[JobInstance]:
        """
        Enqueue the instance for the slot containing ``at``.

        Called by the clock when a definition fires. Firing the same slot
        twice, from this or another process, enqueues nothing the second time.

        Returns:
            The new instance, or None if disabled, unknown or already enqueued
        """
        at = at or datetime.now(timezone.utc)
        definition = self.get_definition(logical_id)
        if definition is None or not definition.enabled:
            logger.warning(f"Job definition {logical_id} not found or disabled, skipping")
            return None

        slot = current_slot(definition.schedule, at)
        instance = self._store.enqueue(
            definition.job_type,
            definition.payload,
            definition_id=logical_id,
            slot_key=slot_key(logical_id, slot),
            run_at=slot,
            max_attempts=self._max_attempts,
        )

        try:
            with session_scope(self._session_factory) as session:
                RecurringJobRepository(session).update(
                    logical_id,
                    last_enqueued_at=utcnow() if instance else definition.last_enqueued_at,
                    next_run=to_utc_naive(next_fire_time(definition.schedule, slot)),
                )
        except OperationalError as e:
            logger.error(f"Could not update run times of {logical_id}: {e}")

        return instance

    def run_maintenance(self) -> Dict[str, int]:
        """Reclaim expired leases and purge old finished instances."""
        reclaimed = self._store.reclaim_expired()
        purged = self._store.purge(self._retention)
        return {"reclaimed": reclaimed, "purged": purged}

    def start(self) -> None:
        """
        Start the clock and mirror every enabled definition into it.

        Raises:
            StoreUnavailable: If the definitions cannot be loaded
        """
        if self._scheduler is not None:
            logger.warning("Scheduler already running")
            return

        logger.info("Starting job scheduler...")

        definitions = self.definitions

        self._scheduler = self._create_scheduler()
        self._setup_listeners()
        self._scheduler.start()

        for definition in definitions:
            self._sync_to_apscheduler(definition)

        self._scheduler.add_job(
            func=self._maintenance_callback,
            trigger=IntervalTrigger(seconds=self._maintenance_interval, timezone="UTC"),
            id=MAINTENANCE_JOB_ID,
            name="Lease reclaim and retention purge",
            replace_existing=True,
        )

        enabled = sum(1 for d in definitions if d.enabled)
        logger.info(f"Scheduler started with {enabled} recurring jobs")

    def stop(self, wait: bool = True) -> None:
        """Stop the clock. Enqueued instances stay in the store."""
        if self._scheduler is None:
            return

        logger.info("Stopping job scheduler...")
        self._scheduler.shutdown(wait=wait)
        self._scheduler = None
        logger.info("Scheduler stopped")

    def get_status(self) -> Dict[str, Any]:
        """Scheduler status for display."""
        next_runs: Dict[str, Optional[str]] = {}
        if self._scheduler is not None:
            for job in self._scheduler.get_jobs():
                if job.id == MAINTENANCE_JOB_ID:
                    continue
                next_runs[job.id] = job.next_run_time.isoformat() if job.next_run_time else None

        definitions = self.definitions
        return {
            "running": self.is_running,
            "definitions": len(definitions),
            "enabled": sum(1 for d in definitions if d.enabled),
            "next_runs": next_runs,
            "instances": self._store.counts(),
        }

    def _create_scheduler(self) -> BackgroundScheduler:
        """Create and configure APScheduler instance."""
        jobstores = {"default": MemoryJobStore()}

        # Callbacks only enqueue; the worker pool does the actual work
        executors = {"default": ThreadPoolExecutor(max_workers=2)}

        job_defaults = {
            "coalesce": True,  # Combine missed runs
            "max_instances": 1,  # One instance per job
            "misfire_grace_time": 60 * 5,  # 5 minutes grace
        }

        return BackgroundScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone="UTC",
        )

    def _setup_listeners(self) -> None:
        """Set up APScheduler event listeners."""
        if not self._scheduler:
            return

        def on_job_executed(event: Any) -> None:
            logger.debug(f"Clock job {event.job_id} fired")

        def on_job_error(event: Any) -> None:
            exception = getattr(event, "exception", "Unknown error")
            logger.error(f"Clock job {event.job_id} failed: {exception}")

        def on_job_missed(event: Any) -> None:
            logger.warning(f"Clock job {event.job_id} missed scheduled run")

        self._scheduler.add_listener(on_job_executed, EVENT_JOB_EXECUTED)
        self._scheduler.add_listener(on_job_error, EVENT_JOB_ERROR)
        self._scheduler.add_listener(on_job_missed, EVENT_JOB_MISSED)

    def _sync_to_apscheduler(self, definition: JobDefinition) -> None:
        """Add, replace or remove the clock job of ``definition``."""
        if self._scheduler is None:
            return

        if not definition.enabled:
            if self._scheduler.get_job(definition.logical_id):
                self._scheduler.remove_job(definition.logical_id)
            return

        self._scheduler.add_job(
            func=self._fire_callback,
            trigger=parse_cron_trigger(definition.schedule),
            id=definition.logical_id,
            name=definition.logical_id,
            args=[definition.logical_id],
            replace_existing=True,
        )
        logger.debug(f"Mirrored {definition.logical_id} into the clock")

    def _fire_callback(self, logical_id: str) -> None:
        instance = self.fire(logical_id)
        if instance is None:
            logger.debug(f"Slot for {logical_id} already enqueued")

    def _maintenance_callback(self) -> None:
        self.run_maintenance()
