"""Durable job store backed by the ``job_instances`` table.

The store is the single arbiter of which worker runs which instance. Claims
are conditional updates on ``state = 'pending'``, so at most one worker wins
an instance no matter how many processes poll the same database. Workers
hold a lease on claimed instances; an instance whose lease runs out becomes
pending again and can be claimed by someone else.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Generator, List, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker

from agregator_cli.database.connection import session_scope
from agregator_cli.database.models import JobInstance, to_utc_naive, utcnow
from agregator_cli.database.repositories import JobInstanceRepository
from agregator_cli.scheduler.events import JobEvent, JobEventBus, JobEventType
from agregator_cli.scheduler.exceptions import StoreUnavailable

logger = logging.getLogger(__name__)

# Candidates fetched per claim attempt
CLAIM_BATCH_SIZE = 5


class JobType(Enum):
    """Kinds of work the handlers know how to run."""

    SCRAPE = "scrape"
    STATUS_UPDATE = "status-update"


class JobState(Enum):
    """Job instance states."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class FailureOutcome:
    """Result of recording a failed attempt.

    Attributes:
        recorded: False if the worker no longer held the lease
        successor: Retry instance inserted with the failure, if any
        delay: Backoff delay of the successor in seconds
    """

    recorded: bool
    successor: Optional[JobInstance] = None
    delay: float = 0.0


@dataclass
class RetentionPolicy:
    """How long finished instances are kept."""

    completed_max_age: timedelta = timedelta(hours=24)
    completed_max_count: int = 1000
    failed_max_age: timedelta = timedelta(days=7)


def successor_slot_key(slot_key: Optional[str], attempt: int) -> Optional[str]:
    """Slot key of the retry instance for ``attempt``.

    Only the part after the last ``@`` (the slot timestamp) can carry a
    retry suffix; logical ids may contain ``#`` themselves.
    """
    if slot_key is None:
        return None
    series, at, slot = slot_key.rpartition("@")
    return f"{series}{at}{slot.split('#', 1)[0]}#{attempt}"


class JobStore:
    """Persistent queue of job instances.

    Example:
        store = JobStore(get_session_maker())
        store.enqueue(JobType.STATUS_UPDATE, {})
        instance = store.claim("worker-1", lease_seconds=60)
        store.complete(instance, "worker-1", {"updated_count": 3})
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        event_bus: Optional[JobEventBus] = None,
    ) -> None:
        """Initialize the store.

        Args:
            session_factory: Session factory for the job database
            event_bus: Bus receiving ``enqueued`` events
        """
        self._session_factory = session_factory
        self._event_bus = event_bus or JobEventBus()

    @property
    def event_bus(self) -> JobEventBus:
        return self._event_bus

    @contextmanager
    def _transaction(self, action: str) -> Generator[JobInstanceRepository, None, None]:
        try:
            with session_scope(self._session_factory) as session:
                yield JobInstanceRepository(session)
        except OperationalError as e:
            raise StoreUnavailable(f"Job store unavailable while trying to {action}", e) from e

    def enqueue(
        self,
        job_type: JobType | str,
        payload: Optional[Dict[str, Any]] = None,
        *,
        definition_id: Optional[str] = None,
        slot_key: Optional[str] = None,
        run_at: Optional[datetime] = None,
        max_attempts: int = 3,
    ) -> Optional[JobInstance]:
        """
        Insert a pending instance.

        Args:
            job_type: Job type
            payload: Job payload
            definition_id: Logical id of the recurring definition, if any
            slot_key: Deduplication key; an existing key makes this a no-op
            run_at: Earliest start time (default: now)
            max_attempts: Total attempts allowed including retries

        Returns:
            The new instance, or None if ``slot_key`` was already enqueued
        """
        job_type = JobType(job_type)
        now = utcnow()

        try:
            with self._transaction("enqueue a job") as repo:
                if slot_key is not None and repo.get_by_slot_key(slot_key) is not None:
                    logger.debug(f"Slot {slot_key} already enqueued, skipping")
                    return None

                instance = repo.add(
                    definition_id=definition_id,
                    job_type=job_type.value,
                    payload=payload or {},
                    enqueued_at=now,
                    run_at=to_utc_naive(run_at) or now,
                    attempt=0,
                    max_attempts=max_attempts,
                    state=JobState.PENDING.value,
                    slot_key=slot_key,
                )
        except IntegrityError:
            # Another process inserted the same slot between our check and insert
            logger.debug(f"Slot {slot_key} already enqueued, skipping")
            return None

        self._event_bus.publish(JobEvent(
            JobEventType.ENQUEUED,
            instance_id=instance.id,
            job_type=instance.job_type,
            attempt=instance.attempt,
            definition_id=instance.definition_id,
        ))
        return instance

    def claim(self, worker_id: str, lease_seconds: float) -> Optional[JobInstance]:
        """
        Claim the oldest due pending instance for ``worker_id``.

        Returns:
            The claimed instance, or None if nothing is due
        """
        now = utcnow()
        lease_expires_at = now + timedelta(seconds=lease_seconds)

        with self._transaction("claim a job") as repo:
            for instance_id in repo.claim_candidates(now, limit=CLAIM_BATCH_SIZE):
                if repo.mark_active(instance_id, worker_id, now, lease_expires_at):
                    return repo.get_by_id(instance_id)
        return None

    def renew_lease(self, instance_id: int, worker_id: str, lease_seconds: float) -> bool:
        """Extend the lease on an active instance; False if the lease was lost."""
        expires_at = utcnow() + timedelta(seconds=lease_seconds)
        with self._transaction("renew a lease") as repo:
            return repo.renew_lease(instance_id, worker_id, expires_at)

    def complete(
        self,
        instance: JobInstance,
        worker_id: str,
        result: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Mark an instance completed; False if the worker no longer held it."""
        with self._transaction("record a completion") as repo:
            return repo.finish(
                instance.id, worker_id, JobState.COMPLETED.value, utcnow(), result=result
            )

    def fail(
        self,
        instance: JobInstance,
        worker_id: str,
        error: str,
        retry_delay: Optional[float] = None,
    ) -> FailureOutcome:
        """
        Mark an instance failed and, if allowed, insert its retry.

        The retry is inserted in the same transaction as the failure, so a
        crash cannot lose it or duplicate it.

        Args:
            instance: Instance that failed
            worker_id: Worker holding the lease
            error: Error description
            retry_delay: Backoff in seconds, or None for a permanent failure

        Returns:
            FailureOutcome describing what was recorded
        """
        now = utcnow()

        with self._transaction("record a failure") as repo:
            if not repo.finish(instance.id, worker_id, JobState.FAILED.value, now, error=error):
                return FailureOutcome(recorded=False)

            next_attempt = instance.attempt + 1
            if retry_delay is None or next_attempt >= instance.max_attempts:
                return FailureOutcome(recorded=True)

            slot = successor_slot_key(instance.slot_key, next_attempt)
            if slot is not None and repo.get_by_slot_key(slot) is not None:
                return FailureOutcome(recorded=True)

            successor = repo.add(
                definition_id=instance.definition_id,
                job_type=instance.job_type,
                payload=instance.payload,
                enqueued_at=now,
                run_at=now + timedelta(seconds=retry_delay),
                attempt=next_attempt,
                max_attempts=instance.max_attempts,
                state=JobState.PENDING.value,
                slot_key=slot,
            )
            return FailureOutcome(recorded=True, successor=successor, delay=retry_delay)

    def release(self, instance: JobInstance, worker_id: str) -> bool:
        """Return an active instance to pending without an outcome."""
        with self._transaction("release a job") as repo:
            return repo.release(instance.id, worker_id)

    def reclaim_expired(self) -> int:
        """Return instances with expired leases to pending.

        Returns:
            Number of instances reclaimed
        """
        with self._transaction("reclaim expired leases") as repo:
            count = repo.reclaim_expired(utcnow())
        if count:
            logger.warning(f"Reclaimed {count} job(s) with expired leases")
        return count

    def purge(self, policy: Optional[RetentionPolicy] = None) -> int:
        """
        Delete finished instances outside the retention window.

        Returns:
            Number of instances deleted
        """
        policy = policy or RetentionPolicy()
        now = utcnow()

        with self._transaction("purge finished jobs") as repo:
            deleted = repo.delete_finished_before(
                JobState.COMPLETED.value, now - policy.completed_max_age
            )
            deleted += repo.delete_finished_beyond(
                JobState.COMPLETED.value, policy.completed_max_count
            )
            deleted += repo.delete_finished_before(
                JobState.FAILED.value, now - policy.failed_max_age
            )

        if deleted:
            logger.info(f"Purged {deleted} finished job(s)")
        return deleted

    def get(self, instance_id: int) -> Optional[JobInstance]:
        with self._transaction("load a job") as repo:
            return repo.get_by_id(instance_id)

    def list_instances(
        self,
        state: Optional[JobState | str] = None,
        definition_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[JobInstance]:
        """List instances, most recently enqueued first."""
        state_value = JobState(state).value if state is not None else None
        with self._transaction("list jobs") as repo:
            return repo.list(state=state_value, definition_id=definition_id, limit=limit)

    def counts(self) -> Dict[str, int]:
        """Number of instances per state, including zero counts."""
        with self._transaction("count jobs") as repo:
            raw = repo.count_by_state()
        return {state.value: raw.get(state.value, 0) for state in JobState}
