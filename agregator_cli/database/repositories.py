"""Database repositories for Agregator CLI.

Repositories wrap a ``Session`` and never commit; the caller owns the
transaction (see ``session_scope``). Status and state changes are issued as
conditional UPDATE statements so concurrent writers cannot overwrite each
other's transitions.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple, TYPE_CHECKING

from sqlalchemy import and_, delete, desc, func, or_, select, update
from sqlalchemy.orm import Session

from agregator_cli.database.models import (
    Event,
    JobInstance,
    RecurringJob,
    SweepLog,
    to_utc_naive,
    utcnow,
)

if TYPE_CHECKING:
    from agregator_cli.scrapers.base import ScrapedEvent


class EventRepository:
    """
    Repository for event rows.

    Status is only ever written through ``update_status``, which takes the
    expected current status and reports whether the row actually changed.
    """

    def __init__(self, session: Session):
        """
        Initialize repository with database session.

        Args:
            session: SQLAlchemy session
        """
        self.session = session

    def get_by_id(self, event_id: int) -> Optional[Event]:
        """
        Get event by ID.

        Args:
            event_id: Event ID

        Returns:
            Event if found, None otherwise
        """
        return self.session.get(Event, event_id)

    def get_by_source_hash(self, source_hash: str) -> Optional[Event]:
        """Get event by its scraper deduplication hash."""
        return self.session.query(Event).filter(Event.source_hash == source_hash).first()

    def list_by_status(self, statuses: Iterable[str]) -> List[Event]:
        """
        List events whose status is one of ``statuses``.

        Args:
            statuses: Status values to match

        Returns:
            Matching events ordered by start date
        """
        return (
            self.session.query(Event)
            .filter(Event.status.in_(list(statuses)))
            .order_by(Event.start_date, Event.id)
            .all()
        )

    def list_expirable(
        self,
        statuses: Iterable[str],
        now: datetime,
        single_day_grace: timedelta = timedelta(0),
    ) -> List[Event]:
        """
        List events in ``statuses`` whose effective end lies before ``now``.

        The effective end is ``end_date`` when present, otherwise
        ``start_date`` plus ``single_day_grace``.

        Args:
            statuses: Status values eligible for expiry
            now: Reference time (naive UTC)
            single_day_grace: Extra time granted to events without end date

        Returns:
            Events to expire, ordered by ID
        """
        now = to_utc_naive(now)
        return (
            self.session.query(Event)
            .filter(Event.status.in_(list(statuses)))
            .filter(
                or_(
                    and_(Event.end_date.is_not(None), Event.end_date < now),
                    and_(Event.end_date.is_(None), Event.start_date < now - single_day_grace),
                )
            )
            .order_by(Event.id)
            .all()
        )

    def update_status(
        self,
        event_id: int,
        new_status: str,
        expected: Optional[Iterable[str]] = None,
    ) -> bool:
        """
        Set the status of an event.

        Args:
            event_id: Event ID
            new_status: Status to write
            expected: If given, only update when the current status is one of these

        Returns:
            True if a row was updated
        """
        stmt = (
            update(Event)
            .where(Event.id == event_id)
            .values(status=new_status, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if expected is not None:
            stmt = stmt.where(Event.status.in_(list(expected)))

        result = self.session.execute(stmt)
        return result.rowcount == 1

    def count_by_status(self) -> Dict[str, int]:
        """
        Count events grouped by raw status value.

        Returns:
            Mapping of status string to number of events
        """
        rows = (
            self.session.query(Event.status, func.count(Event.id))
            .group_by(Event.status)
            .all()
        )
        return {status: count for status, count in rows}

    def upsert_scraped(
        self,
        scraped: Iterable["ScrapedEvent"],
        source_name: str,
    ) -> Tuple[int, int]:
        """
        Insert or refresh events found by a scraper.

        New events are created as DRAFT. Existing events, matched by source
        hash, get their descriptive fields refreshed; their status is left
        alone.

        Args:
            scraped: Events returned by the scraper
            source_name: Name of the source that produced them

        Returns:
            Tuple of (new_events, updated_events)
        """
        new_count = 0
        updated_count = 0
        seen: set[str] = set()

        for item in scraped:
            source_hash = item.source_hash
            if source_hash in seen:
                continue
            seen.add(source_hash)

            fields = {
                "title": item.title,
                "description": item.description,
                "start_date": to_utc_naive(item.start_date),
                "end_date": to_utc_naive(item.end_date),
                "location_name": item.location_name,
                "source_url": item.source_url,
                "source_name": source_name,
            }

            existing = self.get_by_source_hash(source_hash)
            if existing is not None:
                for key, value in fields.items():
                    setattr(existing, key, value)
                updated_count += 1
            else:
                self.session.add(Event(status="DRAFT", source_hash=source_hash, **fields))
                new_count += 1

            self.session.flush()

        return new_count, updated_count


class RecurringJobRepository:
    """
    Repository for recurring job definitions.

    Provides CRUD operations keyed by the definition's logical id.
    """

    def __init__(self, session: Session):
        self.session = session

    def get_by_logical_id(self, logical_id: str) -> Optional[RecurringJob]:
        """
        Get a definition by its logical id.

        Args:
            logical_id: Stable definition identifier

        Returns:
            RecurringJob if found, None otherwise
        """
        return self.session.query(RecurringJob).filter(
            RecurringJob.logical_id == logical_id
        ).first()

    def get_all(self) -> List[RecurringJob]:
        """Get all definitions ordered by logical id."""
        return self.session.query(RecurringJob).order_by(RecurringJob.logical_id).all()

    def create(
        self,
        logical_id: str,
        job_type: str,
        schedule: str,
        payload: Optional[Dict[str, Any]] = None,
        enabled: bool = True,
        next_run: Optional[datetime] = None,
    ) -> RecurringJob:
        """
        Create a new definition.

        Args:
            logical_id: Stable definition identifier
            job_type: Job type value
            schedule: Cron expression
            payload: Job payload
            enabled: Whether the definition fires
            next_run: Next scheduled fire time

        Returns:
            Created RecurringJob
        """
        record = RecurringJob(
            logical_id=logical_id,
            job_type=job_type,
            schedule=schedule,
            payload=payload or {},
            enabled=enabled,
            next_run=to_utc_naive(next_run),
        )
        self.session.add(record)
        self.session.flush()
        return record

    def update(self, logical_id: str, **kwargs) -> Optional[RecurringJob]:
        """
        Update a definition.

        Args:
            logical_id: Definition to update
            **kwargs: Attributes to update

        Returns:
            Updated RecurringJob or None if not found
        """
        record = self.get_by_logical_id(logical_id)
        if record is None:
            return None

        for key, value in kwargs.items():
            if hasattr(record, key):
                setattr(record, key, value)

        self.session.flush()
        return record

    def delete(self, logical_id: str) -> bool:
        """
        Delete a definition.

        Returns:
            True if deleted, False if not found
        """
        record = self.get_by_logical_id(logical_id)
        if record is None:
            return False

        self.session.delete(record)
        self.session.flush()
        return True


class JobInstanceRepository:
    """
    Repository for job instances.

    Low-level statements used by ``JobStore``. Every state change is a
    conditional UPDATE whose row count tells the caller whether it won.
    """

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, instance_id: int) -> Optional[JobInstance]:
        return self.session.get(JobInstance, instance_id)

    def get_by_slot_key(self, slot_key: str) -> Optional[JobInstance]:
        return self.session.query(JobInstance).filter(
            JobInstance.slot_key == slot_key
        ).first()

    def add(self, **kwargs) -> JobInstance:
        """Insert a new instance and flush it to obtain its ID."""
        instance = JobInstance(**kwargs)
        self.session.add(instance)
        self.session.flush()
        return instance

    def claim_candidates(self, now: datetime, limit: int = 5) -> List[int]:
        """
        IDs of pending instances that are due, oldest ``run_at`` first.

        Rows are locked with ``FOR UPDATE SKIP LOCKED`` on dialects that
        support it; SQLite ignores the clause.
        """
        stmt = (
            select(JobInstance.id)
            .where(JobInstance.state == "pending", JobInstance.run_at <= now)
            .order_by(JobInstance.run_at, JobInstance.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list(self.session.execute(stmt).scalars())

    def mark_active(
        self,
        instance_id: int,
        owner: str,
        now: datetime,
        lease_expires_at: datetime,
    ) -> bool:
        """Move a pending instance to active under ``owner``'s lease."""
        stmt = (
            update(JobInstance)
            .where(JobInstance.id == instance_id, JobInstance.state == "pending")
            .values(
                state="active",
                lease_owner=owner,
                lease_expires_at=lease_expires_at,
                started_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def renew_lease(self, instance_id: int, owner: str, lease_expires_at: datetime) -> bool:
        stmt = (
            update(JobInstance)
            .where(
                JobInstance.id == instance_id,
                JobInstance.state == "active",
                JobInstance.lease_owner == owner,
            )
            .values(lease_expires_at=lease_expires_at)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def finish(
        self,
        instance_id: int,
        owner: str,
        state: str,
        now: datetime,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> bool:
        """Record the outcome of an active instance still leased by ``owner``."""
        stmt = (
            update(JobInstance)
            .where(
                JobInstance.id == instance_id,
                JobInstance.state == "active",
                JobInstance.lease_owner == owner,
            )
            .values(
                state=state,
                result=result,
                error=error,
                finished_at=now,
                lease_owner=None,
                lease_expires_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def release(self, instance_id: int, owner: str) -> bool:
        """Return an active instance to pending without recording an outcome."""
        stmt = (
            update(JobInstance)
            .where(
                JobInstance.id == instance_id,
                JobInstance.state == "active",
                JobInstance.lease_owner == owner,
            )
            .values(state="pending", lease_owner=None, lease_expires_at=None, started_at=None)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def reclaim_expired(self, now: datetime) -> int:
        """Return active instances with an expired lease to pending."""
        stmt = (
            update(JobInstance)
            .where(JobInstance.state == "active", JobInstance.lease_expires_at < now)
            .values(state="pending", lease_owner=None, lease_expires_at=None, started_at=None)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount

    def list(
        self,
        state: Optional[str] = None,
        definition_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[JobInstance]:
        """List instances, most recently enqueued first."""
        query = self.session.query(JobInstance)
        if state is not None:
            query = query.filter(JobInstance.state == state)
        if definition_id is not None:
            query = query.filter(JobInstance.definition_id == definition_id)
        return query.order_by(desc(JobInstance.enqueued_at), desc(JobInstance.id)).limit(limit).all()

    def count_by_state(self) -> Dict[str, int]:
        rows = (
            self.session.query(JobInstance.state, func.count(JobInstance.id))
            .group_by(JobInstance.state)
            .all()
        )
        return {state: count for state, count in rows}

    def delete_finished_before(self, state: str, before: datetime) -> int:
        """Delete instances in ``state`` that finished before ``before``."""
        stmt = (
            delete(JobInstance)
            .where(JobInstance.state == state, JobInstance.finished_at < before)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount

    def delete_finished_beyond(self, state: str, keep: int) -> int:
        """Keep only the ``keep`` most recently finished instances in ``state``."""
        keep_ids = (
            select(JobInstance.id)
            .where(JobInstance.state == state)
            .order_by(desc(JobInstance.finished_at), desc(JobInstance.id))
            .limit(keep)
        )
        stmt = (
            delete(JobInstance)
            .where(JobInstance.state == state, JobInstance.id.not_in(keep_ids))
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount


class SweepLogRepository:
    """Repository for sweep summary rows."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, operation: str, details: str) -> SweepLog:
        log = SweepLog(operation=operation, details=details)
        self.session.add(log)
        self.session.flush()
        return log

    def get_recent(self, limit: int = 10) -> List[SweepLog]:
        return (
            self.session.query(SweepLog)
            .order_by(desc(SweepLog.created_at), desc(SweepLog.id))
            .limit(limit)
            .all()
        )

