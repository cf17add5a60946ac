"""Event status manager.

The only component that writes event statuses. Every write goes through the
transition table in ``agregator_cli.lifecycle.states`` and is issued as a
compare-and-set on the status the decision was based on, so two actors
working on the same event cannot both win.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from agregator_cli.database.connection import session_scope
from agregator_cli.database.models import utcnow
from agregator_cli.database.repositories import EventRepository, SweepLogRepository
from agregator_cli.lifecycle.states import EventStatus, Trigger, is_past, sources_for, transition
from agregator_cli.scheduler.exceptions import StoreUnavailable

logger = logging.getLogger(__name__)

SWEEP_OPERATION = "EVENT_STATUS_UPDATE"


@dataclass
class SweepResult:
    """Outcome of one expiry sweep.

    Attributes:
        updated_count: Events moved to EXPIRED by this sweep
        details: Human-readable summary
        failed_ids: Events whose update raised an error
    """

    updated_count: int
    details: str
    failed_ids: List[int] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed_ids

    def to_dict(self) -> Dict[str, Any]:
        return {
            "updated_count": self.updated_count,
            "details": self.details,
            "failed_ids": list(self.failed_ids),
        }


@dataclass
class StatusStatistics:
    """Point-in-time event counts by status."""

    active: int = 0
    expired: int = 0
    draft: int = 0
    archived: int = 0
    total: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "active": self.active,
            "expired": self.expired,
            "draft": self.draft,
            "archived": self.archived,
            "total": self.total,
        }


class StatusManager:
    """Applies lifecycle transitions to stored events.

    Example:
        manager = StatusManager(get_session_maker())
        result = manager.sweep_expired()
        print(result.details)
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        single_day_grace: timedelta = timedelta(0),
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """Initialize the status manager.

        Args:
            session_factory: Session factory for the event database
            single_day_grace: Extra time before an event without end date expires
            clock: Returns the current naive UTC time (default: ``utcnow``)
        """
        self._session_factory = session_factory
        self._single_day_grace = single_day_grace
        self._clock = clock or utcnow

    def sweep_expired(self) -> SweepResult:
        """
        Expire every DRAFT or ACTIVE event whose effective end has passed.

        Each event is committed on its own, so a failure part way through
        keeps the transitions already made. Re-running the sweep only touches
        events that are still eligible.

        Returns:
            SweepResult with the number of events expired and any failures

        Raises:
            StoreUnavailable: If the candidate events cannot be listed
        """
        now = self._clock()
        eligible = sources_for(Trigger.EXPIRE_ON_DATE)
        expected = [status.value for status in eligible]

        try:
            with session_scope(self._session_factory) as session:
                candidates = [
                    event.id
                    for event in EventRepository(session).list_expirable(
                        expected, now, self._single_day_grace
                    )
                ]
        except OperationalError as e:
            raise StoreUnavailable("Could not list events for the status sweep", e) from e

        updated = 0
        failed_ids: List[int] = []

        for event_id in candidates:
            try:
                with session_scope(self._session_factory) as session:
                    changed = self._expire_if_past(EventRepository(session), event_id, now, expected)
            except SQLAlchemyError as e:
                logger.error(f"Failed to expire event {event_id}: {e}")
                failed_ids.append(event_id)
                continue

            if changed:
                updated += 1
            else:
                # Status or dates changed since it was listed
                logger.debug(f"Event {event_id} no longer eligible for expiry, skipped")

        details = f"Updated {updated} events to {EventStatus.EXPIRED.value} at {now.isoformat()}"
        if failed_ids:
            details += f"; {len(failed_ids)} failed"

        self._write_sweep_log(details)
        logger.info(
            f"Status sweep: {details}",
            extra={"sweep_updated": updated, "sweep_failed": len(failed_ids)},
        )

        return SweepResult(updated_count=updated, details=details, failed_ids=failed_ids)

    def force_expire(self, event_id: int) -> bool:
        """Expire a DRAFT or ACTIVE event regardless of its dates."""
        return self._apply(event_id, Trigger.FORCE_EXPIRE)

    def force_reactivate(self, event_id: int) -> bool:
        """Move an EXPIRED event back to ACTIVE regardless of its dates."""
        return self._apply(event_id, Trigger.REACTIVATE)

    def approve(self, event_id: int) -> bool:
        """Publish a DRAFT event."""
        return self._apply(event_id, Trigger.APPROVE)

    def archive(self, event_id: int) -> bool:
        """Archive an event. ARCHIVED is terminal."""
        return self._apply(event_id, Trigger.ARCHIVE)

    def get_statistics(self) -> StatusStatistics:
        """
        Count events by status.

        Unknown status values are left out of the per-status buckets but
        still counted in ``total``.
        """
        try:
            with session_scope(self._session_factory) as session:
                raw = EventRepository(session).count_by_status()
        except OperationalError as e:
            raise StoreUnavailable("Could not count events", e) from e

        stats = StatusStatistics()
        for value, count in raw.items():
            stats.total += count
            status = EventStatus.parse(value)
            if status is None:
                logger.warning(f"Found {count} event(s) with unknown status {value!r}")
                continue
            bucket = status.value.lower()
            setattr(stats, bucket, getattr(stats, bucket) + count)

        return stats

    def _apply(self, event_id: int, trigger: Trigger) -> bool:
        """Apply ``trigger`` to one event; False if missing or not allowed."""
        try:
            with session_scope(self._session_factory) as session:
                repo = EventRepository(session)
                event = repo.get_by_id(event_id)
                if event is None:
                    logger.info(f"Event {event_id} not found, cannot {trigger.value}")
                    return False

                current = event.status
                target = transition(current, trigger)
                if target is None:
                    logger.info(f"Event {event_id} in status {current} cannot {trigger.value}")
                    return False

                changed = repo.update_status(event_id, target.value, expected=[current])
        except OperationalError as e:
            raise StoreUnavailable(f"Could not {trigger.value} event {event_id}", e) from e

        if changed:
            logger.info(f"Event {event_id}: {current} -> {target.value} ({trigger.value})")
        else:
            logger.info(f"Event {event_id} changed concurrently, {trigger.value} skipped")
        return changed

    def _expire_if_past(
        self,
        repo: EventRepository,
        event_id: int,
        now: datetime,
        expected: List[str],
    ) -> bool:
        """Re-check one listed candidate against its current dates, then expire it."""
        event = repo.get_by_id(event_id)
        if event is None or not is_past(event.start_date, event.end_date, now, self._single_day_grace):
            return False
        return repo.update_status(event_id, EventStatus.EXPIRED.value, expected=expected)

    def _write_sweep_log(self, details: str) -> None:
        try:
            with session_scope(self._session_factory) as session:
                SweepLogRepository(session).create(SWEEP_OPERATION, details)
        except SQLAlchemyError as e:
            logger.error(f"Failed to write sweep log: {e}")
