"""Event lifecycle states and the transition table.

Every legal status change is one entry in ``TRANSITIONS``. Anything not in
the table, including a move into the current state, is illegal and
``transition()`` returns None for it.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple


class EventStatus(str, Enum):
    """Lifecycle status of an event."""

    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    ARCHIVED = "ARCHIVED"

    @classmethod
    def parse(cls, value: "str | EventStatus | None") -> Optional["EventStatus"]:
        """Return the status for ``value``, or None if it is not a known status."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.upper())
        except ValueError:
            return None


class Trigger(Enum):
    """What caused a transition."""

    APPROVE = "approve"  # Moderator approval
    ARCHIVE = "archive"  # Moderator archival
    EXPIRE_ON_DATE = "expire_on_date"  # Time-driven sweep
    FORCE_EXPIRE = "force_expire"  # Operator command
    REACTIVATE = "reactivate"  # Operator command


TRANSITIONS: Dict[Tuple[EventStatus, Trigger], EventStatus] = {
    (EventStatus.DRAFT, Trigger.APPROVE): EventStatus.ACTIVE,
    (EventStatus.DRAFT, Trigger.ARCHIVE): EventStatus.ARCHIVED,
    (EventStatus.DRAFT, Trigger.EXPIRE_ON_DATE): EventStatus.EXPIRED,
    (EventStatus.DRAFT, Trigger.FORCE_EXPIRE): EventStatus.EXPIRED,
    (EventStatus.ACTIVE, Trigger.ARCHIVE): EventStatus.ARCHIVED,
    (EventStatus.ACTIVE, Trigger.EXPIRE_ON_DATE): EventStatus.EXPIRED,
    (EventStatus.ACTIVE, Trigger.FORCE_EXPIRE): EventStatus.EXPIRED,
    (EventStatus.EXPIRED, Trigger.REACTIVATE): EventStatus.ACTIVE,
    (EventStatus.EXPIRED, Trigger.ARCHIVE): EventStatus.ARCHIVED,
    # ARCHIVED is terminal
}


def transition(current: "str | EventStatus | None", trigger: Trigger) -> Optional[EventStatus]:
    """
    Resolve the status ``trigger`` moves an event in ``current`` to.

    Args:
        current: Current status; unknown values have no transitions
        trigger: What is acting on the event

    Returns:
        The new status, or None if the transition is not allowed
    """
    status = EventStatus.parse(current)
    if status is None:
        return None
    return TRANSITIONS.get((status, trigger))


def sources_for(trigger: Trigger) -> FrozenSet[EventStatus]:
    """Statuses from which ``trigger`` is allowed."""
    return frozenset(status for status, t in TRANSITIONS if t is trigger)


def effective_end(
    start_date: datetime,
    end_date: Optional[datetime],
    single_day_grace: timedelta = timedelta(0),
) -> datetime:
    """Moment after which an event counts as over."""
    if end_date is not None:
        return end_date
    return start_date + single_day_grace


def is_past(
    start_date: datetime,
    end_date: Optional[datetime],
    now: datetime,
    single_day_grace: timedelta = timedelta(0),
) -> bool:
    """True if the event's effective end is strictly before ``now``."""
    return effective_end(start_date, end_date, single_day_grace) < now
