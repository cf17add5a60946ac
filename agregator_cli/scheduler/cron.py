"""Cron evaluation for recurring job definitions.

Supports 5-part (minute hour day month weekday) and 6-part
(second minute hour day month weekday) patterns, always evaluated in UTC.
croniter is the single evaluator: it validates patterns, computes slots and
next runs, and also drives APScheduler's clock through ``CroniterTrigger``.
A pattern restricting both day-of-month and day-of-week fires when either
field matches, as in standard cron.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.triggers.base import BaseTrigger
from croniter import croniter

from agregator_cli.scheduler.exceptions import ScheduleInvalid


def _split(schedule: str) -> list[str]:
    parts = schedule.split()
    if len(parts) not in (5, 6):
        raise ScheduleInvalid(
            schedule,
            "expected 5 or 6 parts (minute hour day month weekday "
            "or second minute hour day month weekday)",
        )
    return parts


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _croniter(schedule: str, start: datetime) -> croniter:
    parts = _split(schedule)
    return croniter(schedule, _as_utc(start), second_at_beginning=len(parts) == 6)


class CroniterTrigger(BaseTrigger):
    """APScheduler trigger whose fire times come from croniter.

    The clock and ``next_fire_time``/``current_slot`` therefore agree on
    every pattern, including ones restricting both day fields.
    """

    def __init__(self, schedule: str) -> None:
        self.schedule = schedule

    def get_next_fire_time(
        self,
        previous_fire_time: Optional[datetime],
        now: datetime,
    ) -> Optional[datetime]:
        if previous_fire_time is not None:
            return next_fire_time(self.schedule, previous_fire_time)

        # First fire time at or after now, on a whole second
        now = _as_utc(now)
        if now.microsecond:
            start = now.replace(microsecond=0)
        else:
            start = now - timedelta(seconds=1)
        return next_fire_time(self.schedule, start)

    def __str__(self) -> str:
        return f"cron[{self.schedule}]"

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} (schedule='{self.schedule}', timezone='UTC')>"


def validate_schedule(schedule: str) -> None:
    """
    Check that ``schedule`` is a usable cron pattern.

    Raises:
        ScheduleInvalid: If croniter rejects the pattern
    """
    parts = _split(schedule)
    if not croniter.is_valid(schedule, second_at_beginning=len(parts) == 6):
        raise ScheduleInvalid(schedule)


def parse_cron_trigger(schedule: str) -> CroniterTrigger:
    """
    Parse a cron schedule string into a trigger for the clock.

    Args:
        schedule: Cron schedule string

    Returns:
        CroniterTrigger evaluating ``schedule`` in UTC

    Raises:
        ScheduleInvalid: If the pattern is malformed
    """
    validate_schedule(schedule)
    return CroniterTrigger(schedule)


def next_fire_time(schedule: str, after: datetime) -> datetime:
    """First fire time strictly after ``after``, as an aware UTC datetime."""
    try:
        return _as_utc(_croniter(schedule, after).get_next(datetime))
    except (ValueError, KeyError) as e:
        raise ScheduleInvalid(schedule, str(e)) from e


def current_slot(schedule: str, at: datetime) -> datetime:
    """
    Most recent fire time at or before ``at``.

    A clock callback that runs a little late still maps to the slot it was
    fired for, so two processes firing the same series agree on the slot.
    """
    at = _as_utc(at).replace(microsecond=0)
    try:
        candidate = _as_utc(_croniter(schedule, at - timedelta(seconds=1)).get_next(datetime))
        if candidate == at:
            return candidate
        return _as_utc(_croniter(schedule, at).get_prev(datetime))
    except (ValueError, KeyError) as e:
        raise ScheduleInvalid(schedule, str(e)) from e


def slot_key(logical_id: str, slot: datetime) -> str:
    """Deduplication key for one series at one time slot."""
    return f"{logical_id}@{_as_utc(slot).strftime('%Y-%m-%dT%H:%M:%SZ')}"
