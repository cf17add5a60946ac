"""
SQLAlchemy models for the Agregator database.

Timestamps are stored as naive UTC datetimes; use ``utcnow()`` and
``to_utc_naive()`` when writing them.
"""

from datetime import datetime, timezone
from typing import Optional, Any, Dict

from sqlalchemy import (
    Integer,
    String,
    Boolean,
    DateTime,
    Text,
    JSON,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column, declarative_base

# Create base class for all models
Base = declarative_base()


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class Event(Base):
    """
    Aggregated event.

    Only the lifecycle fields matter to this package: ``start_date``,
    ``end_date`` and ``status``. Status is a plain string so rows written by
    other tools with unexpected values can still be read and counted.
    """

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    title: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    status: Mapped[str] = mapped_column(String, default="DRAFT", nullable=False, index=True)

    # Source information
    location_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    source_name: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    source_url: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    source_hash: Mapped[Optional[str]] = mapped_column(String, nullable=True, unique=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary representation."""
        return {
            "id": self.id,
            "title": self.title,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "status": self.status,
            "location_name": self.location_name,
            "source_name": self.source_name,
            "source_url": self.source_url,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class RecurringJob(Base):
    """
    Recurring job definition.

    One row per logical id; mirrors the ``JobDefinition`` dataclass in
    ``agregator_cli.scheduler.job_scheduler``.
    """

    __tablename__ = "recurring_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    logical_id: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
    job_type: Mapped[str] = mapped_column(String, nullable=False)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    # Schedule (cron format: "minute hour day month weekday")
    schedule: Mapped[str] = mapped_column(String, nullable=False)

    enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    # Execution tracking
    last_enqueued_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    next_run: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert definition to dictionary representation."""
        return {
            "logical_id": self.logical_id,
            "type": self.job_type,
            "payload": self.payload,
            "schedule": self.schedule,
            "enabled": self.enabled,
            "last_enqueued_at": _iso(self.last_enqueued_at),
            "next_run": _iso(self.next_run),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class JobInstance(Base):
    """
    One execution attempt of a job.

    ``attempt`` counts previous attempts, so the first run has attempt 0.
    A retry is a new row with ``attempt + 1``; rows are never re-queued.
    """

    __tablename__ = "job_instances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # Logical id of the recurring definition; None for ad-hoc runs
    definition_id: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)

    job_type: Mapped[str] = mapped_column(String, nullable=False)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    enqueued_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    run_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    attempt: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)

    # pending, active, completed, failed
    state: Mapped[str] = mapped_column(String, default="pending", nullable=False)

    result: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Deduplication key, unique per series and time slot
    slot_key: Mapped[Optional[str]] = mapped_column(String, nullable=True, unique=True)

    # Lease held by the claiming worker
    lease_owner: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    lease_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def to_dict(self) -> Dict[str, Any]:
        """Convert job instance to dictionary representation."""
        return {
            "id": self.id,
            "definition_id": self.definition_id,
            "type": self.job_type,
            "payload": self.payload,
            "enqueued_at": _iso(self.enqueued_at),
            "run_at": _iso(self.run_at),
            "attempt": self.attempt,
            "max_attempts": self.max_attempts,
            "state": self.state,
            "result": self.result,
            "error": self.error,
            "slot_key": self.slot_key,
            "lease_owner": self.lease_owner,
            "lease_expires_at": _iso(self.lease_expires_at),
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
        }


class SweepLog(Base):
    """Summary row written by each status sweep."""

    __tablename__ = "sweep_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    operation: Mapped[str] = mapped_column(String, nullable=False)
    details: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "operation": self.operation,
            "details": self.details,
            "created_at": _iso(self.created_at),
        }


# Additional indexes for common queries
Index("ix_job_instances_state_run_at", JobInstance.state, JobInstance.run_at)
Index("ix_job_instances_finished_at", JobInstance.finished_at.desc())
