"""Job lifecycle events and a thread-safe listener bus.

Every state change of a job instance is published as a ``JobEvent``. The bus
logs each event with structured ``extra`` fields and hands it to subscribed
listeners, which run synchronously on the publishing thread.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class JobEventType(Enum):
    """Job instance lifecycle events."""

    ENQUEUED = "enqueued"
    CLAIMED = "claimed"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRY_SCHEDULED = "retry_scheduled"
    RELEASED = "released"


@dataclass
class JobEvent:
    """A single job lifecycle event.

    Attributes:
        event_type: What happened
        instance_id: Job instance the event refers to
        job_type: Job type value
        attempt: Attempt number of the instance (0 for the first run)
        definition_id: Logical id of the recurring definition, if any
        worker_id: Worker that produced the event, if any
        error: Error text for failures
        data: Additional event data (result summary, retry delay, ...)
        timestamp: When the event was created
    """

    event_type: JobEventType
    instance_id: int
    job_type: str
    attempt: int = 0
    definition_id: Optional[str] = None
    worker_id: Optional[str] = None
    error: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def log_extra(self) -> Dict[str, Any]:
        """Fields attached to the log record."""
        return {
            "job_event": self.event_type.value,
            "instance_id": self.instance_id,
            "job_type": self.job_type,
            "attempt": self.attempt,
            "definition_id": self.definition_id,
            "worker_id": self.worker_id,
            "job_error": self.error,
        }


JobEventListener = Callable[[JobEvent], None]


class JobEventBus:
    """Publish/subscribe for job events across worker threads.

    Example:
        bus = JobEventBus()
        unsubscribe = bus.subscribe(lambda event: print(event.event_type))
        bus.publish(JobEvent(JobEventType.ENQUEUED, instance_id=1, job_type="scrape"))
        unsubscribe()
    """

    def __init__(self, max_history: int = 0) -> None:
        """Initialize the bus.

        Args:
            max_history: Number of recent events to keep (0 disables history)
        """
        self._listeners: List[JobEventListener] = []
        self._history: List[JobEvent] = []
        self._max_history = max_history
        self._lock = threading.Lock()

    def subscribe(self, listener: JobEventListener) -> Callable[[], None]:
        """Subscribe a listener to all job events.

        Returns:
            Unsubscribe function to remove this subscription
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: JobEvent) -> None:
        """Log ``event`` and deliver it to every listener."""
        self._log(event)

        with self._lock:
            listeners = list(self._listeners)
            if self._max_history:
                self._history.append(event)
                if len(self._history) > self._max_history:
                    self._history = self._history[-self._max_history:]

        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                # A broken listener must not fail the job it observes
                logger.error(f"Job event listener error for {event.event_type.value}: {e}")

    def get_history(self, event_type: Optional[JobEventType] = None) -> List[JobEvent]:
        """Recent events, optionally filtered by type."""
        with self._lock:
            events = list(self._history)
        if event_type is not None:
            events = [e for e in events if e.event_type == event_type]
        return events

    def _log(self, event: JobEvent) -> None:
        extra = event.log_extra()
        label = f"Job {event.instance_id} ({event.job_type}, attempt {event.attempt})"

        if event.event_type == JobEventType.FAILED:
            if not event.data.get("retryable", True):
                logger.error(f"{label} failed with non-retryable error: {event.error}", extra=extra)
            elif event.data.get("permanent"):
                logger.error(f"{label} failed permanently, attempts exhausted: {event.error}", extra=extra)
            else:
                logger.warning(f"{label} failed: {event.error}", extra=extra)
        elif event.event_type == JobEventType.RETRY_SCHEDULED:
            logger.warning(
                f"{label} retry scheduled in {event.data.get('delay', 0):.1f}s "
                f"as job {event.data.get('successor_id')}",
                extra=extra,
            )
        elif event.event_type == JobEventType.RELEASED:
            logger.warning(f"{label} released back to pending", extra=extra)
        else:
            logger.info(f"{label} {event.event_type.value}", extra=extra)
