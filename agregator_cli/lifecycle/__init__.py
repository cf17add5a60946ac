"""Event lifecycle: status values, legal transitions and the status manager."""

from agregator_cli.lifecycle.states import EventStatus, Trigger, transition
from agregator_cli.lifecycle.status_manager import (
    StatusManager,
    StatusStatistics,
    SweepResult,
)

__all__ = [
    "EventStatus",
    "Trigger",
    "transition",
    "StatusManager",
    "StatusStatistics",
    "SweepResult",
]
