"""Job handlers and the dispatch table that routes instances to them.

A handler is any callable taking the instance payload and returning a
JSON-serializable result dict. Handlers let exceptions propagate: the worker
pool decides from the exception type whether the instance is retried.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import sessionmaker

from agregator_cli.database.connection import session_scope
from agregator_cli.database.repositories import EventRepository
from agregator_cli.lifecycle.status_manager import StatusManager
from agregator_cli.scheduler.exceptions import (
    InvalidJobPayload,
    SweepIncomplete,
    UnknownJobType,
)
from agregator_cli.scheduler.job_store import JobType
from agregator_cli.scrapers.base import ScrapeResult, ScraperNotFound
from agregator_cli.scrapers.manager import ScraperManager

logger = logging.getLogger(__name__)

JobHandler = Callable[[Dict[str, Any]], Dict[str, Any]]


def store_scrape_result(session_factory: sessionmaker, result: ScrapeResult) -> Tuple[int, int]:
    """Upsert the events of one scraper run; returns (new, updated) counts."""
    with session_scope(session_factory) as session:
        return EventRepository(session).upsert_scraped(result.events, source_name=result.source)


class HandlerRegistry:
    """Dispatch table keyed by job type.

    Example:
        handlers = HandlerRegistry()
        handlers.register(JobType.STATUS_UPDATE, StatusUpdateHandler(manager))
        result = handlers.dispatch("status-update", {})
    """

    def __init__(self) -> None:
        self._handlers: Dict[JobType, JobHandler] = {}

    def register(self, job_type: JobType, handler: JobHandler) -> None:
        """Register ``handler`` for ``job_type``, replacing any previous one."""
        self._handlers[job_type] = handler

    def get(self, job_type: str) -> Optional[JobHandler]:
        try:
            return self._handlers.get(JobType(job_type))
        except ValueError:
            return None

    @property
    def job_types(self) -> List[JobType]:
        return list(self._handlers.keys())

    def dispatch(self, job_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run the handler registered for ``job_type``.

        Raises:
            UnknownJobType: If no handler is registered for the type
        """
        handler = self.get(job_type)
        if handler is None:
            raise UnknownJobType(job_type)
        return handler(payload)


class ScrapeHandler:
    """Runs a scraper and stores the events it found.

    Payload: ``{"source": str, "options": dict}``. New events are stored as
    DRAFT; events seen before are refreshed without touching their status.
    """

    def __init__(self, scraper_manager: ScraperManager, session_factory: sessionmaker) -> None:
        self._scraper_manager = scraper_manager
        self._session_factory = session_factory

    def __call__(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        source, options = self._parse_payload(payload)

        try:
            result = asyncio.run(self._scraper_manager.run(source, options))
        except ScraperNotFound as e:
            raise InvalidJobPayload(JobType.SCRAPE.value, str(e)) from e

        new_events, updated_events = store_scrape_result(self._session_factory, result)

        logger.info(
            f"Scraper {source}: {result.events_count} found, "
            f"{new_events} new, {updated_events} updated"
        )
        return {
            "source": source,
            "events_found": result.events_count,
            "new_events": new_events,
            "updated_events": updated_events,
        }

    @staticmethod
    def _parse_payload(payload: Any) -> tuple:
        if not isinstance(payload, dict):
            raise InvalidJobPayload(JobType.SCRAPE.value, "payload must be an object")

        source = payload.get("source")
        if not isinstance(source, str) or not source.strip():
            raise InvalidJobPayload(JobType.SCRAPE.value, "missing 'source'")

        options = payload.get("options") or {}
        if not isinstance(options, dict):
            raise InvalidJobPayload(JobType.SCRAPE.value, "'options' must be an object")

        return source.strip(), options


class StatusUpdateHandler:
    """Runs the expiry sweep.

    Raises ``SweepIncomplete`` when some events could not be updated, so the
    instance is retried; the sweep only revisits what is still eligible.
    """

    def __init__(self, status_manager: StatusManager) -> None:
        self._status_manager = status_manager

    def __call__(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if payload is not None and not isinstance(payload, dict):
            raise InvalidJobPayload(JobType.STATUS_UPDATE.value, "payload must be an object")

        result = self._status_manager.sweep_expired()
        if result.failed_ids:
            raise SweepIncomplete(result.failed_ids, result.updated_count)
        return result.to_dict()


def build_handlers(
    session_factory: sessionmaker,
    scraper_manager: ScraperManager,
    status_manager: StatusManager,
) -> HandlerRegistry:
    """Dispatch table with the scrape and status-update handlers."""
    handlers = HandlerRegistry()
    handlers.register(JobType.SCRAPE, ScrapeHandler(scraper_manager, session_factory))
    handlers.register(JobType.STATUS_UPDATE, StatusUpdateHandler(status_manager))
    return handlers
