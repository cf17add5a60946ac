"""Wiring of the job system from configuration.

The daemon and the CLI commands build the same set of collaborators: a job
store, the status manager, the scraper manager, the handler table, the
scheduler and the worker pool, all sharing one session factory.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.orm import sessionmaker

from agregator_cli.config import AgregatorConfig
from agregator_cli.database.connection import create_tables, get_session_maker
from agregator_cli.lifecycle.status_manager import StatusManager
from agregator_cli.scheduler.events import JobEventBus
from agregator_cli.scheduler.handlers import HandlerRegistry, build_handlers
from agregator_cli.scheduler.job_scheduler import (
    JobDefinition,
    JobScheduler,
    RegistrationResult,
    default_definitions,
)
from agregator_cli.scheduler.job_store import JobStore, RetentionPolicy
from agregator_cli.scheduler.worker_pool import RetryPolicy, WorkerPool
from agregator_cli.scrapers.manager import ScraperManager
from agregator_cli.scrapers.registry import ScraperRegistry

logger = logging.getLogger(__name__)


@dataclass
class JobSystem:
    """All collaborators of the job system."""

    config: AgregatorConfig
    session_factory: sessionmaker
    event_bus: JobEventBus
    store: JobStore
    status_manager: StatusManager
    scraper_manager: ScraperManager
    handlers: HandlerRegistry
    scheduler: JobScheduler
    pool: WorkerPool

    def configured_definitions(self) -> List[JobDefinition]:
        """Recurring definitions derived from the configuration."""
        return default_definitions(
            self.config.scheduler.status_cron,
            self.config.scheduler.scraper_cron,
            self.config.scheduler.scraper_sources,
        )

    def register_defaults(self) -> dict[str, RegistrationResult]:
        """
        Register the configured recurring definitions.

        Raises:
            ScheduleInvalid: If a configured cron pattern is invalid
            StoreUnavailable: If the definition table cannot be reached
        """
        return {
            definition.logical_id: self.scheduler.register(definition)
            for definition in self.configured_definitions()
        }


def retention_policy(config: AgregatorConfig) -> RetentionPolicy:
    return RetentionPolicy(
        completed_max_age=timedelta(hours=config.worker.completed_retention_hours),
        completed_max_count=config.worker.completed_retention_count,
        failed_max_age=timedelta(days=config.worker.failed_retention_days),
    )


def build_job_system(
    config: AgregatorConfig,
    session_factory: Optional[sessionmaker] = None,
    scraper_manager: Optional[ScraperManager] = None,
) -> JobSystem:
    """
    Build the job system for ``config``.

    Args:
        config: Agregator configuration
        session_factory: Session factory to use (default: the global one,
            with tables created on first use)
        scraper_manager: Scraper manager to use (default: discovered scrapers)

    Returns:
        JobSystem with nothing started
    """
    if session_factory is None:
        create_tables(config)
        session_factory = get_session_maker(config)

    if scraper_manager is None:
        scraper_manager = ScraperManager(
            ScraperRegistry(plugin_dirs=config.scrapers.plugin_dirs),
            settings=config.scrapers.settings,
        )

    event_bus = JobEventBus()
    store = JobStore(session_factory, event_bus=event_bus)
    status_manager = StatusManager(
        session_factory,
        single_day_grace=timedelta(hours=config.status.single_day_grace_hours),
    )
    handlers = build_handlers(session_factory, scraper_manager, status_manager)

    scheduler = JobScheduler(
        store,
        session_factory,
        max_attempts=config.worker.max_attempts,
        maintenance_interval=config.scheduler.maintenance_interval,
        retention=retention_policy(config),
    )
    pool = WorkerPool(
        store,
        handlers,
        retry_policy=RetryPolicy(
            base_delay=config.worker.base_delay,
            max_delay=config.worker.max_delay,
        ),
        lease_seconds=config.worker.lease_seconds,
        poll_interval=config.worker.poll_interval,
        drain_timeout=config.worker.drain_timeout,
        event_bus=event_bus,
    )

    return JobSystem(
        config=config,
        session_factory=session_factory,
        event_bus=event_bus,
        store=store,
        status_manager=status_manager,
        scraper_manager=scraper_manager,
        handlers=handlers,
        scheduler=scheduler,
        pool=pool,
    )
