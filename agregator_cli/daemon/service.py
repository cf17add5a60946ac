"""Main daemon service for Agregator CLI.

This module provides:
- Service lifecycle management (start/stop)
- Signal handling for graceful shutdown
- Background daemon mode with process forking
"""

import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from agregator_cli.config import AgregatorConfig
from agregator_cli.runtime import JobSystem, build_job_system
from agregator_cli.scheduler.worker_pool import PoolHandle, StopReport

logger = logging.getLogger(__name__)


class AgregatorDaemon:
    """Runs the scheduler and the worker pool until asked to stop.

    Example:
        daemon = AgregatorDaemon(config, concurrency=5)
        await daemon.start()
        await daemon.run_until_shutdown()
        await daemon.stop()
    """

    def __init__(
        self,
        config: AgregatorConfig,
        concurrency: Optional[int] = None,
        job_system: Optional[JobSystem] = None,
    ):
        """Initialize the daemon service.

        Args:
            config: Agregator configuration
            concurrency: Worker threads (default: ``config.worker.concurrency``)
            job_system: Pre-built job system (default: built from ``config``)
        """
        self._config = config
        self._concurrency = concurrency or config.worker.concurrency
        self._job_system = job_system
        self._pool_handle: Optional[PoolHandle] = None
        self._running = False
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Register recurring jobs, then start the clock and the workers.

        Registration errors propagate: a recurring job that silently fails
        to register would never run.

        Raises:
            ScheduleInvalid: If a configured cron pattern is invalid
            StoreUnavailable: If the database cannot be reached
        """
        logger.info("Starting Agregator daemon...")

        if self._job_system is None:
            self._job_system = build_job_system(self._config)

        results = self._job_system.register_defaults()
        for logical_id, result in results.items():
            logger.info(f"Recurring job {logical_id}: {result.value}")

        if self._config.scheduler.enabled:
            self._job_system.scheduler.start()
        else:
            logger.warning("Scheduler disabled; only already enqueued jobs will run")

        self._pool_handle = self._job_system.pool.start(self._concurrency)

        self._running = True
        logger.info("Agregator daemon started successfully")

    async def stop(self) -> Optional[StopReport]:
        """Stop the clock, then drain and stop the workers."""
        logger.info("Stopping Agregator daemon...")
        self._running = False

        if self._job_system is None:
            return None

        self._job_system.scheduler.stop()

        report = None
        if self._pool_handle is not None:
            report = await asyncio.to_thread(
                self._job_system.pool.stop,
                self._pool_handle,
                self._config.worker.drain_timeout,
            )
            self._pool_handle = None
            if report.released_ids:
                logger.warning(f"Released unfinished jobs: {report.released_ids}")

        logger.info("Agregator daemon stopped")
        return report

    async def run_until_shutdown(self) -> None:
        """Block until ``request_shutdown()`` is called."""
        await self._shutdown_event.wait()

    def request_shutdown(self) -> None:
        """Request daemon shutdown."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def job_system(self) -> Optional[JobSystem]:
        return self._job_system


async def run_daemon(config: AgregatorConfig, options: Dict[str, Any]) -> None:
    """Run the daemon with signal handling.

    Args:
        config: Agregator configuration
        options: Daemon options:
            - concurrency: Worker threads
    """
    daemon = AgregatorDaemon(config, concurrency=options.get("concurrency"))

    loop = asyncio.get_running_loop()

    def handle_signal(sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}, initiating shutdown...")
        daemon.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda signum, frame: handle_signal(signal.Signals(signum)))

    try:
        await daemon.start()
        await daemon.run_until_shutdown()
    finally:
        await daemon.stop()


def daemonize(log_file: Optional[Path] = None) -> None:
    """Fork twice to detach from the terminal.

    Args:
        log_file: File receiving stdout/stderr; /dev/null if None
    """
    if sys.platform == "win32":
        logger.warning("Daemon mode not supported on Windows")
        return

    if os.fork() > 0:
        sys.exit(0)

    os.setsid()

    if os.fork() > 0:
        sys.exit(0)

    sys.stdout.flush()
    sys.stderr.flush()

    with open(os.devnull, "r") as devnull:
        os.dup2(devnull.fileno(), sys.stdin.fileno())

    target = log_file if log_file else Path(os.devnull)
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "a+") as out:
        os.dup2(out.fileno(), sys.stdout.fileno())
        os.dup2(out.fileno(), sys.stderr.fileno())

    logger.info(f"Daemon process started (PID: {os.getpid()})")
