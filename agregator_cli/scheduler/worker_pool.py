"""Worker pool executing job instances from the job store.

Each worker is an OS thread that repeatedly claims one due instance, runs
its handler while a background thread keeps the lease alive, and records
the outcome. Retryable failures get a successor instance after an
exponential backoff; non-retryable ones fail for good.
"""

from __future__ import annotations

import logging
import os
import socket
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional
from uuid import uuid4

from agregator_cli.database.models import JobInstance
from agregator_cli.scheduler.events import JobEvent, JobEventBus, JobEventType
from agregator_cli.scheduler.exceptions import NonRetryableJobError, StoreUnavailable
from agregator_cli.scheduler.handlers import HandlerRegistry
from agregator_cli.scheduler.job_store import JobStore

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """Exponential backoff between attempts.

    The delay before attempt ``n + 1`` is ``base_delay * 2 ** n`` seconds,
    capped at ``max_delay``.
    """

    base_delay: float = 2.0
    max_delay: float = 300.0

    def delay_for(self, attempt: int) -> float:
        """Backoff after the failure of ``attempt`` (0 for the first run)."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)


@dataclass
class PoolHandle:
    """Returned by ``WorkerPool.start`` and required to stop the pool."""

    pool_id: str
    concurrency: int
    worker_ids: List[str]
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class StopReport:
    """What happened while stopping the pool.

    Attributes:
        timed_out: True if the drain deadline passed with jobs still running
        released_ids: Instances returned to pending after the deadline
    """

    timed_out: bool = False
    released_ids: List[int] = field(default_factory=list)


class _LeaseRenewer(threading.Thread):
    """Extends the lease on one instance until stopped."""

    def __init__(
        self,
        store: JobStore,
        instance_id: int,
        worker_id: str,
        lease_seconds: float,
        interval: float,
    ) -> None:
        super().__init__(name=f"lease-{instance_id}", daemon=True)
        self._store = store
        self._instance_id = instance_id
        self._worker_id = worker_id
        self._lease_seconds = lease_seconds
        self._interval = interval
        self._stopped = threading.Event()

    def run(self) -> None:
        while not self._stopped.wait(self._interval):
            try:
                renewed = self._store.renew_lease(
                    self._instance_id, self._worker_id, self._lease_seconds
                )
            except StoreUnavailable as e:
                logger.warning(f"Could not renew lease on job {self._instance_id}: {e}")
                continue
            if not renewed:
                logger.warning(f"Lease on job {self._instance_id} lost by {self._worker_id}")
                return

    def stop(self) -> None:
        self._stopped.set()


class _Run:
    """Stop signal shared by the threads of one ``start``."""

    def __init__(self) -> None:
        self.stop_event = threading.Event()
        # Set once stop has given up waiting; later claims are handed back
        self.closed = False


class WorkerPool:
    """Runs job instances on a fixed number of worker threads.

    Example:
        pool = WorkerPool(store, handlers)
        handle = pool.start(concurrency=5)
        ...
        report = pool.stop(handle, timeout=30)
    """

    def __init__(
        self,
        store: JobStore,
        handlers: HandlerRegistry,
        retry_policy: Optional[RetryPolicy] = None,
        lease_seconds: float = 60.0,
        poll_interval: float = 1.0,
        drain_timeout: float = 30.0,
        event_bus: Optional[JobEventBus] = None,
    ) -> None:
        """Initialize the worker pool.

        Args:
            store: Job store to claim instances from
            handlers: Dispatch table for job types
            retry_policy: Backoff between attempts
            lease_seconds: Lease length; renewed every third of it
            poll_interval: Wait between claims when the queue is empty
            drain_timeout: Default time ``stop`` waits for running jobs
            event_bus: Bus for job events (default: the store's bus)
        """
        self._store = store
        self._handlers = handlers
        self._retry_policy = retry_policy or RetryPolicy()
        self._lease_seconds = lease_seconds
        self._renew_interval = max(lease_seconds / 3.0, 0.05)
        self._poll_interval = poll_interval
        self._drain_timeout = drain_timeout
        self._event_bus = event_bus or store.event_bus

        self._handle: Optional[PoolHandle] = None
        self._run: Optional[_Run] = None
        self._threads: List[threading.Thread] = []
        self._stale_threads: List[threading.Thread] = []
        self._lock = threading.Lock()
        self._active: Dict[str, JobInstance] = {}
        self._last_reclaim = 0.0

    @property
    def is_running(self) -> bool:
        return self._handle is not None

    @property
    def stale_threads(self) -> List[threading.Thread]:
        """Threads of earlier runs still finishing a job after their stop timed out."""
        with self._lock:
            self._stale_threads = [t for t in self._stale_threads if t.is_alive()]
            return list(self._stale_threads)

    @property
    def active_instances(self) -> Dict[str, JobInstance]:
        """Instances currently executing, keyed by worker id."""
        with self._lock:
            return dict(self._active)

    def start(self, concurrency: int) -> PoolHandle:
        """
        Start ``concurrency`` worker threads.

        Raises:
            ValueError: If concurrency is not positive
            RuntimeError: If the pool is already running
        """
        if concurrency < 1:
            raise ValueError(f"Concurrency must be positive, got {concurrency}")
        if self._handle is not None:
            raise RuntimeError("Worker pool already running")

        pool_id = f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:8]}"
        worker_ids = [f"{pool_id}:w{n}" for n in range(concurrency)]

        stale = self.stale_threads
        if stale:
            logger.warning(
                f"{len(stale)} worker thread(s) of a previous run still finishing; "
                "they will not claim new jobs"
            )

        run = _Run()
        self._run = run
        self._threads = [
            threading.Thread(
                target=self._worker_loop, args=(worker_id, run), name=worker_id, daemon=True
            )
            for worker_id in worker_ids
        ]
        for thread in self._threads:
            thread.start()

        self._handle = PoolHandle(pool_id=pool_id, concurrency=concurrency, worker_ids=worker_ids)
        logger.info(f"Worker pool {pool_id} started with {concurrency} workers")
        return self._handle

    def stop(self, handle: PoolHandle, timeout: Optional[float] = None) -> StopReport:
        """
        Stop claiming, drain running jobs, then release what is left.

        Args:
            handle: Handle returned by ``start``
            timeout: Drain deadline in seconds (default: ``drain_timeout``)

        Returns:
            StopReport listing instances released back to pending
        """
        if handle is not self._handle:
            raise ValueError("Handle does not belong to this running pool")

        logger.info(f"Stopping worker pool {handle.pool_id}...")
        run = self._run
        run.stop_event.set()

        deadline = time.monotonic() + (self._drain_timeout if timeout is None else timeout)
        for thread in self._threads:
            thread.join(max(0.0, deadline - time.monotonic()))

        with self._lock:
            run.closed = True
            remaining = {
                worker_id: instance
                for worker_id, instance in self._active.items()
                if worker_id in handle.worker_ids
            }
            lingering = [t for t in self._threads if t.is_alive()]
            self._stale_threads.extend(lingering)
        if lingering:
            logger.warning(f"{len(lingering)} worker thread(s) did not finish before the deadline")

        report = StopReport()
        for worker_id, instance in remaining.items():
            report.timed_out = True
            try:
                released = self._store.release(instance, worker_id)
            except StoreUnavailable as e:
                # The lease expires on its own and the instance is reclaimed later
                logger.error(f"Could not release job {instance.id}: {e}")
                continue
            if released:
                report.released_ids.append(instance.id)
                self._publish(JobEventType.RELEASED, instance, worker_id)

        self._handle = None
        self._run = None
        self._threads = []
        logger.info(
            f"Worker pool {handle.pool_id} stopped"
            + (f", released {len(report.released_ids)} job(s)" if report.released_ids else "")
        )
        return report

    def run_once(self, worker_id: str, run: Optional[_Run] = None) -> bool:
        """
        Claim and execute at most one instance.

        When ``run`` is given and has been closed by ``stop`` by the time the
        claim succeeds, the instance is released back to pending unexecuted.

        Returns:
            True if an instance was executed
        """
        instance = self._store.claim(worker_id, self._lease_seconds)
        if instance is None:
            return False

        with self._lock:
            abandoned = run is not None and run.closed
            if not abandoned:
                self._active[worker_id] = instance
        self._publish(JobEventType.CLAIMED, instance, worker_id)

        if abandoned:
            if self._store.release(instance, worker_id):
                self._publish(JobEventType.RELEASED, instance, worker_id)
            logger.info(f"Job {instance.id} claimed after stop; returned to pending")
            return False

        renewer = _LeaseRenewer(
            self._store, instance.id, worker_id, self._lease_seconds, self._renew_interval
        )
        renewer.start()
        try:
            try:
                result = self._handlers.dispatch(instance.job_type, instance.payload)
            except Exception as e:
                self._record_failure(instance, worker_id, e)
            else:
                self._record_success(instance, worker_id, result)
        finally:
            renewer.stop()
            with self._lock:
                self._active.pop(worker_id, None)

        return True

    def _worker_loop(self, worker_id: str, run: _Run) -> None:
        logger.debug(f"Worker {worker_id} started")
        while not run.stop_event.is_set():
            try:
                self._maybe_reclaim()
                processed = self.run_once(worker_id, run)
            except StoreUnavailable as e:
                logger.error(f"Worker {worker_id}: {e}")
                processed = False
            except Exception as e:
                logger.exception(f"Worker {worker_id} hit an unexpected error: {e}")
                processed = False

            if not processed:
                run.stop_event.wait(self._poll_interval)
        logger.debug(f"Worker {worker_id} stopped")

    def _maybe_reclaim(self) -> None:
        now = time.monotonic()
        with self._lock:
            if now - self._last_reclaim < self._poll_interval:
                return
            self._last_reclaim = now
        self._store.reclaim_expired()

    def _record_success(self, instance: JobInstance, worker_id: str, result: Optional[dict]) -> None:
        if not self._store.complete(instance, worker_id, result):
            logger.warning(f"Job {instance.id} finished after its lease was lost; result discarded")
            return
        self._publish(JobEventType.COMPLETED, instance, worker_id, data={"result": result})

    def _record_failure(self, instance: JobInstance, worker_id: str, error: Exception) -> None:
        retryable = not isinstance(error, NonRetryableJobError)
        error_text = f"{type(error).__name__}: {error}"

        delay = None
        if retryable and instance.attempt + 1 < instance.max_attempts:
            delay = self._retry_policy.delay_for(instance.attempt)

        outcome = self._store.fail(instance, worker_id, error_text, retry_delay=delay)
        if not outcome.recorded:
            logger.warning(f"Job {instance.id} failed after its lease was lost: {error_text}")
            return

        self._publish(
            JobEventType.FAILED,
            instance,
            worker_id,
            error=error_text,
            data={"retryable": retryable, "permanent": outcome.successor is None},
        )
        if outcome.successor is not None:
            self._publish(
                JobEventType.RETRY_SCHEDULED,
                instance,
                worker_id,
                error=error_text,
                data={"delay": outcome.delay, "successor_id": outcome.successor.id},
            )

    def _publish(
        self,
        event_type: JobEventType,
        instance: JobInstance,
        worker_id: Optional[str],
        error: Optional[str] = None,
        data: Optional[dict] = None,
    ) -> None:
        self._event_bus.publish(JobEvent(
            event_type,
            instance_id=instance.id,
            job_type=instance.job_type,
            attempt=instance.attempt,
            definition_id=instance.definition_id,
            worker_id=worker_id,
            error=error,
            data=data or {},
        ))
