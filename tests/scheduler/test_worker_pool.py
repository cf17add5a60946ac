"""Tests for the worker pool."""

import threading
import time

import pytest

from agregator_cli.scheduler.events import JobEventBus, JobEventType
from agregator_cli.scheduler.exceptions import InvalidJobPayload
from agregator_cli.scheduler.handlers import HandlerRegistry
from agregator_cli.scheduler.job_store import JobState, JobStore, JobType
from agregator_cli.scheduler.worker_pool import PoolHandle, RetryPolicy, WorkerPool


def wait_for(condition, timeout: float = 10.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.02)
    return condition()


@pytest.fixture
def bus() -> JobEventBus:
    return JobEventBus(max_history=200)


@pytest.fixture
def store(session_factory, bus) -> JobStore:
    return JobStore(session_factory, bus)


@pytest.fixture
def handlers() -> HandlerRegistry:
    return HandlerRegistry()


@pytest.fixture
def pool(store, handlers) -> WorkerPool:
    return WorkerPool(
        store,
        handlers,
        retry_policy=RetryPolicy(base_delay=0.0, max_delay=0.0),
        lease_seconds=30.0,
        poll_interval=0.05,
        drain_timeout=5.0,
    )


class TestRetryPolicy:
    """Tests for exponential backoff."""

    def test_doubles_per_attempt(self) -> None:
        policy = RetryPolicy(base_delay=2.0, max_delay=300.0)

        assert [policy.delay_for(n) for n in range(4)] == [2.0, 4.0, 8.0, 16.0]

    def test_capped(self) -> None:
        policy = RetryPolicy(base_delay=2.0, max_delay=10.0)

        assert policy.delay_for(5) == 10.0


class TestRunOnce:
    """Tests for WorkerPool.run_once."""

    def test_empty_queue(self, pool) -> None:
        assert pool.run_once("w1") is False

    def test_success(self, pool, store, handlers, bus) -> None:
        handlers.register(JobType.STATUS_UPDATE, lambda payload: {"updated_count": 2})
        instance = store.enqueue(JobType.STATUS_UPDATE, {})

        assert pool.run_once("w1") is True

        stored = store.get(instance.id)
        assert stored.state == JobState.COMPLETED.value
        assert stored.result == {"updated_count": 2}
        types = [e.event_type for e in bus.get_history()]
        assert types == [JobEventType.ENQUEUED, JobEventType.CLAIMED, JobEventType.COMPLETED]

    def test_handler_receives_payload(self, pool, store, handlers) -> None:
        seen = []
        handlers.register(JobType.SCRAPE, lambda payload: seen.append(payload) or {})
        store.enqueue(JobType.SCRAPE, {"source": "test-scraper", "options": {"city": "Gdansk"}})

        pool.run_once("w1")

        assert seen == [{"source": "test-scraper", "options": {"city": "Gdansk"}}]

    def test_retryable_failure_retried_up_to_max_attempts(self, pool, store, handlers, bus) -> None:
        calls = []

        def failing(payload):
            calls.append(payload)
            raise RuntimeError("source offline")

        handlers.register(JobType.SCRAPE, failing)
        store.enqueue(JobType.SCRAPE, {"source": "x"}, max_attempts=3)

        while pool.run_once("w1"):
            pass

        assert len(calls) == 3
        instances = store.list_instances()
        assert sorted(i.attempt for i in instances) == [0, 1, 2]
        assert all(i.state == JobState.FAILED.value for i in instances)
        assert all(i.error == "RuntimeError: source offline" for i in instances)
        assert len(bus.get_history(JobEventType.RETRY_SCHEDULED)) == 2

    def test_retry_delay_follows_policy(self, store, handlers) -> None:
        pool = WorkerPool(store, handlers, retry_policy=RetryPolicy(base_delay=60.0))
        handlers.register(JobType.SCRAPE, lambda payload: 1 / 0)
        store.enqueue(JobType.SCRAPE, {"source": "x"})

        pool.run_once("w1")

        # The successor is not due yet
        assert pool.run_once("w1") is False
        pending = store.list_instances(state=JobState.PENDING)
        assert len(pending) == 1
        assert pending[0].attempt == 1

    def test_non_retryable_failure(self, pool, store, handlers, bus) -> None:
        def invalid(payload):
            raise InvalidJobPayload("scrape", "missing 'source'")

        handlers.register(JobType.SCRAPE, invalid)
        store.enqueue(JobType.SCRAPE, {})

        pool.run_once("w1")

        assert store.counts() == {"pending": 0, "active": 0, "completed": 0, "failed": 1}
        failed = bus.get_history(JobEventType.FAILED)
        assert failed[0].data == {"retryable": False, "permanent": True}

    def test_unknown_job_type_not_retried(self, pool, store) -> None:
        store.enqueue(JobType.STATUS_UPDATE, {})

        pool.run_once("w1")

        assert store.counts()["failed"] == 1
        assert store.counts()["pending"] == 0


class TestStartStop:
    """Tests for the threaded pool lifecycle."""

    def test_invalid_concurrency(self, pool) -> None:
        with pytest.raises(ValueError):
            pool.start(0)

    def test_double_start(self, pool) -> None:
        handle = pool.start(1)
        try:
            with pytest.raises(RuntimeError):
                pool.start(1)
        finally:
            pool.stop(handle)

    def test_processes_queue(self, pool, store, handlers) -> None:
        handlers.register(JobType.STATUS_UPDATE, lambda payload: {})
        for _ in range(6):
            store.enqueue(JobType.STATUS_UPDATE, {})

        handle = pool.start(3)
        assert len(handle.worker_ids) == 3
        assert wait_for(lambda: store.counts()["completed"] == 6)

        report = pool.stop(handle)

        assert report.timed_out is False
        assert report.released_ids == []
        assert pool.is_running is False

    def test_stop_with_foreign_handle(self, pool) -> None:
        handle = pool.start(1)
        try:
            with pytest.raises(ValueError):
                pool.stop(PoolHandle(pool_id="other", concurrency=1, worker_ids=[]))
        finally:
            pool.stop(handle)

    def test_drain_then_release(self, pool, store, handlers, bus) -> None:
        """Jobs still running at the deadline go back to pending."""
        started = threading.Event()
        release = threading.Event()

        def blocking(payload):
            started.set()
            release.wait(10)
            return {"late": True}

        handlers.register(JobType.SCRAPE, blocking)
        instance = store.enqueue(JobType.SCRAPE, {"source": "slow"})

        handle = pool.start(1)
        assert started.wait(5)

        report = pool.stop(handle, timeout=0.2)

        assert report.timed_out is True
        assert report.released_ids == [instance.id]
        assert store.get(instance.id).state == JobState.PENDING.value
        assert len(bus.get_history(JobEventType.RELEASED)) == 1

        # The late completion of the released job is discarded
        release.set()
        assert wait_for(lambda: not pool.active_instances)
        time.sleep(0.1)
        stored = store.get(instance.id)
        assert stored.state == JobState.PENDING.value
        assert stored.result is None

    def test_timed_out_threads_stay_tracked(self, pool, store, handlers) -> None:
        started = threading.Event()
        release = threading.Event()

        def blocking(payload):
            started.set()
            release.wait(10)
            return {}

        handlers.register(JobType.SCRAPE, blocking)
        store.enqueue(JobType.SCRAPE, {"source": "slow"})

        handle = pool.start(1)
        assert started.wait(5)
        pool.stop(handle, timeout=0.1)

        assert len(pool.stale_threads) == 1

        release.set()
        assert wait_for(lambda: not pool.stale_threads)

    def test_restart_does_not_resume_old_threads(self, pool, store, handlers, bus) -> None:
        started = threading.Event()
        release = threading.Event()
        calls = []

        def first_call_blocks(payload):
            calls.append(payload)
            if len(calls) == 1:
                started.set()
                release.wait(10)
            return {}

        handlers.register(JobType.SCRAPE, first_call_blocks)
        store.enqueue(JobType.SCRAPE, {"source": "slow"})

        old = pool.start(1)
        assert started.wait(5)
        pool.stop(old, timeout=0.1)

        new = pool.start(1)
        try:
            release.set()
            for n in range(4):
                store.enqueue(JobType.SCRAPE, {"source": f"s{n}"})
            assert wait_for(lambda: store.counts()["completed"] == 5)
            assert wait_for(lambda: not pool.stale_threads)
        finally:
            pool.stop(new)

        workers = {e.worker_id for e in bus.get_history(JobEventType.COMPLETED)}
        assert workers == set(new.worker_ids)

    def test_claim_after_stop_deadline_is_released(self, pool, store, handlers, bus, monkeypatch) -> None:
        """A claim that lands after stop gave up waiting is handed back unexecuted."""
        claiming = threading.Event()
        proceed = threading.Event()
        ran = []
        real_claim = store.claim

        def slow_claim(worker_id, lease_seconds):
            claiming.set()
            proceed.wait(10)
            return real_claim(worker_id, lease_seconds)

        monkeypatch.setattr(store, "claim", slow_claim)
        handlers.register(JobType.STATUS_UPDATE, lambda payload: ran.append(payload) or {})
        instance = store.enqueue(JobType.STATUS_UPDATE, {})

        handle = pool.start(1)
        assert claiming.wait(5)
        report = pool.stop(handle, timeout=0.1)
        assert report.released_ids == []

        proceed.set()
        assert wait_for(lambda: not pool.stale_threads)

        assert ran == []
        assert store.get(instance.id).state == JobState.PENDING.value
        assert len(bus.get_history(JobEventType.RELEASED)) == 1
        assert pool.active_instances == {}
