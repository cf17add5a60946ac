"""Tests for the daemon service."""

import asyncio
import logging
from unittest.mock import AsyncMock, mock_open, patch

import pytest

from agregator_cli.config import AgregatorConfig
from agregator_cli.daemon.service import AgregatorDaemon, daemonize, run_daemon
from agregator_cli.runtime import build_job_system
from agregator_cli.scheduler.exceptions import ScheduleInvalid
from agregator_cli.scheduler.job_store import JobState, JobType
from agregator_cli.scrapers.builtin.sample import TestScraper
from agregator_cli.scrapers.manager import ScraperManager


@pytest.fixture
def config(tmp_path) -> AgregatorConfig:
    config = AgregatorConfig(data_dir=tmp_path)
    config.worker.poll_interval = 0.05
    config.worker.drain_timeout = 2.0
    return config


@pytest.fixture
def job_system(config, session_factory):
    scraper_manager = ScraperManager()
    scraper_manager.register(TestScraper)
    return build_job_system(config, session_factory=session_factory, scraper_manager=scraper_manager)


def wait_for(condition, timeout: float = 10.0) -> bool:
    import time

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.02)
    return condition()


class TestAgregatorDaemon:
    """Tests for AgregatorDaemon class."""

    @pytest.mark.asyncio
    async def test_start_registers_and_runs(self, config, job_system):
        """Start registers the configured jobs and starts clock and workers."""
        daemon = AgregatorDaemon(config, concurrency=2, job_system=job_system)

        await daemon.start()
        try:
            assert daemon.is_running is True
            assert job_system.scheduler.is_running is True
            assert job_system.pool.is_running is True
            assert {d.logical_id for d in job_system.scheduler.definitions} == {
                "status-update",
                "scheduled-test-scraper",
            }
        finally:
            report = await daemon.stop()

        assert daemon.is_running is False
        assert job_system.scheduler.is_running is False
        assert job_system.pool.is_running is False
        assert report.timed_out is False

    @pytest.mark.asyncio
    async def test_restart_keeps_single_series(self, config, job_system):
        for _ in range(2):
            daemon = AgregatorDaemon(config, concurrency=1, job_system=job_system)
            await daemon.start()
            await daemon.stop()

        assert len(job_system.scheduler.definitions) == 2

    @pytest.mark.asyncio
    async def test_workers_execute_enqueued_jobs(self, config, job_system):
        daemon = AgregatorDaemon(config, concurrency=1, job_system=job_system)
        await daemon.start()
        try:
            instance = job_system.store.enqueue(JobType.SCRAPE, {"source": "test-scraper"})
            done = await asyncio.to_thread(
                wait_for,
                lambda: job_system.store.get(instance.id).state == JobState.COMPLETED.value,
            )
        finally:
            await daemon.stop()

        assert done
        assert job_system.status_manager.get_statistics().draft == 2

    @pytest.mark.asyncio
    async def test_scheduler_disabled(self, config, job_system):
        config.scheduler.enabled = False
        daemon = AgregatorDaemon(config, concurrency=1, job_system=job_system)

        await daemon.start()
        try:
            assert job_system.scheduler.is_running is False
            assert job_system.pool.is_running is True
        finally:
            await daemon.stop()

    @pytest.mark.asyncio
    async def test_invalid_schedule_fails_start(self, config, job_system):
        config.scheduler.status_cron = "every hour"
        daemon = AgregatorDaemon(config, concurrency=1, job_system=job_system)

        with pytest.raises(ScheduleInvalid):
            await daemon.start()

        assert daemon.is_running is False
        assert job_system.pool.is_running is False

    @pytest.mark.asyncio
    async def test_stop_before_start(self, config):
        assert await AgregatorDaemon(config).stop() is None

    @pytest.mark.asyncio
    async def test_request_shutdown(self, config):
        daemon = AgregatorDaemon(config)

        daemon.request_shutdown()

        await asyncio.wait_for(daemon.run_until_shutdown(), timeout=1.0)


class TestRunDaemon:
    """Tests for run_daemon function."""

    @pytest.mark.asyncio
    async def test_run_daemon_starts_and_stops(self, config):
        """run_daemon always stops the daemon it started."""
        mock_daemon = AsyncMock()
        mock_daemon.request_shutdown = lambda: None

        with patch("agregator_cli.daemon.service.AgregatorDaemon", return_value=mock_daemon) as cls:
            await run_daemon(config, {"concurrency": 3})

        cls.assert_called_once_with(config, concurrency=3)
        mock_daemon.start.assert_awaited_once()
        mock_daemon.run_until_shutdown.assert_awaited_once()
        mock_daemon.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_called_when_start_fails(self, config):
        mock_daemon = AsyncMock()
        mock_daemon.start.side_effect = ScheduleInvalid("every hour")

        with patch("agregator_cli.daemon.service.AgregatorDaemon", return_value=mock_daemon):
            with pytest.raises(ScheduleInvalid):
                await run_daemon(config, {})

        mock_daemon.stop.assert_awaited_once()


class TestDaemonize:
    """Tests for daemonize function."""

    @patch("sys.platform", "win32")
    def test_daemonize_on_windows(self, caplog):
        with caplog.at_level(logging.WARNING):
            daemonize()

        assert "not supported on Windows" in caplog.text

    @patch("sys.platform", "linux")
    @patch("os.fork", side_effect=[0, 0])
    @patch("os.setsid")
    @patch("os.dup2")
    @patch("sys.stdout")
    @patch("sys.stderr")
    @patch("sys.stdin")
    def test_daemonize_forks_twice(self, mock_stdin, mock_stderr, mock_stdout,
                                   mock_dup2, mock_setsid, mock_fork, tmp_path):
        with patch("builtins.open", mock_open()):
            daemonize(tmp_path / "logs" / "daemon.log")

        assert mock_fork.call_count == 2
        mock_setsid.assert_called_once()
        assert mock_dup2.call_count == 3
        assert (tmp_path / "logs").exists()

    @patch("sys.platform", "linux")
    @patch("os.fork", return_value=1234)
    def test_parent_exits(self, mock_fork):
        with pytest.raises(SystemExit):
            daemonize()
