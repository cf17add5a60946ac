"""Tests for PID file management."""

import os

import pytest

from agregator_cli.daemon.pid import PIDFile

# Far above the default pid_max, so no live process has it
DEAD_PID = "4194999"


@pytest.fixture
def pid_file(tmp_path) -> PIDFile:
    return PIDFile(tmp_path / "run" / "agregator.pid")


class TestPIDFile:
    """Tests for PIDFile class."""

    def test_create_writes_current_pid(self, pid_file):
        """Create makes the parent directory and stores our PID."""
        pid_file.create()

        assert pid_file.read() == os.getpid()
        assert pid_file.is_running() is True

    def test_read_missing_or_garbage(self, pid_file):
        assert pid_file.read() is None

        pid_file.path.parent.mkdir(parents=True)
        pid_file.path.write_text("not-a-pid")
        assert pid_file.read() is None
        assert pid_file.is_running() is False

    def test_remove_is_idempotent(self, pid_file):
        pid_file.create()

        pid_file.remove()
        pid_file.remove()

        assert not pid_file.path.exists()

    def test_stale_file_cleared(self, pid_file):
        pid_file.path.parent.mkdir(parents=True)
        pid_file.path.write_text(DEAD_PID)

        assert pid_file.is_running() is False
        assert pid_file.clear_if_stale() is True
        assert not pid_file.path.exists()

    def test_live_file_kept(self, pid_file):
        pid_file.create()

        assert pid_file.clear_if_stale() is False
        assert pid_file.path.exists()

    def test_clear_without_file(self, pid_file):
        assert pid_file.clear_if_stale() is False
