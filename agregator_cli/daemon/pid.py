"""PID file for the background worker process."""

import os
from pathlib import Path
from typing import Optional


class PIDFile:
    """Tracks the daemon process through a file holding its PID.

    Example:
        pid_file = PIDFile(config.data_dir / "agregator.pid")
        if pid_file.is_running():
            raise SystemExit("already running")
        pid_file.create()
    """

    def __init__(self, path: Path):
        self.path = path

    def create(self) -> None:
        """Write the current PID, creating the parent directory."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(str(os.getpid()))

    def remove(self) -> None:
        """Delete the file if present."""
        self.path.unlink(missing_ok=True)

    def read(self) -> Optional[int]:
        """PID stored in the file, or None if missing or unreadable."""
        try:
            return int(self.path.read_text().strip())
        except (FileNotFoundError, ValueError, OSError):
            return None

    def is_running(self) -> bool:
        """True if the stored PID belongs to a live process."""
        pid = self.read()
        if pid is None:
            return False
        return _process_exists(pid)

    def clear_if_stale(self) -> bool:
        """
        Remove the file if its process is gone.

        Returns:
            True if a stale file was removed
        """
        pid = self.read()
        if pid is None or _process_exists(pid):
            return False
        self.remove()
        return True


def _process_exists(pid: int) -> bool:
    try:
        # Signal 0 only checks that the process exists
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user
        return True
    except OSError:
        return False
    return True
