"""Daemon module for Agregator CLI.

Runs the scheduler and the worker pool as a long-lived background service.
"""

from agregator_cli.daemon.pid import PIDFile
from agregator_cli.daemon.service import (
    AgregatorDaemon,
    daemonize,
    run_daemon,
)

__all__ = [
    "AgregatorDaemon",
    "PIDFile",
    "daemonize",
    "run_daemon",
]
