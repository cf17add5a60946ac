"""Fixtures for CLI tests.

Commands build their job system from the global configuration and engine,
so each test points both at a temporary directory.
"""

import logging
import os

import pytest
from typer.testing import CliRunner

from agregator_cli.config import clear_config_cache, load_config
from agregator_cli.database.connection import create_tables, dispose_engine, get_session_maker


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture(autouse=True)
def cli_env(tmp_path, monkeypatch):
    """Isolated config and data directories for every command."""
    for key in list(os.environ):
        if key.startswith("AGREGATOR_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("AGREGATOR_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.setenv("AGREGATOR_DATA_DIR", str(tmp_path / "data"))

    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level

    dispose_engine()
    clear_config_cache()
    yield tmp_path
    dispose_engine()
    clear_config_cache()

    # The root callback reconfigures logging against the runner's streams
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def session_factory(cli_env):
    """The global session factory the commands use."""
    config = load_config()
    create_tables(config)
    return get_session_maker(config)
