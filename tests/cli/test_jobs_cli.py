"""Tests for the `agregator jobs` commands."""

import json
from datetime import timedelta

from agregator_cli.cli.exit_codes import ExitCode
from agregator_cli.database.models import utcnow
from agregator_cli.main import app


class TestRegisterDefaults:
    """Tests for `jobs register-defaults` and `jobs list`."""

    def test_register_twice(self, runner, session_factory) -> None:
        first = runner.invoke(app, ["jobs", "register-defaults"])
        second = runner.invoke(app, ["jobs", "register-defaults"])

        assert first.exit_code == 0
        assert "status-update: created" in first.stdout
        assert "scheduled-test-scraper: created" in first.stdout
        assert second.exit_code == 0
        assert "status-update: unchanged" in second.stdout

    def test_list_json(self, runner, session_factory) -> None:
        runner.invoke(app, ["jobs", "register-defaults"])

        result = runner.invoke(app, ["jobs", "list", "--json"])

        assert result.exit_code == 0
        rows = json.loads(result.stdout)
        assert {row["id"] for row in rows} == {"status-update", "scheduled-test-scraper"}

    def test_list_empty(self, runner, session_factory) -> None:
        result = runner.invoke(app, ["jobs", "list"])

        assert result.exit_code == 0
        assert "No recurring jobs registered" in result.stdout

    def test_invalid_cron_in_config(self, runner, session_factory, monkeypatch) -> None:
        monkeypatch.setenv("AGREGATOR_STATUS_CRON", "every hour")

        result = runner.invoke(app, ["jobs", "register-defaults"])

        assert result.exit_code == ExitCode.CONFIGURATION_ERROR

    def test_remove(self, runner, session_factory) -> None:
        runner.invoke(app, ["jobs", "register-defaults"])

        assert runner.invoke(app, ["jobs", "remove", "scheduled-test-scraper"]).exit_code == 0
        result = runner.invoke(app, ["jobs", "remove", "scheduled-test-scraper"])

        assert result.exit_code == ExitCode.NOT_FOUND


class TestRunJob:
    """Tests for `jobs run`."""

    def test_enqueue_only(self, runner, session_factory) -> None:
        runner.invoke(app, ["jobs", "register-defaults"])

        result = runner.invoke(app, ["jobs", "run", "status-update"])

        assert result.exit_code == 0
        assert "Enqueued job" in result.stdout

    def test_execute_status_update(self, runner, add_event, get_status) -> None:
        event_id = add_event("ACTIVE", start_date=utcnow() - timedelta(days=1))
        runner.invoke(app, ["jobs", "register-defaults"])

        result = runner.invoke(app, ["jobs", "run", "status-update", "--execute"])

        assert result.exit_code == 0
        assert "completed" in result.stdout
        assert get_status(event_id) == "EXPIRED"

    def test_execute_scrape(self, runner, session_factory) -> None:
        runner.invoke(app, ["jobs", "register-defaults"])

        result = runner.invoke(app, ["jobs", "run", "scheduled-test-scraper", "-x"])

        assert result.exit_code == 0
        assert "new_events: 2" in result.stdout

    def test_unknown_job(self, runner, session_factory) -> None:
        result = runner.invoke(app, ["jobs", "run", "missing"])

        assert result.exit_code == ExitCode.NOT_FOUND


class TestInstances:
    """Tests for `jobs instances` and `jobs purge`."""

    def test_list_instances(self, runner, session_factory) -> None:
        runner.invoke(app, ["jobs", "register-defaults"])
        runner.invoke(app, ["jobs", "run", "status-update"])

        result = runner.invoke(app, ["jobs", "instances", "--json"])

        assert result.exit_code == 0
        instances = json.loads(result.stdout)
        assert len(instances) == 1
        assert instances[0]["state"] == "pending"
        assert instances[0]["definition_id"] == "status-update"

    def test_filter_by_state(self, runner, session_factory) -> None:
        runner.invoke(app, ["jobs", "register-defaults"])
        runner.invoke(app, ["jobs", "run", "status-update"])

        result = runner.invoke(app, ["jobs", "instances", "--state", "completed", "--json"])

        assert json.loads(result.stdout) == []

    def test_invalid_state(self, runner, session_factory) -> None:
        result = runner.invoke(app, ["jobs", "instances", "--state", "running"])

        assert result.exit_code == ExitCode.INVALID_ARGUMENT

    def test_purge(self, runner, session_factory) -> None:
        result = runner.invoke(app, ["jobs", "purge"])

        assert result.exit_code == 0
        assert "Reclaimed 0 expired leases" in result.stdout
