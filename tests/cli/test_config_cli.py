"""Tests for the `agregator config` commands and the root options."""

from agregator_cli import __version__
from agregator_cli.cli.exit_codes import ExitCode
from agregator_cli.main import app


class TestConfigShow:
    """Tests for `config show`."""

    def test_show_section(self, runner) -> None:
        result = runner.invoke(app, ["config", "show", "worker"])

        assert result.exit_code == 0
        assert "concurrency" in result.stdout
        assert "status_cron" not in result.stdout

    def test_show_yaml(self, runner) -> None:
        result = runner.invoke(app, ["config", "show", "--format", "yaml"])

        assert result.exit_code == 0
        assert "scheduler:" in result.stdout

    def test_unknown_section(self, runner) -> None:
        result = runner.invoke(app, ["config", "show", "network"])

        assert result.exit_code == ExitCode.INVALID_ARGUMENT

    def test_unknown_format(self, runner) -> None:
        result = runner.invoke(app, ["config", "show", "--format", "xml"])

        assert result.exit_code == ExitCode.INVALID_ARGUMENT


class TestConfigValidate:
    """Tests for `config validate`."""

    def test_defaults_valid(self, runner) -> None:
        result = runner.invoke(app, ["config", "validate"])

        assert result.exit_code == 0
        assert "Configuration is valid" in result.stdout

    def test_invalid_cron(self, runner, monkeypatch) -> None:
        monkeypatch.setenv("AGREGATOR_SCRAPER_CRON", "0 */2 * *")

        result = runner.invoke(app, ["config", "validate"])

        assert result.exit_code == ExitCode.CONFIGURATION_ERROR
        assert "scheduler.scraper_cron" in result.stdout

    def test_config_error_distinct_from_usage_error(self, runner, monkeypatch) -> None:
        monkeypatch.setenv("AGREGATOR_SCRAPER_CRON", "0 */2 * *")

        bad_config = runner.invoke(app, ["config", "validate"])
        bad_option = runner.invoke(app, ["config", "validate", "--no-such-option"])

        assert bad_config.exit_code == ExitCode.CONFIGURATION_ERROR
        assert bad_option.exit_code == ExitCode.USAGE_ERROR
        assert bad_config.exit_code != bad_option.exit_code

    def test_config_file(self, runner, tmp_path) -> None:
        path = tmp_path / "custom.toml"
        path.write_text('[worker]\nconcurrency = 0\n')

        result = runner.invoke(app, ["config", "validate", "--config", str(path)])

        assert result.exit_code == ExitCode.CONFIGURATION_ERROR


class TestRootOptions:
    """Tests for options of the root command."""

    def test_version(self, runner) -> None:
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_quiet_conflicts_with_verbose(self, runner) -> None:
        result = runner.invoke(app, ["--quiet", "--verbose", "status", "help"])

        assert result.exit_code == ExitCode.INVALID_ARGUMENT

    def test_log_file(self, runner, tmp_path) -> None:
        log_file = tmp_path / "logs" / "agregator.log"

        result = runner.invoke(app, ["--log-file", str(log_file), "status", "help"])

        assert result.exit_code == 0
        assert log_file.exists()
