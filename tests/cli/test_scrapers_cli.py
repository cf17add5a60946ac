"""Tests for the `agregator scrapers` commands."""

import json

from agregator_cli.cli.exit_codes import ExitCode
from agregator_cli.database.connection import session_scope
from agregator_cli.database.models import Event
from agregator_cli.main import app


class TestScrapersList:
    """Tests for `scrapers list`."""

    def test_lists_builtin(self, runner) -> None:
        result = runner.invoke(app, ["scrapers", "list", "--json"])

        assert result.exit_code == 0
        rows = json.loads(result.stdout)
        sample = next(row for row in rows if row["name"] == "test-scraper")
        assert sample["scheduled"] is True

    def test_table(self, runner) -> None:
        result = runner.invoke(app, ["scrapers", "list"])

        assert result.exit_code == 0
        assert "Scrapers" in result.stdout


class TestScrapersRun:
    """Tests for `scrapers run`."""

    def test_dry_run_stores_nothing(self, runner, session_factory) -> None:
        result = runner.invoke(app, ["scrapers", "run", "test-scraper", "--json"])

        assert result.exit_code == 0
        assert len(json.loads(result.stdout)) == 2
        with session_scope(session_factory) as session:
            assert session.query(Event).count() == 0

    def test_save(self, runner, session_factory) -> None:
        result = runner.invoke(app, ["scrapers", "run", "test-scraper", "--save"])

        assert result.exit_code == 0
        assert "2 new" in result.stdout
        with session_scope(session_factory) as session:
            assert {e.status for e in session.query(Event).all()} == {"DRAFT"}

    def test_unknown_source(self, runner, session_factory) -> None:
        result = runner.invoke(app, ["scrapers", "run", "museum"])

        assert result.exit_code == ExitCode.NOT_FOUND

    def test_bad_option(self, runner, session_factory) -> None:
        result = runner.invoke(app, ["scrapers", "run", "test-scraper", "-o", "fast"])

        assert result.exit_code == ExitCode.INVALID_ARGUMENT


FAILING_PLUGIN = '''
from agregator_cli.scrapers.base import ScraperError, ScraperInfo, ScraperPlugin


class MuseumScraper(ScraperPlugin):
    @property
    def info(self):
        return ScraperInfo(name="museum")

    async def scrape_events(self, options):
        raise ScraperError("site unreachable", source="museum")
'''


class TestScrapersRunAll:
    """Tests for `scrapers run` without a source."""

    def test_runs_every_scraper(self, runner, session_factory) -> None:
        result = runner.invoke(app, ["scrapers", "run", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert (data["total"], data["successful"], data["failed"]) == (1, 1, 0)
        assert data["scrapers"][0]["source"] == "test-scraper"

    def test_save_reports_counts(self, runner, session_factory) -> None:
        result = runner.invoke(app, ["scrapers", "run", "--save"])

        assert result.exit_code == 0
        assert "test-scraper: found 2 events, 2 new, 0 updated" in result.stdout
        assert "Scrapers: 1 total, 1 successful, 0 failed" in result.stdout
        with session_scope(session_factory) as session:
            assert session.query(Event).count() == 2

    def test_failed_scraper_isolated(self, runner, session_factory, tmp_path) -> None:
        plugins = tmp_path / "plugins"
        plugins.mkdir()
        (plugins / "museum.py").write_text(FAILING_PLUGIN)
        config_file = tmp_path / "agregator.toml"
        config_file.write_text(f'[scrapers]\nplugin_dirs = ["{plugins.as_posix()}"]\n')

        result = runner.invoke(app, ["scrapers", "run", "--save", "--config", str(config_file)])

        assert result.exit_code == ExitCode.SCRAPER_ERROR
        assert "Scrapers: 2 total, 1 successful, 1 failed" in result.stdout
        with session_scope(session_factory) as session:
            assert session.query(Event).count() == 2
