"""Scraper manager.

Holds one configured instance per scraper and runs them by source name.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type

from agregator_cli.scrapers.base import (
    ScrapeResult,
    ScraperInfo,
    ScraperNotFound,
    ScraperPlugin,
)
from agregator_cli.scrapers.registry import ScraperRegistry

logger = logging.getLogger(__name__)


@dataclass
class ScrapeSummary:
    """Outcome of running every registered scraper.

    Attributes:
        results: Results of the scrapers that succeeded, by name
        errors: Error message of each scraper that failed, by name
    """

    results: Dict[str, ScrapeResult] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.results) + len(self.errors)

    @property
    def successful(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> int:
        return len(self.errors)


class ScraperManager:
    """Registers scrapers and runs them on demand.

    Example:
        manager = ScraperManager(ScraperRegistry())
        result = await manager.run("test-scraper", {})
    """

    def __init__(
        self,
        registry: Optional[ScraperRegistry] = None,
        settings: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> None:
        """Initialize the scraper manager.

        Args:
            registry: Registry to load scrapers from; None registers nothing
            settings: Per-source configuration keyed by scraper name
        """
        self._scrapers: Dict[str, ScraperPlugin] = {}
        self._settings = settings or {}

        if registry is not None:
            for scraper_class in registry.discover_all().values():
                try:
                    self.register(scraper_class)
                except Exception as e:
                    logger.warning(f"Failed to register scraper {scraper_class.__name__}: {e}")

    @property
    def scraper_names(self) -> List[str]:
        return sorted(self._scrapers.keys())

    def register(self, scraper_class: Type[ScraperPlugin]) -> ScraperPlugin:
        """Instantiate and register a scraper class.

        Args:
            scraper_class: The scraper class to register

        Returns:
            The registered instance
        """
        scraper = scraper_class()
        scraper.configure(self._settings.get(scraper.name, {}))
        self._scrapers[scraper.name] = scraper
        logger.debug(f"Registered scraper: {scraper.name}")
        return scraper

    def get_scraper(self, name: str) -> Optional[ScraperPlugin]:
        return self._scrapers.get(name)

    def get_all_info(self) -> List[ScraperInfo]:
        return [self._scrapers[name].info for name in self.scraper_names]

    async def run(self, source: str, options: Optional[Dict[str, Any]] = None) -> ScrapeResult:
        """Run the scraper registered as ``source``.

        Args:
            source: Scraper name
            options: Per-run options

        Returns:
            ScrapeResult with the events found

        Raises:
            ScraperNotFound: If no scraper has that name
        """
        scraper = self._scrapers.get(source)
        if scraper is None:
            raise ScraperNotFound(source)

        logger.info(f"Running scraper: {source}")
        result = await scraper.run(options)
        logger.info(f"Scraper {source} found {result.events_count} events")
        return result

    async def run_all(self, options: Optional[Dict[str, Any]] = None) -> ScrapeSummary:
        """Run every registered scraper, one after another.

        A failing scraper is recorded in the summary and the remaining ones
        still run.

        Args:
            options: Per-run options passed to every scraper

        Returns:
            ScrapeSummary with per-scraper results and errors
        """
        summary = ScrapeSummary()

        for name in self.scraper_names:
            try:
                summary.results[name] = await self.run(name, options)
            except Exception as e:
                logger.error(f"Scraper {name} failed: {e}")
                summary.errors[name] = str(e)

        logger.info(
            f"Scraping finished: {summary.total} total, "
            f"{summary.successful} successful, {summary.failed} failed"
        )
        return summary
