"""Event scrapers.

Scrapers fetch events from one source each. The scrape job handler runs
them through the ScraperManager and stores what they find.
"""

from agregator_cli.scrapers.base import (
    ScrapedEvent,
    ScrapeResult,
    ScraperError,
    ScraperInfo,
    ScraperNotFound,
    ScraperPlugin,
)
from agregator_cli.scrapers.manager import ScraperManager
from agregator_cli.scrapers.registry import ScraperRegistry

__all__ = [
    "ScrapedEvent",
    "ScrapeResult",
    "ScraperError",
    "ScraperInfo",
    "ScraperNotFound",
    "ScraperPlugin",
    "ScraperManager",
    "ScraperRegistry",
]
