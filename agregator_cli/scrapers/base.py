"""Base class for event scrapers.

Scrapers are the event sources for the aggregator. Each scraper fetches
events from one source and returns them as ``ScrapedEvent`` records; the
scrape job handler takes care of persisting them.
"""

import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


class ScraperError(Exception):
    """Base exception for scraper errors. Retryable."""

    def __init__(self, message: str, source: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.source = source

    def __str__(self) -> str:
        if self.source:
            return f"{self.message} (source: {self.source})"
        return self.message


@dataclass
class ScraperInfo:
    """Information about a scraper.

    Attributes:
        name: Unique source name used in job payloads
        display_name: Human-readable name
        version: Scraper version
        description: Scraper description
        source_url: Home page of the source
    """

    name: str
    display_name: str = ""
    version: str = "1.0.0"
    description: str = ""
    source_url: str = ""

    def __post_init__(self) -> None:
        if not self.display_name:
            self.display_name = self.name


@dataclass
class ScrapedEvent:
    """An event found by a scraper, before it is stored."""

    title: str
    start_date: datetime
    end_date: Optional[datetime] = None
    description: Optional[str] = None
    location_name: Optional[str] = None
    source_url: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def source_hash(self) -> str:
        """Stable identity of the event across scraper runs."""
        key = f"{self.title}-{self.start_date.isoformat()}-{self.location_name or ''}"
        return hashlib.sha256(key.encode("utf-8")).hexdigest()


@dataclass
class ScrapeResult:
    """Result of one scraper run.

    Attributes:
        source: Name of the scraper that ran
        events: Events found
    """

    source: str
    events: List[ScrapedEvent] = field(default_factory=list)

    @property
    def events_count(self) -> int:
        return len(self.events)


class ScraperPlugin(ABC):
    """Abstract base class for scrapers.

    Scrapers must implement:
    - info property: Return scraper information
    - scrape_events(): Fetch events from the source

    Example:
        class LibraryScraper(ScraperPlugin):
            @property
            def info(self) -> ScraperInfo:
                return ScraperInfo(name="city-library")

            async def scrape_events(self, options):
                ...
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        """Initialize the scraper.

        Args:
            config: Scraper configuration
        """
        self._config = config or {}

    @property
    @abstractmethod
    def info(self) -> ScraperInfo:
        """Get scraper information."""
        pass

    @property
    def name(self) -> str:
        """Get scraper name."""
        return self.info.name

    @property
    def config(self) -> Dict[str, Any]:
        """Get scraper configuration."""
        return self._config.copy()

    def configure(self, config: Dict[str, Any]) -> None:
        """Merge ``config`` into the scraper configuration."""
        self._config.update(config)

    @abstractmethod
    async def scrape_events(self, options: Dict[str, Any]) -> List[ScrapedEvent]:
        """Fetch events from the source.

        Args:
            options: Per-run options from the job payload

        Returns:
            Events currently published by the source

        Raises:
            ScraperError: If the source cannot be scraped
        """
        pass

    async def run(self, options: Optional[Dict[str, Any]] = None) -> ScrapeResult:
        """Scrape the source and wrap the events in a ``ScrapeResult``."""
        events = await self.scrape_events({**self._config, **(options or {})})
        return ScrapeResult(source=self.name, events=list(events))


class ScraperNotFound(ScraperError):
    """Raised when no scraper is registered under a source name."""

    def __init__(self, source: str) -> None:
        super().__init__(f"Scraper not found: {source}", source=None)
        self.source = source

    def __str__(self) -> str:
        return self.message
