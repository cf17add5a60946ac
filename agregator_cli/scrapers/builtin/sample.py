"""Sample scraper generating fixed test events.

Used to check the scrape pipeline end to end without network access. Event
dates are derived from the current day, so repeated runs on the same day
refresh the same two events instead of creating new ones.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from agregator_cli.scrapers.base import ScrapedEvent, ScraperInfo, ScraperPlugin

logger = logging.getLogger(__name__)


class TestScraper(ScraperPlugin):
    """Generates two sample events a few days ahead."""

    # Not a pytest test class
    __test__ = False

    @property
    def info(self) -> ScraperInfo:
        return ScraperInfo(
            name="test-scraper",
            display_name="Test Scraper",
            description="Generates sample events for system verification",
            source_url="https://test.example.com",
        )

    async def scrape_events(self, options: Dict[str, Any]) -> List[ScrapedEvent]:
        delay = float(options.get("delay", 0))
        if delay:
            await asyncio.sleep(delay)

        today = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        label = today.date().isoformat()

        workshop_start = today + timedelta(days=3, hours=10)
        show_start = today + timedelta(days=5, hours=11)

        events = [
            ScrapedEvent(
                title=f"[TEST] Robotics workshop - {label}",
                description="Sample event generated by the test scraper.",
                start_date=workshop_start,
                end_date=workshop_start + timedelta(hours=2),
                location_name="Test Centre",
                source_url=f"{self.info.source_url}/events/robotics-{label}",
            ),
            ScrapedEvent(
                title=f"[TEST] Puppet show for toddlers - {label}",
                description="Sample theatre event generated by the test scraper.",
                start_date=show_start,
                end_date=show_start + timedelta(minutes=90),
                location_name="Test Theatre",
                source_url=f"{self.info.source_url}/events/puppets-{label}",
            ),
        ]

        logger.info(f"Test scraper generated {len(events)} events")
        return events
