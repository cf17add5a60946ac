"""Built-in scrapers for Agregator CLI.

Only the sample scraper ships with the package; real sources are installed
through the ``agregator_cli.scrapers`` entry point group or dropped into a
plugin directory.
"""

from agregator_cli.scrapers.builtin.sample import TestScraper

__all__ = ["TestScraper"]
