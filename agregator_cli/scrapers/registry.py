"""Scraper registry for discovering scraper classes.

Scrapers are discovered from:
- Built-in scrapers
- Entry points (installed packages)
- Plugin directories
"""

import importlib
import importlib.util
import logging
from importlib.metadata import entry_points
from pathlib import Path
from typing import Any, Dict, List, Optional, Type

from agregator_cli.scrapers.base import ScraperInfo, ScraperPlugin

logger = logging.getLogger(__name__)


class ScraperRegistry:
    """Registry for discovering and loading scrapers.

    Example:
        registry = ScraperRegistry(plugin_dirs=[Path("~/scrapers").expanduser()])
        scrapers = registry.discover_all()
        scraper_class = registry.load("test-scraper")
    """

    # Entry point group for third-party scrapers
    ENTRY_POINT_GROUP = "agregator_cli.scrapers"

    # Built-in scraper module path
    BUILTIN_MODULE = "agregator_cli.scrapers.builtin"

    def __init__(self, plugin_dirs: Optional[List[Path]] = None) -> None:
        """Initialize the scraper registry.

        Args:
            plugin_dirs: Additional directories to search for scrapers
        """
        self._plugin_dirs = list(plugin_dirs or [])
        self._discovered: Dict[str, Type[ScraperPlugin]] = {}
        self._scraper_info: Dict[str, ScraperInfo] = {}

    def discover_all(self) -> Dict[str, Type[ScraperPlugin]]:
        """Discover all available scrapers from all sources.

        Returns:
            Dictionary mapping scraper names to scraper classes
        """
        self._discovered.clear()
        self._scraper_info.clear()

        self._discover_builtin()
        self._discover_entry_points()
        self._discover_directories()

        return self._discovered.copy()

    def _discover_builtin(self) -> None:
        builtin = importlib.import_module(self.BUILTIN_MODULE)
        for name in dir(builtin):
            obj = getattr(builtin, name)
            if self._is_scraper_class(obj):
                self._register_discovered(obj)

    def _discover_entry_points(self) -> None:
        for ep in entry_points(group=self.ENTRY_POINT_GROUP):
            try:
                scraper_class = ep.load()
            except Exception as e:
                logger.warning(f"Failed to load scraper entry point {ep.name}: {e}")
                continue
            if self._is_scraper_class(scraper_class):
                self._register_discovered(scraper_class)

    def _discover_directories(self) -> None:
        for plugin_dir in self._plugin_dirs:
            if not plugin_dir.exists():
                continue

            for py_file in sorted(plugin_dir.glob("*.py")):
                if py_file.name.startswith("_"):
                    continue

                try:
                    scraper_class = self._load_from_file(py_file)
                except Exception as e:
                    logger.warning(f"Failed to load scraper from {py_file}: {e}")
                    continue
                if scraper_class:
                    self._register_discovered(scraper_class)

    def _load_from_file(self, path: Path) -> Optional[Type[ScraperPlugin]]:
        """Load the first scraper class defined in a Python file."""
        spec = importlib.util.spec_from_file_location(path.stem, path)
        if not spec or not spec.loader:
            return None

        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)

        for name in dir(module):
            obj = getattr(module, name)
            if self._is_scraper_class(obj) and obj.__module__ == module.__name__:
                return obj

        return None

    def _is_scraper_class(self, obj: Any) -> bool:
        return (
            isinstance(obj, type)
            and issubclass(obj, ScraperPlugin)
            and obj is not ScraperPlugin
            and not getattr(obj, "__abstractmethods__", None)
        )

    def _register_discovered(self, scraper_class: Type[ScraperPlugin]) -> None:
        # Instantiate temporarily to get info
        try:
            info = scraper_class().info
        except Exception as e:
            logger.warning(f"Skipping scraper {scraper_class.__name__}: {e}")
            return

        self._discovered[info.name] = scraper_class
        self._scraper_info[info.name] = info

    def load(self, scraper_name: str) -> Optional[Type[ScraperPlugin]]:
        """Load a scraper class by name.

        Args:
            scraper_name: Source name of the scraper

        Returns:
            Scraper class or None
        """
        if scraper_name not in self._discovered:
            self.discover_all()
        return self._discovered.get(scraper_name)

    def get_all_info(self) -> List[ScraperInfo]:
        """Get information about all discovered scrapers."""
        if not self._scraper_info:
            self.discover_all()
        return list(self._scraper_info.values())

    @property
    def available_scrapers(self) -> List[str]:
        """Names of all available scrapers."""
        if not self._discovered:
            self.discover_all()
        return sorted(self._discovered.keys())
