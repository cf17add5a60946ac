"""
Agregator CLI Configuration Management.

Handles loading and validating configuration from various sources:
- Default values
- Configuration files (TOML)
- Environment variables
"""

from __future__ import annotations

import json
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, List

import yaml
from croniter import croniter


# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".config" / "agregator"
DEFAULT_CONFIG_FILE = "config.toml"
DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "agregator"

# Sources scheduled when none are configured
DEFAULT_SCRAPER_SOURCES = ["test-scraper"]


@dataclass
class ValidationError:
    """Validation error for configuration."""
    field: str
    message: str
    severity: str  # "error" or "warning"

    def __str__(self) -> str:
        return f"[{self.severity.upper()}] {self.field}: {self.message}"


@dataclass
class SchedulerConfig:
    """Configuration for recurring job registration."""

    enabled: bool = True

    # Recurring schedules
    status_cron: str = "0 * * * *"  # Hourly status sweep
    scraper_cron: str = "0 */2 * * *"  # Every two hours per source
    scraper_sources: list[str] = field(default_factory=lambda: list(DEFAULT_SCRAPER_SOURCES))

    # Lease reclaim and retention purge, in seconds
    maintenance_interval: int = 300


@dataclass
class WorkerConfig:
    """Configuration for the worker pool and retry policy."""

    concurrency: int = 5
    max_attempts: int = 3

    # Exponential backoff: base_delay * 2 ** attempt, capped at max_delay
    base_delay: float = 2.0
    max_delay: float = 300.0

    lease_seconds: int = 60
    poll_interval: float = 1.0
    drain_timeout: float = 30.0

    # Retention for finished instances
    completed_retention_hours: int = 24
    completed_retention_count: int = 1000
    failed_retention_days: int = 7


@dataclass
class StatusConfig:
    """Configuration for the event status manager."""

    # Extra time before an event without end date counts as expired
    single_day_grace_hours: float = 0.0


@dataclass
class ScraperConfig:
    """Configuration for scraper discovery."""

    plugin_dirs: list[Path] = field(default_factory=list)

    # Per-source options passed to scrapers
    settings: dict[str, dict[str, Any]] = field(default_factory=dict)


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[Path] = None


@dataclass
class AgregatorConfig:
    """Main configuration container for Agregator CLI."""

    # Paths
    config_dir: Path = DEFAULT_CONFIG_DIR
    data_dir: Path = DEFAULT_DATA_DIR

    # Sub-configurations
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    status: StatusConfig = field(default_factory=StatusConfig)
    scrapers: ScraperConfig = field(default_factory=ScraperConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Database
    database_url: str = ""

    def __post_init__(self):
        """Initialize derived values."""
        if not self.database_url:
            self.database_url = f"sqlite:///{self.data_dir}/agregator.db"


def load_config(
    config_path: Optional[Path] = None,
    env_prefix: str = "AGREGATOR_"
) -> AgregatorConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file
    3. Default values

    Args:
        config_path: Path to config file (default: ~/.config/agregator/config.toml)
        env_prefix: Prefix for environment variables

    Returns:
        Loaded configuration
    """
    config = AgregatorConfig()

    if config_path is None:
        env_config_dir = os.environ.get(f"{env_prefix}CONFIG_DIR")
        if env_config_dir:
            config_path = Path(env_config_dir) / DEFAULT_CONFIG_FILE
        else:
            config_path = DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE

    if config_path.exists():
        config = _load_from_file(config_path, config)

    config = _load_from_env(config, env_prefix)

    return config


def _load_from_file(path: Path, config: AgregatorConfig) -> AgregatorConfig:
    """Load configuration from a TOML file."""
    with open(path, "rb") as f:
        data = tomllib.load(f)

    for section in ("scheduler", "worker", "status", "logging"):
        if section in data:
            section_obj = getattr(config, section)
            for key, value in data[section].items():
                if hasattr(section_obj, key):
                    setattr(section_obj, key, value)

    if "scrapers" in data:
        for key, value in data["scrapers"].items():
            if key == "settings" and isinstance(value, dict):
                for source_name, source_settings in value.items():
                    if isinstance(source_settings, dict):
                        config.scrapers.settings[source_name] = source_settings
            elif key == "plugin_dirs":
                config.scrapers.plugin_dirs = [Path(p) for p in value]

    # Top-level settings
    if "config_dir" in data:
        config.config_dir = Path(data["config_dir"])
    if "data_dir" in data:
        config.data_dir = Path(data["data_dir"])
        if "database_url" not in data:
            config.database_url = f"sqlite:///{config.data_dir}/agregator.db"
    if "database_url" in data:
        config.database_url = data["database_url"]

    return config


def _load_from_env(config: AgregatorConfig, prefix: str) -> AgregatorConfig:
    """Load configuration from environment variables."""

    # Scheduler settings
    if env_val := os.environ.get(f"{prefix}SCHEDULER_ENABLED"):
        config.scheduler.enabled = env_val.lower() in ("true", "1", "yes")
    if env_val := os.environ.get(f"{prefix}STATUS_CRON"):
        config.scheduler.status_cron = env_val
    if env_val := os.environ.get(f"{prefix}SCRAPER_CRON"):
        config.scheduler.scraper_cron = env_val
    if env_val := os.environ.get(f"{prefix}SCRAPER_SOURCES"):
        config.scheduler.scraper_sources = [s.strip() for s in env_val.split(",") if s.strip()]

    # Worker settings
    if env_val := os.environ.get(f"{prefix}WORKER_CONCURRENCY"):
        config.worker.concurrency = int(env_val)
    if env_val := os.environ.get(f"{prefix}MAX_ATTEMPTS"):
        config.worker.max_attempts = int(env_val)
    if env_val := os.environ.get(f"{prefix}DRAIN_TIMEOUT"):
        config.worker.drain_timeout = float(env_val)

    # Logging settings
    if env_val := os.environ.get(f"{prefix}LOG_LEVEL"):
        config.logging.level = env_val.upper()

    # Paths
    if env_val := os.environ.get(f"{prefix}CONFIG_DIR"):
        config.config_dir = Path(env_val)
    if env_val := os.environ.get(f"{prefix}DATA_DIR"):
        config.data_dir = Path(env_val)
        config.database_url = f"sqlite:///{config.data_dir}/agregator.db"
    if env_val := os.environ.get(f"{prefix}DATABASE_URL"):
        config.database_url = env_val

    return config


def ensure_directories(config: AgregatorConfig) -> None:
    """Ensure all required directories exist."""
    config.config_dir.mkdir(parents=True, exist_ok=True)
    config.data_dir.mkdir(parents=True, exist_ok=True)

    for plugin_dir in config.scrapers.plugin_dirs:
        plugin_dir.mkdir(parents=True, exist_ok=True)


# Global configuration instance (lazy-loaded)
_global_config: Optional[AgregatorConfig] = None


def get_config() -> AgregatorConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def set_config(config: AgregatorConfig) -> None:
    """Set the global configuration instance."""
    global _global_config
    _global_config = config


def clear_config_cache() -> None:
    """Clear the global configuration cache."""
    global _global_config
    _global_config = None


def _validate_cron(cron: str) -> bool:
    """Validate a 5-part or 6-part cron expression."""
    parts = cron.split()
    if len(parts) not in (5, 6):
        return False
    return croniter.is_valid(cron, second_at_beginning=len(parts) == 6)


def validate_config(config: Optional[AgregatorConfig] = None) -> List[ValidationError]:
    """
    Validate configuration and return list of errors.

    Args:
        config: Configuration to validate (default: loaded from file)

    Returns:
        List of validation errors (empty if valid)
    """
    if config is None:
        config = load_config()

    errors: List[ValidationError] = []

    # Schedules
    for name in ("status_cron", "scraper_cron"):
        value = getattr(config.scheduler, name)
        if not _validate_cron(value):
            errors.append(ValidationError(
                field=f"scheduler.{name}",
                message=f"Invalid cron expression: {value}",
                severity="error"
            ))

    if not config.scheduler.scraper_sources:
        errors.append(ValidationError(
            field="scheduler.scraper_sources",
            message="No scraper sources configured. Only the status sweep will run.",
            severity="warning"
        ))

    # Worker pool
    if config.worker.concurrency < 1:
        errors.append(ValidationError(
            field="worker.concurrency",
            message="Concurrency must be at least 1.",
            severity="error"
        ))

    if config.worker.max_attempts < 1:
        errors.append(ValidationError(
            field="worker.max_attempts",
            message="max_attempts must be at least 1.",
            severity="error"
        ))

    if config.worker.base_delay < 0 or config.worker.max_delay < config.worker.base_delay:
        errors.append(ValidationError(
            field="worker.max_delay",
            message="Backoff delays must satisfy 0 <= base_delay <= max_delay.",
            severity="error"
        ))

    if config.worker.lease_seconds <= config.worker.poll_interval:
        errors.append(ValidationError(
            field="worker.lease_seconds",
            message="Lease is shorter than the poll interval; leases may expire while idle.",
            severity="warning"
        ))

    if config.status.single_day_grace_hours < 0:
        errors.append(ValidationError(
            field="status.single_day_grace_hours",
            message="Grace period cannot be negative.",
            severity="error"
        ))

    # Paths
    if not config.data_dir.exists():
        errors.append(ValidationError(
            field="data_dir",
            message=f"Data directory does not exist: {config.data_dir}",
            severity="warning"
        ))

    return errors


def _config_to_dict(config: AgregatorConfig, mask_secrets: bool = True) -> dict[str, Any]:
    """
    Convert configuration to dictionary.

    Args:
        config: Configuration to convert
        mask_secrets: If True, mask credentials embedded in the database URL

    Returns:
        Dictionary representation of config
    """
    database_url = config.database_url
    if mask_secrets and "@" in database_url and "://" in database_url:
        scheme, rest = database_url.split("://", 1)
        database_url = f"{scheme}://****@{rest.rsplit('@', 1)[1]}"

    return {
        "config_dir": str(config.config_dir),
        "data_dir": str(config.data_dir),
        "database_url": database_url,
        "scheduler": {
            "enabled": config.scheduler.enabled,
            "status_cron": config.scheduler.status_cron,
            "scraper_cron": config.scheduler.scraper_cron,
            "scraper_sources": list(config.scheduler.scraper_sources),
            "maintenance_interval": config.scheduler.maintenance_interval,
        },
        "worker": {
            "concurrency": config.worker.concurrency,
            "max_attempts": config.worker.max_attempts,
            "base_delay": config.worker.base_delay,
            "max_delay": config.worker.max_delay,
            "lease_seconds": config.worker.lease_seconds,
            "poll_interval": config.worker.poll_interval,
            "drain_timeout": config.worker.drain_timeout,
            "completed_retention_hours": config.worker.completed_retention_hours,
            "completed_retention_count": config.worker.completed_retention_count,
            "failed_retention_days": config.worker.failed_retention_days,
        },
        "status": {
            "single_day_grace_hours": config.status.single_day_grace_hours,
        },
        "scrapers": {
            "plugin_dirs": [str(p) for p in config.scrapers.plugin_dirs],
            "settings": config.scrapers.settings,
        },
        "logging": {
            "level": config.logging.level,
            "format": config.logging.format,
            "file": str(config.logging.file) if config.logging.file else None,
        },
    }


def export_config_yaml(config: AgregatorConfig, mask_secrets: bool = True) -> str:
    """Export configuration as YAML string."""
    config_dict = _config_to_dict(config, mask_secrets)
    return yaml.dump(config_dict, default_flow_style=False, sort_keys=False, allow_unicode=True)


def export_config_json(config: AgregatorConfig, mask_secrets: bool = True) -> str:
    """Export configuration as JSON string."""
    config_dict = _config_to_dict(config, mask_secrets)
    return json.dumps(config_dict, indent=2)
