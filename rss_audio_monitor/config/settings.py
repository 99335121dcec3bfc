"""Configuration management for RSS Audio Monitor."""

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from ..exceptions import ConfigurationError
from ..utils.platform import get_config_dir, get_default_download_dir


@dataclass
class DatabaseConfig:
    """Database configuration."""

    path: Optional[Path] = None

    def __post_init__(self):
        """Set default database path if not specified."""
        if self.path is None:
            self.path = get_config_dir() / 'monitor.db'
        elif isinstance(self.path, str):
            self.path = Path(self.path).expanduser()


@dataclass
class SchedulerConfig:
    """Scheduler configuration."""

    tick_seconds: int = 60

    def __post_init__(self):
        """Validate configuration."""
        if self.tick_seconds < 10:
            raise ValueError("tick_seconds must be >= 10")


@dataclass
class DownloadConfig:
    """Download configuration."""

    max_concurrent: int = 3
    default_output_directory: Optional[Path] = None
    chunk_size_kb: int = 64
    progress_interval_ms: int = 500

    def __post_init__(self):
        """Validate configuration and set defaults."""
        if self.default_output_directory is None:
            self.default_output_directory = get_default_download_dir()
        elif isinstance(self.default_output_directory, str):
            self.default_output_directory = Path(self.default_output_directory).expanduser()

        if not (1 <= self.max_concurrent <= 10):
            raise ValueError("max_concurrent must be between 1 and 10")

        if self.chunk_size_kb < 1:
            raise ValueError("chunk_size_kb must be >= 1")

        if self.progress_interval_ms < 500:
            raise ValueError("progress_interval_ms must be >= 500")


@dataclass
class NetworkConfig:
    """HTTP client configuration."""

    timeout_seconds: int = 30
    user_agent: str = "rss-audio-monitor/0.1"
    max_retries: int = 3

    def __post_init__(self):
        """Validate configuration."""
        if self.timeout_seconds < 1:
            raise ValueError("timeout_seconds must be >= 1")

        if not (0 <= self.max_retries <= 10):
            raise ValueError("max_retries must be between 0 and 10")


@dataclass
class NotificationConfig:
    """Notification configuration."""

    enabled: bool = True
    on_new_episodes: bool = True
    on_download_complete: bool = True
    on_error: bool = False


@dataclass
class LoggingConfig:
    """Logging configuration."""

    path: Optional[Path] = None
    level: str = "INFO"
    max_size_mb: int = 10
    backup_count: int = 5

    def __post_init__(self):
        """Validate configuration and set defaults."""
        if self.path is None:
            self.path = get_config_dir() / 'service.log'
        elif isinstance(self.path, str):
            self.path = Path(self.path).expanduser()

        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.level.upper() not in valid_levels:
            raise ValueError(f"level must be one of {valid_levels}")


@dataclass
class Settings:
    """Main settings container."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    download: DownloadConfig = field(default_factory=DownloadConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_file(cls, config_path: Path) -> 'Settings':
        """Load settings from YAML file.

        Args:
            config_path: Path to configuration file

        Returns:
            Settings instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ConfigurationError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        try:
            return cls(
                database=DatabaseConfig(**(data.get('database') or {})),
                scheduler=SchedulerConfig(**(data.get('scheduler') or {})),
                download=DownloadConfig(**(data.get('download') or {})),
                network=NetworkConfig(**(data.get('network') or {})),
                notifications=NotificationConfig(**(data.get('notifications') or {})),
                logging=LoggingConfig(**(data.get('logging') or {})),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e

    @classmethod
    def from_file_or_default(cls, config_path: Optional[Path] = None) -> 'Settings':
        """Load settings from file or return defaults.

        Args:
            config_path: Path to configuration file (optional)

        Returns:
            Settings instance
        """
        if config_path is None:
            config_path = get_config_dir() / 'config.yaml'

        if config_path.exists():
            try:
                return cls.from_file(config_path)
            except (ConfigurationError, yaml.YAMLError) as e:
                logging.warning(f"Failed to load config from {config_path}: {e}")
                logging.warning("Using default configuration")
                return cls()
        else:
            logging.info(f"Config file not found at {config_path}, using defaults")
            return cls()

    def to_dict(self) -> dict:
        """Convert to plain YAML-serializable data (paths become strings)."""
        data = asdict(self)
        for section in data.values():
            for key, value in section.items():
                if isinstance(value, Path):
                    section[key] = str(value)
        return data

    def save(self, config_path: Optional[Path] = None) -> None:
        """Save settings to YAML file.

        Args:
            config_path: Path to save configuration (default: config.yaml in config dir)
        """
        if config_path is None:
            config_path = get_config_dir() / 'config.yaml'

        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False, indent=2)
