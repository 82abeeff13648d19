"""
Configuration Management

Handles loading configuration from environment variables and config files.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_DISCOVER_TIMEOUT = 5.0  # seconds


def config_dir() -> Path:
    base = os.getenv('XDG_CONFIG_HOME')
    return (Path(base) if base else Path.home() / '.config') / 'blu'


def cache_dir() -> Path:
    base = os.getenv('XDG_CACHE_HOME')
    return (Path(base) if base else Path.home() / '.cache') / 'blu'


def default_config_path() -> Path:
    return Path(os.getenv('BLU_CONFIG') or config_dir() / 'config.json')


@dataclass
class Config:
    """
    blu configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (BLU_*)
    2. Config file (config.json)
    3. Default values
    """
    # Device selection
    default_device: str = ''
    aliases: Dict[str, str] = field(default_factory=dict)

    # Discovery
    discover_timeout: float = DEFAULT_DISCOVER_TIMEOUT
    cache_path: Path = field(default_factory=lambda: cache_dir() / 'discovery.json')

    # Logging
    log_level: str = 'INFO'

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        path = Path(path)
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        config = cls()
        config.default_device = data.get('default_device', config.default_device)
        config.aliases = dict(data.get('aliases') or {})
        config.discover_timeout = float(data.get('discover_timeout', config.discover_timeout))
        if data.get('cache_path'):
            config.cache_path = Path(data['cache_path'])
        config.log_level = data.get('log_level', config.log_level)
        return config

    def apply_env(self):
        """Override settings with BLU_* environment variables."""
        self.default_device = os.getenv('BLU_DEVICE', self.default_device)

        timeout = os.getenv('BLU_DISCOVER_TIMEOUT')
        if timeout:
            try:
                self.discover_timeout = float(timeout)
            except ValueError:
                logger.warning(f"Ignoring invalid BLU_DISCOVER_TIMEOUT: {timeout!r}")

        cache_path = os.getenv('BLU_CACHE_PATH')
        if cache_path:
            self.cache_path = Path(cache_path)

        self.log_level = os.getenv('BLU_LOG_LEVEL', self.log_level)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'default_device': self.default_device,
            'aliases': dict(self.aliases),
            'discover_timeout': self.discover_timeout,
            'cache_path': str(self.cache_path),
            'log_level': self.log_level,
        }

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)
            f.write('\n')


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Environment variables (and a .env file) override file settings.
    """
    load_dotenv()
    config = Config.from_file(config_path or default_config_path())
    config.apply_env()
    return config
