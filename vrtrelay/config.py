"""
Settings Management

Handles loading settings from environment variables and config files.
Operator flags for a single run are validated separately (see options).
"""

import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional
import json

from dotenv import load_dotenv

from .errors import ConfigurationError


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f'{name} must be a number of seconds, got "{value}"')


@dataclass(frozen=True)
class ApiConnection:
    """OPNsense API credentials (key/secret pair and base URL)."""
    username: str = ''
    password: str = ''
    url: str = ''

    @property
    def is_configured(self) -> bool:
        return bool(self.username and self.password and self.url)


@dataclass
class Settings:
    """
    Relay settings.

    Settings priority (highest to lowest):
    1. Environment variables (VRTRELAY_*, OPNSENSE_*)
    2. Config file (config.json)
    3. Default values
    """
    # Storage
    data_dir: Path = field(default_factory=lambda: Path('./vrtrelay_data'))

    # OPNsense API
    api_url: str = ''
    api_username: str = ''
    api_password: str = ''

    # Timeouts (seconds)
    send_timeout: float = 2.0
    api_timeout: float = 10.0

    # Logging
    log_level: str = 'INFO'

    @property
    def db_path(self) -> Path:
        return self.data_dir / "vrtrelay.db"

    @property
    def api_connection(self) -> ApiConnection:
        return ApiConnection(
            username=self.api_username,
            password=self.api_password,
            url=self.api_url,
        )

    @classmethod
    def from_env(cls, base: Optional['Settings'] = None) -> 'Settings':
        """
        Load settings from environment variables.

        Args:
            base: Settings to apply the variables on top of (defaults if None)

        Raises:
            ConfigurationError: If a timeout variable is not a number
        """
        load_dotenv()

        settings = base or cls()

        # Storage
        data_dir = os.getenv('VRTRELAY_DATA_DIR')
        if data_dir:
            settings.data_dir = Path(data_dir)

        # OPNsense API
        settings.api_url = os.getenv('OPNSENSE_API_URL', settings.api_url)
        settings.api_username = os.getenv('OPNSENSE_API_KEY', settings.api_username)
        settings.api_password = os.getenv('OPNSENSE_API_SECRET', settings.api_password)

        # Timeouts
        settings.send_timeout = _env_float('VRTRELAY_SEND_TIMEOUT', settings.send_timeout)
        settings.api_timeout = _env_float('VRTRELAY_API_TIMEOUT', settings.api_timeout)

        # Logging
        settings.log_level = os.getenv('VRTRELAY_LOG_LEVEL', settings.log_level)

        return settings

    @classmethod
    def from_file(cls, path: Path) -> 'Settings':
        """Load settings from a JSON file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        settings = cls()

        if 'data_dir' in data:
            settings.data_dir = Path(data['data_dir'])

        api = data.get('opnsense', {})
        settings.api_url = api.get('url', settings.api_url)
        settings.api_username = api.get('key', settings.api_username)
        settings.api_password = api.get('secret', settings.api_password)

        settings.send_timeout = data.get('send_timeout', settings.send_timeout)
        settings.api_timeout = data.get('api_timeout', settings.api_timeout)

        settings.log_level = data.get('log_level', settings.log_level)

        return settings


def load_settings(config_path: Optional[Path] = None) -> Settings:
    """
    Load settings from file and environment.

    Environment variables override file settings.
    """
    settings = Settings()

    if config_path and config_path.exists():
        settings = Settings.from_file(config_path)

    # Only variables that are actually set override the file
    return Settings.from_env(base=settings)

