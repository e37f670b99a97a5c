# gamesync/config.py

"""
Centralized configuration for the sync layer.
Uses environment variables with sensible defaults.
"""

import os
import logging
from typing import Dict, Any


class Config:
    """Configuration management with environment-based configuration."""

    def __init__(self):
        """Initialize configuration from environment variables."""
        # Scheduler Configuration
        self.SYNC_RATE_LIMIT_MS = int(os.getenv("SYNC_RATE_LIMIT_MS", "2000"))
        self.SYNC_DEBOUNCE_MS = int(os.getenv("SYNC_DEBOUNCE_MS", "1000"))

        # Transport Configuration
        self.TOOL_ENDPOINT = os.getenv("TOOL_ENDPOINT", "http://127.0.0.1:3333/rpc")
        self.TOOL_TIMEOUT_SECONDS = float(os.getenv("TOOL_TIMEOUT_SECONDS", "10"))

        # Persisted selection
        self.STATE_FILE = os.getenv("GAMESYNC_STATE_FILE", ".gamesync_state.json")

        # Logging
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

        self._configure_logging()

        logging.getLogger(__name__).debug("Configuration initialized")

    def _configure_logging(self):
        """Configure logging based on settings."""
        log_levels = {
            "DEBUG": logging.DEBUG,
            "INFO": logging.INFO,
            "WARNING": logging.WARNING,
            "ERROR": logging.ERROR,
            "CRITICAL": logging.CRITICAL
        }

        log_level = log_levels.get(self.LOG_LEVEL.upper(), logging.INFO)

        logging.basicConfig(
            level=log_level,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {k: v for k, v in self.__dict__.items() if not k.startswith('_')}

    def __str__(self) -> str:
        return str(self.to_dict())

    def get(self, key, default=None):
        """Get configuration value with optional default."""
        return getattr(self, key, default)


_CONFIG = None


def get_config() -> Config:
    """Get the global configuration instance, creating it on first use."""
    global _CONFIG
    if _CONFIG is None:
        _CONFIG = Config()
    return _CONFIG


def get(key, default=None):
    """Get configuration value with fallback."""
    return get_config().get(key, default)
