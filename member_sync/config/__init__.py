"""
member_sync.config - Configuration management module

Contains configuration loading, validation, and default settings.
"""

from member_sync.config.loader import (
    DEFAULT_CONFIG_FILE,
    ConfigError,
    ConfigLoader,
    Settings,
)

__all__ = [
    "ConfigError",
    "ConfigLoader",
    "DEFAULT_CONFIG_FILE",
    "Settings",
]
