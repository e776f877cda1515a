"""
member_sync.utils - Utility module

Common utilities including logging configuration.
"""

from member_sync.utils.normalization import normalize_field_name, normalize_string
from member_sync.utils.paths import DEFAULT_CONFIG_DIR, resolve_config_dir

__all__ = [
    "normalize_string",
    "normalize_field_name",
    "resolve_config_dir",
    "DEFAULT_CONFIG_DIR",
]
