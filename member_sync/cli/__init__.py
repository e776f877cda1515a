"""CLI package for member_sync."""

from member_sync.cli.main import (
    DEFAULT_CONFIG_FILE,
    cli,
    get_config_dir,
    read_ids_file,
)
from member_sync.utils import DEFAULT_CONFIG_DIR

__all__ = [
    "DEFAULT_CONFIG_DIR",
    "DEFAULT_CONFIG_FILE",
    "cli",
    "get_config_dir",
    "read_ids_file",
]
