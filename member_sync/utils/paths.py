"""
Path resolution for member-sync's files.

The configuration directory, the profile database and the log directory
are resolved here so the CLI and the runtime settings agree on where
each file lives.
"""

from __future__ import annotations

import os
from pathlib import Path

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".member-sync"

# Environment variable for overriding config directory
CONFIG_DIR_ENV_VAR = "MEMBER_SYNC_CONFIG_DIR"

# Profile database file name (inside the configuration directory)
DEFAULT_DATABASE_FILE = "directory.db"

# SQLite's name for a private in-memory database
IN_MEMORY_DATABASE = ":memory:"


def resolve_config_dir(config_dir: Path | str | None = None) -> Path:
    """
    Resolve the configuration directory path.

    Priority:
        1. Explicit config_dir parameter (if provided)
        2. MEMBER_SYNC_CONFIG_DIR environment variable
        3. Default directory (~/.member-sync)

    Returns:
        Absolute path to the configuration directory
    """
    if config_dir is not None:
        return Path(config_dir).expanduser().resolve()

    env_dir = os.environ.get(CONFIG_DIR_ENV_VAR)
    if env_dir:
        return Path(env_dir).expanduser().resolve()

    return DEFAULT_CONFIG_DIR.expanduser().resolve()


def resolve_database_path(
    database_path: str | None, config_dir: Path | str | None = None
) -> str:
    """
    Resolve where the profile database lives.

    A configured path wins (with ~ expanded) and ':memory:' is kept as is.
    Otherwise the database is directory.db inside the configuration
    directory, falling back to ~/.member-sync.

    Args:
        database_path: database_path from config.yaml, if any
        config_dir: Configuration directory in use

    Returns:
        Path string suitable for sqlite3.connect()
    """
    if database_path == IN_MEMORY_DATABASE:
        return database_path
    if database_path:
        return str(Path(database_path).expanduser())

    base_dir = Path(config_dir).expanduser() if config_dir else DEFAULT_CONFIG_DIR
    return str(base_dir / DEFAULT_DATABASE_FILE)


def resolve_log_dir(log_dir: Path | str | None) -> Path | None:
    """Expand a configured log directory; None leaves logging on its default."""
    if not log_dir:
        return None
    return Path(log_dir).expanduser()
