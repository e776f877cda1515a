"""
Configuration file generator for membership directory synchronization.

Generates a default configuration file with every option documented.
"""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def generate_default_config() -> str:
    """
    Generate default YAML configuration with all options documented.

    Returns:
        String containing YAML configuration with comments
    """
    return """# Member Directory Sync Configuration
# ===================================
#
# CLI arguments always override these values.
#
# The HubSpot private app token is NOT stored here. Export it instead:
#   export HUBSPOT_API_KEY=pat-...

# HubSpot Lists
# -------------

# List holding the active members. Required for sync and test-connection.
# Can also be set with MEMBER_SYNC_LIST_ID.
# list_id: 4959

# List whose contacts are used to look up member companies.
# companies_list_id: 4981

# Name of the environment variable holding the HubSpot token
# Default: HUBSPOT_API_KEY
# hubspot_api_key_env: HUBSPOT_API_KEY


# API Options
# -----------

# Contacts per page when reading list memberships (HubSpot max: 250)
# Default: 100
# api_page_size: 100

# Seconds before a single HubSpot request is abandoned
# Default: 30
# api_timeout: 30

# Retries for rate limited (429) and server error (5xx) responses
# Default: 3
# api_max_retries: 3
# api_initial_retry_delay: 1.0
# api_max_retry_delay: 30.0


# Reconciliation
# --------------

# Members reconciled in parallel. Pagination always runs sequentially.
# Default: 1
# max_workers: 4

# Abort the whole run on the first database error instead of recording
# the failure and continuing with the remaining members.
# Default: false
# fail_fast: false


# Storage
# -------

# SQLite database holding member profiles and list settings
# Default: ~/.member-sync/directory.db
# database_path: /var/lib/member-sync/directory.db


# Logging
# -------

# verbose: false
# log_dir: /var/log/member-sync
# log_retention_count: 10
"""


def save_config_file(
    config_path: Path, overwrite: bool = False
) -> tuple[bool, str | None]:
    """
    Save default configuration file to specified path.

    Creates parent directories if needed and restricts the file to its owner.

    Args:
        config_path: Path where the config file should be saved
        overwrite: If True, overwrite existing file. If False, fail if file exists.

    Returns:
        Tuple of (success, error_message); error_message is None on success
    """
    try:
        config_path = config_path.expanduser().resolve()

        if config_path.exists() and not overwrite:
            return (
                False,
                f"Configuration file already exists: {config_path}\n"
                "Use --force to overwrite.",
            )

        config_path.parent.mkdir(parents=True, mode=0o700, exist_ok=True)
        config_path.write_text(generate_default_config(), encoding="utf-8")
        config_path.chmod(0o600)

        logger.info(f"Created configuration file: {config_path}")
        return (True, None)

    except OSError as e:
        error_msg = f"Failed to create configuration file: {e}"
        logger.error(error_msg)
        return (False, error_msg)
