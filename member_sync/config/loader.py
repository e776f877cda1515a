"""
Configuration loader module for membership directory synchronization.

Provides YAML-based configuration file loading with support for:
- Loading configuration from default or custom paths
- Graceful handling of missing configuration files
- Validation of configuration structure and values
- Resolving runtime settings, with the HubSpot credential taken from the
  environment
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

from member_sync.utils.paths import (
    CONFIG_DIR_ENV_VAR,
    DEFAULT_CONFIG_DIR,
    DEFAULT_DATABASE_FILE,
    resolve_database_path,
    resolve_log_dir,
)

# Default configuration file name
DEFAULT_CONFIG_FILE = "config.yaml"

# Environment variable holding the HubSpot private app token
DEFAULT_API_KEY_ENV = "HUBSPOT_API_KEY"

# Environment variable overriding the configured list id
LIST_ID_ENV = "MEMBER_SYNC_LIST_ID"

# Runtime defaults
DEFAULT_PAGE_SIZE = 100
DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_RETRY_DELAY = 1.0
DEFAULT_MAX_RETRY_DELAY = 30.0
DEFAULT_MAX_WORKERS = 1
DEFAULT_LOG_RETENTION_COUNT = 10

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


class ConfigLoader:
    """
    YAML configuration file loader.

    Attributes:
        config_dir: Directory containing the configuration file
        config_file: Name of the configuration file

    Usage:
        loader = ConfigLoader()
        config = loader.load_and_validate()

        # Load from specific file
        config = loader.load_from_file("/path/to/config.yaml")
    """

    def __init__(
        self, config_dir: Path | None = None, config_file: str = DEFAULT_CONFIG_FILE
    ):
        """
        Initialize the configuration loader.

        Args:
            config_dir: Directory containing the configuration file.
                       Defaults to ~/.member-sync/ or $MEMBER_SYNC_CONFIG_DIR
            config_file: Name of the configuration file (default: config.yaml)
        """
        if config_dir is not None:
            self.config_dir = Path(config_dir)
        else:
            env_dir = os.environ.get(CONFIG_DIR_ENV_VAR)
            self.config_dir = Path(env_dir) if env_dir else DEFAULT_CONFIG_DIR

        self.config_file = config_file

    def _get_config_path(self) -> Path:
        return self.config_dir / self.config_file

    def load(self) -> dict[str, Any]:
        """
        Load configuration from the default configuration file.

        Returns:
            Configuration values, or an empty dict if the file doesn't exist

        Raises:
            ConfigError: If the configuration file exists but cannot be parsed
        """
        return self.load_from_file(self._get_config_path())

    def load_from_file(self, path: Path | str) -> dict[str, Any]:
        """
        Load configuration from a specific file.

        Args:
            path: Path to the configuration file

        Returns:
            Configuration values, or an empty dict if the file doesn't exist

        Raises:
            ConfigError: If the configuration file exists but cannot be parsed
        """
        path = Path(path)

        if not path.exists():
            logger.debug(f"Configuration file not found: {path}")
            return {}

        try:
            with open(path, encoding="utf-8") as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML configuration file: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read configuration file: {e}") from e

        if config is None:
            logger.debug(f"Configuration file is empty: {path}")
            return {}

        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration file must contain a YAML dictionary, "
                f"got {type(config).__name__}"
            )

        logger.debug(f"Loaded configuration from {path}")
        return config

    def validate(self, config: dict[str, Any]) -> None:
        """
        Validate configuration structure and values.

        Unknown keys are ignored so newer config files keep working with
        older releases.

        Args:
            config: Configuration dictionary to validate

        Raises:
            ConfigError: If configuration is invalid
        """
        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration must be a dictionary, got {type(config).__name__}"
            )

        valid_keys: dict[str, type[Any] | tuple[type[Any], ...]] = {
            # HubSpot list options
            "list_id": (str, int),
            "companies_list_id": (str, int),
            "hubspot_api_key_env": str,
            # API options
            "api_page_size": int,
            "api_timeout": (int, float),
            "api_max_retries": int,
            "api_initial_retry_delay": (int, float),
            "api_max_retry_delay": (int, float),
            # Reconciliation options
            "max_workers": int,
            "fail_fast": bool,
            # Storage
            "database_path": str,
            # Logging options
            "verbose": bool,
            "log_dir": str,
            "log_retention_count": int,
        }

        for key, value in config.items():
            if key not in valid_keys:
                continue
            expected_type = valid_keys[key]
            # bool is an int subclass; reject it for numeric options
            if isinstance(value, bool) and expected_type is not bool:
                raise ConfigError(
                    f"Invalid type for '{key}': expected "
                    f"{_type_name(expected_type)}, got bool"
                )
            if not isinstance(value, expected_type):
                raise ConfigError(
                    f"Invalid type for '{key}': expected "
                    f"{_type_name(expected_type)}, got {type(value).__name__}"
                )

        for key in ("list_id", "companies_list_id"):
            if key in config and not str(config[key]).strip().isdigit():
                raise ConfigError(f"{key} must be a number, got {config[key]!r}")

        positive_int_keys = ["api_page_size", "api_max_retries", "max_workers"]
        for key in positive_int_keys:
            if key in config and config[key] < 1:
                raise ConfigError(f"{key} must be >= 1, got {config[key]}")

        if "log_retention_count" in config and config["log_retention_count"] < 0:
            raise ConfigError(
                f"log_retention_count must be >= 0, got {config['log_retention_count']}"
            )

        positive_float_keys = [
            "api_timeout",
            "api_initial_retry_delay",
            "api_max_retry_delay",
        ]
        for key in positive_float_keys:
            if key in config and config[key] <= 0:
                raise ConfigError(f"{key} must be > 0, got {config[key]}")

    def load_and_validate(self) -> dict[str, Any]:
        """
        Load configuration and validate it.

        Raises:
            ConfigError: If configuration cannot be loaded or is invalid
        """
        config = self.load()
        if config:
            self.validate(config)
        return config


def _type_name(expected_type: type[Any] | tuple[type[Any], ...]) -> str:
    if isinstance(expected_type, tuple):
        return " or ".join(t.__name__ for t in expected_type)
    return expected_type.__name__


@dataclass
class Settings:
    """
    Resolved runtime settings for one invocation.

    The API key is never read from the YAML file; only the name of the
    environment variable holding it is configurable.
    """

    api_key: Optional[str] = None
    list_id: Optional[str] = None
    companies_list_id: Optional[str] = None
    page_size: int = DEFAULT_PAGE_SIZE
    timeout: float = DEFAULT_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES
    initial_retry_delay: float = DEFAULT_INITIAL_RETRY_DELAY
    max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY
    max_workers: int = DEFAULT_MAX_WORKERS
    fail_fast: bool = False
    database_path: str = str(DEFAULT_CONFIG_DIR / DEFAULT_DATABASE_FILE)
    log_dir: Optional[Path] = None
    api_key_env: str = DEFAULT_API_KEY_ENV

    @classmethod
    def from_config(
        cls,
        config: dict[str, Any],
        config_dir: Path | None = None,
        environ: Optional[dict[str, str]] = None,
    ) -> "Settings":
        """
        Build settings from a validated config dict and the environment.

        Args:
            config: Configuration dictionary (possibly empty)
            config_dir: Directory used for the default database location
            environ: Environment mapping (defaults to os.environ)

        Returns:
            Settings instance; missing credentials are not an error here,
            see require_api_key() and require_list_id().
        """
        env = os.environ if environ is None else environ
        api_key_env = config.get("hubspot_api_key_env", DEFAULT_API_KEY_ENV)

        list_id = env.get(LIST_ID_ENV) or config.get("list_id")
        companies_list_id = config.get("companies_list_id")

        return cls(
            api_key=env.get(api_key_env) or None,
            list_id=str(list_id).strip() if list_id is not None else None,
            companies_list_id=(
                str(companies_list_id).strip()
                if companies_list_id is not None
                else None
            ),
            page_size=config.get("api_page_size", DEFAULT_PAGE_SIZE),
            timeout=float(config.get("api_timeout", DEFAULT_TIMEOUT)),
            max_retries=config.get("api_max_retries", DEFAULT_MAX_RETRIES),
            initial_retry_delay=float(
                config.get("api_initial_retry_delay", DEFAULT_INITIAL_RETRY_DELAY)
            ),
            max_retry_delay=float(
                config.get("api_max_retry_delay", DEFAULT_MAX_RETRY_DELAY)
            ),
            max_workers=config.get("max_workers", DEFAULT_MAX_WORKERS),
            fail_fast=config.get("fail_fast", False),
            database_path=resolve_database_path(
                config.get("database_path"), config_dir
            ),
            log_dir=resolve_log_dir(config.get("log_dir")),
            api_key_env=api_key_env,
        )

    def require_api_key(self) -> str:
        """
        Return the HubSpot credential or fail before any network call.

        Raises:
            ConfigError: If the credential is not set
        """
        if not self.api_key:
            raise ConfigError(f"{self.api_key_env} is not set")
        return self.api_key

    def require_list_id(self) -> str:
        """
        Return the configured members list id.

        Raises:
            ConfigError: If no list id is configured
        """
        if not self.list_id:
            raise ConfigError(
                f"List ID is required (set list_id in config.yaml or {LIST_ID_ENV})"
            )
        return self.list_id

    def require_companies_list_id(self) -> str:
        """
        Return the list id used for company enrichment.

        Raises:
            ConfigError: If no companies list id is configured
        """
        if not self.companies_list_id:
            raise ConfigError("companies_list_id is required for company lookup")
        return self.companies_list_id
