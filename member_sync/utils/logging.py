"""
Logging configuration module for member_sync.

Provides centralized logging configuration with support for:
- Console and file logging
- Configurable log levels via environment variables
- Verbose mode for detailed output
- A per-run audit log recording every reconciliation decision
"""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

# Root logger name for the package hierarchy
ROOT_LOGGER_NAME = "member_sync"

# Audit logger name (one decision per requested member)
AUDIT_LOGGER_NAME = "member_sync.audit"

# Default log format
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Simplified format for console
CONSOLE_FORMAT = "%(levelname)s: %(message)s"

# Verbose format (includes source location)
VERBOSE_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
)

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Audit log format with millisecond timestamps
AUDIT_LOG_FORMAT = "%(asctime)s.%(msecs)03d - %(levelname)s - %(message)s"

# Environment variable names
ENV_LOG_LEVEL = "MEMBER_SYNC_LOG_LEVEL"
ENV_DEBUG = "MEMBER_SYNC_DEBUG"
ENV_LOG_FILE = "MEMBER_SYNC_LOG_FILE"

# Log file name prefixes, used for retention cleanup
SYNC_LOG_PREFIX = "member_sync_"
AUDIT_LOG_PREFIX = "audit_"


def _get_project_log_dir() -> Path:
    """Get the project logs directory."""
    current = Path(__file__).resolve()
    project_root = current.parent.parent.parent  # utils -> member_sync -> root
    return project_root / "logs"


PROJECT_LOG_DIR = _get_project_log_dir()

# Set by setup_logging() so the audit logger writes next to the main log
_configured_log_dir: Optional[Path] = None


class ColoredFormatter(logging.Formatter):
    """
    A logging formatter that adds ANSI color codes to log messages.

    Colors are only applied when output is to a terminal that supports them.
    """

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        use_colors: bool = True,
    ):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and self._supports_color()

    def _supports_color(self) -> bool:
        """Check if the terminal supports colors."""
        if not hasattr(sys.stderr, "isatty") or not sys.stderr.isatty():
            return False

        # https://no-color.org/
        if os.environ.get("NO_COLOR"):
            return False

        return os.environ.get("TERM", "") != "dumb"

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record with optional colors."""
        # Copy so other handlers see the uncolored record
        record = logging.makeLogRecord(record.__dict__)

        if self.use_colors and record.levelname in self.COLORS:
            color = self.COLORS[record.levelname]
            record.levelname = f"{color}{record.levelname}{self.RESET}"
            record.msg = f"{color}{record.msg}{self.RESET}"

        return super().format(record)


def get_log_level_from_env() -> int:
    """
    Get the logging level from environment variables.

    MEMBER_SYNC_DEBUG wins over MEMBER_SYNC_LOG_LEVEL. Unknown level names
    fall back to INFO.

    Returns:
        Logging level constant (e.g., logging.DEBUG, logging.INFO)
    """
    if os.environ.get(ENV_DEBUG, "").lower() in ("1", "true", "yes"):
        return logging.DEBUG

    level_str = os.environ.get(ENV_LOG_LEVEL, "INFO").upper()

    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "WARN": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }

    return level_map.get(level_str, logging.INFO)


def _dated_log_name() -> str:
    return f"{SYNC_LOG_PREFIX}{datetime.now().strftime('%Y%m%d')}.log"


def get_log_file_path(log_dir: Optional[Path] = None) -> Optional[Path]:
    """
    Get the log file path from environment or default location.

    Args:
        log_dir: Directory to place the dated log file in. Ignored when
                 MEMBER_SYNC_LOG_FILE is set.

    Returns:
        Path to log file, or None if file logging is disabled
    """
    log_file = os.environ.get(ENV_LOG_FILE)
    if log_file is not None:
        if log_file.lower() in ("none", "disabled", ""):
            return None
        return Path(log_file)

    return (log_dir or PROJECT_LOG_DIR) / _dated_log_name()


def setup_logging(
    level: Optional[int] = None,
    verbose: bool = False,
    log_dir: Optional[Path] = None,
    log_file: Optional[Path] = None,
    enable_file_logging: bool = True,
    use_colors: bool = True,
) -> logging.Logger:
    """
    Configure logging for the member_sync application.

    Args:
        level: Logging level. If None, determined from environment variables.
        verbose: If True, force DEBUG and use the verbose format.
        log_dir: Directory for log files. If provided, overrides default.
        log_file: Path to log file. Takes precedence over log_dir.
        enable_file_logging: If False, disable file logging entirely.
        use_colors: If True, use colored console output (when supported).

    Returns:
        The root logger for member_sync

    Example:
        setup_logging(verbose=True)
        setup_logging(log_dir=Path('/var/log/member-sync'))
        setup_logging(enable_file_logging=False)
    """
    global _configured_log_dir

    if level is None:
        level = get_log_level_from_env()
    if verbose:
        level = logging.DEBUG

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()
    # Avoid duplicate messages through the root logger
    logger.propagate = False

    console_format = VERBOSE_FORMAT if verbose else CONSOLE_FORMAT
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)

    console_formatter: logging.Formatter
    if use_colors:
        console_formatter = ColoredFormatter(console_format, DATE_FORMAT)
    else:
        console_formatter = logging.Formatter(console_format, DATE_FORMAT)
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    if enable_file_logging:
        file_path = log_file or get_log_file_path(log_dir)

        if file_path:
            try:
                file_path.parent.mkdir(parents=True, exist_ok=True)

                file_handler = logging.FileHandler(file_path, encoding="utf-8")
                # File always captures debug output
                file_handler.setLevel(logging.DEBUG)
                file_handler.setFormatter(
                    logging.Formatter(VERBOSE_FORMAT, DATE_FORMAT)
                )
                logger.addHandler(file_handler)

                logger.debug(f"Log file: {file_path}")
            except OSError as e:
                logger.warning(f"Could not create log file {file_path}: {e}")

    if log_file:
        _configured_log_dir = log_file.parent
    else:
        _configured_log_dir = log_dir

    return logger


def cleanup_old_logs(log_dir: Optional[Path] = None, keep_count: int = 10) -> int:
    """
    Clean up old log files, keeping only the most recent ones.

    Removes old member_sync_*.log and audit_*.log files, keeping
    ``keep_count`` of each.

    Args:
        log_dir: Directory containing log files. If None, uses the configured
                 directory or the project default.
        keep_count: Number of log files to keep for each type. 0 disables
                    cleanup.

    Returns:
        Number of files deleted.
    """
    if keep_count <= 0:
        return 0

    logs_dir = log_dir or _configured_log_dir or PROJECT_LOG_DIR
    if not logs_dir.exists():
        return 0

    deleted_count = 0
    for prefix in (SYNC_LOG_PREFIX, AUDIT_LOG_PREFIX):
        logs = sorted(
            logs_dir.glob(f"{prefix}*.log"),
            key=lambda p: p.stat().st_mtime,
            reverse=True,
        )
        for old_log in logs[keep_count:]:
            try:
                old_log.unlink()
                deleted_count += 1
            except OSError:
                # Another process may have removed it already
                continue

    return deleted_count


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger inside the member_sync hierarchy.

    Args:
        name: Name of the module (typically __name__)

    Returns:
        Logger instance for the module
    """
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    return logging.getLogger(name)


def get_audit_log_path(log_dir: Optional[Path] = None) -> Path:
    """
    Get a timestamped path for a sync run's audit log.

    Args:
        log_dir: Optional directory. Defaults to the directory configured by
                 setup_logging(), then the project logs directory.
    """
    logs_dir = log_dir or _configured_log_dir or PROJECT_LOG_DIR
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return logs_dir / f"{AUDIT_LOG_PREFIX}{timestamp}.log"


def setup_audit_logger(
    log_file: Optional[Path] = None,
    level: int = logging.INFO,
) -> logging.Logger:
    """
    Set up the dedicated audit logger for one sync run.

    The audit log records, for each requested member, whether it was
    updated, deactivated, skipped or failed, so operators can answer
    "why is member X inactive?" after the fact.

    Falls back to stderr when the file cannot be created.

    Args:
        log_file: Optional explicit log file path.
        level: Logging level (default INFO)

    Returns:
        The audit logger
    """
    logger = logging.getLogger(AUDIT_LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = False

    file_path = log_file or get_audit_log_path()

    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(file_path, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(AUDIT_LOG_FORMAT, DATE_FORMAT))
        logger.addHandler(file_handler)
        logger.info(f"Audit session started at {datetime.now().isoformat()}")
    except OSError as e:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter(AUDIT_LOG_FORMAT, DATE_FORMAT))
        logger.addHandler(console_handler)
        logger.warning(f"Could not create audit log file {file_path}: {e}")

    return logger


def get_audit_logger() -> logging.Logger:
    """Get the audit logger (unconfigured until setup_audit_logger runs)."""
    return logging.getLogger(AUDIT_LOGGER_NAME)


__all__ = [
    "setup_logging",
    "get_logger",
    "cleanup_old_logs",
    "ColoredFormatter",
    "get_log_level_from_env",
    "get_log_file_path",
    "setup_audit_logger",
    "get_audit_logger",
    "get_audit_log_path",
    "PROJECT_LOG_DIR",
    "DEFAULT_FORMAT",
    "CONSOLE_FORMAT",
    "VERBOSE_FORMAT",
    "DATE_FORMAT",
    "AUDIT_LOG_FORMAT",
]
