"""
Utility functions for the Course Watcher pipeline.

This module provides:
- Central logging configuration
- Safe JSON read/write helpers
- Watcher configuration loading from the environment
- Shared helper utilities used across modules
"""

import json
import logging
import os
import re
import shutil
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urljoin, urlparse


# Default file locations
DEFAULT_USERS_PATH = "data/users.json"
DEFAULT_SNAPSHOT_PATH = "data/snapshot.json"
DEFAULT_LEDGER_PATH = "data/sent_ledger.json"

TRUTHY_VALUES = ("true", "1", "yes")


class WatcherConfig:
    """Runtime settings for the watcher, usually read from the environment."""

    def __init__(
        self,
        users_path: str = DEFAULT_USERS_PATH,
        snapshot_path: str = DEFAULT_SNAPSHOT_PATH,
        interval_seconds: int = 300,
        run_once: bool = False,
        max_workers: int = 4,
        fetch_timeout: int = 30,
        fetch_max_retries: int = 2,
        persist_snapshot: bool = True,
        notify_channel: str = "log",
        suppress_repeats: bool = False,
        repeat_window_hours: int = 24,
        ledger_path: str = DEFAULT_LEDGER_PATH,
        dry_run: bool = False,
    ):
        self.users_path = users_path
        self.snapshot_path = snapshot_path
        self.interval_seconds = interval_seconds
        self.run_once = run_once
        self.max_workers = max(1, max_workers)
        self.fetch_timeout = fetch_timeout
        self.fetch_max_retries = fetch_max_retries
        self.persist_snapshot = persist_snapshot
        self.notify_channel = notify_channel.lower()
        self.suppress_repeats = suppress_repeats
        self.repeat_window_hours = repeat_window_hours
        self.ledger_path = ledger_path
        self.dry_run = dry_run

    def __repr__(self) -> str:
        return (
            f"WatcherConfig(interval={self.interval_seconds}s, "
            f"workers={self.max_workers}, channel={self.notify_channel}, "
            f"dry_run={self.dry_run})"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return dict(vars(self))


def load_watcher_config() -> WatcherConfig:
    """
    Build a WatcherConfig from environment variables.

    Unset variables keep their defaults. Numeric variables that cannot be
    parsed fall back to the default with a warning.

    Returns:
        Populated WatcherConfig.
    """
    logger = get_logger("utils")

    config = WatcherConfig(
        users_path=get_env_var("USERS_PATH", required=False, default=DEFAULT_USERS_PATH),
        snapshot_path=get_env_var("SNAPSHOT_PATH", required=False, default=DEFAULT_SNAPSHOT_PATH),
        interval_seconds=get_int_env("WATCH_INTERVAL_SECONDS", 300),
        run_once=get_bool_env("RUN_ONCE", False),
        max_workers=get_int_env("FETCH_MAX_WORKERS", 4),
        fetch_timeout=get_int_env("FETCH_TIMEOUT", 30),
        fetch_max_retries=get_int_env("FETCH_MAX_RETRIES", 2),
        persist_snapshot=get_bool_env("PERSIST_SNAPSHOT", True),
        notify_channel=get_env_var("NOTIFY_CHANNEL", required=False, default="log"),
        suppress_repeats=get_bool_env("SUPPRESS_REPEATS", False),
        repeat_window_hours=get_int_env("REPEAT_WINDOW_HOURS", 24),
        ledger_path=get_env_var("LEDGER_PATH", required=False, default=DEFAULT_LEDGER_PATH),
        dry_run=get_bool_env("DRY_RUN", False),
    )

    logger.debug(f"Loaded configuration: {config}")
    return config


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Configure and return the root logger for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               Defaults to INFO.

    Returns:
        Configured logger instance.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    logger = logging.getLogger("course_watcher")
    logger.setLevel(log_level)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: Name for the logger, typically the module name.

    Returns:
        Logger instance configured as a child of the main application logger.
    """
    return logging.getLogger(f"course_watcher.{name}")


def safe_read_json(filepath: str, default: Optional[Any] = None) -> Any:
    """
    Safely read JSON data from a file.

    Args:
        filepath: Path to the JSON file.
        default: Value returned if the file doesn't exist or is invalid.

    Returns:
        Parsed JSON data or the default value on failure.
    """
    logger = get_logger("utils")

    try:
        path = Path(filepath)
        if not path.exists():
            logger.debug(f"File does not exist: {filepath}, returning default")
            return default

        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
            logger.debug(f"Successfully read JSON from {filepath}")
            return data

    except json.JSONDecodeError as e:
        logger.warning(f"Invalid JSON in {filepath}: {e}")
        return default
    except PermissionError as e:
        logger.error(f"Permission denied reading {filepath}: {e}")
        return default
    except OSError as e:
        logger.error(f"Unexpected error reading {filepath}: {e}")
        return default


def safe_write_json(filepath: str, data: Any, indent: int = 2) -> bool:
    """
    Safely write JSON data to a file using atomic write operation.

    Uses a temporary file and atomic rename to prevent data corruption
    if the write operation is interrupted.

    Args:
        filepath: Path to the JSON file.
        data: Data to serialize as JSON.
        indent: JSON indentation level. Defaults to 2.

    Returns:
        True if write was successful, False otherwise.
    """
    logger = get_logger("utils")

    try:
        path = Path(filepath)
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(
            suffix=".json",
            prefix="course_watcher_",
            dir=path.parent
        )

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=indent, ensure_ascii=False)

            shutil.move(temp_path, filepath)
            logger.debug(f"Successfully wrote JSON to {filepath}")
            return True

        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    except PermissionError as e:
        logger.error(f"Permission denied writing {filepath}: {e}")
        return False
    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Unexpected error writing {filepath}: {e}")
        return False


def get_env_var(name: str, required: bool = True, default: Optional[str] = None) -> Optional[str]:
    """
    Get an environment variable with optional requirement enforcement.

    Args:
        name: Name of the environment variable.
        required: If True, raises ValueError when variable is not set.
                  Defaults to True.
        default: Default value if variable is not set and not required.

    Returns:
        Value of the environment variable or default.

    Raises:
        ValueError: If required=True and the variable is not set.
    """
    value = os.environ.get(name)

    if value is None or value.strip() == "":
        if required:
            raise ValueError(f"Required environment variable '{name}' is not set")
        return default

    return value.strip()


def get_int_env(name: str, default: int) -> int:
    """Read an integer environment variable, falling back to default."""
    value = get_env_var(name, required=False)
    if value is None:
        return default

    try:
        return int(value)
    except ValueError:
        get_logger("utils").warning(
            f"Invalid integer for {name}: {value!r}, using default {default}"
        )
        return default


def get_bool_env(name: str, default: bool) -> bool:
    """Read a boolean environment variable ("true", "1", "yes")."""
    value = get_env_var(name, required=False)
    if value is None:
        return default
    return value.lower() in TRUTHY_VALUES


def sanitize_text(text: Optional[str]) -> str:
    """
    Clean and normalize text content.

    Removes extra whitespace, newlines, and normalizes spacing.

    Args:
        text: Raw text to sanitize.

    Returns:
        Cleaned text string.
    """
    if not text:
        return ""

    cleaned = re.sub(r"\s+", " ", text)
    return cleaned.strip()


def normalize_url(url: str, base_url: str) -> str:
    """
    Normalize a potentially relative URL to an absolute URL.

    Args:
        url: The URL to normalize (may be relative or absolute).
        base_url: The base URL to use for resolving relative URLs.

    Returns:
        Absolute URL string.
    """
    parsed = urlparse(url)
    if parsed.scheme and parsed.netloc:
        return url

    return urljoin(base_url, url)
