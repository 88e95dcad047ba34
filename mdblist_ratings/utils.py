#!/usr/bin/env python3
"""
MDBList Ratings Utilities Module

This module provides shared utility functions including logging setup and the small
file helpers used by the durable stores. It consolidates cross-cutting concerns so the
cache store and the rate-limit store write files exactly the same way.

Functions:
    setup_logging: Configure logging with rotation and custom formatting
    get_logger: Retrieve existing logger instances by name
    utc_now: Current time as a timezone-aware UTC datetime
    mask_api_key: Hide an API key inside a URL before it is logged
    read_json_file: Read and decode a JSON document asynchronously
    write_json_atomic: Write a JSON document with temp-file-then-rename semantics

Project: MDBList Ratings
Version: 1.0.0
License: MIT
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

import aiofiles
import colorama
from colorama import Fore, Style


ROOT_LOGGER_NAME = "mdblist_ratings"


class BracketFormatter(logging.Formatter):
    """
    Log formatter producing `[timestamp UTC][LEVEL][component] message` lines.

    The bracket format is easy to grep and parse while staying readable on a
    terminal. Console output can be colour-coded by level through colorama;
    file output is always plain.
    """

    LEVEL_COLORS = {
        'DEBUG': Fore.CYAN,
        'INFO': Fore.GREEN,
        'WARNING': Fore.YELLOW,
        'ERROR': Fore.RED,
        'CRITICAL': Fore.RED + Style.BRIGHT,
    }

    def __init__(self, use_color_output: bool = False):
        super().__init__()
        self.use_colors = use_color_output

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(
            record.created,
            tz=timezone.utc
        ).strftime('%Y-%m-%d %H:%M:%S UTC')
        message_text = record.getMessage()

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)

        if self.use_colors:
            level_color = self.LEVEL_COLORS.get(record.levelname, '')
            formatted = (
                f"{Fore.WHITE + Style.DIM}[{timestamp}]{Style.RESET_ALL}"
                f"{level_color}[{record.levelname}]{Style.RESET_ALL}"
                f"{Fore.BLUE}[{record.name}]{Style.RESET_ALL} "
                f"{level_color}{message_text}{Style.RESET_ALL}"
            )
        else:
            formatted = f"[{timestamp}][{record.levelname}][{record.name}] {message_text}"

        if record.exc_text:
            formatted = f"{formatted}\n{record.exc_text}"
        return formatted


def _should_use_colors() -> bool:
    """Decide whether console output gets ANSI colours."""
    if os.environ.get('NO_COLOR', '').lower() in ('1', 'true', 'yes'):
        return False
    if os.path.exists('/.dockerenv') or os.environ.get('FORCE_COLOR', '').lower() in ('1', 'true', 'yes'):
        colorama.init(autoreset=True, strip=False, convert=False)
        return True
    if hasattr(sys.stdout, 'isatty') and sys.stdout.isatty():
        colorama.init(autoreset=True)
        return True
    return False


def setup_logging(log_level: str = "INFO", log_dir: Optional[str] = "/app/logs") -> logging.Logger:
    """
    Set up logging with rotation and custom formatting.

    Configures the `mdblist_ratings` logger hierarchy with a console handler and,
    when a log directory is given, a rotating file handler (10MB per file, 5 backups).
    Component loggers obtained through get_logger() inherit both handlers.

    **Log Rotation:**
    The rating task runs unattended every day, so the file handler rotates to keep
    disk usage bounded at roughly 60MB regardless of how long the service runs.

    Args:
        log_level (str): Python logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_dir (Optional[str]): Directory for log files. None disables file logging.

    Returns:
        logging.Logger: Configured root logger for the application

    Raises:
        ValueError: If log_level is not a valid Python logging level
        PermissionError: If log directory cannot be created

    Example:
        ```python
        logger = setup_logging("DEBUG", "./logs")
        logger.info("Ratings service starting")
        # [2025-01-15 10:30:45 UTC][INFO][mdblist_ratings] Ratings service starting
        ```
    """
    valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
    log_level_upper = log_level.upper()
    if log_level_upper not in valid_levels:
        raise ValueError(f"Invalid log level '{log_level}'. Must be one of: {valid_levels}")

    numeric_level = getattr(logging, log_level_upper)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(numeric_level)

    # Calling setup_logging() twice must not duplicate every line
    logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(BracketFormatter(use_color_output=_should_use_colors()))
    logger.addHandler(console_handler)

    log_file_path = None
    if log_dir:
        log_path = Path(log_dir)
        try:
            log_path.mkdir(parents=True, exist_ok=True)
        except PermissionError as e:
            raise PermissionError(f"Cannot create log directory '{log_dir}': {e}")

        log_file_path = log_path / "mdblist_ratings.log"
        try:
            file_handler = logging.handlers.RotatingFileHandler(
                filename=log_file_path,
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding='utf-8',
                mode='a'
            )
            file_handler.setLevel(numeric_level)
            file_handler.setFormatter(BracketFormatter(use_color_output=False))
            logger.addHandler(file_handler)
        except PermissionError as e:
            logger.error(f"Cannot create log file '{log_file_path}': {e}")
            logger.warning("Continuing with console logging only")

    logging.getLogger("uvicorn.access").disabled = True

    logger.info(f"Logging configured - Level: {log_level_upper}, File: {log_file_path or 'disabled'}")
    return logger


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """
    Get an existing logger instance by name.

    Logger names are hierarchical so every component logs through the handlers
    installed by setup_logging():
    - "mdblist_ratings.cache" - Response cache
    - "mdblist_ratings.ratelimit" - Cooldown tracker
    - "mdblist_ratings.client" - MDBList HTTP client
    - "mdblist_ratings.updater" - Per-item orchestration

    Args:
        name (str): Logger name to retrieve. Defaults to the application logger.

    Returns:
        logging.Logger: Logger instance
    """
    return logging.getLogger(name)


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def mask_api_key(text: str, api_key: Optional[str]) -> str:
    """Replace every occurrence of the API key in text with asterisks."""
    if not api_key:
        return text
    return text.replace(api_key, "***")


async def read_json_file(path: Union[str, Path]) -> Any:
    """
    Read and decode a JSON document.

    Args:
        path: File to read

    Returns:
        Any: Decoded JSON value

    Raises:
        OSError: If the file cannot be read
        json.JSONDecodeError: If the content is not valid JSON
    """
    async with aiofiles.open(path, 'r', encoding='utf-8') as f:
        content = await f.read()
    return json.loads(content)


async def write_json_atomic(path: Union[str, Path], payload: str) -> None:
    """
    Write a serialized JSON document so readers never see a partial file.

    The content goes to `<path>.tmp` first and is then moved over the target with
    os.replace(), which is atomic on POSIX and Windows. A crash mid-write leaves the
    previous file untouched. On failure the temp file is removed and the original
    exception is re-raised.

    Args:
        path: Destination file
        payload (str): Already-serialized JSON text

    Raises:
        OSError: If the directory cannot be created or the file cannot be written
    """
    target = Path(path)
    tmp_path = target.with_name(target.name + ".tmp")

    target.parent.mkdir(parents=True, exist_ok=True)
    try:
        async with aiofiles.open(tmp_path, 'w', encoding='utf-8') as f:
            await f.write(payload)
        os.replace(tmp_path, target)
    except BaseException:
        try:
            tmp_path.unlink(missing_ok=True)
        except OSError:
            pass
        raise
