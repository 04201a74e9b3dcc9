"""Logging configuration for savetoken.

Every module logs through logging.getLogger(__name__), so all records sit
under the "savetoken" logger. The library installs no handlers itself;
applications and demos call setup_logging once.
"""

import logging
import sys
from typing import Optional
from pathlib import Path

ROOT_LOGGER = "savetoken"


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
) -> logging.Logger:
    """Configure console (and optional file) logging for the package.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file. If None, logs only to console.
        log_format: Optional custom log format string

    Returns:
        The configured "savetoken" logger

    Example:
        >>> logger = setup_logging(log_level="DEBUG", log_file="logs/savetoken.log")
        >>> logger.info("minted %s saveDAI", 100)
    """
    logger = logging.getLogger(ROOT_LOGGER)
    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        raise ValueError(f"unknown log level {log_level!r}")
    logger.setLevel(level)

    # Clear any existing handlers to avoid duplicates
    logger.handlers.clear()

    if log_format is None:
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(lineno)d - %(message)s'

    formatter = logging.Formatter(log_format, datefmt='%Y-%m-%d %H:%M:%S')

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, mode='a')
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False

    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a logger under the package root.

    Args:
        name: Optional logger name. Module names already under the package
            ("savetoken.ledger") are used as is.

    Example:
        >>> logger = get_logger("demo")
        >>> logger.debug("premium %s", Decimal("1.25"))
    """
    if not name:
        return logging.getLogger(ROOT_LOGGER)
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
