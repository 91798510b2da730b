"""Logging setup for the image cache proxy process."""

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Chatty third-party loggers
QUIET_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3", "httpx", "httpcore")


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Configure the root logger with a single stderr handler.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ...)

    Returns:
        The package logger
    """
    root = logging.getLogger()
    root.setLevel(level)

    # Remove any existing handlers
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger("image_cache_proxy")
