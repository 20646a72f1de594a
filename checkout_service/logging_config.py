"""
logging_config.py — Centralized Logging Configuration for the Checkout Service

This module configures unified logging behavior for the entire application.
It ensures that all modules log messages consistently to the console and,
optionally, to a file.

Features:
    • Console output (stdout), Docker/Kubernetes compatible
    • Optional persistent log file (LOG_FILE)
    • Process ID tagging for multi-worker visibility
    • Reduced verbosity for external dependencies (pymongo, httpx)
"""

import logging
import sys

from . import config


def setup_logging(level=None, log_file=None):
    """
    Configures the global logging system for the application.

    The configuration includes:
        - Log level: LOG_LEVEL from the environment (default INFO)
        - Log format: timestamp, log level, process ID, logger name and message
        - Output destinations:
            1. Console (stdout)
            2. File, only if LOG_FILE (or `log_file`) is set
        - Reduced verbosity for third-party libraries such as pymongo and httpx

    Args:
        level (str | None): Overrides LOG_LEVEL when given.
        log_file (str | None): Overrides LOG_FILE when given.
    """
    log_format = '%(asctime)s - %(levelname)s - [PID:%(process)d] - %(name)s - %(message)s'

    handlers = [logging.StreamHandler(sys.stdout)]
    log_file = log_file if log_file is not None else config.LOG_FILE
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=(level or config.LOG_LEVEL).upper(),
        format=log_format,
        handlers=handlers,
    )

    # Reduce verbosity from external libraries
    for noisy in ("pymongo", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name):
    """
    Returns a configured logger instance for a given module or component name.

    Args:
        name (str): The logger name, typically the module's __name__.

    Returns:
        logging.Logger: A logger that follows the global format and handlers.
    """
    return logging.getLogger(name)
