"""
Logging configuration for the scenario tracker.
"""

import logging
import sys

from scenario_tracker.config import settings

# Per-request chatter from these libraries drowns the status line at INFO.
NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite", "socketio", "engineio")


def setup_logging() -> logging.Logger:
    """
    Configure application logging.

    DEBUG also lets third-party request logs through.

    :return: Root logger for the tracker
    :rtype: logging.Logger
    """
    level = logging.DEBUG if settings.DEBUG else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level if settings.DEBUG else logging.WARNING)

    return logging.getLogger('scenario_tracker')


def get_logger(name: str) -> logging.Logger:
    """
    Get a tracker logger, e.g. get_logger('services.rescan').

    :param name: Dotted area.module name under the tracker namespace
    :type name: str
    :rtype: logging.Logger
    """
    return logging.getLogger(f'scenario_tracker.{name}')
