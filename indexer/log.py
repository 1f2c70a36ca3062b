"""Logging configuration for the chain indexer and donation relay."""

import logging
import sys
from typing import Optional

from config import Config

# Campaign and reconciliation reads run on worker threads
LOG_FORMAT = "%(asctime)s - %(name)s - %(threadName)s - %(levelname)s - %(message)s"

QUIET_LOGGERS = ("web3", "urllib3", "sqlalchemy.engine")


def setup_logging(config: Optional[Config] = None, log_level: Optional[str] = None) -> None:
    """Configure root logging to stdout.

    Args:
        config: Config object (uses log_level from config if provided)
        log_level: Override log level (takes precedence over config)
    """
    level_name = (log_level or (config.log_level if config else "INFO")).upper()
    level = logging.getLevelNamesMapping().get(level_name, logging.INFO)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
