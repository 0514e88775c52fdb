"""
Centralized logging configuration for the deep memory service.
"""

import logging
import sys
from typing import Optional

from .config import AppConfig


def _resolve_level(level_name: str) -> int:
    level = logging.getLevelName(level_name.upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(config: Optional[AppConfig] = None) -> None:
    """
    Setup centralized logging configuration.

    Args:
        config: AppConfig instance, uses default if None
    """
    if config is None:
        from .config import config as default_config
        config = default_config

    logging.basicConfig(level=_resolve_level(config.log_level),
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                        handlers=[logging.StreamHandler(sys.stdout)])

    # Driver chatter would otherwise drown pipeline logs at DEBUG.
    for noisy in ('opensearch', 'botocore', 'urllib3', 'gremlinpython'):
        logging.getLogger(noisy).setLevel(max(logging.WARNING, _resolve_level(config.log_level)))


def get_logger(name: str, config: Optional[AppConfig] = None) -> logging.Logger:
    """
    Get a logger with the configured level.

    Args:
        name: Logger name (usually __name__)
        config: AppConfig instance, uses default if None

    Returns:
        Configured logger instance
    """
    if config is None:
        from .config import config as default_config
        config = default_config

    logger = logging.getLogger(name)
    logger.setLevel(_resolve_level(config.log_level))
    return logger
