"""
Logging setup driven by LoggingConfig
"""

import logging
from logging.handlers import RotatingFileHandler
from typing import Optional

from .config import LoggingConfig, get_config

_configured = False


def configure_logging(config: Optional[LoggingConfig] = None) -> None:
    """Apply level, format and optional rotating file output once per process"""
    global _configured
    if _configured:
        return

    config = config or get_config().logging
    level = getattr(logging, config.level.upper(), logging.INFO)

    handlers = [logging.StreamHandler()]
    if config.log_file:
        handlers.append(RotatingFileHandler(
            config.log_file,
            maxBytes=config.max_file_size,
            backupCount=config.backup_count
        ))

    logging.basicConfig(level=level, format=config.format, handlers=handlers)
    _configured = True
