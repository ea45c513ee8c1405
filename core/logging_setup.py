"""
Logging setup shared by service entrypoints.

Usage:
    from core.config import get_settings
    from core.logging_setup import setup_logging

    setup_logging(get_settings().logging)
"""

import logging
import sys
from typing import Optional

from core.config import LoggingConfig


def setup_logging(config: Optional[LoggingConfig] = None) -> logging.Logger:
    """Configure root logging from LoggingConfig and return the service logger"""
    config = config or LoggingConfig.from_env()

    handlers = []
    if config.enable_console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if config.log_file:
        handlers.append(logging.FileHandler(config.log_file))

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format=config.log_format,
        handlers=handlers or None,
        force=True,
    )

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return logging.getLogger(config.service_name)
