"""
Logging setup.

Configures loguru sinks for the engine and the workers.
Sets up log rotation and retention policies.
"""

import sys

from loguru import logger

from atlas.config.settings import settings


def setup_logging(component: str = "atlas") -> None:
    """
    Configure logger with stderr and rotating file sinks.

    Args:
        component: Name written in the startup line (engine, worker, scheduler)
    """
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)

    if settings.log_file:
        logger.add(
            settings.log_file,
            rotation="1 day",
            retention="7 days",
            level=settings.log_level,
            encoding="utf-8",
        )

    logger.info(f"Starting {component}...")
