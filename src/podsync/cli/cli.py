"""Command-line entry point for podsync.

Loads settings, configures logging, and runs the default mode.
"""

import logging

from ..config import AppSettings
from ..logging_config import setup_logging
from .default import default


async def main_cli():
    """Initialize logging from settings and run podsync."""
    settings = AppSettings()  # type: ignore

    setup_logging(
        log_format_type=settings.log_format,
        app_log_level_name=settings.log_level,
        include_stacktrace=settings.log_include_stacktrace,
    )

    logger = logging.getLogger(__name__)
    logger.debug(
        "Application logging configured.",
        extra={
            "log_format": settings.log_format,
            "log_level": settings.log_level,
            "include_stacktrace": settings.log_include_stacktrace,
        },
    )
    logger.debug(
        "Application settings loaded.",
        extra={"config_file": str(settings.config_file)},
    )

    await default(settings)

    logger.debug("main_cli execution finished.")
