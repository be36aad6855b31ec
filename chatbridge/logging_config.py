"""chatbridge logging configuration.

chatbridge logs through `structlog`. Modules obtain a logger with
`get_logger(__name__)` and call it printf-style or with key/value context:

    logger.info("Turn completed for %s", key, project=project_name)

The filtering bound logger interpolates positional `%s` arguments into the
event before the processor chain runs. Output is rendered for humans on a TTY
and as JSON lines otherwise (daemon under a supervisor).
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

import structlog

LOG_LEVEL_ENV = "CHATBRIDGE_LOG_LEVEL"


def setup_logging(level: Optional[str] = None) -> None:
    """Configure chatbridge logging.

    Args:
        level: Optional override for `CHATBRIDGE_LOG_LEVEL`.
    """
    if level:
        os.environ[LOG_LEVEL_ENV] = level

    level_name = os.getenv(LOG_LEVEL_ENV, "INFO").upper()
    numeric_level = logging.getLevelName(level_name)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    renderer: structlog.types.Processor
    if sys.stderr.isatty():
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
