"""
Logging configuration.

Modules log through `structlog.get_logger()`; this wires structlog onto the
standard library so level filtering and handlers behave as usual. Call
`configure_logging()` once at startup.
"""

import logging
import sys
from typing import Optional

import structlog


def configure_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Configure structlog over stdlib logging.

    Args:
        level: Log level name, defaults to settings.log_level
        log_format: "json" or "plain", defaults to settings.log_format
    """
    if level is None or log_format is None:
        from ..config import get_settings

        settings = get_settings()
        level = level or settings.log_level
        log_format = log_format or settings.log_format

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        stream=sys.stderr,
        force=True,
    )

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
