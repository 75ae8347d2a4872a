"""structlog setup shared by scripts and host applications."""

import logging
from typing import Optional

import structlog


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """
    Configure structlog processors.

    Args:
        level: Log level name (defaults to LOG_LEVEL from settings)
        fmt: "json" or "console" (defaults to LOG_FORMAT from settings)
    """
    if level is None or fmt is None:
        from tms_core.core.config import get_config

        env = get_config().env
        level = level or env.log_level
        fmt = fmt or env.log_format

    renderer = (
        structlog.dev.ConsoleRenderer()
        if fmt == "console"
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
    )
