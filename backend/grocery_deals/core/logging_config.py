"""structlog setup shared by the scheduler process and the CLI scripts."""

import logging
import sys

import structlog

from grocery_deals.config import settings


def configure_logging(level: str = None, json_logs: bool = None) -> None:
    """Route structlog through stdlib logging with a console or JSON renderer.

    Args:
        level: Log level name, defaults to settings.LOG_LEVEL
        json_logs: Emit JSON lines instead of the console renderer,
            defaults to settings.LOG_JSON
    """
    level = (level or settings.LOG_LEVEL).upper()
    if json_logs is None:
        json_logs = settings.LOG_JSON

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(message)s",
        stream=sys.stdout,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
