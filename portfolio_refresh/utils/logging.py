"""
structlog configuration shared by the API, the refresh worker and the scheduler.
"""

import logging
import sys
from typing import Optional

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(service_name: str, log_level: str = "info", format_type: str = "json") -> None:
    """
    Route structlog through stdlib logging on stdout.

    Args:
        service_name: Added to every event as ``service``
        log_level: debug, info, warning or error
        format_type: ``json`` for deployments, ``console`` for local runs
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    renderer = (
        structlog.dev.ConsoleRenderer() if format_type == "console"
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(service=service_name)


def bind_user_id(logger: structlog.BoundLogger, user_id: str) -> structlog.BoundLogger:
    return logger.bind(user_id=user_id)


def bind_symbol(logger: structlog.BoundLogger, symbol: str, source: Optional[str] = None) -> structlog.BoundLogger:
    """Symbol context for quote lookups; ``source`` names the provider when known."""
    context = {"symbol": symbol}
    if source:
        context["source"] = source
    return logger.bind(**context)
