"""
Logging configuration.

All modules log through structlog with event-style names:
    logger = structlog.get_logger()
    logger.info("sms_dispatched", phone_number=..., request_id=...)

configure_logging() is called once at process start. Debug mode renders
colored key=value lines; otherwise each event is one JSON object.
"""
from __future__ import annotations

import logging
import sys

import structlog


def configure_logging(debug: bool = False, level: str = "INFO") -> None:
    log_level = logging.DEBUG if debug else getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
        force=True,
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if debug:
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
