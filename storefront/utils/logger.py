"""
Centralized structured logging.

Usage:
    from storefront.utils.logger import get_logger

    logger = get_logger(__name__)
    logger.info("Session created", session_id=session.id, user_id=session.user_id)
"""

import logging
import sys
from typing import Optional

import structlog


def configure_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Configure structlog on top of the stdlib logging module.

    fmt is "json" for machine-readable output or "console" for local development.
    """
    log_level = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
        force=True,
    )

    renderer = (
        structlog.dev.ConsoleRenderer()
        if fmt == "console"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None):
    """Return a structlog logger. Output follows whatever configure_logging set up."""
    return structlog.get_logger(name)


def token_preview(token: Optional[str]) -> str:
    """Shorten a bearer token for log output."""
    if not token:
        return ""
    return token[:10] + "..."
