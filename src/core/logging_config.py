"""Structured logging configuration.

This module initializes a structlog logger with a stable structured format.
Events are snake_case names with keyword fields rendered as JSON.
"""

from __future__ import annotations

from typing import Any

import structlog

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.JSONRenderer(),
    ],
    cache_logger_on_first_use=True,
)


def get_logger(name: str) -> Any:
    """Return a module logger instance.

    Args:
        name: Logger name, usually __name__.

    Returns:
        A structlog logger with structured output.
    """
    return structlog.get_logger(name)
