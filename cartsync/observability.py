"""
Structured logging for cartsync.

    configure_logging("DEBUG", "json")   # once, at the composition root
    logger = get_logger("cartsync.sync")
    logger.info("cart.push.sent", base_version=3, items=2)

Modules call `get_logger` at import time; structlog loggers are lazy, so
configuration may happen later.
"""

from __future__ import annotations

import logging
from typing import Any

import structlog

_CONFIGURED = False


def configure_logging(level: str = "INFO", fmt: str = "console") -> None:
    """One-shot structlog configuration. Later calls are no-ops."""
    global _CONFIGURED  # noqa: PLW0603
    if _CONFIGURED:
        return
    _CONFIGURED = True

    renderer: Any = (
        structlog.processors.JSONRenderer()
        if fmt == "json"
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelNamesMapping().get(level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(component: str) -> Any:
    """Return a lazy structlog logger pre-bound with `component`."""
    return structlog.get_logger(component=component)


__all__ = ("configure_logging", "get_logger")
