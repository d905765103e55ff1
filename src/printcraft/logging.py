"""Logging setup shared by the API process, the worker process and the scripts.

Library modules log through the stdlib ``logging`` module with dotted event
names and ``extra`` fields. Request-scoped code that wants bound context uses
:func:`get_logger`, which returns a structlog logger rendering JSON.
"""

from __future__ import annotations

import logging
import os

import structlog

LOG_LEVEL_ENV = "PRINTCRAFT_LOG_LEVEL"


def _resolve_level(level: int | str | None) -> int:
    if level is None:
        level = os.getenv(LOG_LEVEL_ENV, "INFO")
    if isinstance(level, str):
        return logging.getLevelNamesMapping().get(level.upper(), logging.INFO)
    return level


def configure_logging(level: int | str | None = None) -> None:
    """Configure stdlib logging and structlog JSON rendering."""
    resolved = _resolve_level(level)
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    # uvicorn access lines duplicate the request logs of the API layer
    logging.getLogger("uvicorn.access").setLevel(max(resolved, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


__all__ = ["LOG_LEVEL_ENV", "configure_logging", "get_logger"]
