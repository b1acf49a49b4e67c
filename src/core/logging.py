from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

_CONFIGURED = False


def setup_logging(level: int | str | None = None, *, json_logs: bool | None = None) -> None:
    """Configure structlog with contextvars support.

    Level and renderer default to the ``LOG_LEVEL`` / ``LOG_JSON`` settings.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    from src.core.config import get_settings

    settings = get_settings()
    if level is None:
        level = settings.log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    if json_logs is None:
        json_logs = settings.log_json

    logging.basicConfig(
        level=level,
        format="%(message)s",
        stream=sys.stdout,
    )

    renderer: Any = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
        structlog.processors.dict_tracebacks,
        renderer,
    ]

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )

    _CONFIGURED = True
