"""Structured logging configuration using structlog.

kubesentry logs JSON lines to stderr.  Libraries that use the standard
``logging`` module (httpx, kubernetes-asyncio, aiohttp) are routed to the
same stream at WARNING or above so their noise does not drown the event log.
"""

from __future__ import annotations

import logging
import sys

import structlog

_NOISY_LIBRARIES = ("httpx", "httpcore", "kubernetes_asyncio", "aiohttp")


def setup_logging(level: str = "info", json_output: bool = True) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level:       Minimum level name (debug, info, warning, error).
        json_output: Render JSON lines.  When False a human readable console
                     renderer is used instead (handy for local runs).
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    renderer: structlog.typing.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=log_level, stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s")
    for name in _NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    """Get a logger bound with a component name."""
    return structlog.get_logger(component=component)  # type: ignore[no-any-return]
