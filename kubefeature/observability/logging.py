"""Structured logging configuration using structlog.

kubefeature logs JSON lines to stderr.  Libraries that log through the
standard library (uvicorn, kubernetes_asyncio, aiohttp) are rendered by the
same processor chain so every line on stderr has the same shape.
"""

from __future__ import annotations

import logging
import sys

import structlog

# chatty at debug; only surfaced when kubefeature itself runs at debug
_QUIET_LIBRARIES = ("kubernetes_asyncio", "aiohttp.access", "uvicorn.access")


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
    ]


def setup_logging(level: str = "info") -> None:
    """Configure structlog, and stdlib logging, for JSON output to stderr."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    structlog.configure(
        processors=[*_shared_processors(), structlog.processors.JSONRenderer()],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            foreign_pre_chain=_shared_processors(),
        )
    )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)
    for name in _QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(max(log_level, logging.INFO))


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    """Get a logger bound with a component name."""
    return structlog.get_logger(component=component)  # type: ignore[return-value]
