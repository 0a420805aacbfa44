"""Structured logging for the engine, built on structlog."""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from typing import Iterator

import structlog


def setup_logging(level: str = "INFO", fmt: str = "console") -> None:
    """Configure structlog to write to stderr.

    *fmt* selects the final renderer: ``"console"`` for humans, ``"json"``
    for log shippers. stdout stays free for CLI output.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    renderer = (
        structlog.processors.JSONRenderer()
        if fmt == "json"
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a named logger instance."""
    return structlog.get_logger(name)


@contextmanager
def conversation_context(conversation_id: int) -> Iterator[None]:
    """Attach ``conversation_id`` to every log line emitted inside the block."""
    with structlog.contextvars.bound_contextvars(conversation_id=conversation_id):
        yield
