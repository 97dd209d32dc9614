"""JSON logging for the trustdesk backend.

Every record carries the service name and environment. Code that works on one
escrow, dispute or sweep job can bind those ids with :func:`log_context` so
that nested service logs are tagged without threading ``extra`` through.
"""
from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Optional

from pythonjsonlogger import jsonlogger

from trustdesk.config import ENV, AppInfo

_bound_context: ContextVar[dict[str, Any]] = ContextVar("trustdesk_log_context", default={})


class ContextFilter(logging.Filter):
    """Copy the bound context onto records; explicit ``extra`` values win."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _bound_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    token = _bound_context.set({**_bound_context.get(), **fields})
    try:
        yield
    finally:
        _bound_context.reset(token)


def setup_logging(level: str = "INFO", *, env: str | None = None) -> None:
    """Replace root handlers with a single JSON stream handler."""

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.setLevel(level.upper())

    handler = logging.StreamHandler()
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            static_fields={"service": AppInfo().name, "env": env or ENV},
        )
    )
    handler.addFilter(ContextFilter())
    root_logger.addHandler(handler)


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level.upper())
    return logger


__all__ = ["ContextFilter", "get_logger", "log_context", "setup_logging"]
