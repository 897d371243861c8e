"""
Structured logging for the insights service.

``get_logger`` returns a module logger writing to stdout.  ``request_logger``
wraps it so every line of one insights request carries the same short id,
which makes a single invocation easy to follow in the function logs.
"""
from __future__ import annotations

import logging
import sys
import uuid
from typing import Any

from src.core.config import get_settings

_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def get_logger(name: str) -> logging.Logger:
    settings = get_settings()
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    return logger


class _RequestAdapter(logging.LoggerAdapter):
    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        return f"[req={self.extra['request_id']}] {msg}", kwargs


def request_logger(logger: logging.Logger, request_id: str | None = None) -> logging.LoggerAdapter:
    """Prefix every message with ``[req=<id>]`` (random 8-char id by default)."""
    rid = request_id or uuid.uuid4().hex[:8]
    return _RequestAdapter(logger, {"request_id": rid})
