"""
Small shared utilities.
"""
from __future__ import annotations

import re
import time
from contextlib import contextmanager
from typing import Any, Generator

_WS_RE = re.compile(r"\s+")


@contextmanager
def timer() -> Generator[dict, None, None]:
    """Context manager that records elapsed wall-clock milliseconds."""
    result: dict = {}
    start = time.perf_counter()
    try:
        yield result
    finally:
        result["elapsed_ms"] = int((time.perf_counter() - start) * 1000)


def normalize_text(text: str) -> str:
    """Lower-case, trim and collapse internal whitespace."""
    return _WS_RE.sub(" ", text.strip().lower())


def to_number(value: Any) -> float:
    """Best-effort numeric coercion; non-numeric values count as 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def format_number(value: float, decimals: int = 0) -> str:
    """Format with pt-BR separators: 1234.5 -> '1.234,50' (decimals=2)."""
    raw = f"{value:,.{decimals}f}"
    return raw.replace(",", "_").replace(".", ",").replace("_", ".")


def format_currency(value: float) -> str:
    """Format as Brazilian reais, e.g. ``R$ 1.234,56``."""
    sign = "-" if value < 0 else ""
    return f"{sign}R$ {format_number(abs(value), 2)}"
