"""
Row-limit enforcement.

Every executed statement carries a top-level ``LIMIT`` no greater than the
configured maximum.  Only the statement's own LIMIT counts; one inside a
subquery or a quoted string is left alone.
"""
from __future__ import annotations

import re

from src.governance.query_ir import scan_top_level
from src.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_LIMIT = 500

_LIMIT_VALUE_RE = re.compile(r"LIMIT\s+(\d+|ALL)\b", re.IGNORECASE)


def ensure_limit(sql: str, max_limit: int = DEFAULT_MAX_LIMIT) -> str:
    """Add ``LIMIT max_limit`` or clamp the existing top-level LIMIT down.

    A new LIMIT goes before a top-level OFFSET.  Never raises a
    caller-supplied limit.  Applying it twice is the same as applying it once.
    """
    text = sql.rstrip()
    offset_at: int | None = None
    for name, start, _ in scan_top_level(text):
        if name == "offset":
            offset_at = start
            continue
        if name != "limit":
            continue
        m = _LIMIT_VALUE_RE.match(text, start)
        if not m:
            break
        current = m.group(1)
        clamped = max_limit if current.upper() == "ALL" else min(int(current), max_limit)
        if str(clamped) != current:
            logger.info("Clamping LIMIT %s -> %d", current, clamped)
        return f"{text[:m.start(1)]}{clamped}{text[m.end(1):]}"

    if offset_at is not None:
        return f"{text[:offset_at]}LIMIT {max_limit} {text[offset_at:]}"
    if text.endswith(";"):
        return f"{text[:-1].rstrip()} LIMIT {max_limit};"
    return f"{text} LIMIT {max_limit}"
