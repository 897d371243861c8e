"""
SelectQuery -- the structured intermediate representation of a validated
SELECT statement.

Validated SQL is split once at its top-level clause keywords (outside
parentheses and quoted text).  Date filters and the row limit are then
applied to the structure and the statement is rendered back exactly once,
so no step ever pattern-matches and rewrites raw SQL text.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date

from src.core.errors import QueryParseError

# Canonical clause order; each may appear at most once at top level.
_CLAUSES: list[tuple[str, re.Pattern[str]]] = [
    ("from", re.compile(r"FROM\b", re.IGNORECASE)),
    ("where", re.compile(r"WHERE\b", re.IGNORECASE)),
    ("group_by", re.compile(r"GROUP\s+BY\b", re.IGNORECASE)),
    ("having", re.compile(r"HAVING\b", re.IGNORECASE)),
    ("order_by", re.compile(r"ORDER\s+BY\b", re.IGNORECASE)),
    ("limit", re.compile(r"LIMIT\b", re.IGNORECASE)),
    ("offset", re.compile(r"OFFSET\b", re.IGNORECASE)),
]
_CLAUSE_ORDER = [name for name, _ in _CLAUSES]
_LIMIT_RANK = _CLAUSE_ORDER.index("limit")

_SET_OP = re.compile(r"(?:UNION|INTERSECT|EXCEPT)\b", re.IGNORECASE)
_SELECT_HEAD = re.compile(r"SELECT\b", re.IGNORECASE)
_FROM_ITEM = re.compile(r'\s*"?(?P<view>[\w.]+)"?(?:\s+(?:AS\s+)?(?P<alias>\w+))?', re.IGNORECASE)
_NOT_ALIAS = {
    "join", "left", "right", "inner", "outer", "full", "cross", "natural", "on", "using",
}


def scan_top_level(sql: str) -> list[tuple[str, int, int]]:
    """Return ``(clause, start, end)`` for every top-level clause keyword.

    Set operations are reported as ``"set_op"``.
    """
    found: list[tuple[str, int, int]] = []
    patterns = _CLAUSES + [("set_op", _SET_OP)]
    depth = 0
    quote: str | None = None
    i, n = 0, len(sql)
    while i < n:
        ch = sql[i]
        if quote:
            if ch == quote:
                quote = None
            i += 1
            continue
        if ch in ("'", '"'):
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(0, depth - 1)
        elif depth == 0 and ch.isalpha() and (i == 0 or not (sql[i - 1].isalnum() or sql[i - 1] in "_.")):
            for name, pattern in patterns:
                m = pattern.match(sql, i)
                if m:
                    found.append((name, m.start(), m.end()))
                    i = m.end()
                    break
            else:
                i += 1
            continue
        i += 1
    return found


@dataclass
class SelectQuery:
    """One SELECT statement, clause by clause."""

    select_list: str
    from_clause: str
    where: list[str] = field(default_factory=list)
    group_by: str | None = None
    having: str | None = None
    order_by: str | None = None
    limit: int | None = None
    offset: int | None = None

    # ── Source view ─────────────────────────────────

    def _from_item(self) -> tuple[str, str | None]:
        m = _FROM_ITEM.match(self.from_clause)
        if not m:
            raise QueryParseError(f"Cannot read source view from '{self.from_clause}'")
        alias = m.group("alias")
        if alias and alias.lower() in _NOT_ALIAS:
            alias = None
        return m.group("view").lower(), alias

    @property
    def source_view(self) -> str:
        """First relation named in FROM (the view the direct fallback reads)."""
        return self._from_item()[0]

    # ── Mutations ───────────────────────────────────

    def add_predicate(self, predicate: str) -> None:
        self.where.append(predicate)

    def clamp_limit(self, max_limit: int) -> None:
        self.limit = max_limit if self.limit is None else min(self.limit, max_limit)

    def inject_date_range(self, column: str, start: date | None, end: date | None) -> None:
        """AND ``column`` between *start* and *end* (either bound optional)."""
        _, alias = self._from_item()
        qualified = f"{alias}.{column}" if alias else column
        if start is not None:
            self.add_predicate(f"{qualified} >= '{start.isoformat()}'")
        if end is not None:
            self.add_predicate(f"{qualified} <= '{end.isoformat()}'")

    # ── Rendering ───────────────────────────────────

    def render(self) -> str:
        parts = [f"SELECT {self.select_list}", f"FROM {self.from_clause}"]
        if len(self.where) == 1:
            parts.append(f"WHERE {self.where[0]}")
        elif self.where:
            parts.append("WHERE " + " AND ".join(f"({p})" for p in self.where))
        if self.group_by:
            parts.append(f"GROUP BY {self.group_by}")
        if self.having:
            parts.append(f"HAVING {self.having}")
        if self.order_by:
            parts.append(f"ORDER BY {self.order_by}")
        if self.limit is not None:
            parts.append(f"LIMIT {self.limit}")
        if self.offset is not None:
            parts.append(f"OFFSET {self.offset}")
        return " ".join(parts)


def _parse_int(clause: str, value: str) -> int:
    if not re.fullmatch(r"\d+", value):
        raise QueryParseError(f"{clause.upper()} must be a non-negative integer, got '{value}'")
    return int(value)


def parse_select(sql: str) -> SelectQuery:
    """Split a single validated SELECT into a ``SelectQuery``.

    Raises
    ------
    QueryParseError
        On set operations, missing FROM, repeated or out-of-order clauses,
        empty clauses, or a non-numeric LIMIT/OFFSET.
    """
    text = sql.strip()
    while text.endswith(";"):
        text = text[:-1].rstrip()

    head = _SELECT_HEAD.match(text)
    if not head:
        raise QueryParseError("Statement does not start with SELECT")

    marks = scan_top_level(text)
    if any(name == "set_op" for name, _, _ in marks):
        raise QueryParseError("Set operations (UNION/INTERSECT/EXCEPT) are not supported")
    if not marks or marks[0][0] != "from":
        raise QueryParseError("SELECT without a top-level FROM clause")

    # LIMIT and OFFSET may come in either order
    names = [name for name, _, _ in marks]
    positions = [min(_CLAUSE_ORDER.index(name), _LIMIT_RANK) for name in names]
    if positions != sorted(positions) or len(set(names)) != len(names):
        raise QueryParseError("Clauses are repeated or out of order")

    parts: dict[str, str] = {}
    for idx, (name, _, end) in enumerate(marks):
        stop = marks[idx + 1][1] if idx + 1 < len(marks) else len(text)
        body = text[end:stop].strip()
        if not body:
            raise QueryParseError(f"Empty {name.replace('_', ' ').upper()} clause")
        parts[name] = body

    select_list = text[head.end():marks[0][1]].strip()
    if not select_list:
        raise QueryParseError("Empty select list")

    return SelectQuery(
        select_list=select_list,
        from_clause=parts["from"],
        where=[parts["where"]] if "where" in parts else [],
        group_by=parts.get("group_by"),
        having=parts.get("having"),
        order_by=parts.get("order_by"),
        limit=_parse_int("limit", parts["limit"]) if "limit" in parts else None,
        offset=_parse_int("offset", parts["offset"]) if "offset" in parts else None,
    )
