"""
Deterministic SQL safety checks (non-LLM).

These checks are the final gate before any SQL is executed.  They operate
purely on the SQL text and the view whitelist -- no LLM involved.

Checks performed, in order, stopping at the first failure:
  1. No transaction control (BEGIN TRANSACTION / WORK / ATOMIC)
  2. No session or role mutation (SET ROLE / SESSION / LOCAL / TIME ZONE / TRANSACTION)
  3. No blocklisted DML / DDL / cursor keyword (whole-word match)
  4. No multi-statement payloads (';' anywhere before the last character)
  5. No comments ('--' or '/*')
  6. Every FROM / JOIN target is an allowed view, and no FROM item is a
     parenthesised join (only a parenthesised SELECT may open one)
  7. Statement starts with SELECT
"""
from __future__ import annotations

import re
from dataclasses import dataclass

from src.governance.catalog import ALLOWED_VIEWS
from src.core.logging import get_logger

logger = get_logger(__name__)

BLOCKED_KEYWORDS: tuple[str, ...] = (
    "INSERT", "UPDATE", "DELETE", "DROP", "CREATE", "ALTER", "TRUNCATE",
    "GRANT", "REVOKE", "EXECUTE", "EXEC", "CALL", "COMMIT", "ROLLBACK",
    "SAVEPOINT", "DECLARE", "FETCH", "OPEN", "CLOSE", "DEALLOCATE",
)

# ── Compiled patterns ────────────────────────────────────

_TRANSACTION_RE = re.compile(r"\bBEGIN\s+(TRANSACTION|WORK|ATOMIC)\b", re.IGNORECASE)

_SESSION_RE = re.compile(
    r"\bSET\s+(ROLE|SESSION|LOCAL|TIME\s+ZONE|TRANSACTION)\b",
    re.IGNORECASE,
)

_BLOCKED_KW_RE = re.compile(
    r"\b(" + "|".join(BLOCKED_KEYWORDS) + r")\b",
    re.IGNORECASE,
)

# FROM inside these calls names a column or string, not a relation.
_FROM_FUNCTION_RE = re.compile(
    r"\b(?:EXTRACT|SUBSTRING|TRIM|OVERLAY|POSITION)\s*\([^()]*\)",
    re.IGNORECASE,
)

_FROM_LIST_RE = re.compile(
    r"\bFROM\b\s*(.*?)(?=\bWHERE\b|\bGROUP\b|\bORDER\b|\bHAVING\b|\bLIMIT\b|\bOFFSET\b"
    r"|\b(?:LEFT|RIGHT|INNER|FULL|CROSS|NATURAL|OUTER)\b|\bJOIN\b|\bUNION\b|\bON\b|[()]|$)",
    re.IGNORECASE | re.DOTALL,
)

_JOIN_RE = re.compile(r'\bJOIN\b\s*(?:LATERAL\b\s*)?(\(\s*)*("?[\w.]+"?)', re.IGNORECASE)

_RELATION_RE = re.compile(r'^\s*("?[\w.]+"?(?:\."?[\w]+"?)?)')

_OPENED_ITEM_RE = re.compile(r'(?:\(\s*)+("?[\w.]+"?)')


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error: str | None = None


def _clean_name(token: str) -> str:
    return token.replace('"', "").strip().lower()


def _from_items(sql: str) -> list[tuple[str, bool]]:
    """``(relation, parenthesised)`` for every FROM / JOIN item.

    An item opened by ``(`` yields the first name inside it.  Subqueries
    are skipped here; their own FROM is matched separately.
    """
    text = _FROM_FUNCTION_RE.sub(" ", sql)
    items: list[tuple[str, bool]] = []
    for m in _FROM_LIST_RE.finditer(text):
        body = m.group(1)
        for item in body.split(","):
            rel = _RELATION_RE.match(item)
            if rel:
                items.append((_clean_name(rel.group(1)), False))
        if not body.strip() or body.rstrip().endswith(","):
            opened = _OPENED_ITEM_RE.match(text, m.end())
            if opened:
                items.append((_clean_name(opened.group(1)), True))
    for m in _JOIN_RE.finditer(text):
        items.append((_clean_name(m.group(2)), bool(m.group(1))))
    return [(name, nested) for name, nested in items if not (nested and name == "select")]


def table_references(sql: str) -> list[str]:
    """Every relation named after FROM (including comma lists) or JOIN,
    at any parenthesis depth."""
    return [name for name, _ in _from_items(sql)]


def validate_sql(sql: str) -> ValidationResult:
    """Return ``ValidationResult(valid=True)`` or the first violation found."""
    stripped = (sql or "").strip()

    # ── 1. Transaction control ──────────────────────
    m = _TRANSACTION_RE.search(stripped)
    if m:
        return _reject(f"Controle de transação não permitido: 'BEGIN {m.group(1).upper()}'")

    # ── 2. Session / role mutation ──────────────────
    m = _SESSION_RE.search(stripped)
    if m:
        return _reject(f"Alteração de sessão não permitida: 'SET {m.group(1).upper()}'")

    # ── 3. Blocklisted keywords ─────────────────────
    m = _BLOCKED_KW_RE.search(stripped)
    if m:
        return _reject(f"Operação '{m.group(1).upper()}' não permitida")

    # ── 4. Multiple statements ──────────────────────
    if ";" in stripped[:-1]:
        return _reject("Múltiplas instruções (multiple statements) não são permitidas")

    # ── 5. Comments ─────────────────────────────────
    if "--" in stripped or "/*" in stripped:
        return _reject("Comentários não são permitidos (comments not allowed)")

    # ── 6. Allowed views only ───────────────────────
    items = _from_items(stripped)
    for ref, _ in items:
        if ref not in ALLOWED_VIEWS:
            return _reject(f"Tabela ou view '{ref}' não permitida")
    if any(nested for _, nested in items):
        return _reject("Junções entre parênteses não são permitidas")

    # ── 7. Must be a SELECT ─────────────────────────
    if not stripped.upper().startswith("SELECT"):
        return _reject("Apenas consultas SELECT são permitidas")

    return ValidationResult(valid=True)


def _reject(error: str) -> ValidationResult:
    logger.warning("SQL rejected: %s", error)
    return ValidationResult(valid=False, error=error)
