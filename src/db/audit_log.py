"""
Insights audit log -- one append-only row per answered request.

The table is created at API startup via ``ensure_audit_table()``.  A failed
write is logged and never fails the request.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Protocol

from sqlalchemy import text

from src.core.logging import get_logger
from src.db.connection import write_connection

logger = get_logger(__name__)

_TABLE = "insights_audit_logs"

_CREATE_SQL = f"""
CREATE TABLE IF NOT EXISTS {_TABLE} (
    id                 BIGSERIAL PRIMARY KEY,
    user_id            TEXT NOT NULL,
    pergunta           TEXT,
    sql_executado      TEXT,
    filtros            JSONB,
    tempo_execucao_ms  INTEGER,
    linhas_retornadas  INTEGER,
    confianca          REAL,
    sucesso            BOOLEAN NOT NULL DEFAULT TRUE,
    origem             VARCHAR(20),
    erro               TEXT,
    created_at         TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
ALTER TABLE {_TABLE} ADD COLUMN IF NOT EXISTS erro TEXT;
"""

_INSERT_SQL = text(f"""
    INSERT INTO {_TABLE}
        (user_id, pergunta, sql_executado, filtros, tempo_execucao_ms,
         linhas_retornadas, confianca, sucesso, origem, erro)
    VALUES
        (:user_id, :pergunta, :sql_executado, CAST(:filtros AS JSONB), :tempo_execucao_ms,
         :linhas_retornadas, :confianca, :sucesso, :origem, :erro)
""")


@dataclass
class AuditRecord:
    user_id: str
    question: str | None
    sql: str
    filters: dict[str, Any] = field(default_factory=dict)
    execution_time_ms: int = 0
    row_count: int = 0
    confidence: float = 0.0
    success: bool = True
    source: str | None = None
    error: str | None = None


class AuditSink(Protocol):
    def record(self, entry: AuditRecord) -> None: ...


def ensure_audit_table() -> None:
    """Create the audit table if it doesn't exist."""
    with write_connection() as conn:
        conn.execute(text(_CREATE_SQL))
    logger.info("Audit table '%s' ensured", _TABLE)


class PostgresAuditLog:
    """Writes ``AuditRecord`` rows to ``insights_audit_logs``."""

    def record(self, entry: AuditRecord) -> None:
        params = {
            "user_id": entry.user_id,
            "pergunta": entry.question,
            "sql_executado": entry.sql or None,
            "filtros": json.dumps(entry.filters, default=str),
            "tempo_execucao_ms": entry.execution_time_ms,
            "linhas_retornadas": entry.row_count,
            "confianca": entry.confidence,
            "sucesso": entry.success,
            "origem": entry.source,
            "erro": entry.error,
        }
        try:
            with write_connection() as conn:
                conn.execute(_INSERT_SQL, params)
            logger.debug("Audit logged: user=%s success=%s", entry.user_id, entry.success)
        except Exception:
            logger.exception("Failed to write audit record -- continuing without logging")


_audit_log = PostgresAuditLog()


def get_audit_log() -> AuditSink:
    return _audit_log
