"""
Read-only query execution with a direct-view fallback.

Primary path: the validated SQL is handed to the ``exec_readonly_sql``
procedure, which scopes rows to the calling user server-side.

Fallback path: if the procedure fails, the first view of the statement is
read directly with a SQLAlchemy Core select filtered by ``user_id``, the
same date range and the same row limit.  Both paths run in a READ ONLY
transaction with a statement timeout.
"""
from __future__ import annotations

import decimal
import datetime
from dataclasses import dataclass
from typing import Any, Protocol

from sqlalchemy import column, literal_column, select, table, text

from src.core.errors import ExecutionError
from src.core.logging import get_logger
from src.db.connection import readonly_connection
from src.governance.catalog import ALLOWED_VIEWS, load_catalog

logger = get_logger(__name__)

PATH_RPC = "rpc"
PATH_DIRECT = "direct"

EXECUTION_SUGGESTION = (
    "Tente reformular a pergunta ou use um dos relatórios prontos."
)


def _serialise_value(val: Any) -> Any:
    """Convert DB types to JSON-serialisable Python types."""
    if isinstance(val, decimal.Decimal):
        return float(val)
    if isinstance(val, (datetime.date, datetime.datetime)):
        return val.isoformat()
    if isinstance(val, datetime.timedelta):
        return str(val)
    return val


def _serialise_row(row: dict[str, Any]) -> dict[str, Any]:
    return {k: _serialise_value(v) for k, v in row.items()}


class ViewExecutor(Protocol):
    def execute_rpc(self, sql: str, user_id: str) -> list[dict[str, Any]]: ...

    def select_direct(
        self,
        view: str,
        user_id: str,
        date_column: str | None,
        start: datetime.date | None,
        end: datetime.date | None,
        limit: int,
    ) -> list[dict[str, Any]]: ...


@dataclass(frozen=True)
class ExecutionOutcome:
    rows: list[dict[str, Any]]
    path: str                      # PATH_RPC | PATH_DIRECT
    primary_error: str | None = None


class SqlAlchemyViewExecutor:
    """Runs insight queries against Postgres."""

    def __init__(self, scope_column: str | None = None, timeout_ms: int | None = None):
        self._scope_column = scope_column or load_catalog().scope_column
        self._timeout_ms = timeout_ms

    def execute_rpc(self, sql: str, user_id: str) -> list[dict[str, Any]]:
        logger.info("Executing via exec_readonly_sql (%d chars)", len(sql))
        with readonly_connection(self._timeout_ms) as conn:
            result = conn.execute(
                text("SELECT exec_readonly_sql(:query_text, :p_user_id) AS result"),
                {"query_text": sql, "p_user_id": user_id},
            ).scalar()
        if result is None:
            rows: list[dict[str, Any]] = []
        elif isinstance(result, dict):
            rows = [result]
        else:
            rows = list(result)
        logger.info("Procedure returned %d rows", len(rows))
        return [_serialise_row(r) for r in rows]

    def select_direct(
        self,
        view: str,
        user_id: str,
        date_column: str | None,
        start: datetime.date | None,
        end: datetime.date | None,
        limit: int,
    ) -> list[dict[str, Any]]:
        if view not in ALLOWED_VIEWS:
            raise ExecutionError(f"View '{view}' is not allowed", EXECUTION_SUGGESTION)

        cols = [column(self._scope_column)]
        if date_column:
            cols.append(column(date_column))
        source = table(view, *cols)

        stmt = select(literal_column("*")).select_from(source).where(
            source.c[self._scope_column] == user_id
        )
        if date_column and start is not None:
            stmt = stmt.where(source.c[date_column] >= start)
        if date_column and end is not None:
            stmt = stmt.where(source.c[date_column] <= end)
        stmt = stmt.limit(limit)

        logger.info("Direct select on %s (limit=%d)", view, limit)
        with readonly_connection(self._timeout_ms) as conn:
            result = conn.execute(stmt)
            rows = [_serialise_row(dict(r)) for r in result.mappings().all()]
        logger.info("Direct select returned %d rows", len(rows))
        return rows


def execute_with_fallback(
    executor: ViewExecutor,
    sql: str,
    user_id: str,
    view: str,
    date_column: str | None,
    start: datetime.date | None,
    end: datetime.date | None,
    limit: int,
) -> ExecutionOutcome:
    """Run *sql* through the procedure, then fall back to a direct read.

    Raises
    ------
    ExecutionError
        When both paths fail.
    """
    try:
        return ExecutionOutcome(rows=executor.execute_rpc(sql, user_id), path=PATH_RPC)
    except Exception as exc:
        primary_error = str(exc)
        logger.warning("Procedure execution failed, trying direct select on %s: %s", view, exc)

    try:
        rows = executor.select_direct(view, user_id, date_column, start, end, limit)
    except Exception as exc:
        logger.exception("Direct select on %s failed", view)
        raise ExecutionError(
            f"Não foi possível executar a consulta: {exc}",
            suggestion=EXECUTION_SUGGESTION,
        ) from exc
    return ExecutionOutcome(rows=rows, path=PATH_DIRECT, primary_error=primary_error)
