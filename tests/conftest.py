"""
Shared fakes for the insights pipeline: executor, audit sink and a fresh
in-memory cache.  No database or LLM is needed by anything here.
"""
from __future__ import annotations

from typing import Any

import pytest

from src.core.config import get_settings
from src.insights.cache import QueryCache


class FakeExecutor:
    """Records every call; returns canned rows or raises the given errors."""

    def __init__(
        self,
        rows: list[dict[str, Any]] | None = None,
        *,
        rpc_error: Exception | None = None,
        direct_rows: list[dict[str, Any]] | None = None,
        direct_error: Exception | None = None,
    ):
        self.rows = rows or []
        self.rpc_error = rpc_error
        self.direct_rows = direct_rows
        self.direct_error = direct_error
        self.rpc_calls: list[tuple[str, str]] = []
        self.direct_calls: list[dict[str, Any]] = []

    def execute_rpc(self, sql: str, user_id: str) -> list[dict[str, Any]]:
        self.rpc_calls.append((sql, user_id))
        if self.rpc_error is not None:
            raise self.rpc_error
        return [dict(r) for r in self.rows]

    def select_direct(self, view, user_id, date_column, start, end, limit) -> list[dict[str, Any]]:
        self.direct_calls.append({
            "view": view, "user_id": user_id, "date_column": date_column,
            "start": start, "end": end, "limit": limit,
        })
        if self.direct_error is not None:
            raise self.direct_error
        source = self.direct_rows if self.direct_rows is not None else self.rows
        return [dict(r) for r in source]


class FakeAudit:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.records: list[Any] = []

    def record(self, entry: Any) -> None:
        if self.fail:
            raise RuntimeError("audit store down")
        self.records.append(entry)


@pytest.fixture
def make_executor():
    return FakeExecutor


@pytest.fixture
def audit():
    return FakeAudit()


@pytest.fixture
def failing_audit():
    return FakeAudit(fail=True)


@pytest.fixture
def memory_cache():
    return QueryCache(ttl_minutes=30)


@pytest.fixture(autouse=True)
def _offline_settings(monkeypatch):
    """Keep every test on the keyword generator and the memory cache."""
    settings = get_settings()
    monkeypatch.setattr(settings, "llm_provider", "mock")
    monkeypatch.setattr(settings, "cache_backend", "memory")
    monkeypatch.setattr(settings, "sql_row_limit", 500)
