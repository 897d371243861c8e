"""Dependency providers for the insights routes (overridden in tests)."""
from __future__ import annotations

from src.db.audit_log import AuditSink, get_audit_log
from src.db.executor import SqlAlchemyViewExecutor, ViewExecutor
from src.insights.cache import ResultCache, get_cache


def get_executor() -> ViewExecutor:
    return SqlAlchemyViewExecutor()


def get_result_cache() -> ResultCache:
    return get_cache()


def get_audit() -> AuditSink:
    return get_audit_log()
