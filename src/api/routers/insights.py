"""POST /insights-query -- main insights endpoint, plus per-user cache management."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from src.api.auth import AuthenticatedUser, get_current_user
from src.api.deps import get_audit, get_executor, get_result_cache
from src.db.audit_log import AuditSink
from src.db.executor import ViewExecutor
from src.insights.cache import ResultCache
from src.insights.models import ErrorResponse, InsightsRequest, InsightsResponse
from src.insights.service import ask
from src.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()

_ERRORS: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


@router.post("/insights-query", response_model=InsightsResponse, responses=_ERRORS)
def insights_query(
    req: InsightsRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    executor: ViewExecutor = Depends(get_executor),
    cache: ResultCache = Depends(get_result_cache),
    audit: AuditSink = Depends(get_audit),
) -> InsightsResponse:
    """Question or fallback report -> validated SQL -> rows, KPIs and text."""
    return ask(req, user.id, executor=executor, cache=cache, audit=audit)


@router.delete("/insights/cache", responses=_ERRORS)
def clear_my_cache(
    user: AuthenticatedUser = Depends(get_current_user),
    cache: ResultCache = Depends(get_result_cache),
) -> dict:
    """Drop every cached answer of the calling user."""
    removed = cache.clear_user(user.id)
    return {"cleared": removed}


@router.get("/insights/cache/stats", responses=_ERRORS)
def cache_stats(
    user: AuthenticatedUser = Depends(get_current_user),
    cache: ResultCache = Depends(get_result_cache),
) -> dict:
    """Return result-cache statistics."""
    return cache.stats()
