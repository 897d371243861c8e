"""
Insights service -- orchestrates the whole question -> answer pipeline.

  input check -> date extraction -> cache lookup -> candidate (explicit
  report, generation, or default report) -> validation -> LIMIT -> parse +
  date-range injection -> final validation -> execution (procedure, then
  direct read) -> composition -> cache write -> audit

Generation and validation failures never reach the caller: the default
fallback report replaces the candidate wholesale.  Only ``MissingInputError``
(before any work) and ``ExecutionError`` (both execution paths failed)
propagate.  Every failure after the cache lookup is audited before it is
re-raised.  Which path produced the answer is reported as ``source``.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Any

from src.core.config import get_settings
from src.core.errors import ExecutionError, GenerationError, MissingInputError, QueryParseError, QueryValidationError
from src.core.logging import get_logger, request_logger
from src.core.utils import timer
from src.db.audit_log import AuditRecord, AuditSink, get_audit_log
from src.db.executor import PATH_DIRECT, SqlAlchemyViewExecutor, ViewExecutor, execute_with_fallback
from src.governance.catalog import FallbackReport, InsightsCatalog, load_catalog
from src.governance.limit_guard import ensure_limit
from src.governance.query_ir import SelectQuery, parse_select
from src.governance.sql_safety import validate_sql
from src.insights.cache import ResultCache, get_cache, make_cache_hash
from src.insights.composer import compose
from src.insights.date_extractor import detect_chart_intent, extract_dates, resolve_relative_date
from src.insights.generator import generate
from src.insights.models import CandidateQuery, InsightsRequest, InsightsResponse, OutcomeKind

logger = get_logger(__name__)

EXPLICIT_REPORT_CONFIDENCE = 0.9
FALLBACK_CONFIDENCE = 0.4


# ── Helpers ──────────────────────────────────────────────

def describe_period(start: date | None, end: date | None) -> str | None:
    if start and end:
        return f"{start.isoformat()} a {end.isoformat()}"
    if start:
        return f"a partir de {start.isoformat()}"
    if end:
        return f"até {end.isoformat()}"
    return None


def candidate_from_report(report: FallbackReport, confidence: float, explanation: str) -> CandidateQuery:
    return CandidateQuery(
        sql=report.sql,
        chart_type=report.chart,
        x_axis=report.x,
        y_axis=list(report.y),
        confidence=confidence,
        used_fallback=True,
        explanation=explanation,
    )


def _default_candidate(catalog: InsightsCatalog, explanation: str, confidence: float = FALLBACK_CONFIDENCE) -> CandidateQuery:
    report = catalog.default_fallback
    return candidate_from_report(report, min(confidence, FALLBACK_CONFIDENCE), explanation)


def govern_sql(
    sql: str,
    catalog: InsightsCatalog,
    start: date | None,
    end: date | None,
    max_limit: int,
) -> SelectQuery:
    """Validate, cap and date-scope *sql*; return the query ready to render.

    Raises
    ------
    QueryValidationError
        The SQL (or its rendered form) breaks a guardrail or cannot be parsed.
    """
    check = validate_sql(sql)
    if not check.valid:
        raise QueryValidationError(check.error or "SQL inválido")

    try:
        query = parse_select(ensure_limit(sql, max_limit))
        view = catalog.view(query.source_view)
        if view is not None and (start or end):
            query.inject_date_range(view.date_column, start, end)
    except QueryParseError as exc:
        raise QueryValidationError(f"Estrutura SQL não suportada: {exc.message}") from exc
    query.clamp_limit(max_limit)

    final = validate_sql(query.render())
    if not final.valid:
        raise QueryValidationError(final.error or "SQL inválido")
    return query


def _safe_audit(audit: AuditSink, record: AuditRecord, log: logging.LoggerAdapter) -> None:
    try:
        audit.record(record)
    except Exception:
        log.warning("Audit write failed -- continuing")


# ── Pipeline ─────────────────────────────────────────────

def ask(
    request: InsightsRequest,
    user_id: str,
    *,
    mode: str | None = None,
    executor: ViewExecutor | None = None,
    cache: ResultCache | None = None,
    audit: AuditSink | None = None,
    today: date | None = None,
) -> InsightsResponse:
    """Answer one insights request for *user_id*.

    Parameters
    ----------
    request : InsightsRequest
        Question and/or fallback key plus optional date filters.
    user_id : str
        Authenticated user; scopes execution, cache and audit.
    mode : str, optional
        Generator mode override (mock | openai | anthropic).
    executor, cache, audit : optional
        Collaborators; default to the Postgres executor, the configured
        cache backend and the Postgres audit log.
    today : date, optional
        Reference date for relative filter terms.

    Raises
    ------
    MissingInputError
        Neither ``question`` nor ``fallback_key`` was supplied.
    ExecutionError
        Both the procedure and the direct read failed.
    """
    question = request.question
    fallback_key = request.fallback_key
    if not question and not fallback_key:
        raise MissingInputError()

    log = request_logger(logger)
    settings = get_settings()
    catalog = load_catalog()
    executor = executor or SqlAlchemyViewExecutor(scope_column=catalog.scope_column)
    cache = cache or get_cache()
    audit = audit or get_audit_log()

    log.info("Insights.ask | user=%s | question=%s | fallbackKey=%s", user_id, question, fallback_key)

    with timer() as elapsed:
        # ── 1. Effective date range ─────────────────────
        extracted = extract_dates(question)
        if extracted.found:
            start, end = extracted.start_date, extracted.end_date
        else:
            start = resolve_relative_date(request.filters.start_date, today)
            end = resolve_relative_date(request.filters.end_date, today)
        corrections = list(extracted.corrections)
        period_used = describe_period(start, end)
        filters: dict[str, Any] = {
            "startDate": start.isoformat() if start else None,
            "endDate": end.isoformat() if end else None,
            "fallbackKey": fallback_key,
        }

        # ── 2. Cache lookup ─────────────────────────────
        report = catalog.lookup(fallback_key)
        subject = f"report:{report.key}" if report else (question or f"report:{fallback_key}")
        cache_hash = make_cache_hash(subject, start, end)
        try:
            cached_payload = cache.get(user_id, cache_hash)
        except Exception:
            log.warning("Cache read failed -- treating as miss")
            cached_payload = None

    if cached_payload is not None:
        response = InsightsResponse.model_validate({
            **cached_payload,
            "cached": True,
            "source": OutcomeKind.CACHED,
            "execution_time_ms": elapsed["elapsed_ms"],
        })
        log.info("Cache HIT hash=%s", cache_hash[:16])
        _safe_audit(audit, AuditRecord(
            user_id=user_id, question=question or fallback_key, sql=response.sql, filters=filters,
            execution_time_ms=response.execution_time_ms, row_count=response.row_count,
            confidence=response.confidence, success=True, source=OutcomeKind.CACHED.value,
        ), log)
        return response

    final_sql = ""
    confidence = 0.0
    failure: Exception | None = None

    def audit_failure(exc: Exception, elapsed_ms: int) -> None:
        _safe_audit(audit, AuditRecord(
            user_id=user_id, question=question or fallback_key, sql=final_sql, filters=filters,
            execution_time_ms=elapsed_ms, row_count=0,
            confidence=confidence, success=False, error=str(exc),
        ), log)

    with timer() as elapsed:
        try:
            # ── 3. Candidate ────────────────────────────
            chart_intent = detect_chart_intent(question)
            if report is not None:
                candidate = candidate_from_report(
                    report, EXPLICIT_REPORT_CONFIDENCE, f"Relatório pronto: {report.description}",
                )
            elif question:
                try:
                    candidate = generate(question, chart_intent, corrections, extracted, mode)
                except GenerationError as exc:
                    log.warning("Generation failed, using default report: %s", exc.message)
                    candidate = _default_candidate(
                        catalog,
                        "Não consegui interpretar a pergunta automaticamente; "
                        f"exibindo o relatório padrão ({catalog.default_fallback.description}).",
                    )
            else:
                log.warning("Unknown fallback key '%s', using default report", fallback_key)
                candidate = _default_candidate(
                    catalog,
                    f"Relatório '{fallback_key}' não encontrado; "
                    f"exibindo o relatório padrão ({catalog.default_fallback.description}).",
                )
            if candidate.used_fallback:
                chart_intent = True
            confidence = candidate.confidence

            # ── 4. Guardrails ───────────────────────────
            try:
                query = govern_sql(candidate.sql, catalog, start, end, settings.sql_row_limit)
            except QueryValidationError as exc:
                log.warning("Candidate rejected (%s), using default report", exc.message)
                candidate = _default_candidate(
                    catalog,
                    f"A consulta gerada foi rejeitada: {exc.message}. "
                    f"Exibindo o relatório padrão ({catalog.default_fallback.description}).",
                    confidence=candidate.confidence,
                )
                chart_intent = True
                confidence = candidate.confidence
                query = govern_sql(candidate.sql, catalog, start, end, settings.sql_row_limit)

            final_sql = query.render()
            view = query.source_view
            schema = catalog.view(view)
            log.info("Final SQL: %s", final_sql)

            # ── 5. Execution ────────────────────────────
            outcome = execute_with_fallback(
                executor, final_sql, user_id, view,
                schema.date_column if schema else None,
                start, end, query.limit or settings.sql_row_limit,
            )
        except Exception as exc:
            failure = exc

    if failure is not None:
        if not isinstance(failure, ExecutionError):
            log.error("Insights.ask failed before execution: %s", failure)
        audit_failure(failure, elapsed["elapsed_ms"])
        raise failure

    if outcome.path == PATH_DIRECT:
        source = OutcomeKind.DIRECT
    elif candidate.used_fallback:
        source = OutcomeKind.FALLBACK
    else:
        source = OutcomeKind.GENERATED

    # ── 6. Composition ──────────────────────────────────
    try:
        answer = compose(
            outcome.rows,
            candidate,
            corrections,
            chart_intent=chart_intent,
            period_used=period_used,
            view=view,
            suggest=bool(question),
        )
        response = InsightsResponse(
            data=outcome.rows,
            kpis=answer.kpis,
            sql=final_sql,
            chart_type=answer.chart_type,
            x_axis=answer.x_axis,
            y_axis=answer.y_axis,
            confidence=candidate.confidence,
            explanation=candidate.explanation,
            text_response=answer.text_response,
            used_fallback=candidate.used_fallback,
            row_count=len(outcome.rows),
            execution_time_ms=elapsed["elapsed_ms"],
            wants_chart=answer.wants_chart,
            period_used=period_used,
            used_question_dates=extracted.found,
            cached=False,
            cache_hash=cache_hash,
            next_steps=answer.next_steps,
            source=source,
        )
    except Exception as exc:
        log.error("Insights.ask failed composing the answer: %s", exc)
        audit_failure(exc, elapsed["elapsed_ms"])
        raise

    # ── 7. Cache write + audit ──────────────────────────
    try:
        cache.put(
            user_id, cache_hash, response.model_dump(mode="json"),
            settings.cache_ttl_minutes, question=question or fallback_key,
        )
    except Exception:
        log.warning("Cache write failed -- continuing")

    _safe_audit(audit, AuditRecord(
        user_id=user_id, question=question or fallback_key, sql=final_sql, filters=filters,
        execution_time_ms=response.execution_time_ms, row_count=response.row_count,
        confidence=response.confidence, success=True, source=source.value,
        error=outcome.primary_error,
    ), log)

    log.info(
        "Insights.ask done | source=%s | rows=%d | fallback=%s | %dms",
        source.value, response.row_count, response.used_fallback, response.execution_time_ms,
    )
    return response
