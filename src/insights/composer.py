"""
Response composer -- KPIs, text answer, chart decision and next steps.

KPIs come from an explicit table of rules: each rule names the result
columns it reads and how it aggregates them.  A rule fires only when one of
its source columns is present in the result.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from src.core.logging import get_logger
from src.core.utils import format_currency, format_number, to_number
from src.insights.models import CandidateQuery

logger = get_logger(__name__)

MAX_NEXT_STEPS = 3
SHOW_CHART_STEP = "Mostre em gráfico"


# ── KPI rules ────────────────────────────────────────────

def _sum(values: list[float]) -> float | None:
    return sum(values)


def _positive_mean(values: list[float]) -> float | None:
    positive = [v for v in values if v > 0]
    return sum(positive) / len(positive) if positive else None


@dataclass(frozen=True)
class KpiRule:
    name: str
    sources: tuple[str, ...]           # first column present wins
    aggregate: Callable[[list[float]], float | None]
    multi_row_only: bool = False


KPI_RULES: tuple[KpiRule, ...] = (
    KpiRule("valor_total", ("valor_total", "receita", "valor"), _sum),
    KpiRule("valor_liquido", ("valor_liquido",), _sum),
    KpiRule("m2_total", ("m2_total",), _sum),
    KpiRule("quantidade", ("quantidade",), _sum, multi_row_only=True),
    KpiRule("margem_media", ("margem_pct",), _positive_mean),
)


def compute_kpis(rows: Sequence[dict[str, Any]]) -> dict[str, float]:
    """Evaluate ``KPI_RULES`` against the columns of the first row."""
    if not rows:
        return {"total_registros": 0}

    columns = set(rows[0])
    kpis: dict[str, float] = {}
    for rule in KPI_RULES:
        if rule.multi_row_only and len(rows) < 2:
            continue
        source = next((c for c in rule.sources if c in columns), None)
        if source is None:
            continue
        value = rule.aggregate([to_number(r.get(source)) for r in rows])
        if value is not None:
            kpis[rule.name] = round(value, 2)

    kpis["total_registros"] = len(rows)
    if "valor_total" in kpis:
        kpis["ticket_medio"] = round(kpis["valor_total"] / len(rows), 2)
    return kpis


# ── Text ─────────────────────────────────────────────────

def _summary(rows: Sequence[dict[str, Any]], kpis: dict[str, float]) -> str:
    parts: list[str] = []
    if len(rows) == 1:
        count = rows[0].get("quantidade")
        if count is not None:
            n = to_number(count)
            parts.append(f"Há {format_number(n)} {'registro' if n == 1 else 'registros'}")
    else:
        parts.append(f"Encontrei {len(rows)} registros")
        if "quantidade" in kpis:
            parts.append(f"quantidade total: {format_number(kpis['quantidade'])}")

    if "valor_total" in kpis:
        parts.append(f"valor total: {format_currency(kpis['valor_total'])}")
    if "valor_liquido" in kpis:
        parts.append(f"valor líquido: {format_currency(kpis['valor_liquido'])}")
    if "m2_total" in kpis:
        parts.append(f"metragem: {format_number(kpis['m2_total'])} m²")
    if "margem_media" in kpis:
        parts.append(f"margem média: {format_number(kpis['margem_media'], 1)}%")
    if len(rows) > 1 and "valor_total" in kpis:
        parts.append(f"ticket médio: {format_currency(kpis['ticket_medio'])}")

    if not parts:
        return f"Encontrei {len(rows)} {'registro' if len(rows) == 1 else 'registros'}."
    sentence = ", ".join(parts)
    return sentence[0].upper() + sentence[1:] + "."


def text_response(
    rows: Sequence[dict[str, Any]],
    kpis: dict[str, float],
    corrections: Sequence[str] = (),
    period_used: str | None = None,
) -> str:
    period = f"Período: {period_used}." if period_used else "Período: sem filtro de data."
    if not rows:
        body = (
            "Não encontrei registros para esses critérios. "
            "Tente ampliar o período ou ajustar os filtros da pergunta."
        )
    else:
        body = _summary(rows, kpis)
    text = f"{body} {period}"
    if corrections:
        text = ". ".join(corrections) + ". " + text
    return text


# ── Next steps ───────────────────────────────────────────

_NEXT_STEPS: dict[str, list[str]] = {
    "vw_propostas": ["Qual o valor total das propostas em aberto?", "Quais propostas estão há mais de 30 dias abertas?"],
    "vw_vendas": ["Qual a evolução de vendas por mês?", "Quais os melhores canais de vendas?"],
    "vw_financeiro": ["Quanto tenho a receber?", "Quais parcelas estão atrasadas?"],
    "vw_leads": ["Como está o funil por estágio?", "Quais canais trazem mais leads?"],
    "vw_obras": ["Quantas obras estão em andamento?", "Qual a metragem das obras por mês?"],
    "vw_visitas": ["Quantas visitas estão pendentes?", "Quantas visitas foram realizadas por mês?"],
    "vw_clientes": ["Quantos clientes novos por mês?", "Quais clientes têm mais contratos?"],
}


def next_steps(view: str | None, row_count: int, wants_chart: bool) -> list[str]:
    steps = list(_NEXT_STEPS.get(view or "", []))
    if row_count > 1 and not wants_chart:
        steps.append(SHOW_CHART_STEP)
    return steps[:MAX_NEXT_STEPS]


# ── Compose ──────────────────────────────────────────────

@dataclass
class ComposedAnswer:
    kpis: dict[str, float]
    text_response: str
    wants_chart: bool
    chart_type: str
    x_axis: str
    y_axis: list[str] = field(default_factory=list)
    next_steps: list[str] = field(default_factory=list)


def compose(
    rows: Sequence[dict[str, Any]],
    candidate: CandidateQuery,
    corrections: Sequence[str] = (),
    *,
    chart_intent: bool = False,
    period_used: str | None = None,
    view: str | None = None,
    suggest: bool = True,
) -> ComposedAnswer:
    """Build the user-facing part of an answer from executed rows."""
    kpis = compute_kpis(rows)
    show_chart = (
        chart_intent
        and len(rows) >= 2
        and bool(candidate.x_axis)
        and bool(candidate.y_axis)
        and candidate.chart_type != "table"
    )
    logger.info(
        "Composed answer rows=%d kpis=%s chart=%s", len(rows), sorted(kpis), show_chart,
    )
    return ComposedAnswer(
        kpis=kpis,
        text_response=text_response(rows, kpis, corrections, period_used),
        wants_chart=show_chart,
        chart_type=candidate.chart_type if show_chart else "table",
        x_axis=candidate.x_axis,
        y_axis=list(candidate.y_axis),
        next_steps=next_steps(view, len(rows), show_chart) if suggest else [],
    )
