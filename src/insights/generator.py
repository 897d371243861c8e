"""
Query generator -- turns a Portuguese question into a ``CandidateQuery``.

Two modes:
  mock                -> deterministic keyword rules, SQL rendered through
                         ``SelectQuery`` (no API key needed, used by tests)
  openai / anthropic  -> LLM prompt with the whitelisted view schema; the
                         reply must embed a JSON object
                         ``{sql, chart_type, x_axis, y_axis, confidence}``

Any failure raises ``GenerationError``; the service answers it with the
default fallback report.  Nothing here retries.
"""
from __future__ import annotations

import json
import re
from typing import Any, Iterable

from src.core.config import get_settings
from src.core.errors import GenerationError
from src.core.logging import get_logger
from src.core.utils import normalize_text
from src.governance.catalog import CHART_TYPES, InsightsCatalog, ViewSchema, load_catalog
from src.governance.query_ir import SelectQuery
from src.insights.date_extractor import ExtractedDateRange
from src.insights.llm_client import call_llm
from src.insights.models import CandidateQuery

logger = get_logger(__name__)

# ── Keyword maps for mock mode ───────────────────────────

_ENTITY_KEYWORDS: dict[str, list[str]] = {
    "vw_vendas":     ["vendas", "venda", "vendido", "vendemos", "faturamento", "contratos", "contrato", "receita"],
    "vw_propostas":  ["propostas", "proposta", "orçamentos", "orçamento", "orcamento"],
    "vw_leads":      ["leads", "lead", "funil"],
    "vw_visitas":    ["visitas", "visita"],
    "vw_obras":      ["obras", "obra"],
    "vw_financeiro": ["a receber", "recebíveis", "recebiveis", "parcelas", "parcela", "financeiro", "pagamentos"],
    "vw_clientes":   ["clientes cadastrados", "novos clientes", "cadastro de clientes"],
}

_DEFAULT_VIEW = "vw_propostas"

# Summed value column per view; None means count only.
_VALUE_COLUMN: dict[str, str | None] = {
    "vw_vendas": "valor_total",
    "vw_propostas": "valor_total",
    "vw_obras": "valor_total",
    "vw_financeiro": "valor",
    "vw_leads": "valor_potencial",
    "vw_visitas": None,
    "vw_clientes": "valor_total_contratos",
}

_GROUP_KEYWORDS: list[tuple[str, list[str]]] = [
    ("periodo_mes", ["por mês", "por mes", "mensal", "evolução", "evolucao", "mês a mês"]),
    ("periodo_dia", ["por dia", "diário", "diario", "diariamente"]),
    ("canal",       ["por canal", "canais", "canal"]),
    ("cidade",      ["por cidade", "cidades"]),
    ("bairro",      ["por bairro", "bairros"]),
    ("servico",     ["por serviço", "por servico", "serviços", "servicos"]),
    ("estagio",     ["por estágio", "por estagio", "estágios", "estagios"]),
    ("responsavel", ["por responsável", "por responsavel", "vendedor"]),
    ("cliente",     ["por cliente", "clientes"]),
    ("status",      ["por status"]),
]

_TIME_COLUMNS = ("periodo_mes", "periodo_dia")

_MARGIN_RE = re.compile(r"\bmargem\b", re.IGNORECASE)
_AREA_RE = re.compile(r"\bm2\b|m²|metragem|metros", re.IGNORECASE)
_COUNT_RE = re.compile(r"\bquant[oa]s\b|\bquantidade\b|\bn[uú]mero de\b", re.IGNORECASE)
_TOP_N_RE = re.compile(r"\btop\s+(\d{1,3})\b|\b(\d{1,3})\s+(?:maiores|melhores|principais)\b", re.IGNORECASE)

_JSON_RE = re.compile(r"\{[\s\S]*\}")

_DEFAULT_GROUP_LIMIT = 50


# ── Mock generator ───────────────────────────────────────

def _first_match(text: str, keywords: Iterable[str]) -> int:
    positions = [text.find(kw) for kw in keywords]
    hits = [p for p in positions if p != -1]
    return min(hits) if hits else -1


def _detect_view(q: str) -> str | None:
    """Entity whose keyword appears earliest in the question."""
    best_view, best_pos = None, len(q) + 1
    for view, keywords in _ENTITY_KEYWORDS.items():
        pos = _first_match(q, keywords)
        if pos != -1 and pos < best_pos:
            best_view, best_pos = view, pos
    return best_view


def _detect_group(q: str, view: ViewSchema) -> str | None:
    for column, keywords in _GROUP_KEYWORDS:
        if column == "status":
            column = view.status_column or "status"
        if view.has_column(column) and _first_match(q, keywords) != -1:
            return column
    return None


def _status_predicate(q: str, view: ViewSchema) -> str | None:
    """Match the longest status term found in the question."""
    if not view.status_column:
        return None
    best: tuple[int, tuple[str, ...]] | None = None
    for group in view.statuses:
        for term in group.terms:
            if re.search(rf"\b{re.escape(term)}\b", q) and (best is None or len(term) > best[0]):
                best = (len(term), group.values)
    if best is None:
        return None
    values = best[1]
    if len(values) == 1:
        return f"{view.status_column} = '{values[0]}'"
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{view.status_column} IN ({quoted})"


def _top_n(q: str) -> int | None:
    m = _TOP_N_RE.search(q)
    if not m:
        return None
    return int(m.group(1) or m.group(2))


def _generate_mock(question: str, wants_chart: bool, catalog: InsightsCatalog) -> CandidateQuery:
    q = normalize_text(question)
    detected = _detect_view(q)
    view = catalog.view(detected or _DEFAULT_VIEW)
    if view is None:
        raise GenerationError(f"View '{detected}' missing from catalog")

    value_col = _VALUE_COLUMN.get(view.name)
    if value_col and not view.has_column(value_col):
        value_col = None

    group = _detect_group(q, view)
    if group is None and wants_chart and view.has_column("periodo_mes"):
        group = "periodo_mes"

    # metric expression and its output column
    if _MARGIN_RE.search(q) and view.has_column("margem_pct"):
        metric = ("AVG(margem_pct) AS margem_pct", "margem_pct")
    elif _AREA_RE.search(q) and view.has_column("m2"):
        metric = ("SUM(m2) AS m2_total", "m2_total")
    elif _COUNT_RE.search(q) or not value_col:
        metric = ("COUNT(*) AS quantidade", "quantidade")
    else:
        metric = (f"SUM({value_col}) AS {value_col}", value_col)

    select_items = [metric[0]]
    if metric[1] != "quantidade":
        select_items.append("COUNT(*) AS quantidade")
    elif value_col:
        select_items.append(f"SUM({value_col}) AS {value_col}")

    query = SelectQuery(select_list="", from_clause=view.name)
    status = _status_predicate(q, view)
    if status:
        query.add_predicate(status)

    top_n = _top_n(q)
    if group:
        query.select_list = ", ".join([group] + select_items)
        query.group_by = group
        if group in _TIME_COLUMNS:
            query.order_by = group
            chart_type = "line"
        else:
            query.order_by = f"{metric[1]} DESC"
            chart_type = "bar"
        query.limit = top_n or _DEFAULT_GROUP_LIMIT
        x_axis, y_axis = group, [metric[1]]
    else:
        query.select_list = ", ".join(select_items)
        query.limit = top_n
        chart_type, x_axis, y_axis = "table", "", []

    confidence = 0.75 if detected else 0.5
    explanation = (
        f"Consulta montada por palavras-chave sobre {view.name}"
        + (f", agrupada por {group}" if group else "")
        + (f", filtro {status}" if status else "")
    )
    logger.info("Mock generation view=%s group=%s status=%s", view.name, group, status)
    return CandidateQuery(
        sql=query.render(),
        chart_type=chart_type,
        x_axis=x_axis,
        y_axis=y_axis,
        confidence=confidence,
        explanation=explanation,
    )


# ── LLM generator ────────────────────────────────────────

_SYSTEM_PROMPT = """Você é um assistente que escreve SQL (PostgreSQL) para um CRM de pisos e revestimentos.

VIEWS DISPONÍVEIS (use somente estas):
{schema}

REGRAS:
1. Gere apenas uma instrução SELECT, sem ponto e vírgula intermediário e sem comentários.
2. Use somente as views listadas acima e somente as colunas listadas para cada uma.
3. Nunca use INSERT, UPDATE, DELETE, DROP, CREATE, ALTER, TRUNCATE, GRANT ou qualquer comando que altere dados.
4. Não filtre por datas; o período é aplicado automaticamente depois.
5. Inclua LIMIT (máximo {max_limit}).
6. Valores monetários devem ser somados com SUM e nomeados (ex.: SUM(valor_total) AS valor_total).

Responda SOMENTE com um objeto JSON:
{{"sql": "...", "chart_type": "table|bar|line|pie", "x_axis": "coluna_x", "y_axis": ["coluna_y"], "confidence": 0.0}}"""


def build_prompts(
    question: str,
    wants_chart: bool,
    corrections: Iterable[str],
    date_range: ExtractedDateRange | None,
    catalog: InsightsCatalog,
) -> tuple[str, str]:
    """Return ``(system_prompt, user_prompt)`` for the LLM call."""
    system_prompt = _SYSTEM_PROMPT.format(
        schema=catalog.schema_context(),
        max_limit=get_settings().sql_row_limit,
    )
    lines = [f'Pergunta: "{question}"']
    corrections = list(corrections)
    if corrections:
        lines.append(f"Correções de data aplicadas: {', '.join(corrections)}")
    if date_range is not None and date_range.found:
        lines.append(
            f"Período detectado: {date_range.start_date.isoformat()} a {date_range.end_date.isoformat()}"
        )
    if wants_chart:
        lines.append(
            "O usuário quer um gráfico: agrupe por uma dimensão ou por periodo_mes "
            "e preencha x_axis e y_axis."
        )
    else:
        lines.append("Resposta agregada simples; chart_type pode ser \"table\".")
    return system_prompt, "\n".join(lines)


def parse_llm_response(raw: str) -> CandidateQuery:
    """Extract the JSON candidate embedded in the LLM reply."""
    m = _JSON_RE.search(raw or "")
    if not m:
        raise GenerationError("LLM response contains no JSON object")
    try:
        data: dict[str, Any] = json.loads(m.group(0))
    except json.JSONDecodeError as exc:
        raise GenerationError(f"LLM returned invalid JSON: {exc}") from exc

    sql = data.get("sql")
    if not isinstance(sql, str) or not sql.strip():
        raise GenerationError("LLM response has no 'sql' field")

    chart_type = str(data.get("chart_type") or "table").lower()
    if chart_type not in CHART_TYPES:
        chart_type = "table"

    y_axis = data.get("y_axis") or []
    if isinstance(y_axis, str):
        y_axis = [y_axis]

    try:
        confidence = float(data.get("confidence", 0.5))
    except (TypeError, ValueError):
        confidence = 0.5

    return CandidateQuery(
        sql=sql.strip(),
        chart_type=chart_type,
        x_axis=str(data.get("x_axis") or ""),
        y_axis=[str(y) for y in y_axis],
        confidence=min(max(confidence, 0.0), 1.0),
        explanation=str(data.get("explanation") or "Consulta gerada pelo assistente"),
    )


def _generate_llm(
    question: str,
    wants_chart: bool,
    corrections: Iterable[str],
    date_range: ExtractedDateRange | None,
    provider: str,
    catalog: InsightsCatalog,
) -> CandidateQuery:
    system_prompt, user_prompt = build_prompts(question, wants_chart, corrections, date_range, catalog)
    try:
        raw = call_llm(system_prompt, user_prompt, provider=provider)
    except Exception as exc:
        raise GenerationError(f"LLM call failed ({provider}): {exc}") from exc
    return parse_llm_response(raw)


# ── Public API ───────────────────────────────────────────

def generate(
    question: str,
    wants_chart: bool = False,
    corrections: Iterable[str] = (),
    date_range: ExtractedDateRange | None = None,
    mode: str | None = None,
) -> CandidateQuery:
    """Produce a candidate query for *question*.

    Raises
    ------
    GenerationError
        Provider failure, timeout, missing key or an unusable reply.
    """
    mode = (mode or get_settings().llm_provider).lower()
    catalog = load_catalog()
    if mode == "mock":
        return _generate_mock(question, wants_chart, catalog)
    return _generate_llm(question, wants_chart, corrections, date_range, mode, catalog)
